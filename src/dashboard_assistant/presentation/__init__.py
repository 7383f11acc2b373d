from dashboard_assistant.presentation.replies import (
    STORED_CONTEXT_REPLY,
    action_success_reply,
    general_fallback_reply,
    query_fallback_reply,
    suggested_actions,
    workflow_reply,
)

__all__ = [
    "STORED_CONTEXT_REPLY",
    "action_success_reply",
    "general_fallback_reply",
    "query_fallback_reply",
    "suggested_actions",
    "workflow_reply",
]
