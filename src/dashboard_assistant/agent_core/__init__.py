from dashboard_assistant.agent_core.orchestrator import AssistantOrchestrator, AssistantReply

__all__ = [
    "AssistantOrchestrator",
    "AssistantReply",
]
