from __future__ import annotations

import json
import re
from datetime import datetime
from typing import Any, List, Optional, Sequence

from dashboard_assistant.domain.intents import INTENT_CREATE_WORKFLOW, INTENT_QUERY_INFORMATION, Intent
from dashboard_assistant.domain.memory import MemorySearchResult
from dashboard_assistant.domain.sessions import ROLE_ASSISTANT, ConversationMessage
from dashboard_assistant.domain.workflows import WorkflowPlan
from dashboard_assistant.util import truncate

STORED_CONTEXT_REPLY = "I've stored that context for future reference."

_GREETING_RE = re.compile(r"^(hi|hello|hey|good morning|good afternoon|good evening)", re.IGNORECASE)
_THANKS_RE = re.compile(r"^(thanks|thank you|thx|ty|appreciate)", re.IGNORECASE)

_SUGGESTIONS = {
    INTENT_CREATE_WORKFLOW: ["Execute workflow", "Modify workflow", "Save as template"],
    INTENT_QUERY_INFORMATION: ["Show more details", "Search related topics", "Save to memory"],
}
_DEFAULT_SUGGESTIONS = ["Ask another question", "Create a workflow", "View memories"]


def _prefix(first_name: str) -> str:
    return f"{first_name}, " if first_name else ""


def suggested_actions(intent: Intent) -> List[str]:
    return list(_SUGGESTIONS.get(intent.type, _DEFAULT_SUGGESTIONS))


def workflow_reply(plan: WorkflowPlan) -> str:
    text = (
        f"I've created a {plan.priority}-priority workflow with {len(plan.steps)} steps. "
        f"Estimated time: {plan.suggested_timeframe}. "
    )
    if plan.risks:
        text += f"\n\n⚠️ Please note: {plan.risks[0]}"
    return text


def action_success_reply(result: Any) -> str:
    rendered = json.dumps(result, indent=2, ensure_ascii=False, default=str)
    return f"✓ Action completed successfully!\n\nResult: {rendered}"


def query_fallback_reply(query: str, memories: Sequence[MemorySearchResult], first_name: str = "") -> str:
    lowered = (query or "").lower()
    greeting = _prefix(first_name)

    if not memories:
        if "api" in lowered or "key" in lowered:
            return (
                f"{greeting}I don't have any stored context about your API keys or configurations yet. You can:\n\n"
                "1. Navigate to the **API Keys** section to manage your keys\n"
                "2. Save important API notes using the Quick Memory Store\n"
                '3. Ask me to "remember" any API-related information for future reference'
            )
        if "workflow" in lowered or "plan" in lowered:
            return (
                f"{greeting}I don't have workflow history to reference yet. Try creating a workflow by saying "
                'something like "help me plan [your goal]" and I\'ll generate an actionable plan for you.'
            )
        if "memor" in lowered:
            return (
                f"{greeting}Your memory bank is ready to use! You can:\n\n"
                "1. Use the **Quick Memory Store** to save notes, context, or insights\n"
                "2. Search for memories using semantic search\n"
                '3. Ask me to "remember" something and I\'ll store it for you'
            )
        return (
            f"{greeting}I don't have relevant stored context for that question yet. You can save information by "
            'telling me to "remember" something, or use the Memory Workbench to store notes and context that I '
            "can reference in future conversations."
        )

    found = "\n\n".join(
        f"{i}. **{m.memory_type or 'note'}**: {truncate(m.content, 200)}"
        for i, m in enumerate(memories[:3], start=1)
    )
    more = f"({len(memories) - 3} more relevant memories available)\n\n" if len(memories) > 3 else ""
    return (
        f"{greeting}Based on your stored memories, here's what I found:\n\n{found}\n\n{more}"
        "Would you like me to:\n"
        "- Elaborate on any of these points?\n"
        "- Search for more specific information?\n"
        "- Create a workflow based on this context?"
    )


def general_fallback_reply(
    text: str,
    memories: Sequence[MemorySearchResult],
    history: Sequence[ConversationMessage],
    first_name: str = "",
    now: Optional[datetime] = None,
) -> str:
    lowered = (text or "").strip().lower()
    greeting = _prefix(first_name)
    named = f", {first_name}" if first_name else ""

    if _GREETING_RE.match(lowered):
        hour = (now or datetime.now()).hour
        part_of_day = "morning" if hour < 12 else ("afternoon" if hour < 18 else "evening")
        return (
            f"Good {part_of_day}{named}! I'm your AI assistant. I can help you:\n\n"
            "- **Create workflows** for complex tasks\n"
            "- **Search your memories** for relevant context\n"
            "- **Store important information** for future reference\n"
            "- **Answer questions** about your stored data\n\n"
            "What would you like to work on today?"
        )

    if _THANKS_RE.match(lowered):
        return f"You're welcome{named}! Let me know if there's anything else I can help with."

    if "help" in lowered or "what can you do" in lowered:
        return (
            f"{greeting}Here's what I can help you with:\n\n"
            "**Workflows & Planning**\n"
            '- Say "help me plan [goal]" to create an actionable workflow\n'
            "- I'll break down complex tasks into manageable steps\n\n"
            "**Memory Management**\n"
            '- "Remember [information]" to store context\n'
            '- "Search memories for [topic]" to find relevant info\n\n'
            "**Dashboard Actions**\n"
            '- "List my API keys" to see your keys\n'
            '- "Show my workflows" to view past plans\n\n'
            "**Questions**\n"
            "- Ask me anything and I'll use your stored context to help\n\n"
            "What would you like to try?"
        )

    if len(history) > 2:
        last_assistant = next((m for m in reversed(history) if m.role == ROLE_ASSISTANT), None)
        if last_assistant is not None and "workflow" in last_assistant.content:
            return (
                f"{greeting}I can help you refine that workflow further. Would you like to:\n"
                "- Break down a specific step?\n"
                "- Add more context to the plan?\n"
                "- Execute one of the steps?"
            )

    if memories:
        noun = "memory" if len(memories) == 1 else "memories"
        top_type = memories[0].memory_type or "context"
        return (
            f"{greeting}I found {len(memories)} relevant {noun} related to your message "
            f"(mostly {top_type} type). Would you like me to:\n\n"
            "- Search for more specific information?\n"
            "- Create a workflow based on this context?\n"
            "- Store additional notes about this topic?"
        )

    defaults = (
        f"{greeting}I'm ready to help! Try asking me to:\n"
        "- Create a workflow for a project\n"
        "- Search your memories\n"
        "- Remember important context",
        f"{greeting}How can I assist you today? I can create workflows, search your memories, "
        "or help you organize your thoughts.",
        f"{greeting}I'm here to help you work smarter. Would you like to create a plan, store some context, "
        "or search your memory bank?",
    )
    return defaults[len(history) % len(defaults)]
