from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from dashboard_assistant.domain.contracts import LanguageModel
from dashboard_assistant.domain.errors import InvalidActionReference
from dashboard_assistant.domain.intents import (
    INTENT_CREATE_WORKFLOW,
    INTENT_EXECUTE_ACTION,
    INTENT_QUERY_INFORMATION,
    INTENT_STORE_CONTEXT,
    Intent,
)
from dashboard_assistant.domain.memory import MemorySearchResult
from dashboard_assistant.domain.sessions import ROLE_ASSISTANT, ROLE_USER, UserContext
from dashboard_assistant.domain.workflows import WorkflowPlan
from dashboard_assistant.observability.structured_log import log_json
from dashboard_assistant.presentation.replies import (
    STORED_CONTEXT_REPLY,
    action_success_reply,
    general_fallback_reply,
    query_fallback_reply,
    suggested_actions,
    workflow_reply,
)
from dashboard_assistant.providers.language_model import history_payload
from dashboard_assistant.services.capability_registry import CapabilityRegistry
from dashboard_assistant.services.context_recall import ContextRecall
from dashboard_assistant.services.conversation import ConversationTracker
from dashboard_assistant.services.error_codes import detect_error_code, user_message_for
from dashboard_assistant.services.intent_classifier import IntentDetector
from dashboard_assistant.services.workflow_planner import WorkflowPlanner

logger = logging.getLogger(__name__)

STORE_FAILED_REPLY = "I couldn't store that context right now. Please try again in a moment."


@dataclass(frozen=True)
class AssistantReply:
    response: str
    intent: Intent
    workflow: Optional[WorkflowPlan] = None
    suggested_actions: List[str] = field(default_factory=list)


class AssistantOrchestrator:
    """Runs one user turn: recall, classify, branch, record.

    One instance serves one user session. The registry it holds is that
    user's view of the catalog and is never shared across users.
    """

    def __init__(
        self,
        user: UserContext,
        registry: CapabilityRegistry,
        recall: ContextRecall,
        tracker: ConversationTracker,
        planner: Optional[WorkflowPlanner] = None,
        detector: Optional[IntentDetector] = None,
        model: Optional[LanguageModel] = None,
    ) -> None:
        self._user = user
        self._registry = registry
        self._recall = recall
        self._tracker = tracker
        self._model = model
        self._planner = planner or WorkflowPlanner(model=model)
        self._detector = detector or IntentDetector(model=model)

    @property
    def registry(self) -> CapabilityRegistry:
        return self._registry

    @property
    def tracker(self) -> ConversationTracker:
        return self._tracker

    async def initialize(self) -> None:
        await self._registry.initialize()

    def available_tools(self) -> List[str]:
        return [f"{tool.tool_id}: {tool.description}" for tool in self._registry.enabled_tools()]

    async def process_request(self, text: str) -> AssistantReply:
        await self._tracker.append(ROLE_USER, text)
        memories = await self._recall.recall(text)
        intent = await self._detector.detect(
            text,
            self._user_payload(),
            history_payload(self._tracker.history()),
        )
        log_json(
            logger,
            "assistant.intent",
            user_id=self._user.user_id,
            session_id=self._tracker.session_id,
            intent=intent.type,
            confidence=intent.confidence,
            source=intent.source,
            action=intent.action,
            recalled=len(memories),
        )

        workflow: Optional[WorkflowPlan] = None
        if intent.type == INTENT_CREATE_WORKFLOW:
            workflow = await self._planner.plan(text, memories, {"user_id": self._user.user_id})
            response = workflow_reply(workflow)
        elif intent.type == INTENT_QUERY_INFORMATION:
            response = await self._answer_query(text, memories)
        elif intent.type == INTENT_STORE_CONTEXT:
            response = await self._store_context(text)
        elif intent.type == INTENT_EXECUTE_ACTION:
            response = await self._execute_action(intent.action, intent.params)
        else:
            response = await self._general_reply(text, memories)

        await self._tracker.append(ROLE_ASSISTANT, response)
        return AssistantReply(
            response=response,
            intent=intent,
            workflow=workflow,
            suggested_actions=suggested_actions(intent),
        )

    # ------------------------------------------------------------------
    # Branches
    # ------------------------------------------------------------------

    async def _execute_action(self, action: Optional[str], params: Optional[Dict[str, Any]]) -> str:
        try:
            if not action:
                raise InvalidActionReference("Intent carries no action reference.")
            result = await self._registry.dispatch(action, params or {})
        except Exception as exc:
            log_json(
                logger,
                "assistant.action_failed",
                level=logging.WARNING,
                user_id=self._user.user_id,
                action=action,
                code=detect_error_code(exc),
                error=str(exc),
            )
            return user_message_for(exc)
        return action_success_reply(result)

    async def _store_context(self, text: str) -> str:
        try:
            await self._recall.store(text)
        except Exception as exc:
            logger.warning("Storing context failed for user %s: %s", self._user.user_id, exc)
            return STORE_FAILED_REPLY
        return STORED_CONTEXT_REPLY

    async def _answer_query(self, text: str, memories: Sequence[MemorySearchResult]) -> str:
        reply = await self._chat(memories)
        if reply is not None:
            return reply
        return query_fallback_reply(text, memories, first_name=self._user.first_name)

    async def _general_reply(self, text: str, memories: Sequence[MemorySearchResult]) -> str:
        reply = await self._chat(memories)
        if reply is not None:
            return reply
        return general_fallback_reply(text, memories, self._tracker.history(), first_name=self._user.first_name)

    async def _chat(self, memories: Sequence[MemorySearchResult]) -> Optional[str]:
        if self._model is None:
            return None
        try:
            return await self._model.chat(
                history_payload(self._tracker.history()),
                self._user_payload(),
                [m.to_dict() for m in memories],
            )
        except Exception as exc:
            logger.warning("Model reply failed, using fallback: %s", exc)
            return None

    def _user_payload(self) -> Dict[str, Any]:
        return {
            "userId": self._user.user_id,
            "email": self._user.user_email,
            "name": self._user.user_name,
        }
