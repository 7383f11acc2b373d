"""End-to-end turns through the assistant orchestrator against a temp SQLite store."""
from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

from dashboard_assistant.agent_core import AssistantOrchestrator
from dashboard_assistant.agent_core.orchestrator import STORE_FAILED_REPLY
from dashboard_assistant.domain.errors import LanguageModelError
from dashboard_assistant.domain.intents import INTENT_EXECUTE_ACTION, Intent
from dashboard_assistant.domain.sessions import UserContext
from dashboard_assistant.persistence.sqlite_store import SqliteAssistantStore
from dashboard_assistant.presentation import STORED_CONTEXT_REPLY
from dashboard_assistant.services.capability_registry import CapabilityRegistry
from dashboard_assistant.services.context_recall import ContextRecall
from dashboard_assistant.services.conversation import ConversationTracker
from dashboard_assistant.services.intent_classifier import IntentDetector
from dashboard_assistant.services.workflow_planner import WorkflowPlanner
from dashboard_assistant.tools import build_local_handlers

USER = UserContext(user_id="user-1", user_email="ada@example.com", user_name="Ada Lovelace", session_id="sess-1")


def _make_store(tmp: str) -> SqliteAssistantStore:
    return SqliteAssistantStore(Path(tmp) / "test.db")


def _fixed_detector(intent: Intent) -> MagicMock:
    detector = MagicMock()
    detector.detect = AsyncMock(return_value=intent)
    return detector


class TestAssistantOrchestrator(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.store = _make_store(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    async def _orchestrator(self, detector=None, model=None, recall=None, remote_executor=None) -> AssistantOrchestrator:
        planner = WorkflowPlanner(model=model)
        registry = CapabilityRegistry(
            USER.user_id,
            self.store,
            handlers=build_local_handlers(self.store, planner=planner),
            remote_executor=remote_executor,
        )
        orchestrator = AssistantOrchestrator(
            user=USER,
            registry=registry,
            recall=recall or ContextRecall(USER.user_id, self.store, session_id=USER.session_id),
            tracker=ConversationTracker(USER.user_id, USER.session_id, store=self.store),
            planner=planner,
            detector=detector,
            model=model,
        )
        await orchestrator.initialize()
        return orchestrator

    # ------------------------------------------------------------------
    # Branches without a model
    # ------------------------------------------------------------------

    async def test_local_action_runs(self):
        self.store.create_api_key(USER.user_id, "deploy")
        orchestrator = await self._orchestrator()
        reply = await orchestrator.process_request("list my api keys")
        self.assertEqual(reply.intent.action, "dashboard.api_keys.list")
        self.assertTrue(reply.response.startswith("✓ Action completed successfully!"))
        self.assertIn('"name": "deploy"', reply.response)

    async def test_workflow_branch(self):
        orchestrator = await self._orchestrator()
        reply = await orchestrator.process_request("Help me launch the beta next week")
        self.assertIsNotNone(reply.workflow)
        self.assertEqual(len(reply.workflow.steps), 3)
        self.assertEqual(reply.workflow.context, {"user_id": USER.user_id})
        self.assertTrue(reply.response.startswith("I've created a medium-priority workflow"))
        self.assertEqual(reply.suggested_actions[0], "Execute workflow")

    async def test_store_context_branch(self):
        orchestrator = await self._orchestrator()
        reply = await orchestrator.process_request("remember this decision: we ship on fridays")
        self.assertEqual(reply.response, STORED_CONTEXT_REPLY)
        stored = self.store.search_memories(USER.user_id, "content", "ship on fridays")
        self.assertEqual(len(stored), 1)
        self.assertEqual(stored[0].tags, ["conversation", "context"])

    async def test_store_failure_is_reported(self):
        recall = MagicMock()
        recall.recall = AsyncMock(return_value=[])
        recall.store = AsyncMock(side_effect=RuntimeError("disk full"))
        orchestrator = await self._orchestrator(recall=recall)
        reply = await orchestrator.process_request("remember this decision")
        self.assertEqual(reply.response, STORE_FAILED_REPLY)

    async def test_query_fallback_uses_memories(self):
        self.store.insert_memory(USER.user_id, "what are the pricing tiers", "free, pro and team", "insight")
        orchestrator = await self._orchestrator()
        reply = await orchestrator.process_request("what are the pricing tiers")
        self.assertTrue(reply.response.startswith("Ada, Based on your stored memories"))
        self.assertIn("**insight**", reply.response)

    async def test_general_fallback(self):
        orchestrator = await self._orchestrator()
        reply = await orchestrator.process_request("thanks")
        self.assertEqual(reply.response, "You're welcome, Ada! Let me know if there's anything else I can help with.")

    # ------------------------------------------------------------------
    # Action failures
    # ------------------------------------------------------------------

    async def test_ungranted_and_unknown_tools_read_alike(self):
        denied = await self._orchestrator(
            detector=_fixed_detector(Intent(type=INTENT_EXECUTE_ACTION, confidence=0.9, action="mcp.github.list_repos"))
        )
        missing = await self._orchestrator(
            detector=_fixed_detector(Intent(type=INTENT_EXECUTE_ACTION, confidence=0.9, action="mcp.gitlab.list_repos"))
        )
        denied_reply = await denied.process_request("list repos")
        missing_reply = await missing.process_request("list repos")
        self.assertEqual(
            denied_reply.response,
            'I don\'t have permission to perform "list_repos" on mcp.github. '
            "Please grant me access in the AI Tools settings.",
        )
        self.assertEqual(
            missing_reply.response,
            denied_reply.response.replace("mcp.github", "mcp.gitlab"),
        )

    async def test_remote_action_after_grant(self):
        remote = MagicMock()
        remote.execute = AsyncMock(return_value={"repos": ["a"]})
        orchestrator = await self._orchestrator(
            detector=_fixed_detector(Intent(type=INTENT_EXECUTE_ACTION, confidence=0.9, action="mcp.github.list_repos")),
            remote_executor=remote,
        )
        await orchestrator.registry.grant("mcp.github", credential="ghp_x", permissions=["list_repos"])
        reply = await orchestrator.process_request("list repos")
        self.assertIn('"repos"', reply.response)
        remote.execute.assert_awaited_once_with("mcp.github", "list_repos", {"user_id": USER.user_id}, "ghp_x")

    async def test_tool_without_handler_is_unsupported(self):
        orchestrator = await self._orchestrator()
        reply = await orchestrator.process_request("get my mcp usage")
        self.assertEqual(reply.intent.action, "dashboard.mcp_usage.get_stats")
        self.assertTrue(reply.response.startswith("⚠️ Failed to execute action:"))

    async def test_missing_action_reference(self):
        orchestrator = await self._orchestrator(
            detector=_fixed_detector(Intent(type=INTENT_EXECUTE_ACTION, confidence=0.9))
        )
        reply = await orchestrator.process_request("do the thing")
        self.assertEqual(reply.response, 'Invalid action format. Use "tool_id.action_id"')

    # ------------------------------------------------------------------
    # Session bookkeeping
    # ------------------------------------------------------------------

    async def test_turns_are_recorded_and_snapshotted(self):
        orchestrator = await self._orchestrator()
        for text in ("hello", "thanks", "what can you do"):
            await orchestrator.process_request(text)
        self.assertEqual(len(orchestrator.tracker), 6)
        roles = [m.role for m in orchestrator.tracker.history()]
        self.assertEqual(roles, ["user", "assistant"] * 3)
        snapshots = [m for m in self.store.list_memories(USER.user_id) if "ai-assistant" in m.tags]
        self.assertEqual(len(snapshots), 1)
        self.assertEqual(snapshots[0].metadata["message_count"], 5)

    async def test_available_tools_lists_enabled(self):
        orchestrator = await self._orchestrator()
        tools = orchestrator.available_tools()
        self.assertIn("dashboard.memory: Search and store memories", tools)
        self.assertFalse(any(t.startswith("mcp.") for t in tools))
        await orchestrator.registry.grant("mcp.github", credential="ghp_x", permissions=["list_repos"])
        self.assertTrue(any(t.startswith("mcp.github:") for t in orchestrator.available_tools()))

    # ------------------------------------------------------------------
    # Model-backed paths
    # ------------------------------------------------------------------

    async def test_model_reply_used_for_general(self):
        model = MagicMock()
        model.detect_intent = AsyncMock(side_effect=LanguageModelError("down"))
        model.chat = AsyncMock(return_value="Hi Ada, what's next?")
        orchestrator = await self._orchestrator(detector=IntentDetector(model), model=model)
        reply = await orchestrator.process_request("hello there")
        self.assertEqual(reply.response, "Hi Ada, what's next?")
        messages, user_payload, _ = model.chat.await_args.args
        self.assertEqual(messages, [{"role": "user", "content": "hello there"}])
        self.assertEqual(user_payload, {"userId": "user-1", "email": "ada@example.com", "name": "Ada Lovelace"})

    async def test_model_failure_falls_back(self):
        model = MagicMock()
        model.detect_intent = AsyncMock(side_effect=LanguageModelError("down"))
        model.chat = AsyncMock(side_effect=LanguageModelError("down"))
        model.generate_workflow = AsyncMock(side_effect=LanguageModelError("down"))
        orchestrator = await self._orchestrator(detector=IntentDetector(model), model=model)
        reply = await orchestrator.process_request("thanks")
        self.assertTrue(reply.response.startswith("You're welcome"))
        reply = await orchestrator.process_request("help me plan the offsite")
        self.assertEqual(len(reply.workflow.steps), 3)


if __name__ == "__main__":
    unittest.main()
