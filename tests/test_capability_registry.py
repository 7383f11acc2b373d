"""Tests for the per-user capability registry and its dispatch path."""
from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

from dashboard_assistant.domain.errors import (
    CredentialRequired,
    InvalidActionReference,
    MissingTableError,
    PermissionDenied,
    RemoteExecutionFailed,
    ToolNotFound,
    Unsupported,
)
from dashboard_assistant.domain.tools import KIND_LOCAL
from dashboard_assistant.persistence.sqlite_store import SqliteAssistantStore
from dashboard_assistant.services.capability_registry import CapabilityRegistry
from dashboard_assistant.tools.catalog import all_tools, get_tool

USER = "user-1"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_store(tmp: str, auto_migrate: bool = True) -> SqliteAssistantStore:
    return SqliteAssistantStore(Path(tmp) / "test.db", auto_migrate=auto_migrate)


def _handlers() -> dict:
    return {
        key: AsyncMock(return_value={"handled_by": key})
        for key in ("api_keys", "memory", "workflow", "analytics", "mcp_services", "mcp_usage", "mcp_api_keys")
    }


class _RegistryCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.store = _make_store(self._tmp.name)
        self.handlers = _handlers()
        self.remote = MagicMock()
        self.remote.execute = AsyncMock(return_value={"ok": True})
        self.registry = CapabilityRegistry(USER, self.store, handlers=self.handlers, remote_executor=self.remote)

    def tearDown(self):
        self._tmp.cleanup()


# ---------------------------------------------------------------------------
# Visibility and can_invoke
# ---------------------------------------------------------------------------


class TestRegistryVisibility(_RegistryCase):
    async def test_local_tools_enabled_without_config(self):
        await self.registry.initialize()
        enabled = {t.tool_id for t in self.registry.enabled_tools()}
        for tool in all_tools():
            if tool.kind == KIND_LOCAL:
                self.assertIn(tool.tool_id, enabled)
                for action_id in tool.action_ids():
                    self.assertTrue(self.registry.can_invoke(tool.tool_id, action_id))

    async def test_non_local_tools_hidden_without_config(self):
        await self.registry.initialize()
        enabled = {t.tool_id for t in self.registry.enabled_tools()}
        for tool in all_tools():
            if tool.kind != KIND_LOCAL:
                self.assertNotIn(tool.tool_id, enabled)
                for action_id in tool.action_ids():
                    self.assertFalse(self.registry.can_invoke(tool.tool_id, action_id))

    async def test_unknown_tool_cannot_be_invoked(self):
        await self.registry.initialize()
        self.assertFalse(self.registry.can_invoke("mcp.unknown", "anything"))

    async def test_grant_enables_only_listed_actions(self):
        await self.registry.initialize()
        await self.registry.grant("mcp.github", credential="ghp_x", permissions=["list_repos"])
        self.assertTrue(self.registry.can_invoke("mcp.github", "list_repos"))
        self.assertFalse(self.registry.can_invoke("mcp.github", "create_issue"))
        self.assertIn("mcp.github", {t.tool_id for t in self.registry.enabled_tools()})

    async def test_initialize_loads_persisted_grants(self):
        self.store.upsert_tool_config(USER, "mcp.stripe", True, "sk_test", ["list_customers"])
        self.store.upsert_tool_config("someone-else", "mcp.github", True, "ghp_x", ["list_repos"])
        await self.registry.initialize()
        self.assertTrue(self.registry.can_invoke("mcp.stripe", "list_customers"))
        self.assertFalse(self.registry.can_invoke("mcp.github", "list_repos"))

    async def test_registries_do_not_share_state(self):
        other = CapabilityRegistry("user-2", self.store, handlers=self.handlers, remote_executor=self.remote)
        await self.registry.initialize()
        await other.initialize()
        await self.registry.grant("mcp.github", credential="ghp_x", permissions=["list_repos"])
        self.assertFalse(other.can_invoke("mcp.github", "list_repos"))


# ---------------------------------------------------------------------------
# Grant / revoke
# ---------------------------------------------------------------------------


class TestRegistryGrants(_RegistryCase):
    async def test_revoke_keeps_permissions(self):
        await self.registry.initialize()
        await self.registry.grant("mcp.github", credential="ghp_x", permissions=["a1"])
        await self.registry.revoke("mcp.github")
        self.assertEqual(self.registry.permissions_for("mcp.github"), frozenset({"a1"}))
        self.assertNotIn("mcp.github", {t.tool_id for t in self.registry.enabled_tools()})

        stored = self.store.get_tool_config(USER, "mcp.github")
        self.assertFalse(stored.enabled)
        self.assertEqual(stored.permissions, frozenset({"a1"}))

    async def test_revoke_survives_reload(self):
        await self.registry.initialize()
        await self.registry.grant("mcp.github", credential="ghp_x", permissions=["a1"])
        await self.registry.revoke("mcp.github")
        fresh = CapabilityRegistry(USER, self.store)
        await fresh.initialize()
        self.assertEqual(fresh.permissions_for("mcp.github"), frozenset({"a1"}))
        self.assertFalse(fresh.config_for("mcp.github").enabled)

    async def test_grant_unknown_tool_raises(self):
        await self.registry.initialize()
        with self.assertRaises(ToolNotFound):
            await self.registry.grant("mcp.nope", permissions=["x"])

    async def test_grant_propagates_store_errors_and_leaves_cache(self):
        store = MagicMock()
        store.list_tool_configs.return_value = []
        store.upsert_tool_config.side_effect = RuntimeError("disk full")
        registry = CapabilityRegistry(USER, store)
        await registry.initialize()
        with self.assertRaises(RuntimeError):
            await registry.grant("mcp.github", credential="x", permissions=["list_repos"])
        self.assertIsNone(registry.config_for("mcp.github"))

    async def test_revoke_propagates_store_errors(self):
        store = MagicMock()
        store.list_tool_configs.return_value = []
        store.set_tool_enabled.side_effect = RuntimeError("locked")
        registry = CapabilityRegistry(USER, store)
        await registry.initialize()
        with self.assertRaises(RuntimeError):
            await registry.revoke("mcp.github")

    async def test_regrant_replaces_permissions(self):
        await self.registry.initialize()
        await self.registry.grant("mcp.github", credential="ghp_x", permissions=["list_repos"])
        await self.registry.grant("mcp.github", credential="ghp_x", permissions=["create_issue"])
        self.assertEqual(self.registry.permissions_for("mcp.github"), frozenset({"create_issue"}))

    async def test_regrant_without_credential_keeps_stored_one(self):
        await self.registry.initialize()
        await self.registry.grant("mcp.github", credential="ghp_secret", permissions=["create_issue"], config={"org": "acme"})
        await self.registry.revoke("mcp.github")
        await self.registry.grant("mcp.github", permissions=["create_issue", "list_repos"])

        cfg = self.registry.config_for("mcp.github")
        self.assertTrue(cfg.enabled)
        self.assertEqual(cfg.credential, "ghp_secret")
        self.assertEqual(cfg.config, {"org": "acme"})

        await self.registry.dispatch("mcp.github.list_repos", {})
        self.remote.execute.assert_awaited_once_with("mcp.github", "list_repos", {"user_id": USER}, "ghp_secret")

    async def test_revoke_reports_whether_a_grant_existed(self):
        await self.registry.initialize()
        self.assertFalse(await self.registry.revoke("mcp.github"))
        await self.registry.grant("mcp.github", credential="ghp_x", permissions=["list_repos"])
        self.assertTrue(await self.registry.revoke("mcp.github"))


# ---------------------------------------------------------------------------
# Initialization failures
# ---------------------------------------------------------------------------


class TestRegistryInitialize(unittest.IsolatedAsyncioTestCase):
    async def test_missing_table_degrades_to_local_only(self):
        with tempfile.TemporaryDirectory() as tmp:
            store = _make_store(tmp, auto_migrate=False)
            registry = CapabilityRegistry(USER, store)
            with self.assertLogs("dashboard_assistant.services.capability_registry", level="WARNING"):
                await registry.initialize()
            kinds = {t.kind for t in registry.enabled_tools()}
            self.assertEqual(kinds, {KIND_LOCAL})

    async def test_other_store_errors_propagate(self):
        store = MagicMock()
        store.list_tool_configs.side_effect = RuntimeError("connection refused")
        registry = CapabilityRegistry(USER, store)
        with self.assertRaises(RuntimeError):
            await registry.initialize()

    async def test_missing_table_error_from_custom_store(self):
        store = MagicMock()
        store.list_tool_configs.side_effect = MissingTableError("user_tool_configs")
        registry = CapabilityRegistry(USER, store)
        await registry.initialize()
        self.assertIsNone(registry.config_for("mcp.github"))


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


class TestRegistryDispatch(_RegistryCase):
    async def test_local_dispatch_adds_user_id(self):
        await self.registry.initialize()
        result = await self.registry.dispatch("dashboard.memory.search", {"query": "notes"})
        self.assertEqual(result, {"handled_by": "memory"})
        self.handlers["memory"].assert_awaited_once_with("search", {"query": "notes", "user_id": USER})

    async def test_dispatch_does_not_mutate_caller_params(self):
        await self.registry.initialize()
        params = {"query": "notes"}
        await self.registry.dispatch("dashboard.memory.search", params)
        self.assertEqual(params, {"query": "notes"})

    async def test_denied_action_never_reaches_proxy(self):
        await self.registry.initialize()
        await self.registry.grant("mcp.github", credential="ghp_x", permissions=["list_repos"])
        with self.assertRaises(PermissionDenied):
            await self.registry.dispatch("mcp.github.create_issue", {"repo": "r", "title": "t"})
        self.assertEqual(self.remote.execute.await_count, 0)

    async def test_ungranted_tool_never_reaches_proxy(self):
        await self.registry.initialize()
        with self.assertRaises(PermissionDenied):
            await self.registry.dispatch_action("mcp.stripe", "list_customers", {})
        self.remote.execute.assert_not_awaited()

    async def test_denied_action_never_reaches_local_handler(self):
        handler = AsyncMock(return_value=None)
        registry = CapabilityRegistry(USER, self.store, handlers={"api_keys": handler}, remote_executor=self.remote)
        await registry.initialize()
        with self.assertRaises(PermissionDenied):
            await registry.dispatch("mcp.clickup.create_task", {})
        self.assertEqual(handler.await_count, 0)

    async def test_unknown_tool_raises_not_found(self):
        await self.registry.initialize()
        with self.assertRaises(ToolNotFound):
            await self.registry.dispatch("mcp.unknown.run", {})

    async def test_bad_reference_raises(self):
        await self.registry.initialize()
        with self.assertRaises(InvalidActionReference):
            await self.registry.dispatch("badformat", {})

    async def test_remote_dispatch_sends_credential(self):
        await self.registry.initialize()
        await self.registry.grant("mcp.github", credential="ghp_secret", permissions=["list_repos"])
        result = await self.registry.dispatch("mcp.github.list_repos", {})
        self.assertEqual(result, {"ok": True})
        self.remote.execute.assert_awaited_once_with("mcp.github", "list_repos", {"user_id": USER}, "ghp_secret")

    async def test_remote_dispatch_without_credential(self):
        await self.registry.initialize()
        await self.registry.grant("mcp.github", credential=None, permissions=["list_repos"])
        with self.assertRaises(CredentialRequired):
            await self.registry.dispatch("mcp.github.list_repos", {})
        self.remote.execute.assert_not_awaited()

    async def test_remote_failure_is_wrapped(self):
        self.remote.execute.side_effect = ConnectionError("reset")
        await self.registry.initialize()
        await self.registry.grant("mcp.github", credential="ghp_x", permissions=["list_repos"])
        with self.assertRaises(RemoteExecutionFailed):
            await self.registry.dispatch("mcp.github.list_repos", {})

    async def test_remote_dispatch_without_executor(self):
        registry = CapabilityRegistry(USER, self.store, handlers=self.handlers)
        await registry.initialize()
        await registry.grant("mcp.github", credential="ghp_x", permissions=["list_repos"])
        with self.assertRaises(RemoteExecutionFailed):
            await registry.dispatch("mcp.github.list_repos", {})

    async def test_generic_api_is_unsupported(self):
        await self.registry.initialize()
        await self.registry.grant("api.webhook", credential="token", permissions=["post"])
        with self.assertRaises(Unsupported):
            await self.registry.dispatch("api.webhook.post", {"payload": {}})
        self.remote.execute.assert_not_awaited()

    async def test_local_tool_without_handler_is_unsupported(self):
        registry = CapabilityRegistry(USER, self.store, handlers={})
        await registry.initialize()
        with self.assertRaises(Unsupported):
            await registry.dispatch("dashboard.analytics.get_usage", {})

    async def test_registered_handler_is_used(self):
        registry = CapabilityRegistry(USER, self.store, handlers={})
        handler = AsyncMock(return_value={"requests": 3})
        registry.register_handler("mcp_usage", handler)
        await registry.initialize()
        result = await registry.dispatch("dashboard.mcp_usage.get_stats", {"timeframe": "30d"})
        self.assertEqual(result, {"requests": 3})
        handler.assert_awaited_once_with("get_stats", {"timeframe": "30d", "user_id": USER})

    async def test_dispatch_emits_structured_log(self):
        await self.registry.initialize()
        with self.assertLogs("dashboard_assistant.services.capability_registry", level="INFO") as logs:
            await self.registry.dispatch("dashboard.memory.search", {"query": "x"})
        self.assertTrue(any('"event": "capability.dispatch"' in line for line in logs.output))
        self.assertTrue(any('"outcome": "ok"' in line for line in logs.output))

    async def test_handler_crash_is_logged_and_propagates(self):
        self.handlers["memory"].side_effect = RuntimeError("database is locked")
        await self.registry.initialize()
        with self.assertLogs("dashboard_assistant.services.capability_registry", level="ERROR") as logs:
            with self.assertRaises(RuntimeError):
                await self.registry.dispatch("dashboard.memory.search", {"query": "x"})
        self.assertTrue(any('"outcome": "error"' in line for line in logs.output))
        self.assertTrue(any('"code": "ERR_UNKNOWN"' in line for line in logs.output))

    async def test_catalog_can_be_overridden(self):
        registry = CapabilityRegistry(USER, self.store, catalog=[get_tool("dashboard.memory")])
        await registry.initialize()
        self.assertEqual([t.tool_id for t in registry.enabled_tools()], ["dashboard.memory"])


if __name__ == "__main__":
    unittest.main()
