"""In-process handlers for the ``dashboard.*`` tools.

Each handler serves one tool and is called as ``handler(action_id, params)``;
``params`` always carries the caller's ``user_id`` so queries stay scoped to
that user. Store calls run in a worker thread.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from dashboard_assistant.domain.contracts import ApiKeyStore, LocalHandler, MemoryStore, ToolConfigStore, WorkflowStore
from dashboard_assistant.domain.errors import InvalidActionParams, Unsupported
from dashboard_assistant.domain.memory import MEMORY_TYPE_CONTEXT, MEMORY_TYPES
from dashboard_assistant.domain.tools import KIND_REMOTE_PROTOCOL
from dashboard_assistant.services.context_recall import PER_COLUMN_LIMIT, sanitize_query, to_search_result
from dashboard_assistant.services.workflow_planner import WorkflowPlanner
from dashboard_assistant.tools.catalog import all_tools, get_tool
from dashboard_assistant.util import utc_now

logger = logging.getLogger(__name__)

_TIMEFRAME_DAYS = {"24h": 1, "1d": 1, "7d": 7, "30d": 30, "90d": 90}


def _require(params: Dict[str, Any], name: str, tool_id: str, action_id: str) -> Any:
    value = params.get(name)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise InvalidActionParams(f"'{name}' is required for {tool_id}.{action_id}.", tool_id=tool_id, action_id=action_id)
    return value


def _limit(params: Dict[str, Any], default: int, maximum: int = 100) -> int:
    try:
        value = int(params.get("limit") or default)
    except (TypeError, ValueError):
        value = default
    return max(1, min(maximum, value))


def _unsupported(tool_id: str, action_id: str) -> Unsupported:
    return Unsupported(f"{tool_id}.{action_id} is not available here.", tool_id=tool_id, action_id=action_id)


class ApiKeysHandler:
    tool_id = "dashboard.api_keys"

    def __init__(self, store: ApiKeyStore) -> None:
        self._store = store

    async def __call__(self, action_id: str, params: Dict[str, Any]) -> Any:
        user_id = params["user_id"]
        if action_id == "list":
            return await asyncio.to_thread(self._store.list_api_keys, user_id)
        if action_id == "create":
            name = str(_require(params, "name", self.tool_id, action_id)).strip()
            scope = [str(s) for s in params.get("scope") or []]
            return await asyncio.to_thread(self._store.create_api_key, user_id, name, scope)
        if action_id == "revoke":
            key_id = str(_require(params, "key_id", self.tool_id, action_id))
            revoked = await asyncio.to_thread(self._store.revoke_api_key, user_id, key_id)
            return {"key_id": key_id, "revoked": revoked}
        raise _unsupported(self.tool_id, action_id)


class MemoryHandler:
    tool_id = "dashboard.memory"

    def __init__(self, store: MemoryStore) -> None:
        self._store = store

    async def __call__(self, action_id: str, params: Dict[str, Any]) -> Any:
        user_id = params["user_id"]
        if action_id == "search":
            query = str(params.get("query") or "")
            limit = _limit(params, default=10, maximum=50)
            pattern = sanitize_query(query)
            by_content = await asyncio.to_thread(
                self._store.search_memories, user_id, "content", pattern, max(limit, PER_COLUMN_LIMIT)
            )
            by_title = await asyncio.to_thread(
                self._store.search_memories, user_id, "title", pattern, max(limit, PER_COLUMN_LIMIT)
            )
            seen = set()
            results: List[Dict[str, Any]] = []
            for entry in by_content + by_title:
                if entry.entry_id in seen:
                    continue
                seen.add(entry.entry_id)
                results.append(to_search_result(entry).to_dict())
            return results[:limit]
        if action_id == "create":
            title = str(_require(params, "title", self.tool_id, action_id))
            content = str(_require(params, "content", self.tool_id, action_id))
            memory_type = str(params.get("memory_type") or MEMORY_TYPE_CONTEXT)
            if memory_type not in MEMORY_TYPES:
                raise InvalidActionParams(
                    f"Unknown memory type '{memory_type}'.", tool_id=self.tool_id, action_id=action_id
                )
            tags = [str(t) for t in params.get("tags") or []]
            entry = await asyncio.to_thread(
                self._store.insert_memory, user_id, title, content, memory_type, tags, {"source": "assistant"}
            )
            return {"id": entry.entry_id, "title": entry.title, "created_at": entry.created_at.isoformat()}
        raise _unsupported(self.tool_id, action_id)


class WorkflowHandler:
    tool_id = "dashboard.workflow"

    def __init__(self, store: WorkflowStore, planner: WorkflowPlanner) -> None:
        self._store = store
        self._planner = planner

    async def __call__(self, action_id: str, params: Dict[str, Any]) -> Any:
        user_id = params["user_id"]
        if action_id == "create":
            goal = str(_require(params, "goal", self.tool_id, action_id)).strip()
            plan = await self._planner.plan(goal, ())
            await asyncio.to_thread(self._store.save_workflow_run, user_id, plan)
            return plan.to_dict()
        if action_id == "list":
            return await asyncio.to_thread(self._store.list_workflow_runs, user_id, _limit(params, default=10))
        raise _unsupported(self.tool_id, action_id)


class AnalyticsHandler:
    tool_id = "dashboard.analytics"

    def __init__(self, store: ApiKeyStore) -> None:
        self._store = store

    async def __call__(self, action_id: str, params: Dict[str, Any]) -> Any:
        if action_id != "get_usage":
            raise _unsupported(self.tool_id, action_id)
        timeframe = str(params.get("timeframe") or "7d")
        days = _TIMEFRAME_DAYS.get(timeframe)
        if days is None:
            raise InvalidActionParams(
                f"Unknown timeframe '{timeframe}'. Use one of {', '.join(_TIMEFRAME_DAYS)}.",
                tool_id=self.tool_id,
                action_id=action_id,
            )
        summary = await asyncio.to_thread(self._store.usage_summary, params["user_id"], utc_now() - timedelta(days=days))
        summary["timeframe"] = timeframe
        return summary


class McpServicesHandler:
    """Read-only view of the remote service catalog and the user's grants.

    Configuration changes go through the capability registry (``grant`` /
    ``revoke``) so its cache stays authoritative.
    """

    tool_id = "dashboard.mcp_services"

    def __init__(self, store: ToolConfigStore) -> None:
        self._store = store

    async def __call__(self, action_id: str, params: Dict[str, Any]) -> Any:
        if action_id == "list":
            category = str(params.get("category") or "").strip()
            return [
                {
                    "tool_id": tool.tool_id,
                    "name": tool.name,
                    "category": tool.category,
                    "description": tool.description,
                    "actions": list(tool.action_ids()),
                    "requires_credential": tool.requires_credential,
                }
                for tool in all_tools()
                if tool.kind == KIND_REMOTE_PROTOCOL and (not category or tool.category == category)
            ]
        if action_id == "list_configured":
            rows = await asyncio.to_thread(self._store.list_tool_configs, params["user_id"])
            out: List[Dict[str, Any]] = []
            for row in rows:
                tool = get_tool(row.tool_id)
                out.append({
                    "tool_id": row.tool_id,
                    "name": tool.name if tool else row.tool_id,
                    "enabled": row.enabled,
                    "has_credential": bool(row.credential),
                    "permissions": sorted(row.permissions),
                })
            return out
        raise _unsupported(self.tool_id, action_id)


def build_local_handlers(
    store: Any,
    planner: Optional[WorkflowPlanner] = None,
) -> Dict[str, LocalHandler]:
    """Handler table keyed by ``LocalExecution.handler``.

    ``store`` must satisfy every store protocol the handlers use (the SQLite
    store does). Tools without an entry here dispatch as unsupported.
    """
    return {
        "api_keys": ApiKeysHandler(store),
        "memory": MemoryHandler(store),
        "workflow": WorkflowHandler(store, planner or WorkflowPlanner()),
        "analytics": AnalyticsHandler(store),
        "mcp_services": McpServicesHandler(store),
    }
