"""Per-user view of the tool catalog and the single dispatch path.

The registry merges the static catalog with one user's grant rows and is the
only place that decides whether an action may run. Every dispatch checks the
grant before doing any I/O, then branches once on the tool's execution kind.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Sequence

from dashboard_assistant.domain.contracts import LocalHandler, RemoteExecutor, ToolConfigStore
from dashboard_assistant.domain.errors import (
    CredentialRequired,
    DispatchError,
    MissingTableError,
    PermissionDenied,
    RemoteExecutionFailed,
    ToolNotFound,
    Unsupported,
)
from dashboard_assistant.domain.tools import (
    KIND_GENERIC_API,
    KIND_LOCAL,
    KIND_REMOTE_PROTOCOL,
    ToolDefinition,
    UserToolConfig,
    parse_action_reference,
)
from dashboard_assistant.observability.structured_log import log_json
from dashboard_assistant.tools.catalog import all_tools
from dashboard_assistant.util import redact_mapping

logger = logging.getLogger(__name__)


class CapabilityRegistry:
    def __init__(
        self,
        user_id: str,
        store: ToolConfigStore,
        handlers: Optional[Mapping[str, LocalHandler]] = None,
        remote_executor: Optional[RemoteExecutor] = None,
        catalog: Optional[Sequence[ToolDefinition]] = None,
    ) -> None:
        self._user_id = user_id
        self._store = store
        self._handlers: Dict[str, LocalHandler] = dict(handlers or {})
        self._remote = remote_executor
        self._tools: Dict[str, ToolDefinition] = {t.tool_id: t for t in (catalog if catalog is not None else all_tools())}
        self._configs: Dict[str, UserToolConfig] = {}

    @property
    def user_id(self) -> str:
        return self._user_id

    def register_handler(self, handler_key: str, handler: LocalHandler) -> None:
        self._handlers[handler_key] = handler

    async def initialize(self) -> None:
        """Load the user's grant rows into the cache.

        An unmigrated store is tolerated (empty cache, local tools only);
        anything else the store raises propagates.
        """
        try:
            rows = await asyncio.to_thread(self._store.list_tool_configs, self._user_id)
        except MissingTableError as exc:
            logger.warning("Tool config table '%s' missing; continuing with local tools only.", exc.table)
            rows = []
        self._configs = {row.tool_id: row for row in rows}
        logger.debug("Loaded %d tool configs for user %s", len(self._configs), self._user_id)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def get_tool(self, tool_id: str) -> Optional[ToolDefinition]:
        return self._tools.get(tool_id)

    def enabled_tools(self) -> List[ToolDefinition]:
        out: List[ToolDefinition] = []
        for tool in self._tools.values():
            if tool.kind == KIND_LOCAL:
                out.append(tool)
                continue
            cfg = self._configs.get(tool.tool_id)
            if cfg is not None and cfg.enabled:
                out.append(tool)
        return out

    def can_invoke(self, tool_id: str, action_id: str) -> bool:
        tool = self._tools.get(tool_id)
        if tool is None:
            return False
        if tool.kind == KIND_LOCAL:
            return True
        # Disabled rows still answer from their permissions; enabled_tools hides them.
        cfg = self._configs.get(tool_id)
        return cfg is not None and cfg.allows(action_id)

    def permissions_for(self, tool_id: str) -> frozenset:
        cfg = self._configs.get(tool_id)
        return cfg.permissions if cfg is not None else frozenset()

    def config_for(self, tool_id: str) -> Optional[UserToolConfig]:
        return self._configs.get(tool_id)

    # ------------------------------------------------------------------
    # Grants
    # ------------------------------------------------------------------

    async def grant(
        self,
        tool_id: str,
        credential: Optional[str] = None,
        permissions: Sequence[str] = (),
        config: Optional[Dict[str, Any]] = None,
    ) -> UserToolConfig:
        if tool_id not in self._tools:
            raise ToolNotFound(f"Unknown tool '{tool_id}'.", tool_id=tool_id)
        row = await asyncio.to_thread(
            self._store.upsert_tool_config,
            self._user_id,
            tool_id,
            True,
            credential,
            list(permissions),
            config,
        )
        self._configs[tool_id] = row
        log_json(logger, "capability.grant", user_id=self._user_id, tool_id=tool_id, permissions=sorted(row.permissions))
        return row

    async def revoke(self, tool_id: str) -> bool:
        """Disable a tool for this user; False when no grant row existed."""
        changed = await asyncio.to_thread(self._store.set_tool_enabled, self._user_id, tool_id, False)
        cfg = self._configs.get(tool_id)
        if cfg is not None:
            self._configs[tool_id] = UserToolConfig(
                user_id=cfg.user_id,
                tool_id=cfg.tool_id,
                enabled=False,
                credential=cfg.credential,
                permissions=cfg.permissions,
                config=cfg.config,
                created_at=cfg.created_at,
                updated_at=cfg.updated_at,
            )
        log_json(logger, "capability.revoke", user_id=self._user_id, tool_id=tool_id, changed=bool(changed))
        return bool(changed)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, action_ref: str, params: Optional[Dict[str, Any]] = None) -> Any:
        ref = parse_action_reference(action_ref)
        return await self.dispatch_action(ref.tool_id, ref.action_id, params)

    async def dispatch_action(self, tool_id: str, action_id: str, params: Optional[Dict[str, Any]] = None) -> Any:
        started = time.monotonic()
        try:
            result = await self._dispatch(tool_id, action_id, params)
        except DispatchError as exc:
            log_json(
                logger,
                "capability.dispatch",
                level=logging.WARNING,
                outcome="error",
                code=exc.code,
                user_id=self._user_id,
                tool_id=tool_id,
                action_id=action_id,
                latency_ms=int((time.monotonic() - started) * 1000),
            )
            raise
        except Exception as exc:
            log_json(
                logger,
                "capability.dispatch",
                level=logging.ERROR,
                outcome="error",
                code="ERR_UNKNOWN",
                error=f"{type(exc).__name__}: {exc}",
                user_id=self._user_id,
                tool_id=tool_id,
                action_id=action_id,
                latency_ms=int((time.monotonic() - started) * 1000),
            )
            raise
        log_json(
            logger,
            "capability.dispatch",
            outcome="ok",
            user_id=self._user_id,
            tool_id=tool_id,
            action_id=action_id,
            latency_ms=int((time.monotonic() - started) * 1000),
        )
        return result

    async def _dispatch(self, tool_id: str, action_id: str, params: Optional[Dict[str, Any]]) -> Any:
        tool = self._tools.get(tool_id)
        if tool is None:
            raise ToolNotFound(f"Unknown tool '{tool_id}'.", tool_id=tool_id, action_id=action_id)
        if not self.can_invoke(tool_id, action_id):
            raise PermissionDenied(
                f"Action '{action_id}' is not granted on '{tool_id}'.",
                tool_id=tool_id,
                action_id=action_id,
            )

        call_params = dict(params or {})
        call_params["user_id"] = self._user_id

        if tool.kind == KIND_LOCAL:
            handler = self._handlers.get(tool.execution.handler)
            if handler is None:
                raise Unsupported(
                    f"No local handler registered for '{tool_id}'.",
                    tool_id=tool_id,
                    action_id=action_id,
                )
            return await handler(action_id, call_params)
        elif tool.kind == KIND_REMOTE_PROTOCOL:
            cfg = self._configs.get(tool_id)
            credential = cfg.credential if cfg is not None else None
            if tool.requires_credential and not credential:
                raise CredentialRequired(
                    f"'{tool_id}' needs a credential before it can run.",
                    tool_id=tool_id,
                    action_id=action_id,
                )
            if self._remote is None:
                raise RemoteExecutionFailed(
                    "No execution proxy is configured.",
                    tool_id=tool_id,
                    action_id=action_id,
                )
            logger.debug("Remote dispatch %s.%s params=%s", tool_id, action_id, redact_mapping(call_params))
            try:
                return await self._remote.execute(tool_id, action_id, call_params, credential)
            except DispatchError:
                raise
            except Exception as exc:
                raise RemoteExecutionFailed(
                    f"Remote execution failed for {tool_id}.{action_id}: {type(exc).__name__}: {exc}",
                    tool_id=tool_id,
                    action_id=action_id,
                ) from exc
        elif tool.kind == KIND_GENERIC_API:
            raise Unsupported(
                f"Generic API execution is not available for '{tool_id}'.",
                tool_id=tool_id,
                action_id=action_id,
            )
        else:
            raise Unsupported(f"Unknown tool kind '{tool.kind}'.", tool_id=tool_id, action_id=action_id)
