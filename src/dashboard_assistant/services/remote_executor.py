"""Client for the remote tool-protocol execution proxy.

Remote (MCP) tools are not run in-process. The proxy receives one JSON
request per action and returns the tool's JSON result:

  POST {base_url}/api/mcp/execute
  {"tool_id": ..., "action_id": ..., "params": {...}, "api_key": ...}

Exactly one attempt is made per dispatch; retrying a side-effecting remote
action is the caller's decision.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence
from urllib import parse

import httpx

from dashboard_assistant.domain.errors import RemoteExecutionFailed
from dashboard_assistant.providers.transport import build_httpx_client

logger = logging.getLogger(__name__)

EXECUTE_PATH = "/api/mcp/execute"


class HttpRemoteExecutor:
    def __init__(
        self,
        base_url: str,
        connect_timeout_sec: float = 5.0,
        read_timeout_sec: float = 30.0,
        allowed_url_prefixes: Sequence[str] = (),
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = (base_url or "").strip().rstrip("/")
        self._allowed_prefixes: List[str] = [p.strip().rstrip("/") for p in allowed_url_prefixes if p.strip()]
        self._validate_url(self._base_url)
        self._connect_timeout_sec = connect_timeout_sec
        self._read_timeout_sec = read_timeout_sec
        self._client = client
        self._owns_client = client is None

    @property
    def base_url(self) -> str:
        return self._base_url

    async def execute(
        self,
        tool_id: str,
        action_id: str,
        params: Dict[str, Any],
        credential: Optional[str],
    ) -> Any:
        payload = {
            "tool_id": tool_id,
            "action_id": action_id,
            "params": params,
            "api_key": credential,
        }
        client = self._get_client()
        try:
            resp = await client.post(EXECUTE_PATH, json=payload)
        except httpx.HTTPError as exc:
            raise RemoteExecutionFailed(
                f"Remote execution failed for {tool_id}.{action_id}: {type(exc).__name__}",
                tool_id=tool_id,
                action_id=action_id,
            ) from exc

        if resp.status_code < 200 or resp.status_code >= 300:
            raise RemoteExecutionFailed(
                f"Remote execution failed for {tool_id}.{action_id}: {_error_detail(resp)}",
                tool_id=tool_id,
                action_id=action_id,
                status_code=resp.status_code,
            )
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise RemoteExecutionFailed(
                f"Remote execution for {tool_id}.{action_id} returned a non-JSON body.",
                tool_id=tool_id,
                action_id=action_id,
                status_code=resp.status_code,
            ) from exc

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = build_httpx_client(
                base_url=self._base_url,
                headers={"Content-Type": "application/json"},
                connect_timeout_sec=self._connect_timeout_sec,
                read_timeout_sec=self._read_timeout_sec,
            )
        return self._client

    def _validate_url(self, url: str) -> None:
        parsed = parse.urlparse(url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError(f"Execution proxy URL must be http(s): {url!r}")
        if self._allowed_prefixes:
            if not any(url.startswith(prefix) for prefix in self._allowed_prefixes):
                raise ValueError(f"Execution proxy URL not in allowlist: {url}")


def _error_detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return f"HTTP {resp.status_code} {value.strip()[:200]}"
    return f"HTTP {resp.status_code} {resp.reason_phrase}".strip()
