"""HTTP client for the hosted assistant model endpoints.

The model is an optional producer: intent detection, workflow generation and
free-form replies all have local fallbacks. This client only moves JSON; the
callers parse its output into the same typed records the fallbacks produce.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from dashboard_assistant.domain.errors import LanguageModelError
from dashboard_assistant.providers.transport import build_httpx_client, post_json_with_retries
from dashboard_assistant.util import truncate

logger = logging.getLogger(__name__)

CHAT_PATH = "/api/ai/chat"
DETECT_INTENT_PATH = "/api/ai/detect-intent"
WORKFLOW_PATH = "/api/orchestrator/execute"

_HISTORY_WINDOW = 5


def build_system_prompt(user_context: Dict[str, Any], memories: Sequence[Dict[str, Any]]) -> str:
    memory_lines = ""
    if memories:
        memory_lines = "\n\nUser's relevant memories:\n" + "\n".join(
            f"- {truncate(str(m.get('content') or ''), 200)}" for m in memories
        )
    return (
        "You are the dashboard assistant, a helpful and personalized assistant embedded in the user's dashboard.\n\n"
        "About the user:\n"
        f"- Name: {user_context.get('name') or 'User'}\n"
        f"- Email: {user_context.get('email') or ''}"
        f"{memory_lines}\n\n"
        "Your capabilities:\n"
        "1. Answer questions using the user's stored memories and context\n"
        "2. Help create workflow plans for complex tasks\n"
        "3. Execute actions on connected tools the user has granted\n"
        "4. Remember important context for future conversations\n\n"
        "Be concise, reference specific memories when relevant, and suggest follow-up actions."
    )


class HttpLanguageModel:
    def __init__(
        self,
        base_url: str,
        auth_token: str = "",
        connect_timeout_sec: float = 5.0,
        read_timeout_sec: float = 60.0,
        retry_attempts: int = 2,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = (base_url or "").strip().rstrip("/")
        self._auth_token = (auth_token or "").strip()
        self._connect_timeout_sec = connect_timeout_sec
        self._read_timeout_sec = read_timeout_sec
        self._retry_attempts = max(1, int(retry_attempts))
        self._client = client
        self._owns_client = client is None

    def set_auth_token(self, token: str) -> None:
        self._auth_token = (token or "").strip()
        if self._client is not None:
            self._client.headers.update(self._headers())

    async def detect_intent(
        self,
        message: str,
        user_context: Dict[str, Any],
        history: Sequence[Dict[str, str]],
    ) -> Dict[str, Any]:
        payload = {
            "message": message,
            "userContext": user_context,
            "conversationHistory": list(history)[-_HISTORY_WINDOW:],
        }
        return await self._post_object(DETECT_INTENT_PATH, payload)

    async def generate_workflow(self, goal: str, memories: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
        payload = {
            "goal": goal,
            "memories": [
                {"id": m.get("id"), "content": m.get("content"), "type": m.get("type"), "tags": m.get("tags")}
                for m in memories
            ],
        }
        return await self._post_object(WORKFLOW_PATH, payload)

    async def chat(
        self,
        messages: Sequence[Dict[str, str]],
        user_context: Dict[str, Any],
        memories: Sequence[Dict[str, Any]],
    ) -> str:
        payload = {
            "messages": [{"role": m.get("role", "user"), "content": m.get("content", "")} for m in messages],
            "system": build_system_prompt(user_context, memories),
            "userContext": user_context,
            "memories": list(memories),
            "temperature": 0.7,
            "maxTokens": 1024,
        }
        data = await self._post_object(CHAT_PATH, payload)
        content = data.get("content")
        if not isinstance(content, str) or not content.strip():
            raise LanguageModelError("Model chat response has no content.")
        return content

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._auth_token:
            headers["Authorization"] = f"Bearer {self._auth_token}"
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = build_httpx_client(
                base_url=self._base_url,
                headers=self._headers(),
                connect_timeout_sec=self._connect_timeout_sec,
                read_timeout_sec=self._read_timeout_sec,
            )
        return self._client

    async def _post_object(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            resp = await post_json_with_retries(
                self._get_client(),
                path=path,
                payload=payload,
                attempts=self._retry_attempts,
            )
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise LanguageModelError(f"Model call {path} failed: {type(exc).__name__}: {exc}") from exc
        if not isinstance(data, dict):
            raise LanguageModelError(f"Model call {path} returned {type(data).__name__}, expected object.")
        return data


def history_payload(messages: Sequence[Any]) -> List[Dict[str, str]]:
    """Convert ConversationMessage-like records to the model's message shape."""
    out: List[Dict[str, str]] = []
    for msg in messages:
        role = getattr(msg, "role", "user")
        if role not in {"user", "assistant"}:
            continue
        out.append({"role": role, "content": getattr(msg, "content", "")})
    return out
