"""Tests for the execution proxy client and the hosted model client."""
from __future__ import annotations

import json
import unittest

import httpx

from dashboard_assistant.domain.errors import LanguageModelError, RemoteExecutionFailed
from dashboard_assistant.domain.sessions import ConversationMessage
from dashboard_assistant.providers.language_model import (
    CHAT_PATH,
    DETECT_INTENT_PATH,
    WORKFLOW_PATH,
    HttpLanguageModel,
    build_system_prompt,
    history_payload,
)
from dashboard_assistant.services.remote_executor import EXECUTE_PATH, HttpRemoteExecutor
from dashboard_assistant.util import utc_now

BASE_URL = "https://dashboard.example"


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# Remote executor
# ---------------------------------------------------------------------------


class TestHttpRemoteExecutor(unittest.IsolatedAsyncioTestCase):
    async def test_posts_action_and_returns_json(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"items": [1, 2]})

        client = _client(handler)
        executor = HttpRemoteExecutor(BASE_URL, client=client)
        result = await executor.execute("github", "list_repos", {"user_id": "u1"}, "ghp_secret")
        await client.aclose()

        self.assertEqual(result, {"items": [1, 2]})
        self.assertEqual(seen["path"], EXECUTE_PATH)
        self.assertEqual(
            seen["body"],
            {"tool_id": "github", "action_id": "list_repos", "params": {"user_id": "u1"}, "api_key": "ghp_secret"},
        )

    async def test_error_status_raises_with_detail(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, json={"error": "upstream unavailable"})

        client = _client(handler)
        executor = HttpRemoteExecutor(BASE_URL, client=client)
        with self.assertRaises(RemoteExecutionFailed) as ctx:
            await executor.execute("stripe", "list_charges", {}, "sk")
        await client.aclose()
        self.assertEqual(ctx.exception.status_code, 502)
        self.assertIn("upstream unavailable", str(ctx.exception))
        self.assertEqual(ctx.exception.tool_id, "stripe")

    async def test_single_attempt(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503)

        client = _client(handler)
        executor = HttpRemoteExecutor(BASE_URL, client=client)
        with self.assertRaises(RemoteExecutionFailed):
            await executor.execute("stripe", "list_charges", {}, "sk")
        await client.aclose()
        self.assertEqual(len(calls), 1)

    async def test_transport_error_wrapped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = _client(handler)
        executor = HttpRemoteExecutor(BASE_URL, client=client)
        with self.assertRaises(RemoteExecutionFailed):
            await executor.execute("github", "list_repos", {}, "k")
        await client.aclose()

    async def test_non_json_body_rejected(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>")

        client = _client(handler)
        executor = HttpRemoteExecutor(BASE_URL, client=client)
        with self.assertRaises(RemoteExecutionFailed):
            await executor.execute("github", "list_repos", {}, "k")
        await client.aclose()

    async def test_empty_body_is_none(self):
        client = _client(lambda request: httpx.Response(204))
        executor = HttpRemoteExecutor(BASE_URL, client=client)
        self.assertIsNone(await executor.execute("github", "list_repos", {}, "k"))
        await client.aclose()

    def test_url_validation(self):
        with self.assertRaises(ValueError):
            HttpRemoteExecutor("ftp://dashboard.example")
        with self.assertRaises(ValueError):
            HttpRemoteExecutor("")
        with self.assertRaises(ValueError):
            HttpRemoteExecutor("https://evil.example", allowed_url_prefixes=["https://dashboard.example"])
        executor = HttpRemoteExecutor("https://dashboard.example/", allowed_url_prefixes=["https://dashboard.example"])
        self.assertEqual(executor.base_url, "https://dashboard.example")


# ---------------------------------------------------------------------------
# Language model client
# ---------------------------------------------------------------------------


class TestHttpLanguageModel(unittest.IsolatedAsyncioTestCase):
    async def test_detect_intent_payload(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"type": "general", "confidence": 0.6})

        client = _client(handler)
        model = HttpLanguageModel(BASE_URL, client=client)
        history = [{"role": "user", "content": str(i)} for i in range(8)]
        data = await model.detect_intent("hi", {"userId": "u1"}, history)
        await client.aclose()

        self.assertEqual(data, {"type": "general", "confidence": 0.6})
        self.assertEqual(seen["path"], DETECT_INTENT_PATH)
        self.assertEqual(seen["body"]["message"], "hi")
        self.assertEqual([m["content"] for m in seen["body"]["conversationHistory"]], ["3", "4", "5", "6", "7"])

    async def test_generate_workflow_sends_memories(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"steps": []})

        client = _client(handler)
        model = HttpLanguageModel(BASE_URL, client=client)
        await model.generate_workflow("ship", [{"id": "m1", "content": "c", "type": "context", "tags": [], "similarity": 0.8}])
        await client.aclose()
        self.assertEqual(seen["path"], WORKFLOW_PATH)
        self.assertEqual(seen["body"]["memories"], [{"id": "m1", "content": "c", "type": "context", "tags": []}])

    async def test_chat_returns_content(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"content": "Hello Ada"})

        client = _client(handler)
        model = HttpLanguageModel(BASE_URL, client=client)
        reply = await model.chat([{"role": "user", "content": "hi"}], {"name": "Ada"}, [])
        await client.aclose()
        self.assertEqual(reply, "Hello Ada")
        self.assertEqual(seen["path"], CHAT_PATH)
        self.assertIn("Name: Ada", seen["body"]["system"])
        self.assertEqual(seen["body"]["maxTokens"], 1024)

    async def test_chat_without_content_raises(self):
        client = _client(lambda request: httpx.Response(200, json={"content": "  "}))
        model = HttpLanguageModel(BASE_URL, client=client)
        with self.assertRaises(LanguageModelError):
            await model.chat([], {}, [])
        await client.aclose()

    async def test_http_error_wrapped(self):
        client = _client(lambda request: httpx.Response(400, json={"error": "bad"}))
        model = HttpLanguageModel(BASE_URL, client=client, retry_attempts=1)
        with self.assertRaises(LanguageModelError):
            await model.detect_intent("hi", {}, [])
        await client.aclose()

    async def test_non_object_body_rejected(self):
        client = _client(lambda request: httpx.Response(200, json=["not", "an", "object"]))
        model = HttpLanguageModel(BASE_URL, client=client)
        with self.assertRaises(LanguageModelError):
            await model.generate_workflow("ship", [])
        await client.aclose()

    async def test_auth_header(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"content": "ok"})

        client = _client(handler)
        model = HttpLanguageModel(BASE_URL, client=client)
        model.set_auth_token("tok-123")
        await model.chat([], {}, [])
        await client.aclose()
        self.assertEqual(seen["auth"], "Bearer tok-123")


class TestPromptHelpers(unittest.TestCase):
    def test_system_prompt_lists_memories(self):
        prompt = build_system_prompt({"name": "Ada", "email": "ada@example.com"}, [{"content": "likes tea"}])
        self.assertIn("Name: Ada", prompt)
        self.assertIn("Email: ada@example.com", prompt)
        self.assertIn("- likes tea", prompt)

    def test_system_prompt_defaults(self):
        prompt = build_system_prompt({}, [])
        self.assertIn("Name: User", prompt)
        self.assertNotIn("relevant memories", prompt)

    def test_history_payload_keeps_dialogue_roles(self):
        now = utc_now()
        messages = [
            ConversationMessage(role="system", content="s", timestamp=now),
            ConversationMessage(role="user", content="u", timestamp=now),
            ConversationMessage(role="assistant", content="a", timestamp=now),
        ]
        self.assertEqual(
            history_payload(messages),
            [{"role": "user", "content": "u"}, {"role": "assistant", "content": "a"}],
        )


if __name__ == "__main__":
    unittest.main()
