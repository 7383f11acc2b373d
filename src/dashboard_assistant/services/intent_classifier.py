"""Intent classification for one user utterance.

Two producers yield the same ``Intent`` record:

* ``classify_intent`` - deterministic keyword tiers, always available.
* ``IntentDetector`` - asks the language model first when one is configured
  and falls back to the keyword tiers on any failure or unusable output.

Keyword tiers, first match wins:

  1. action patterns   -> execute_action     0.85
  2. workflow phrases  -> create_workflow    0.8
  3. question openers  -> query_information  0.7
  4. storage phrases   -> store_context      0.9
  5. anything else     -> general            0.5
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional, Sequence, Tuple

from dashboard_assistant.domain.contracts import LanguageModel
from dashboard_assistant.domain.errors import InvalidActionReference
from dashboard_assistant.domain.intents import (
    INTENT_CREATE_WORKFLOW,
    INTENT_EXECUTE_ACTION,
    INTENT_GENERAL,
    INTENT_QUERY_INFORMATION,
    INTENT_SOURCE_MODEL,
    INTENT_STORE_CONTEXT,
    INTENT_TYPES,
    Intent,
)
from dashboard_assistant.domain.tools import parse_action_reference

logger = logging.getLogger(__name__)

ACTION_CONFIDENCE = 0.85
WORKFLOW_CONFIDENCE = 0.8
QUERY_CONFIDENCE = 0.7
STORE_CONFIDENCE = 0.9
GENERAL_CONFIDENCE = 0.5

# The action tier only runs when one of these phrases is present, so that
# questions like "what is my usage" stay questions.
ACTION_TRIGGER_KEYWORDS = (
    "list my", "show my", "get my", "fetch my", "retrieve my",
    "create a", "make a", "generate a", "add a", "new",
    "search for", "search my", "search in", "find in", "look up",
    "revoke", "delete", "remove", "update",
)
WORKFLOW_KEYWORDS = (
    "create workflow", "plan workflow", "help me", "i need to",
    "build plan", "set up workflow", "configure workflow",
)
QUERY_PREFIXES = (
    "what", "how", "why", "when", "where", "who",
    "explain", "tell me", "describe",
)
STORE_KEYWORDS = ("remember", "save this", "note", "store", "keep in mind")

_MEMORY_QUERY_RE = re.compile(
    r"search (?:for |in |my )?(?:memor(?:y|ies) )?(?:for |about )?(.+)",
    re.IGNORECASE,
)
_CONFIGURE_RE = re.compile(r"(?:configure|setup|set up)\s+(\w+)")
_ENABLE_RE = re.compile(r"enable\s+(\w+)")
_DISABLE_RE = re.compile(r"disable\s+(\w+)")
_TEST_RE = re.compile(r"test\s+(\w+)")

ActionMatch = Tuple[str, Dict[str, Any]]


def _first_group(pattern: "re.Pattern[str]", text: str) -> str:
    match = pattern.search(text)
    return match.group(1).strip() if match else ""


def _any(text: str, words: Sequence[str]) -> bool:
    return any(word in text for word in words)


def _match_mcp_services(lowered: str) -> Optional[ActionMatch]:
    if "service" not in lowered or "api key" in lowered:
        return None
    if _any(lowered, ("list", "show", "get")):
        if _any(lowered, ("configured", "my")):
            return "dashboard.mcp_services.list_configured", {}
        return "dashboard.mcp_services.list", {}
    if _any(lowered, ("configure", "setup", "set up")):
        return "dashboard.mcp_services.configure", {"service_key": _first_group(_CONFIGURE_RE, lowered)}
    if "enable" in lowered:
        return "dashboard.mcp_services.enable", {"service_key": _first_group(_ENABLE_RE, lowered)}
    if "disable" in lowered:
        return "dashboard.mcp_services.disable", {"service_key": _first_group(_DISABLE_RE, lowered)}
    if "test" in lowered:
        return "dashboard.mcp_services.test", {"service_key": _first_group(_TEST_RE, lowered)}
    return None


def _match_mcp_usage(lowered: str) -> Optional[ActionMatch]:
    if "mcp" in lowered and _any(lowered, ("usage", "analytics")):
        return "dashboard.mcp_usage.get_stats", {}
    if "request" in lowered and "log" in lowered:
        return "dashboard.mcp_usage.get_logs", {}
    if _any(lowered, ("top action", "most used")):
        return "dashboard.mcp_usage.get_top_actions", {}
    if "breakdown" in lowered and "service" in lowered:
        return "dashboard.mcp_usage.get_service_breakdown", {}
    return None


def _match_mcp_api_keys(lowered: str) -> Optional[ActionMatch]:
    if "mcp" not in lowered or not _any(lowered, ("api key", "key")):
        return None
    if _any(lowered, ("list", "show")):
        return "dashboard.mcp_api_keys.list", {}
    if _any(lowered, ("create", "generate", "new")):
        return "dashboard.mcp_api_keys.create", {}
    if _any(lowered, ("revoke", "delete")):
        return "dashboard.mcp_api_keys.revoke", {}
    if "rotate" in lowered:
        return "dashboard.mcp_api_keys.rotate", {}
    return None


def _match_api_keys(lowered: str) -> Optional[ActionMatch]:
    if "list" in lowered and _any(lowered, ("api key", "keys")):
        return "dashboard.api_keys.list", {}
    if "create" in lowered and "api key" in lowered:
        return "dashboard.api_keys.create", {}
    return None


def _match_memory_search(lowered: str, original: str) -> Optional[ActionMatch]:
    if "search" in lowered and _any(lowered, ("memor", "context")):
        return "dashboard.memory.search", {"query": _first_group(_MEMORY_QUERY_RE, original)}
    return None


def _match_workflows(lowered: str) -> Optional[ActionMatch]:
    if "list" in lowered and "workflow" in lowered:
        return "dashboard.workflow.list", {}
    return None


def _match_analytics(lowered: str) -> Optional[ActionMatch]:
    if _any(lowered, ("usage", "analytics", "stats")):
        return "dashboard.analytics.get_usage", {}
    return None


def match_action(text: str) -> Optional[ActionMatch]:
    """Resolve text to ``(action_ref, params)`` using the closed rule list, or None."""
    original = (text or "").strip()
    lowered = original.lower()
    return (
        _match_mcp_services(lowered)
        or _match_mcp_usage(lowered)
        or _match_mcp_api_keys(lowered)
        or _match_api_keys(lowered)
        or _match_memory_search(lowered, original)
        or _match_workflows(lowered)
        or _match_analytics(lowered)
    )


def classify_intent(text: str) -> Intent:
    lowered = (text or "").strip().lower()

    if _any(lowered, ACTION_TRIGGER_KEYWORDS):
        matched = match_action(text)
        if matched is not None:
            action, params = matched
            return Intent(type=INTENT_EXECUTE_ACTION, confidence=ACTION_CONFIDENCE, action=action, params=params)

    if _any(lowered, WORKFLOW_KEYWORDS):
        return Intent(type=INTENT_CREATE_WORKFLOW, confidence=WORKFLOW_CONFIDENCE)

    if any(lowered.startswith(prefix) for prefix in QUERY_PREFIXES):
        return Intent(type=INTENT_QUERY_INFORMATION, confidence=QUERY_CONFIDENCE)

    if _any(lowered, STORE_KEYWORDS):
        return Intent(type=INTENT_STORE_CONTEXT, confidence=STORE_CONFIDENCE)

    return Intent(type=INTENT_GENERAL, confidence=GENERAL_CONFIDENCE)


def intent_from_model_output(data: Dict[str, Any]) -> Optional[Intent]:
    """Parse model JSON into an Intent, or None when it cannot be trusted."""
    if not isinstance(data, dict):
        return None
    intent_type = str(data.get("type") or "").strip()
    if intent_type not in INTENT_TYPES:
        return None
    try:
        confidence = float(data.get("confidence"))
    except (TypeError, ValueError):
        return None
    if not 0.0 <= confidence <= 1.0:
        return None

    action = data.get("action") or None
    params = data.get("params") if isinstance(data.get("params"), dict) else {}
    if intent_type == INTENT_EXECUTE_ACTION:
        if not isinstance(action, str):
            return None
        try:
            parse_action_reference(action)
        except InvalidActionReference:
            return None
    else:
        action = None
        params = {}
    return Intent(
        type=intent_type,
        confidence=confidence,
        action=action,
        params=dict(params),
        source=INTENT_SOURCE_MODEL,
    )


class IntentDetector:
    def __init__(self, model: Optional[LanguageModel] = None) -> None:
        self._model = model

    async def detect(
        self,
        text: str,
        user_context: Optional[Dict[str, Any]] = None,
        history: Sequence[Dict[str, str]] = (),
    ) -> Intent:
        if self._model is not None:
            try:
                data = await self._model.detect_intent(text, user_context or {}, history)
            except Exception as exc:
                logger.warning("Model intent detection failed, using keywords: %s", exc)
            else:
                intent = intent_from_model_output(data)
                if intent is not None:
                    return intent
                logger.warning("Model intent output unusable, using keywords: %r", data)
        return classify_intent(text)
