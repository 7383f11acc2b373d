from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional

INTENT_CREATE_WORKFLOW = "create_workflow"
INTENT_QUERY_INFORMATION = "query_information"
INTENT_STORE_CONTEXT = "store_context"
INTENT_EXECUTE_ACTION = "execute_action"
INTENT_GENERAL = "general"

INTENT_TYPES: FrozenSet[str] = frozenset(
    [
        INTENT_CREATE_WORKFLOW,
        INTENT_QUERY_INFORMATION,
        INTENT_STORE_CONTEXT,
        INTENT_EXECUTE_ACTION,
        INTENT_GENERAL,
    ]
)

INTENT_SOURCE_KEYWORDS = "keywords"
INTENT_SOURCE_MODEL = "model"


@dataclass(frozen=True)
class Intent:
    type: str
    confidence: float
    action: Optional[str] = None  # fully-qualified "tool_id.action_id"
    params: Dict[str, Any] = field(default_factory=dict)
    source: str = INTENT_SOURCE_KEYWORDS

    def __post_init__(self) -> None:
        if self.type not in INTENT_TYPES:
            raise ValueError(f"Unknown intent type '{self.type}'.")
        if not 0.0 <= float(self.confidence) <= 1.0:
            raise ValueError(f"Intent confidence out of range: {self.confidence}")

    @property
    def is_action(self) -> bool:
        return self.type == INTENT_EXECUTE_ACTION
