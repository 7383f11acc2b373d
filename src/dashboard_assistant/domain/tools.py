"""Tool catalog domain model.

A tool is executed by exactly one strategy. The strategy is named by
``ToolDefinition.kind`` and configured by the matching execution variant;
``ToolDefinition`` refuses a variant that does not belong to its kind.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Optional, Tuple, Union

from dashboard_assistant.domain.errors import InvalidActionReference

# ---------------------------------------------------------------------------
# Execution kinds
# ---------------------------------------------------------------------------

KIND_LOCAL = "local"
KIND_REMOTE_PROTOCOL = "remote-protocol"
KIND_GENERIC_API = "generic-api"

TOOL_KINDS: FrozenSet[str] = frozenset([KIND_LOCAL, KIND_REMOTE_PROTOCOL, KIND_GENERIC_API])

TOOL_CATEGORIES: FrozenSet[str] = frozenset(
    ["productivity", "database", "communication", "analytics", "automation", "finance"]
)

PARAMETER_TYPES: FrozenSet[str] = frozenset(["string", "number", "boolean", "array", "object"])


@dataclass(frozen=True)
class LocalExecution:
    handler: str  # key into the local handler table


@dataclass(frozen=True)
class RemoteProtocolExecution:
    command: str
    args: Tuple[str, ...] = ()
    env: Tuple[Tuple[str, str], ...] = ()


@dataclass(frozen=True)
class GenericApiExecution:
    base_url: str
    auth_type: str = "bearer"  # bearer | apikey | oauth
    headers: Tuple[Tuple[str, str], ...] = ()


ExecutionConfig = Union[LocalExecution, RemoteProtocolExecution, GenericApiExecution]

_VARIANT_FOR_KIND = {
    KIND_LOCAL: LocalExecution,
    KIND_REMOTE_PROTOCOL: RemoteProtocolExecution,
    KIND_GENERIC_API: GenericApiExecution,
}


# ---------------------------------------------------------------------------
# Catalog records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolParameter:
    name: str
    type: str
    description: str = ""
    required: bool = False
    default: Any = None

    def __post_init__(self) -> None:
        if self.type not in PARAMETER_TYPES:
            raise ValueError(f"Unknown parameter type '{self.type}' for '{self.name}'.")


@dataclass(frozen=True)
class ToolAction:
    action_id: str
    name: str
    description: str = ""
    parameters: Tuple[ToolParameter, ...] = ()


@dataclass(frozen=True)
class ToolDefinition:
    tool_id: str
    name: str
    kind: str
    execution: ExecutionConfig
    category: str
    description: str = ""
    actions: Tuple[ToolAction, ...] = ()
    pre_configured: bool = True
    requires_credential: bool = False

    def __post_init__(self) -> None:
        if self.kind not in TOOL_KINDS:
            raise ValueError(f"Unknown tool kind '{self.kind}' for '{self.tool_id}'.")
        expected = _VARIANT_FOR_KIND[self.kind]
        if not isinstance(self.execution, expected):
            raise ValueError(
                f"Tool '{self.tool_id}' of kind '{self.kind}' needs {expected.__name__}, "
                f"got {type(self.execution).__name__}."
            )

    def get_action(self, action_id: str) -> Optional[ToolAction]:
        for action in self.actions:
            if action.action_id == action_id:
                return action
        return None

    def action_ids(self) -> Tuple[str, ...]:
        return tuple(a.action_id for a in self.actions)


# ---------------------------------------------------------------------------
# Per-user capability grant
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UserToolConfig:
    user_id: str
    tool_id: str
    enabled: bool
    credential: Optional[str]
    permissions: FrozenSet[str]
    config: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def allows(self, action_id: str) -> bool:
        return action_id in self.permissions


# ---------------------------------------------------------------------------
# Action references
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActionReference:
    tool_id: str
    action_id: str

    def __str__(self) -> str:
        return f"{self.tool_id}.{self.action_id}"


def parse_action_reference(reference: str) -> ActionReference:
    """Split ``"<tool_id>.<action_id>"`` on its last dot.

    Tool ids are dotted themselves (``dashboard.memory``), so the action is
    always the final segment.
    """
    value = (reference or "").strip()
    tool_id, sep, action_id = value.rpartition(".")
    if not sep or not tool_id or not action_id:
        raise InvalidActionReference(
            f"Invalid action reference '{value}'. Use \"tool_id.action_id\".",
        )
    return ActionReference(tool_id=tool_id, action_id=action_id)
