"""Exception taxonomy for capability dispatch and its collaborators.

Dispatch errors carry a stable ``code`` so the error catalog can map them to
user-facing messages without string matching.
"""
from __future__ import annotations


class DispatchError(Exception):
    """Base class for every failure surfaced by ``CapabilityRegistry.dispatch``."""

    code = "ERR_DISPATCH"

    def __init__(self, message: str, tool_id: str = "", action_id: str = "") -> None:
        super().__init__(message)
        self.tool_id = tool_id
        self.action_id = action_id


class ToolNotFound(DispatchError):
    code = "ERR_TOOL_NOT_FOUND"


class PermissionDenied(DispatchError):
    code = "ERR_PERMISSION_DENIED"


class CredentialRequired(DispatchError):
    code = "ERR_CREDENTIAL_REQUIRED"


class RemoteExecutionFailed(DispatchError):
    code = "ERR_REMOTE_EXECUTION_FAILED"

    def __init__(
        self,
        message: str,
        tool_id: str = "",
        action_id: str = "",
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, tool_id=tool_id, action_id=action_id)
        self.status_code = status_code


class Unsupported(DispatchError):
    code = "ERR_UNSUPPORTED"


class InvalidActionReference(DispatchError):
    code = "ERR_INVALID_ACTION_REFERENCE"


class InvalidActionParams(DispatchError):
    code = "ERR_INVALID_PARAMS"


class CatalogConfigurationError(RuntimeError):
    """Raised at import time when the static tool catalog is inconsistent."""


class WorkflowValidationError(ValueError):
    pass


class MissingTableError(RuntimeError):
    """Raised by a store when its backing table has not been migrated yet."""

    def __init__(self, table: str) -> None:
        super().__init__(f"Table '{table}' does not exist.")
        self.table = table


class LanguageModelError(RuntimeError):
    pass
