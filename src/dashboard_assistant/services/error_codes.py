from dataclasses import dataclass
from typing import List

from dashboard_assistant.domain.errors import DispatchError

# Unknown tools and ungranted actions get the same text so a user cannot
# enumerate which tools exist.
_ACCESS_MESSAGE = (
    'I don\'t have permission to perform "{action_id}" on {tool_id}. '
    "Please grant me access in the AI Tools settings."
)
_FAILED_MESSAGE = "⚠️ Failed to execute action: {detail}"


@dataclass(frozen=True)
class RecoveryAction:
    action_id: str
    label: str
    description: str


@dataclass(frozen=True)
class ErrorCatalogEntry:
    code: str
    title: str
    user_message: str
    actions: List[RecoveryAction]


ERROR_CATALOG: List[ErrorCatalogEntry] = [
    ErrorCatalogEntry(
        code="ERR_TOOL_NOT_FOUND",
        title="Tool not available",
        user_message=_ACCESS_MESSAGE,
        actions=[
            RecoveryAction("open_tool_settings", "Open AI Tools settings", "Enable the tool and grant the action."),
        ],
    ),
    ErrorCatalogEntry(
        code="ERR_PERMISSION_DENIED",
        title="Action not granted",
        user_message=_ACCESS_MESSAGE,
        actions=[
            RecoveryAction("open_tool_settings", "Open AI Tools settings", "Enable the tool and grant the action."),
        ],
    ),
    ErrorCatalogEntry(
        code="ERR_CREDENTIAL_REQUIRED",
        title="Credential missing",
        user_message="{tool_id} needs an API key before I can use it. Add one in the AI Tools settings.",
        actions=[
            RecoveryAction("configure_credential", "Add credential", "Store an API key for the tool."),
        ],
    ),
    ErrorCatalogEntry(
        code="ERR_REMOTE_EXECUTION_FAILED",
        title="Remote tool call failed",
        user_message=_FAILED_MESSAGE,
        actions=[
            RecoveryAction("retry_action", "Retry", "Run the same action again."),
            RecoveryAction("test_connection", "Test connection", "Check the service credentials."),
        ],
    ),
    ErrorCatalogEntry(
        code="ERR_UNSUPPORTED",
        title="Action not supported",
        user_message=_FAILED_MESSAGE,
        actions=[
            RecoveryAction("open_tool_settings", "Open AI Tools settings", "Pick a supported tool for this task."),
        ],
    ),
    ErrorCatalogEntry(
        code="ERR_INVALID_ACTION_REFERENCE",
        title="Malformed action reference",
        user_message='Invalid action format. Use "tool_id.action_id"',
        actions=[],
    ),
    ErrorCatalogEntry(
        code="ERR_INVALID_PARAMS",
        title="Missing or invalid parameters",
        user_message=_FAILED_MESSAGE,
        actions=[
            RecoveryAction("rephrase", "Rephrase request", "Include the missing details in the request."),
        ],
    ),
    ErrorCatalogEntry(
        code="ERR_UNKNOWN",
        title="Unknown execution error",
        user_message=_FAILED_MESSAGE,
        actions=[
            RecoveryAction("retry_action", "Retry", "Retry once to confirm reproducibility."),
        ],
    ),
]


def detect_error_code(exc: BaseException) -> str:
    if isinstance(exc, DispatchError):
        code = exc.code
        if any(entry.code == code for entry in ERROR_CATALOG):
            return code
    return "ERR_UNKNOWN"


def get_catalog_entry(code: str) -> ErrorCatalogEntry:
    for entry in ERROR_CATALOG:
        if entry.code == code:
            return entry
    return next(entry for entry in ERROR_CATALOG if entry.code == "ERR_UNKNOWN")


def user_message_for(exc: BaseException) -> str:
    entry = get_catalog_entry(detect_error_code(exc))
    return entry.user_message.format(
        tool_id=getattr(exc, "tool_id", "") or "this tool",
        action_id=getattr(exc, "action_id", "") or "this action",
        detail=str(exc) or type(exc).__name__,
    )
