from dataclasses import dataclass
from datetime import datetime
from typing import Optional

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_SYSTEM = "system"

MESSAGE_ROLES = frozenset([ROLE_USER, ROLE_ASSISTANT, ROLE_SYSTEM])


@dataclass(frozen=True)
class UserContext:
    user_id: str
    user_email: str = ""
    user_name: str = ""
    session_id: str = ""

    @property
    def first_name(self) -> str:
        parts = (self.user_name or "").split()
        return parts[0] if parts else ""


@dataclass(frozen=True)
class ConversationMessage:
    role: str
    content: str
    timestamp: datetime
    metadata: Optional[dict] = None
