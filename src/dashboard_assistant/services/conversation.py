from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from dashboard_assistant.domain.contracts import MemoryStore
from dashboard_assistant.domain.memory import MEMORY_TYPE_CONTEXT, MemoryEntry
from dashboard_assistant.domain.sessions import MESSAGE_ROLES, ConversationMessage
from dashboard_assistant.util import utc_now

logger = logging.getLogger(__name__)

SNAPSHOT_WINDOW = 5


class ConversationTracker:
    """Append-only message log for one session.

    Every ``snapshot_interval``-th message writes the last few messages to
    the memory store so the conversation can be recalled later. A failed
    snapshot never fails the turn.
    """

    def __init__(
        self,
        user_id: str,
        session_id: str,
        store: Optional[MemoryStore] = None,
        snapshot_interval: int = 5,
    ) -> None:
        self._user_id = user_id
        self._session_id = session_id
        self._store = store
        self._snapshot_interval = max(1, int(snapshot_interval))
        self._messages: List[ConversationMessage] = []

    @property
    def session_id(self) -> str:
        return self._session_id

    async def append(self, role: str, content: str, metadata: Optional[dict] = None) -> ConversationMessage:
        if role not in MESSAGE_ROLES:
            raise ValueError(f"Unknown message role '{role}'.")
        message = ConversationMessage(role=role, content=content, timestamp=utc_now(), metadata=metadata)
        self._messages.append(message)
        if len(self._messages) % self._snapshot_interval == 0:
            await self.snapshot()
        return message

    async def snapshot(self) -> Optional[MemoryEntry]:
        if self._store is None or not self._user_id or not self._messages:
            return None
        recent = self._messages[-SNAPSHOT_WINDOW:]
        content = "\n\n".join(f"{m.role}: {m.content}" for m in recent)
        now = utc_now()
        try:
            entry = await asyncio.to_thread(
                self._store.insert_memory,
                self._user_id,
                f"Conversation snapshot - {now.strftime('%Y-%m-%d %H:%M:%S')}",
                content,
                MEMORY_TYPE_CONTEXT,
                ["conversation", "ai-assistant"],
                {"session_id": self._session_id, "message_count": len(self._messages)},
            )
        except Exception as exc:
            logger.warning("Conversation snapshot failed for session %s: %s", self._session_id, exc)
            return None
        logger.debug("Stored conversation snapshot %s (%d messages)", entry.entry_id, len(self._messages))
        return entry

    def history(self, limit: Optional[int] = None) -> List[ConversationMessage]:
        if limit is None:
            return list(self._messages)
        if limit <= 0:
            return []
        return list(self._messages[-limit:])

    def clear(self) -> None:
        self._messages = []

    def __len__(self) -> int:
        return len(self._messages)
