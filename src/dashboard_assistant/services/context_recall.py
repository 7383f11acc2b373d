"""Best-effort memory recall for one user turn.

Recall is text matching, not ranking: the query is matched as a substring
against memory content and titles, newest first. Punctuation becomes a SQL
wildcard so "what's the plan?" still finds "what s the plan".
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional

from dashboard_assistant.domain.contracts import MemoryStore
from dashboard_assistant.domain.memory import (
    MEMORY_TYPE_CONTEXT,
    PLACEHOLDER_SIMILARITY,
    MemoryEntry,
    MemorySearchResult,
)
from dashboard_assistant.util import utc_now

logger = logging.getLogger(__name__)

_WILDCARD_CHARS_RE = re.compile(r"[,.'\":;!?()]")
PER_COLUMN_LIMIT = 5
DEFAULT_RECALL_LIMIT = 10


def sanitize_query(query: str) -> str:
    return _WILDCARD_CHARS_RE.sub("%", query or "")


def to_search_result(entry: MemoryEntry) -> MemorySearchResult:
    return MemorySearchResult(
        entry_id=entry.entry_id,
        content=entry.content,
        memory_type=entry.memory_type,
        tags=list(entry.tags),
        similarity=PLACEHOLDER_SIMILARITY,
        created_at=entry.created_at,
    )


class ContextRecall:
    def __init__(
        self,
        user_id: str,
        store: MemoryStore,
        session_id: str = "",
        limit: int = DEFAULT_RECALL_LIMIT,
    ) -> None:
        self._user_id = user_id
        self._store = store
        self._session_id = session_id
        self._limit = max(1, int(limit))

    async def recall(self, query: str) -> List[MemorySearchResult]:
        if not self._user_id:
            return []
        pattern = sanitize_query(query)
        try:
            by_content = await asyncio.to_thread(
                self._store.search_memories, self._user_id, "content", pattern, PER_COLUMN_LIMIT
            )
            by_title = await asyncio.to_thread(
                self._store.search_memories, self._user_id, "title", pattern, PER_COLUMN_LIMIT
            )
        except Exception as exc:
            logger.warning("Memory recall failed for user %s: %s", self._user_id, exc)
            return []

        seen = set()
        out: List[MemorySearchResult] = []
        for entry in by_content + by_title:
            if entry.entry_id in seen:
                continue
            seen.add(entry.entry_id)
            out.append(to_search_result(entry))
            if len(out) >= self._limit:
                break
        return out

    async def store(self, content: str, metadata: Optional[Dict[str, Any]] = None) -> MemoryEntry:
        now = utc_now()
        meta: Dict[str, Any] = {"session_id": self._session_id, "timestamp": now.isoformat()}
        meta.update(metadata or {})
        return await asyncio.to_thread(
            self._store.insert_memory,
            self._user_id,
            f"Context from {now.date().isoformat()}",
            content,
            MEMORY_TYPE_CONTEXT,
            ["conversation", "context"],
            meta,
        )
