"""Memory entry domain model.

Entries are the durable context records the dashboard stores per user; the
assistant reads them for grounding and writes context notes and conversation
snapshots into them.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

MEMORY_TYPE_CONTEXT = "context"
MEMORY_TYPE_INSIGHT = "insight"
MEMORY_TYPE_REFERENCE = "reference"
MEMORY_TYPE_PLAN = "plan"

MEMORY_TYPES = frozenset([
    MEMORY_TYPE_CONTEXT,
    MEMORY_TYPE_INSIGHT,
    MEMORY_TYPE_REFERENCE,
    MEMORY_TYPE_PLAN,
])

# Text-match recall has no real ranking; every hit gets the same score.
PLACEHOLDER_SIMILARITY = 0.8


@dataclass(frozen=True)
class MemoryEntry:
    entry_id: str
    user_id: str
    title: str
    content: str
    memory_type: str    # see MEMORY_TYPES
    tags: List[str]
    metadata: Dict[str, Any]
    created_at: datetime


@dataclass(frozen=True)
class MemorySearchResult:
    entry_id: str
    content: str
    memory_type: str
    tags: List[str] = field(default_factory=list)
    similarity: Optional[float] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.entry_id,
            "content": self.content,
            "type": self.memory_type,
            "tags": list(self.tags),
            "similarity": self.similarity,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
