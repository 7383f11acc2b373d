import hashlib
import json
import secrets
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from dashboard_assistant.domain.errors import MissingTableError
from dashboard_assistant.domain.memory import MEMORY_TYPE_CONTEXT, MEMORY_TYPES, MemoryEntry
from dashboard_assistant.domain.tools import UserToolConfig
from dashboard_assistant.domain.workflows import WorkflowPlan

_SEARCHABLE_MEMORY_COLUMNS = {"content", "title"}
_API_KEY_PREFIX = "lano_"


class SqliteAssistantStore:
    """Row-level persistence for tool grants, memories, workflow runs and API keys.

    Every public method opens its own connection and commits one statement
    group, so each call is atomic per record. ``auto_migrate=False`` leaves
    the schema alone, which lets callers observe an unmigrated database.
    """

    def __init__(self, db_path: Path, auto_migrate: bool = True, busy_timeout_sec: float = 5.0):
        self._db_path = Path(db_path).expanduser().resolve()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._busy_timeout_sec = float(busy_timeout_sec)
        if auto_migrate:
            self.migrate()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=self._busy_timeout_sec)
        conn.row_factory = sqlite3.Row
        return conn

    def migrate(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS user_tool_configs (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    tool_id TEXT NOT NULL,
                    enabled INTEGER NOT NULL DEFAULT 0,
                    api_key TEXT,
                    config TEXT NOT NULL DEFAULT '{}',
                    permissions TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE (user_id, tool_id)
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_user_tool_configs_user_id ON user_tool_configs (user_id)"
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS memory_entries (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    title TEXT NOT NULL DEFAULT '',
                    content TEXT NOT NULL,
                    memory_type TEXT NOT NULL DEFAULT 'context',
                    tags TEXT NOT NULL DEFAULT '[]',
                    metadata TEXT NOT NULL DEFAULT '{}',
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_memory_entries_user_created ON memory_entries (user_id, created_at)"
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS workflow_runs (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    goal TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    plan_json TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS api_keys (
                    key_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    scope TEXT NOT NULL DEFAULT '[]',
                    key_prefix TEXT NOT NULL,
                    key_hash TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    usage_count INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    last_used_at TEXT
                )
                """
            )

    # ------------------------------------------------------------------
    # user_tool_configs
    # ------------------------------------------------------------------

    def list_tool_configs(self, user_id: str) -> List[UserToolConfig]:
        with _translate_missing_table("user_tool_configs"), self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM user_tool_configs WHERE user_id = ? ORDER BY created_at ASC",
                (user_id,),
            ).fetchall()
        return [_row_to_tool_config(r) for r in rows]

    def get_tool_config(self, user_id: str, tool_id: str) -> Optional[UserToolConfig]:
        with _translate_missing_table("user_tool_configs"), self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM user_tool_configs WHERE user_id = ? AND tool_id = ?",
                (user_id, tool_id),
            ).fetchone()
        return _row_to_tool_config(row) if row else None

    def upsert_tool_config(
        self,
        user_id: str,
        tool_id: str,
        enabled: bool,
        credential: Optional[str],
        permissions: Iterable[str],
        config: Optional[Dict[str, Any]] = None,
    ) -> UserToolConfig:
        """Insert or update one grant row.

        ``credential=None`` and ``config=None`` leave the stored values alone
        on update, so a re-grant that only changes permissions keeps the key.
        """
        now = _utc_now()
        perms = sorted({str(p) for p in permissions or [] if str(p).strip()})
        with _translate_missing_table("user_tool_configs"), self._connect() as conn:
            conn.execute(
                """
                INSERT INTO user_tool_configs (id, user_id, tool_id, enabled, api_key, config, permissions, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (user_id, tool_id) DO UPDATE SET
                    enabled = excluded.enabled,
                    api_key = COALESCE(excluded.api_key, user_tool_configs.api_key),
                    config = CASE WHEN ? THEN excluded.config ELSE user_tool_configs.config END,
                    permissions = excluded.permissions,
                    updated_at = excluded.updated_at
                """,
                (
                    str(uuid.uuid4()),
                    user_id,
                    tool_id,
                    1 if enabled else 0,
                    credential,
                    json.dumps(config or {}),
                    json.dumps(perms),
                    now,
                    now,
                    1 if config is not None else 0,
                ),
            )
            row = conn.execute(
                "SELECT * FROM user_tool_configs WHERE user_id = ? AND tool_id = ?",
                (user_id, tool_id),
            ).fetchone()
        return _row_to_tool_config(row)

    def set_tool_enabled(self, user_id: str, tool_id: str, enabled: bool) -> int:
        with _translate_missing_table("user_tool_configs"), self._connect() as conn:
            cur = conn.execute(
                "UPDATE user_tool_configs SET enabled = ?, updated_at = ? WHERE user_id = ? AND tool_id = ?",
                (1 if enabled else 0, _utc_now(), user_id, tool_id),
            )
            return int(cur.rowcount or 0)

    # ------------------------------------------------------------------
    # memory_entries
    # ------------------------------------------------------------------

    def insert_memory(
        self,
        user_id: str,
        title: str,
        content: str,
        memory_type: str = MEMORY_TYPE_CONTEXT,
        tags: Sequence[str] = (),
        metadata: Optional[Dict[str, Any]] = None,
    ) -> MemoryEntry:
        if memory_type not in MEMORY_TYPES:
            raise ValueError(f"Unknown memory type '{memory_type}'.")
        entry_id = str(uuid.uuid4())
        now = _utc_now()
        with _translate_missing_table("memory_entries"), self._connect() as conn:
            conn.execute(
                """
                INSERT INTO memory_entries (id, user_id, title, content, memory_type, tags, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry_id,
                    user_id,
                    title or "",
                    content,
                    memory_type,
                    json.dumps(list(tags or [])),
                    json.dumps(metadata or {}, default=str),
                    now,
                ),
            )
            row = conn.execute("SELECT * FROM memory_entries WHERE id = ?", (entry_id,)).fetchone()
        return _row_to_memory(row)

    def search_memories(self, user_id: str, column: str, pattern: str, limit: int = 5) -> List[MemoryEntry]:
        """Case-insensitive substring match on one column, newest first."""
        if column not in _SEARCHABLE_MEMORY_COLUMNS:
            raise ValueError(f"Column '{column}' is not searchable.")
        with _translate_missing_table("memory_entries"), self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM memory_entries
                WHERE user_id = ? AND {column} LIKE ?
                ORDER BY created_at DESC
                LIMIT ?
                """,
                (user_id, f"%{pattern}%", max(1, int(limit))),
            ).fetchall()
        return [_row_to_memory(r) for r in rows]

    def list_memories(self, user_id: str, limit: int = 20) -> List[MemoryEntry]:
        with _translate_missing_table("memory_entries"), self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM memory_entries WHERE user_id = ? ORDER BY created_at DESC LIMIT ?",
                (user_id, max(1, int(limit))),
            ).fetchall()
        return [_row_to_memory(r) for r in rows]

    # ------------------------------------------------------------------
    # workflow_runs
    # ------------------------------------------------------------------

    def save_workflow_run(self, user_id: str, plan: WorkflowPlan) -> str:
        with _translate_missing_table("workflow_runs"), self._connect() as conn:
            conn.execute(
                """
                INSERT INTO workflow_runs (id, user_id, goal, status, plan_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    plan.plan_id,
                    user_id,
                    plan.goal,
                    "pending",
                    json.dumps(plan.to_dict(), default=str),
                    plan.created_at.isoformat(),
                ),
            )
        return plan.plan_id

    def list_workflow_runs(self, user_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        with _translate_missing_table("workflow_runs"), self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM workflow_runs WHERE user_id = ? ORDER BY created_at DESC LIMIT ?",
                (user_id, max(1, int(limit))),
            ).fetchall()
        out: List[Dict[str, Any]] = []
        for row in rows:
            plan = _loads(row["plan_json"], {})
            out.append({
                "id": row["id"],
                "goal": row["goal"],
                "status": row["status"],
                "step_count": len(plan.get("steps") or []),
                "priority": plan.get("priority"),
                "created_at": row["created_at"],
            })
        return out

    # ------------------------------------------------------------------
    # api_keys
    # ------------------------------------------------------------------

    def list_api_keys(self, user_id: str) -> List[Dict[str, Any]]:
        with _translate_missing_table("api_keys"), self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM api_keys WHERE user_id = ? ORDER BY created_at DESC",
                (user_id,),
            ).fetchall()
        return [_row_to_api_key(r) for r in rows]

    def create_api_key(self, user_id: str, name: str, scope: Sequence[str] = ()) -> Dict[str, Any]:
        """Create a key. The plaintext secret is returned once and never stored."""
        secret = _API_KEY_PREFIX + secrets.token_urlsafe(24)
        key_id = str(uuid.uuid4())
        with _translate_missing_table("api_keys"), self._connect() as conn:
            conn.execute(
                """
                INSERT INTO api_keys (key_id, user_id, name, scope, key_prefix, key_hash, is_active, usage_count, created_at, last_used_at)
                VALUES (?, ?, ?, ?, ?, ?, 1, 0, ?, NULL)
                """,
                (
                    key_id,
                    user_id,
                    name,
                    json.dumps(list(scope or [])),
                    secret[:10],
                    hashlib.sha256(secret.encode("utf-8")).hexdigest(),
                    _utc_now(),
                ),
            )
            row = conn.execute("SELECT * FROM api_keys WHERE key_id = ?", (key_id,)).fetchone()
        record = _row_to_api_key(row)
        record["secret"] = secret
        return record

    def revoke_api_key(self, user_id: str, key_id: str) -> bool:
        with _translate_missing_table("api_keys"), self._connect() as conn:
            cur = conn.execute(
                "UPDATE api_keys SET is_active = 0 WHERE user_id = ? AND key_id = ? AND is_active = 1",
                (user_id, key_id),
            )
            return int(cur.rowcount or 0) > 0

    def usage_summary(self, user_id: str, since: datetime) -> Dict[str, Any]:
        with _translate_missing_table("api_keys"), self._connect() as conn:
            keys = conn.execute(
                """
                SELECT COUNT(*) AS total,
                       COALESCE(SUM(is_active), 0) AS active,
                       COALESCE(SUM(usage_count), 0) AS requests
                FROM api_keys WHERE user_id = ?
                """,
                (user_id,),
            ).fetchone()
            recent = conn.execute(
                "SELECT COUNT(*) AS c FROM api_keys WHERE user_id = ? AND last_used_at >= ?",
                (user_id, since.isoformat()),
            ).fetchone()
        with _translate_missing_table("memory_entries"), self._connect() as conn:
            memories = conn.execute(
                "SELECT COUNT(*) AS c FROM memory_entries WHERE user_id = ? AND created_at >= ?",
                (user_id, since.isoformat()),
            ).fetchone()
        return {
            "api_keys_total": int(keys["total"]),
            "api_keys_active": int(keys["active"]),
            "api_requests_total": int(keys["requests"]),
            "api_keys_used_since": int(recent["c"]),
            "memories_created_since": int(memories["c"]),
            "since": since.isoformat(),
        }


class _translate_missing_table:
    """Context manager turning sqlite's 'no such table' into MissingTableError."""

    def __init__(self, table: str) -> None:
        self._table = table

    def __enter__(self) -> None:
        return None

    def __exit__(self, exc_type, exc, tb) -> bool:
        if isinstance(exc, sqlite3.OperationalError) and "no such table" in str(exc).lower():
            raise MissingTableError(self._table) from exc
        return False


def _loads(raw: Optional[str], default: Any) -> Any:
    if not raw:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return default


def _parse_dt(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    return datetime.fromisoformat(raw)


def _row_to_tool_config(row: sqlite3.Row) -> UserToolConfig:
    return UserToolConfig(
        user_id=row["user_id"],
        tool_id=row["tool_id"],
        enabled=bool(row["enabled"]),
        credential=row["api_key"],
        permissions=frozenset(_loads(row["permissions"], []) or []),
        config=_loads(row["config"], {}) or {},
        created_at=_parse_dt(row["created_at"]),
        updated_at=_parse_dt(row["updated_at"]),
    )


def _row_to_memory(row: sqlite3.Row) -> MemoryEntry:
    return MemoryEntry(
        entry_id=row["id"],
        user_id=row["user_id"],
        title=row["title"] or "",
        content=row["content"] or "",
        memory_type=row["memory_type"] or MEMORY_TYPE_CONTEXT,
        tags=list(_loads(row["tags"], []) or []),
        metadata=dict(_loads(row["metadata"], {}) or {}),
        created_at=_parse_dt(row["created_at"]) or datetime.now(timezone.utc),
    )


def _row_to_api_key(row: sqlite3.Row) -> Dict[str, Any]:
    return {
        "id": row["key_id"],
        "name": row["name"],
        "scope": list(_loads(row["scope"], []) or []),
        "key_prefix": row["key_prefix"],
        "is_active": bool(row["is_active"]),
        "usage_count": int(row["usage_count"]),
        "created_at": row["created_at"],
        "last_used_at": row["last_used_at"],
    }


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()
