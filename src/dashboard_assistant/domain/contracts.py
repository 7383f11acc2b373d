from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol, Sequence

from dashboard_assistant.domain.memory import MemoryEntry
from dashboard_assistant.domain.tools import UserToolConfig
from dashboard_assistant.domain.workflows import WorkflowPlan

# A local handler receives (action_id, params) and returns a JSON-shaped result.
LocalHandler = Callable[[str, Dict[str, Any]], Awaitable[Any]]


class ToolConfigStore(Protocol):
    def list_tool_configs(self, user_id: str) -> List[UserToolConfig]:
        ...

    def upsert_tool_config(
        self,
        user_id: str,
        tool_id: str,
        enabled: bool,
        credential: Optional[str],
        permissions: Iterable[str],
        config: Optional[Dict[str, Any]] = None,
    ) -> UserToolConfig:
        ...

    def set_tool_enabled(self, user_id: str, tool_id: str, enabled: bool) -> int:
        ...


class MemoryStore(Protocol):
    def insert_memory(
        self,
        user_id: str,
        title: str,
        content: str,
        memory_type: str = "context",
        tags: Sequence[str] = (),
        metadata: Optional[Dict[str, Any]] = None,
    ) -> MemoryEntry:
        ...

    def search_memories(self, user_id: str, column: str, pattern: str, limit: int = 5) -> List[MemoryEntry]:
        ...

    def list_memories(self, user_id: str, limit: int = 20) -> List[MemoryEntry]:
        ...


class WorkflowStore(Protocol):
    def save_workflow_run(self, user_id: str, plan: WorkflowPlan) -> str:
        ...

    def list_workflow_runs(self, user_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        ...


class ApiKeyStore(Protocol):
    def list_api_keys(self, user_id: str) -> List[Dict[str, Any]]:
        ...

    def create_api_key(self, user_id: str, name: str, scope: Sequence[str] = ()) -> Dict[str, Any]:
        ...

    def revoke_api_key(self, user_id: str, key_id: str) -> bool:
        ...

    def usage_summary(self, user_id: str, since: datetime) -> Dict[str, Any]:
        ...


class RemoteExecutor(Protocol):
    async def execute(
        self,
        tool_id: str,
        action_id: str,
        params: Dict[str, Any],
        credential: Optional[str],
    ) -> Any:
        ...


class LanguageModel(Protocol):
    async def detect_intent(self, message: str, user_context: Dict[str, Any], history: Sequence[Dict[str, str]]) -> Dict[str, Any]:
        ...

    async def generate_workflow(self, goal: str, memories: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
        ...

    async def chat(
        self,
        messages: Sequence[Dict[str, str]],
        user_context: Dict[str, Any],
        memories: Sequence[Dict[str, Any]],
    ) -> str:
        ...
