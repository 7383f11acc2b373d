import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from dashboard_assistant.agent_core.orchestrator import AssistantOrchestrator
from dashboard_assistant.config import AssistantConfig
from dashboard_assistant.domain.contracts import LanguageModel, RemoteExecutor
from dashboard_assistant.domain.sessions import UserContext
from dashboard_assistant.persistence.sqlite_store import SqliteAssistantStore
from dashboard_assistant.providers.language_model import HttpLanguageModel
from dashboard_assistant.services.capability_registry import CapabilityRegistry
from dashboard_assistant.services.context_recall import ContextRecall
from dashboard_assistant.services.conversation import ConversationTracker
from dashboard_assistant.services.remote_executor import HttpRemoteExecutor
from dashboard_assistant.services.workflow_planner import WorkflowPlanner
from dashboard_assistant.tools.dashboard import build_local_handlers

logger = logging.getLogger(__name__)


@dataclass
class AssistantRuntime:
    orchestrator: AssistantOrchestrator
    store: SqliteAssistantStore
    remote_executor: Optional[RemoteExecutor]
    model: Optional[LanguageModel]

    async def aclose(self) -> None:
        for client in (self.remote_executor, self.model):
            close = getattr(client, "aclose", None)
            if close is not None:
                await close()


def build_store(config: AssistantConfig) -> SqliteAssistantStore:
    logger.info("state_db_path=%s", str(config.state_db_path))
    return SqliteAssistantStore(db_path=config.state_db_path, busy_timeout_sec=config.db_busy_timeout_sec)


def build_language_model(config: AssistantConfig) -> Optional[HttpLanguageModel]:
    if not config.model_enabled:
        logger.info("Language model not configured; using keyword and template fallbacks.")
        return None
    return HttpLanguageModel(
        base_url=config.model_base_url,
        auth_token=config.model_token,
        read_timeout_sec=config.model_read_timeout_sec,
        retry_attempts=config.model_retry_attempts,
    )


def build_runtime(
    config: AssistantConfig,
    user: UserContext,
    store: Optional[SqliteAssistantStore] = None,
    remote_executor: Optional[RemoteExecutor] = None,
    model: Optional[LanguageModel] = None,
) -> AssistantRuntime:
    """Wire one user's orchestrator. Call ``orchestrator.initialize()`` before use."""
    if not user.session_id:
        user = UserContext(
            user_id=user.user_id,
            user_email=user.user_email,
            user_name=user.user_name,
            session_id=str(uuid.uuid4()),
        )
    store = store or build_store(config)
    if remote_executor is None:
        remote_executor = HttpRemoteExecutor(
            base_url=config.proxy_base_url,
            connect_timeout_sec=config.proxy_connect_timeout_sec,
            read_timeout_sec=config.proxy_read_timeout_sec,
        )
    if model is None:
        model = build_language_model(config)

    planner = WorkflowPlanner(model=model)
    registry = CapabilityRegistry(
        user_id=user.user_id,
        store=store,
        handlers=build_local_handlers(store, planner=planner),
        remote_executor=remote_executor,
    )
    orchestrator = AssistantOrchestrator(
        user=user,
        registry=registry,
        recall=ContextRecall(user.user_id, store, session_id=user.session_id, limit=config.recall_limit),
        tracker=ConversationTracker(
            user.user_id,
            user.session_id,
            store=store,
            snapshot_interval=config.snapshot_interval,
        ),
        planner=planner,
        model=model,
    )
    return AssistantRuntime(orchestrator=orchestrator, store=store, remote_executor=remote_executor, model=model)
