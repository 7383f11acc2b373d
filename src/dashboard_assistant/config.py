import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

logger = logging.getLogger(__name__)

STATE_DB_KEY = "ASSISTANT_STATE_DB"
PROXY_URL_KEY = "ASSISTANT_PROXY_URL"
PROXY_CONNECT_TIMEOUT_KEY = "ASSISTANT_PROXY_CONNECT_TIMEOUT_SEC"
PROXY_READ_TIMEOUT_KEY = "ASSISTANT_PROXY_READ_TIMEOUT_SEC"
MODEL_URL_KEY = "ASSISTANT_MODEL_URL"
MODEL_TOKEN_KEY = "ASSISTANT_MODEL_TOKEN"
MODEL_READ_TIMEOUT_KEY = "ASSISTANT_MODEL_READ_TIMEOUT_SEC"
MODEL_RETRY_ATTEMPTS_KEY = "ASSISTANT_MODEL_RETRY_ATTEMPTS"
SNAPSHOT_INTERVAL_KEY = "ASSISTANT_SNAPSHOT_INTERVAL"
RECALL_LIMIT_KEY = "ASSISTANT_RECALL_LIMIT"
DB_BUSY_TIMEOUT_KEY = "ASSISTANT_DB_BUSY_TIMEOUT_SEC"
LOG_LEVEL_KEY = "ASSISTANT_LOG_LEVEL"

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "dashboard-assistant"
DEFAULT_PROXY_URL = "http://127.0.0.1:3000"
DEFAULT_SNAPSHOT_INTERVAL = 5
DEFAULT_RECALL_LIMIT = 10


@dataclass(frozen=True)
class AssistantConfig:
    config_dir: Path
    env_path: Path
    state_db_path: Path
    proxy_base_url: str
    proxy_connect_timeout_sec: float
    proxy_read_timeout_sec: float
    model_base_url: str
    model_token: str
    model_read_timeout_sec: float
    model_retry_attempts: int
    snapshot_interval: int
    recall_limit: int
    db_busy_timeout_sec: float
    log_level: str

    @property
    def model_enabled(self) -> bool:
        return bool(self.model_base_url and self.model_token)


def load_env_file(path: Path) -> Dict[str, str]:
    data: Dict[str, str] = {}
    if not path.exists():
        return data
    try:
        for line in path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            k, v = line.split("=", 1)
            data[k.strip()] = v.strip()
    except OSError as exc:
        logger.warning("Failed to read %s: %s", path, exc)
    return data


def get_env_value(key: str, env_file: Mapping[str, str], environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    source = os.environ if environ is None else environ
    return source.get(key) or env_file.get(key)


def get_env_path(config_dir: Path) -> Path:
    return config_dir / ".env"


def _read_int(raw: Optional[str], default: int, minimum: int = 1) -> int:
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, value)


def _read_float(raw: Optional[str], default: float) -> float:
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _normalize_url(value: Optional[str]) -> str:
    return (value or "").strip().rstrip("/")


def load_config(
    config_dir: Path = DEFAULT_CONFIG_DIR,
    environ: Optional[Mapping[str, str]] = None,
) -> AssistantConfig:
    config_dir = Path(config_dir).expanduser()
    env_path = get_env_path(config_dir)
    env_file = load_env_file(env_path)

    def value(key: str) -> Optional[str]:
        return get_env_value(key, env_file, environ)

    state_db_raw = (value(STATE_DB_KEY) or "").strip()
    state_db_path = Path(state_db_raw).expanduser() if state_db_raw else config_dir / "assistant.db"

    return AssistantConfig(
        config_dir=config_dir,
        env_path=env_path,
        state_db_path=state_db_path,
        proxy_base_url=_normalize_url(value(PROXY_URL_KEY)) or DEFAULT_PROXY_URL,
        proxy_connect_timeout_sec=_read_float(value(PROXY_CONNECT_TIMEOUT_KEY), 5.0),
        proxy_read_timeout_sec=_read_float(value(PROXY_READ_TIMEOUT_KEY), 30.0),
        model_base_url=_normalize_url(value(MODEL_URL_KEY)),
        model_token=(value(MODEL_TOKEN_KEY) or "").strip(),
        model_read_timeout_sec=_read_float(value(MODEL_READ_TIMEOUT_KEY), 60.0),
        model_retry_attempts=_read_int(value(MODEL_RETRY_ATTEMPTS_KEY), 2),
        snapshot_interval=_read_int(value(SNAPSHOT_INTERVAL_KEY), DEFAULT_SNAPSHOT_INTERVAL),
        recall_limit=_read_int(value(RECALL_LIMIT_KEY), DEFAULT_RECALL_LIMIT),
        db_busy_timeout_sec=_read_float(value(DB_BUSY_TIMEOUT_KEY), 5.0),
        log_level=(value(LOG_LEVEL_KEY) or "INFO").strip().upper() or "INFO",
    )
