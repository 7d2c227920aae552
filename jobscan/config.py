"""Load runtime settings from .env, an optional YAML file and the environment."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from jobscan.log import get_logger

log = get_logger(__name__)

load_dotenv()

ROOT_DIR: Path = Path(__file__).resolve().parent.parent
CONFIG_DIR: Path = ROOT_DIR / "config"
DATA_DIR: Path = ROOT_DIR / "data"
CONFIG_PATH: Path = CONFIG_DIR / "jobscan.yaml"

GROQ_BASE_URL = "https://api.groq.com/openai/v1"

# Environment variable -> Settings field. Env always wins over YAML.
_ENV_OVERRIDES: dict[str, str] = {
    "JOBSCAN_DATABASE_URL": "database_url",
    "REASONING_BASE_URL": "reasoning_base_url",
    "REASONING_MODEL": "reasoning_model",
    "REASONING_TIMEOUT": "reasoning_timeout",
    "SOURCE_TIMEOUT": "source_timeout",
    "SOURCE_WORKERS": "source_workers",
    "SCORING_WORKERS": "scoring_workers",
    "FETCH_LIMIT": "fetch_limit",
    "ARCHIVE_AFTER_DAYS": "archive_after_days",
    "NOTIFY_EMAIL": "notify_email",
}


def get_env(key: str, default: str = "") -> str:
    return os.environ.get(key, default).strip()


@dataclass(frozen=True)
class Settings:
    database_url: str = f"sqlite:///{DATA_DIR / 'jobscan.db'}"
    reasoning_api_key: str = ""
    reasoning_base_url: str = GROQ_BASE_URL
    reasoning_model: str = "llama-3.3-70b-versatile"
    reasoning_timeout: float = 30.0
    source_timeout: float = 15.0
    source_workers: int = 8
    scoring_workers: int = 4
    fetch_limit: int = 50
    builtin_sources: tuple[str, ...] | None = None
    default_min_fit_score: int = 40
    default_max_posting_age_days: int = 7
    archive_after_days: int = 45
    notify_email: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def has_reasoning_credential(self) -> bool:
        return bool(self.reasoning_api_key)


def _coerce(name: str, value: Any) -> Any:
    """Cast a raw YAML/env value to the declared type of ``name``."""
    current = getattr(Settings, name, None)
    if value is None:
        return None
    if name == "builtin_sources":
        if isinstance(value, str):
            value = [v for v in value.split(",") if v.strip()]
        return tuple(str(v).strip() for v in value)
    if isinstance(current, bool):
        return str(value).lower() in ("1", "true", "yes")
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    return str(value).strip()


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping at the top level")
    return data


def load_settings(path: Path | str | None = None) -> Settings:
    """Build Settings from defaults, the YAML file, then environment overrides."""
    cfg_path = Path(path or get_env("JOBSCAN_CONFIG") or CONFIG_PATH)
    raw = _read_yaml(cfg_path)

    known = {f.name for f in fields(Settings)} - {"extra"}
    values: dict[str, Any] = {}
    extra: dict[str, Any] = {}
    for key, value in raw.items():
        if key in known:
            values[key] = _coerce(key, value)
        else:
            extra[key] = value

    for env_key, name in _ENV_OVERRIDES.items():
        env_value = get_env(env_key)
        if env_value:
            values[name] = _coerce(name, env_value)

    builtin_env = get_env("BUILTIN_SOURCES")
    if builtin_env:
        values["builtin_sources"] = _coerce("builtin_sources", builtin_env)

    # Groq is the default provider, so its key is honoured as a fallback.
    api_key = get_env("REASONING_API_KEY") or get_env("GROQ_API_KEY")
    if api_key:
        values["reasoning_api_key"] = api_key

    settings = Settings(extra=extra, **values)
    if raw:
        log.debug("Loaded settings from %s", cfg_path)
    if not settings.has_reasoning_credential:
        log.info("No reasoning-service key configured; heuristic scoring will be used")
    return settings


def ensure_data_dir(settings: Settings) -> None:
    """Create the directory holding a file-backed SQLite database, if any."""
    url = settings.database_url
    if url.startswith("sqlite:///") and ":memory:" not in url:
        Path(url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
