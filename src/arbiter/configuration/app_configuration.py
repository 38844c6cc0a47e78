from __future__ import annotations

import fcntl
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

import jsonschema
import yaml

from arbiter.configuration.ai_settings import AISettings
from arbiter.core.errors import ConfigurationError
from arbiter.util.logger import get_logger

logger = get_logger("app_configuration")


CONFIG_PATH = Path("./config/app_config.yml").resolve()

PRIORITY_CLASSES = ("user_reply", "fact_check", "background", "summarization")
JOB_QUEUES = ("contradiction", "misinformation", "summarization", "user_reply")
DEPENDENCIES = ("generation", "web", "store")

REQUIRED_ENV_VARS = ("AI_API_KEY", "EXA_API_KEY")


def _positive_int(maximum: int) -> Dict[str, Any]:
    return {"type": "integer", "minimum": 1, "maximum": maximum}


_GATE_SCHEMA = {
    "type": "object",
    "properties": {
        "concurrency": _positive_int(50),
        "max_queue_depth": _positive_int(100_000),
    },
}

_BREAKER_SCHEMA = {
    "type": "object",
    "properties": {
        "failure_threshold": _positive_int(1000),
        "open_timeout_seconds": {"type": "number", "exclusiveMinimum": 0},
        "half_open_successes": _positive_int(100),
    },
}

_QUEUE_SCHEMA = {
    "type": "object",
    "properties": {
        "concurrency": _positive_int(50),
        "max_attempts": _positive_int(20),
        "backoff_seconds": {"type": "number", "minimum": 0},
        "keep_completed": {"type": "integer", "minimum": 0},
        "keep_failed": {"type": "integer", "minimum": 0},
    },
}

_TIER_SCHEMA = {
    "type": "object",
    "properties": {
        "models": {"type": "array", "items": {"type": "string"}, "minItems": 1},
        "temperature": {"type": "number", "minimum": 0, "maximum": 2},
        "max_tokens": {"type": "integer", "minimum": 16, "maximum": 32768},
    },
}

CONFIG_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "detection": {
            "type": "object",
            "properties": {
                "enabled": {"type": "boolean"},
                "logical_principles_enabled": {"type": "boolean"},
                "max_factcheck_chars": {"type": "integer", "minimum": 100, "maximum": 2000},
                "substantiveness_threshold": {"type": "number", "minimum": 0, "maximum": 1},
                "history_window": _positive_int(500),
                "result_timeout_seconds": {"type": "number", "exclusiveMinimum": 0},
            },
        },
        "cache": {
            "type": "object",
            "properties": {
                "history_max_entries": _positive_int(100_000),
                "user_history_length": _positive_int(1000),
                "channel_history_length": _positive_int(1000),
                "analysis_max_entries": _positive_int(100_000),
                "analysis_ttl_seconds": {"type": "number", "exclusiveMinimum": 0},
                "validation_max_entries": _positive_int(100_000),
                "cleanup_interval_seconds": {"type": "number", "exclusiveMinimum": 0},
                "eviction_fraction": {"type": "number", "minimum": 0.2, "maximum": 0.3},
            },
        },
        "storage": {
            "type": "object",
            "properties": {
                "db_path": {"type": "string", "minLength": 1},
                "max_context_messages_per_channel": {"type": "integer", "minimum": 10, "maximum": 10_000},
                "summary_block_size": {"type": "integer", "minimum": 5, "maximum": 100},
                "trivial_history_threshold": {"type": "number", "minimum": 0, "maximum": 1},
                "retention_days": _positive_int(3650),
            },
        },
        "limits": {
            "type": "object",
            "properties": {name: _GATE_SCHEMA for name in PRIORITY_CLASSES},
            "additionalProperties": False,
        },
        "breakers": {
            "type": "object",
            "properties": {name: _BREAKER_SCHEMA for name in DEPENDENCIES},
            "additionalProperties": False,
        },
        "queues": {
            "type": "object",
            "properties": {name: _QUEUE_SCHEMA for name in JOB_QUEUES},
            "additionalProperties": False,
        },
        "ai_settings": {
            "type": "object",
            "properties": {
                "base_url": {"type": "string"},
                "request_timeout_seconds": {"type": "number", "exclusiveMinimum": 0},
                "tiers": {"type": "object", "additionalProperties": _TIER_SCHEMA},
            },
        },
        "web": {
            "type": "object",
            "properties": {
                "answer_url": {"type": "string", "minLength": 1},
                "search_url": {"type": "string", "minLength": 1},
                "timeout_seconds": {"type": "number", "exclusiveMinimum": 0},
            },
        },
    },
}


# --------------------------
# Typed section views
# --------------------------
@dataclass(frozen=True, slots=True)
class DetectionSettings:
    enabled: bool = True
    logical_principles_enabled: bool = True
    max_factcheck_chars: int = 500
    substantiveness_threshold: float = 0.3
    history_window: int = 50
    result_timeout_seconds: float = 60.0


@dataclass(frozen=True, slots=True)
class CacheSettings:
    history_max_entries: int = 1000
    user_history_length: int = 60
    channel_history_length: int = 50
    analysis_max_entries: int = 500
    analysis_ttl_seconds: float = 300.0
    validation_max_entries: int = 1000
    cleanup_interval_seconds: float = 300.0
    eviction_fraction: float = 0.25


@dataclass(frozen=True, slots=True)
class StorageSettings:
    db_path: str = "./data/arbiter.db"
    max_context_messages_per_channel: int = 100
    summary_block_size: int = 20
    trivial_history_threshold: float = 0.7
    retention_days: int = 30


@dataclass(frozen=True, slots=True)
class GateLimit:
    concurrency: int = 3
    max_queue_depth: int = 100


@dataclass(frozen=True, slots=True)
class BreakerSettings:
    failure_threshold: int = 5
    open_timeout_seconds: float = 60.0
    half_open_successes: int = 2


@dataclass(frozen=True, slots=True)
class QueueSettings:
    concurrency: int = 3
    max_attempts: int = 3
    backoff_seconds: float = 2.0
    keep_completed: int = 100
    keep_failed: int = 50


@dataclass(frozen=True, slots=True)
class WebSettings:
    answer_url: str = "https://api.exa.ai/answer"
    search_url: str = "https://api.exa.ai/search"
    timeout_seconds: float = 20.0

    @property
    def api_key(self) -> str:
        return str(os.getenv("EXA_API_KEY") or "")


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key, {})
    return value if isinstance(value, dict) else {}


def _build(cls, raw: Dict[str, Any]):
    """Instantiate a settings dataclass from the keys it knows about."""
    known = {name: raw[name] for name in cls.__dataclass_fields__ if name in raw}
    return cls(**known)


class AppConfig:
    """File-lock based accessor around the YAML application configuration.

    The class caches the contents of ``./config/app_config.yml``, exposes
    typed views per section, and validates the whole mapping against
    :data:`CONFIG_SCHEMA`. Missing keys fall back to the dataclass defaults.
    """

    def __init__(self, config_path: Path = CONFIG_PATH, data: Dict[str, Any] | None = None) -> None:
        self.config_path = config_path
        self._data: Dict[str, Any] = {}
        if data is not None:
            self._data = data
        else:
            self.reload()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppConfig":
        """Build a configuration from an in-memory mapping (no disk access)."""
        return cls(Path("<memory>"), data=data)

    # --------------------------
    # Private helpers
    # --------------------------
    def load_from_disk(self) -> Dict[str, Any]:
        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                data = yaml.safe_load(f)
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)
                return data or {}
        except FileNotFoundError:
            logger.error("[APP CONFIGURATION] Config file %s not found.", self.config_path)
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Config file {self.config_path} is not valid YAML: {exc}") from exc
        return {}

    # --------------------------
    # Public API
    # --------------------------
    def reload(self) -> Dict[str, Any]:
        """Re-read the YAML file and replace the in-memory mapping."""
        self._data = self.load_from_disk()
        return self._data

    def validate(self, *, require_env: bool = True) -> None:
        """Validate the loaded mapping and required environment variables.

        Raises:
            ConfigurationError: If the mapping violates the schema, the author
                history cache cannot hold a detection window, or a
                required secret is missing.
        """
        try:
            jsonschema.validate(instance=self._data, schema=CONFIG_SCHEMA)
        except jsonschema.ValidationError as exc:
            location = ".".join(str(p) for p in exc.absolute_path) or "<root>"
            raise ConfigurationError(f"Invalid configuration at {location}: {exc.message}") from exc

        # The cached author sequence also holds the message being checked.
        window, cached = self.detection.history_window, self.cache.user_history_length
        if cached <= window:
            raise ConfigurationError(
                f"cache.user_history_length ({cached}) must exceed detection.history_window ({window})"
            )

        if require_env:
            missing = [name for name in REQUIRED_ENV_VARS if not os.getenv(name)]
            if missing:
                raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")

        logger.info("[APP CONFIGURATION] Configuration validated (%s)", self.config_path)

    @property
    def data(self) -> Dict[str, Any]:
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    # --------------------------
    # High-level shortcuts
    # --------------------------
    @property
    def detection(self) -> DetectionSettings:
        return _build(DetectionSettings, _section(self._data, "detection"))

    @property
    def cache(self) -> CacheSettings:
        return _build(CacheSettings, _section(self._data, "cache"))

    @property
    def storage(self) -> StorageSettings:
        return _build(StorageSettings, _section(self._data, "storage"))

    @property
    def web(self) -> WebSettings:
        return _build(WebSettings, _section(self._data, "web"))

    @property
    def ai_settings(self) -> AISettings:
        return AISettings(_section(self._data, "ai_settings"))

    def gate_limit(self, priority: str) -> GateLimit:
        """Return the concurrency settings of one gate priority class."""
        defaults = {"summarization": GateLimit(concurrency=1, max_queue_depth=20)}
        raw = _section(_section(self._data, "limits"), priority)
        if not raw:
            return defaults.get(priority, GateLimit())
        return _build(GateLimit, raw)

    def breaker(self, dependency: str) -> BreakerSettings:
        return _build(BreakerSettings, _section(_section(self._data, "breakers"), dependency))

    def queue(self, name: str) -> QueueSettings:
        return _build(QueueSettings, _section(_section(self._data, "queues"), name))
