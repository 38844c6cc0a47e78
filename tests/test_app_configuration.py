import json
from pathlib import Path

import pytest
import yaml

from arbiter.configuration.app_configuration import AppConfig, GateLimit, QueueSettings
from arbiter.core.errors import ConfigurationError

SHIPPED_CONFIG = Path(__file__).parent.parent / "config" / "app_config.yml"


@pytest.fixture()
def config_path(tmp_path: Path) -> Path:
    return tmp_path / "app_config.yml"


@pytest.fixture()
def secrets(monkeypatch):
    monkeypatch.setenv("AI_API_KEY", "test-ai-key")
    monkeypatch.setenv("EXA_API_KEY", "test-exa-key")


def test_app_config_reload_parses_yaml(config_path: Path) -> None:
    config_path.write_text(
        yaml.safe_dump(
            {
                "detection": {"max_factcheck_chars": 300, "history_window": 20},
                "queues": {"summarization": {"concurrency": 1, "backoff_seconds": 5.0}},
                "ai_settings": {"tiers": {"contradiction": {"models": ["model-a"], "temperature": 0.1}}},
            }
        ),
        encoding="utf-8",
    )

    config = AppConfig(config_path)

    assert config.detection.max_factcheck_chars == 300
    assert config.detection.history_window == 20
    assert config.detection.enabled is True
    assert config.queue("summarization") == QueueSettings(concurrency=1, backoff_seconds=5.0)
    tier = config.ai_settings.tier("contradiction")
    assert tier.models == ["model-a"]
    assert tier.temperature == pytest.approx(0.1)
    assert tier.max_tokens == 1024


def test_app_config_missing_file_returns_defaults(tmp_path: Path) -> None:
    config = AppConfig(tmp_path / "does_not_exist.yml")

    assert config.data == {}
    assert config.storage.max_context_messages_per_channel == 100
    assert config.cache.user_history_length == 60
    assert config.gate_limit("summarization") == GateLimit(concurrency=1, max_queue_depth=20)
    assert config.gate_limit("user_reply") == GateLimit()
    assert config.breaker("web").failure_threshold == 5


def test_app_config_reload_picks_up_changes(config_path: Path) -> None:
    config_path.write_text(json.dumps({"storage": {"retention_days": 7}}), encoding="utf-8")
    config = AppConfig(config_path)
    assert config.storage.retention_days == 7

    config_path.write_text(json.dumps({"storage": {"retention_days": 14}}), encoding="utf-8")
    config.reload()

    assert config.storage.retention_days == 14


def test_invalid_yaml_raises_configuration_error(config_path: Path) -> None:
    config_path.write_text("detection: [unclosed", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        AppConfig(config_path)


def test_shipped_config_is_valid(secrets) -> None:
    config = AppConfig(SHIPPED_CONFIG)

    config.validate()

    assert config.breaker("generation").failure_threshold == 3


@pytest.mark.parametrize(
    "data",
    [
        {"detection": {"max_factcheck_chars": 50}},
        {"cache": {"eviction_fraction": 0.9}},
        {"limits": {"unknown_class": {"concurrency": 1}}},
        {"queues": {"contradiction": {"max_attempts": 0}}},
        {"ai_settings": {"tiers": {"contradiction": {"models": []}}}},
    ],
)
def test_schema_violations_are_rejected(data, secrets) -> None:
    with pytest.raises(ConfigurationError):
        AppConfig.from_dict(data).validate()


def test_missing_secrets_are_rejected(monkeypatch) -> None:
    monkeypatch.delenv("AI_API_KEY", raising=False)
    monkeypatch.setenv("EXA_API_KEY", "present")

    with pytest.raises(ConfigurationError, match="AI_API_KEY"):
        AppConfig.from_dict({}).validate()

    AppConfig.from_dict({}).validate(require_env=False)


def test_secrets_come_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("AI_API_KEY", "sk-test")
    monkeypatch.setenv("AI_BASE_URL", "https://override.example/v1")

    ai = AppConfig.from_dict({"ai_settings": {"base_url": "https://file.example/v1"}}).ai_settings

    assert ai.api_key == "sk-test"
    assert ai.base_url == "https://override.example/v1"


def test_user_history_must_cover_detection_window(secrets) -> None:
    data = {"detection": {"history_window": 50}, "cache": {"user_history_length": 50}}

    with pytest.raises(ConfigurationError, match="user_history_length"):
        AppConfig.from_dict(data).validate()

    AppConfig.from_dict({"detection": {"history_window": 20}, "cache": {"user_history_length": 21}}).validate()
