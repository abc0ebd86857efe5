from __future__ import annotations

import pytest

from twintrack.config import DEFAULT_TERMINATION_MARKERS, TrackerConfig
from twintrack.exceptions import TrackerConfigError


def test_defaults() -> None:
    config = TrackerConfig()
    config.validate()

    assert config.feed_url == "ws://localhost:3000"
    assert config.reconnect_delay == 3.0
    assert config.max_reconnect_attempts == 5
    assert config.stale_after == 30.0
    assert config.max_path_points == 100
    assert config.retention_days == 7
    assert config.termination_markers == DEFAULT_TERMINATION_MARKERS


def test_from_env_reads_prefixed_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TWINTRACK_FEED_URL", "wss://feed.example/ws")
    monkeypatch.setenv("TWINTRACK_RECONNECT_DELAY", "1.5")
    monkeypatch.setenv("TWINTRACK_MAX_PATH_POINTS", "25")
    monkeypatch.setenv("TWINTRACK_PERSISTENCE_ENABLED", "off")

    config = TrackerConfig.from_env()

    assert config.feed_url == "wss://feed.example/ws"
    assert config.reconnect_delay == 1.5
    assert config.max_path_points == 25
    assert config.persistence_enabled is False


def test_from_env_overrides_take_precedence(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TWINTRACK_MAX_RECONNECT_ATTEMPTS", "9")
    monkeypatch.setenv("TWINTRACK_PERSISTENCE_ENABLED", "false")

    config = TrackerConfig.from_env(max_reconnect_attempts=2, persistence_enabled=True)

    assert config.max_reconnect_attempts == 2
    assert config.persistence_enabled is True


def test_from_env_rejects_malformed_numbers(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TWINTRACK_STALE_AFTER", "soon")
    with pytest.raises(TrackerConfigError):
        TrackerConfig.from_env()


@pytest.mark.parametrize(
    "overrides",
    [
        {"feed_url": "  "},
        {"reconnect_delay": -1.0},
        {"max_reconnect_attempts": -1},
        {"stale_after": 0.0},
        {"sweep_interval": 0.0},
        {"max_path_points": 0},
        {"retention_days": 0},
        {"diagnostic_log_size": 0},
        {"persistence_batch_size": 0},
    ],
)
def test_validate_rejects_out_of_range_values(overrides: dict[str, object]) -> None:
    with pytest.raises(TrackerConfigError):
        TrackerConfig(**overrides).validate()  # type: ignore[arg-type]
