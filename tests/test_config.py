"""Tests for settings resolution."""

from __future__ import annotations

from pathlib import Path

import pytest

from taskrouter.config import Settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("HOME", "LOG_LEVEL", "HOST", "PORT", "CALLBACK_TIMEOUT", "HEARTBEAT_TIMEOUT"):
        monkeypatch.delenv(f"TASKROUTER_{name}", raising=False)


def test_defaults(tmp_path: Path) -> None:
    settings = Settings.load(tmp_path)
    assert settings.data_dir == tmp_path
    assert settings.port == 3848
    assert settings.log_level == "INFO"


def test_home_from_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TASKROUTER_HOME", str(tmp_path))
    assert Settings.load().data_dir == tmp_path


def test_config_file(tmp_path: Path) -> None:
    (tmp_path / "config.toml").write_text('port = 9000\nheartbeat_timeout = 15\nunknown = "x"\n')
    settings = Settings.load(tmp_path)
    assert settings.port == 9000
    assert settings.heartbeat_timeout == 15.0


def test_env_overrides_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "config.toml").write_text("port = 9000\n")
    monkeypatch.setenv("TASKROUTER_PORT", "9100")
    monkeypatch.setenv("TASKROUTER_LOG_LEVEL", "debug")
    settings = Settings.load(tmp_path)
    assert settings.port == 9100
    assert settings.log_level == "debug"


def test_merge_ignores_data_dir(tmp_path: Path) -> None:
    settings = Settings(data_dir=tmp_path).merge({"data_dir": "/elsewhere", "host": "0.0.0.0"})
    assert settings.data_dir == tmp_path
    assert settings.host == "0.0.0.0"
