"""Tests for the taskrouter CLI."""

from pathlib import Path

from click.testing import CliRunner, Result

from taskrouter.cli import main
from taskrouter.config import Settings
from taskrouter.context import AppContext
from taskrouter.engine.callbacks import LoggingCallbackNotifier
from taskrouter.model import AgentState, RouterObjectId


def _invoke(tmp_path: Path, *args: str) -> Result:
    runner = CliRunner()
    return runner.invoke(main, list(args), env={"TASKROUTER_HOME": str(tmp_path)})


def test_version() -> None:
    runner = CliRunner()
    result = runner.invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_init(tmp_path: Path) -> None:
    result = _invoke(tmp_path, "init")
    assert result.exit_code == 0
    assert "initialized" in result.output.lower()
    assert (tmp_path / "data" / "taskrouter.db").exists()


def test_routers_empty(tmp_path: Path) -> None:
    result = _invoke(tmp_path, "routers")
    assert result.exit_code == 0
    assert "No routers" in result.output


def test_status(tmp_path: Path) -> None:
    app = AppContext(Settings(data_dir=tmp_path), notifier=LoggingCallbackNotifier())
    app.routers.replace("r1")
    app.queues.create("r1", "lang==en", ref="q1")
    app.agents.create("r1", capabilities={"lang": "en"}, ref="a1")
    app.agents.update(RouterObjectId("a1", "r1"), state=AgentState.READY)
    app.close()

    result = _invoke(tmp_path, "status", "r1")
    assert result.exit_code == 0
    assert "q1" in result.output
    assert "ready" in result.output

    result = _invoke(tmp_path, "routers")
    assert "r1" in result.output


def test_status_unknown_router(tmp_path: Path) -> None:
    result = _invoke(tmp_path, "status", "nope")
    assert result.exit_code == 1
    assert "not found" in result.output


def test_eval(tmp_path: Path) -> None:
    result = _invoke(tmp_path, "eval", "lang==en;age>=18", "--attrs", '{"lang": "en", "age": 30}')
    assert result.exit_code == 0
    assert "true" in result.output

    result = _invoke(tmp_path, "eval", "vip==true")
    assert "false" in result.output


def test_eval_malformed(tmp_path: Path) -> None:
    result = _invoke(tmp_path, "eval", "lang==")
    assert result.exit_code == 1
    assert "expression" in result.output


def test_sweep(tmp_path: Path) -> None:
    result = _invoke(tmp_path, "sweep", "--timeout", "30")
    assert result.exit_code == 0
    assert "No stale agents" in result.output
