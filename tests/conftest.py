"""Shared fixtures: every test gets its own SHELLWATCH_HOME under tmp_path."""

import pytest

from shellwatch.core.events import CommandStartEvent, ExitStatusEvent, StderrChunkEvent, new_id, now_ms
from shellwatch.core.storage import LocalFileStore
from shellwatch.utils.config import load_config


@pytest.fixture(autouse=True)
def home(tmp_path, monkeypatch):
    path = tmp_path / "home"
    monkeypatch.setenv("SHELLWATCH_HOME", str(path))
    monkeypatch.delenv("SHELLWATCH_SESSION_ID", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    return path


@pytest.fixture
def config(home):
    return load_config(overrides={"enabled": True, "shell_type": "bash", "retention_days": 0})


@pytest.fixture
def store(tmp_path):
    return LocalFileStore(str(tmp_path / "events"), max_events=0, retention_days=0)


def make_failure(store, command="nix", args=("build",), stderr="", exit_code=1, cwd="/tmp", session="s1", ts=None):
    """Write start/stderr/exit events for one failing command. Returns its command id."""
    cid = new_id("cmd")
    ts = ts or now_ms()
    base = dict(session_id=session, shell_type="bash")
    store.save_event(CommandStartEvent(id=new_id("evt"), timestamp=ts, command_id=cid, command=command,
                                       args=list(args), cwd=cwd, **base))
    if stderr:
        store.save_event(StderrChunkEvent(id=new_id("evt"), timestamp=ts, command_id=cid, chunk=stderr,
                                          chunk_index=0, **base))
    store.save_event(ExitStatusEvent(id=new_id("evt"), timestamp=ts + 1, command_id=cid, exit_code=exit_code, **base))
    return cid
