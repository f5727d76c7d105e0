# shellwatch/core/observer.py
from __future__ import annotations

import logging
from typing import List, Mapping, Optional, Sequence

from .events import Event, Session, now_ms
from .shells.base import Listener, ShellAdapter
from .shells.factory import create_shell_adapter, detect_shell_type
from .storage import DAY_MS, EventStats, EventStore, create_event_store
from ..utils.errors import ConfigError, ObserverStateError

logger = logging.getLogger(__name__)

UNINITIALIZED = "uninitialized"
INITIALIZED = "initialized"
ACTIVE = "active"
STOPPED = "stopped"


class TerminalObserver:
    """
    Facade over one shell adapter and one event store.

    States: uninitialized -> initialized -> active -> stopped. A stopped
    observer can be started again, which opens a new session.
    """

    def __init__(self, config, store: Optional[EventStore] = None, adapter: Optional[ShellAdapter] = None):
        self.config = config
        self.store = store
        self.adapter = adapter
        self.state = UNINITIALIZED
        self.session: Optional[Session] = None
        self._listeners: List[Listener] = []

    def initialize(self) -> None:
        if self.state != UNINITIALIZED:
            return
        if self.store is None:
            self.store = create_event_store(self.config)
        if self.adapter is None:
            self.adapter = create_shell_adapter(self.config.shell_type or detect_shell_type())
        self.adapter.initialize(self.config, self.store)
        for listener in self._listeners:
            self.adapter.add_listener(listener)
        self.state = INITIALIZED
        logger.debug("observer initialized (%s, %s)", self.adapter.shell_type, type(self.store).__name__)

    def start(self, session_id: Optional[str] = None, cwd: Optional[str] = None,
              env: Optional[Mapping[str, str]] = None) -> Session:
        """
        Open a session. When `session_id` names a session that already has
        events (a hook process attaching to a running shell), no new
        session_start is written.
        """
        if not self.config.enabled:
            raise ConfigError("observer is disabled", hint="run `shellwatch observer enable`")
        if self.state == ACTIVE:
            return self.session
        self.initialize()
        announce = True
        if session_id:
            announce = not self.store.get_events_by_session(session_id, limit=1)
        sid = self.adapter.start(session_id=session_id, cwd=cwd, env=env, announce=announce)
        self.session = Session(
            id=sid,
            started_at=now_ms(),
            shell_type=self.adapter.shell_type,
            cwd=cwd or "",
        )
        self.state = ACTIVE
        return self.session

    def stop(self, end_session: bool = True) -> None:
        """Close the session. `end_session=False` detaches without writing session_end."""
        if self.state != ACTIVE:
            return
        self.adapter.stop(announce=end_session)
        if self.session is not None:
            self.session.ended_at = now_ms()
        self.state = STOPPED

    def is_active(self) -> bool:
        return self.state == ACTIVE

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)
        if self.adapter is not None and self.state != UNINITIALIZED:
            self.adapter.add_listener(listener)

    # ---- capture ------------------------------------------------------------

    def _active_adapter(self) -> ShellAdapter:
        if self.state != ACTIVE:
            raise ObserverStateError(f"observer is {self.state}, not active", hint="call start() first")
        return self.adapter

    def capture_command(self, command: str, args: Sequence[str] = (), cwd: Optional[str] = None,
                        env: Optional[Mapping[str, str]] = None, pid: Optional[int] = None) -> str:
        return self._active_adapter().capture_command_start(command, args, cwd=cwd, env=env, pid=pid)

    def capture_command_result(self, command_id: str, stdout: str = "", stderr: str = "", exit_code: int = 0) -> None:
        self._active_adapter().capture_command_result(command_id, stdout, stderr, exit_code)

    def capture_stdout(self, command_id: str, chunk: str) -> None:
        self._active_adapter().capture_stdout_chunk(command_id, chunk)

    def capture_stderr(self, command_id: str, chunk: str) -> None:
        self._active_adapter().capture_stderr_chunk(command_id, chunk)

    def capture_exit(self, command_id: str, exit_code: int) -> None:
        self._active_adapter().capture_exit_status(command_id, exit_code)

    def capture_end(self, command_id: str) -> None:
        self._active_adapter().capture_command_end(command_id)

    def track_command(self, command_id: str, started_at: int) -> None:
        self._active_adapter().track_command(command_id, started_at)

    def capture_cwd_change(self, cwd: str, previous_cwd: Optional[str] = None) -> None:
        self._active_adapter().capture_cwd_change(cwd, previous_cwd)

    def capture_env_change(self, env: Mapping[str, str], changed_keys: Sequence[str]) -> None:
        self._active_adapter().capture_env_change(env, changed_keys)

    # ---- queries ------------------------------------------------------------

    def _store(self) -> EventStore:
        if self.store is None:
            self.initialize()
        return self.store

    def get_events(self, type: Optional[str] = None, since: Optional[int] = None, limit: Optional[int] = None) -> List[Event]:
        return self._store().get_events(type=type, since=since, limit=limit)

    def get_events_by_command(self, command_id: str) -> List[Event]:
        return self._store().get_events_by_command(command_id)

    def get_events_by_session(self, session_id: Optional[str] = None, limit: Optional[int] = None) -> List[Event]:
        sid = session_id or (self.session.id if self.session else None)
        if sid is None:
            return []
        return self._store().get_events_by_session(sid, limit=limit)

    def get_stats(self) -> EventStats:
        return self._store().get_stats()

    def clear_events(self, days: Optional[int] = None) -> int:
        """Drop everything, or only events older than `days` days."""
        older_than = now_ms() - days * DAY_MS if days is not None else None
        return self._store().clear_events(older_than)

    def get_hook_script(self) -> str:
        if self.adapter is None:
            self.adapter = create_shell_adapter(self.config.shell_type or detect_shell_type())
        return self.adapter.get_hook_script()
