# shellwatch/core/shells/base.py
from __future__ import annotations

import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from ..events import (
    CommandEndEvent,
    CommandStartEvent,
    CwdChangeEvent,
    EnvChangeEvent,
    Event,
    ExitStatusEvent,
    SessionEndEvent,
    SessionStartEvent,
    StderrChunkEvent,
    StdoutChunkEvent,
    new_id,
    now_ms,
)
from ..redact import redact_secrets_from_text, sanitize_env
from ..storage import EventStore
from ...utils.errors import ObserverStateError

logger = logging.getLogger(__name__)

Listener = Callable[[Event], None]


@dataclass
class _CommandState:
    started_at: int
    indices: Dict[str, int] = field(default_factory=lambda: {"stdout": 0, "stderr": 0})


class ShellAdapter(ABC):
    """
    Turns shell activity into events. Every event is written to the store
    first and then handed to listeners.
    """

    shell_type = "unknown"

    def __init__(self) -> None:
        self.config = None
        self.store: Optional[EventStore] = None
        self.session_id: Optional[str] = None
        self._session_started_at: Optional[int] = None
        self._active = False
        self._commands: Dict[str, _CommandState] = {}
        self._last_ts = 0
        self._listeners: List[Listener] = []
        self._lock = threading.RLock()

    @abstractmethod
    def get_hook_script(self) -> str:
        """Shell snippet that forwards command boundaries to `shellwatch observer`."""

    # ---- lifecycle ----------------------------------------------------------

    def initialize(self, config, store: EventStore) -> None:
        self.config = config
        self.store = store

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def is_active(self) -> bool:
        return self._active

    def start(self, session_id: Optional[str] = None, cwd: Optional[str] = None,
              env: Optional[Mapping[str, str]] = None, announce: bool = True) -> str:
        """Begin (or attach to) a session. `announce` emits session_start."""
        if self.store is None or self.config is None:
            raise ObserverStateError("adapter used before initialize()")
        with self._lock:
            self.session_id = session_id or self.config.session_id or new_id("session")
            self._active = True
            self._session_started_at = self._tick()
            if announce:
                self._emit(SessionStartEvent(
                    **self._base(self._session_started_at),
                    cwd=cwd or os.getcwd(),
                    env_summary=self._env(env or {}),
                ))
            return self.session_id

    def stop(self, announce: bool = True) -> None:
        with self._lock:
            if not self._active:
                return
            if announce:
                ts = self._tick()
                self._emit(SessionEndEvent(**self._base(ts), duration=ts - (self._session_started_at or ts)))
            self._active = False
            self._commands.clear()

    # ---- capture ------------------------------------------------------------

    def capture_command_start(self, command: str, args: Sequence[str] = (), cwd: Optional[str] = None,
                              env: Optional[Mapping[str, str]] = None, pid: Optional[int] = None) -> str:
        with self._lock:
            self._require_active()
            command_id = new_id("cmd")
            ts = self._tick()
            self._commands[command_id] = _CommandState(started_at=ts)
            self._emit(CommandStartEvent(
                **self._base(ts),
                command_id=command_id,
                command=self._text(command),
                args=[self._text(a) for a in args],
                cwd=cwd or os.getcwd(),
                env_summary=self._env(env or {}),
                pid=pid,
            ))
            return command_id

    def track_command(self, command_id: str, started_at: int) -> None:
        """Adopt a command whose start was captured by another process."""
        with self._lock:
            self._commands.setdefault(command_id, _CommandState(started_at=started_at))
            self._last_ts = max(self._last_ts, started_at)

    def capture_stdout_chunk(self, command_id: str, chunk: str) -> None:
        self._capture_chunk(command_id, self._text(chunk), "stdout")

    def capture_stderr_chunk(self, command_id: str, chunk: str) -> None:
        self._capture_chunk(command_id, self._text(chunk), "stderr")

    def _capture_chunk(self, command_id: str, chunk: str, stream: str) -> None:
        # chunk is already redacted
        with self._lock:
            self._require_active()
            state = self._state(command_id)
            index = state.indices[stream]
            state.indices[stream] = index + 1
            cls = StdoutChunkEvent if stream == "stdout" else StderrChunkEvent
            self._emit(cls(**self._base(self._tick()), command_id=command_id, chunk=chunk, chunk_index=index))

    def capture_exit_status(self, command_id: str, exit_code: int) -> None:
        with self._lock:
            self._require_active()
            self._state(command_id)
            self._emit(ExitStatusEvent(**self._base(self._tick()), command_id=command_id, exit_code=int(exit_code)))

    def capture_command_end(self, command_id: str) -> None:
        with self._lock:
            self._require_active()
            state = self._commands.pop(command_id, None)
            ts = self._tick()
            duration = ts - state.started_at if state else 0
            self._emit(CommandEndEvent(**self._base(ts), command_id=command_id, duration=duration))

    def capture_command_result(self, command_id: str, stdout: str, stderr: str, exit_code: int) -> None:
        """
        Emit chunked output, then the exit status, then the end event.
        Each stream is redacted as a whole before it is split, so a secret
        never straddles two chunks.
        """
        size = self.config.chunk_size if self.config else 4096
        with self._lock:
            for chunk in _split(self._text(stdout or ""), size):
                self._capture_chunk(command_id, chunk, "stdout")
            for chunk in _split(self._text(stderr or ""), size):
                self._capture_chunk(command_id, chunk, "stderr")
            self.capture_exit_status(command_id, exit_code)
            self.capture_command_end(command_id)

    def capture_cwd_change(self, cwd: str, previous_cwd: Optional[str] = None) -> None:
        with self._lock:
            self._require_active()
            self._emit(CwdChangeEvent(**self._base(self._tick()), cwd=cwd, previous_cwd=previous_cwd))

    def capture_env_change(self, env: Mapping[str, str], changed_keys: Sequence[str]) -> None:
        with self._lock:
            self._require_active()
            self._emit(EnvChangeEvent(**self._base(self._tick()), env_summary=self._env(env), changed_keys=list(changed_keys)))

    # ---- helpers ------------------------------------------------------------

    def _require_active(self) -> None:
        if not self._active:
            raise ObserverStateError("observer is not active", hint="run `shellwatch observer enable` and start a session")

    def _state(self, command_id: str) -> _CommandState:
        state = self._commands.get(command_id)
        if state is None:
            state = self._commands[command_id] = _CommandState(started_at=self._last_ts or now_ms())
        return state

    def _tick(self) -> int:
        # never let time run backwards within a session
        self._last_ts = max(now_ms(), self._last_ts)
        return self._last_ts

    def _base(self, ts: int) -> dict:
        return {
            "id": new_id("evt"),
            "timestamp": ts,
            "session_id": self.session_id,
            "shell_type": self.shell_type,
            "pane_id": self.config.pane_id if self.config else None,
            "tab_id": self.config.tab_id if self.config else None,
        }

    def _env(self, env: Mapping[str, str]) -> Dict[str, str]:
        if self.config is not None and not self.config.redact_secrets:
            return {k: str(v) for k, v in env.items() if v is not None}
        return sanitize_env(env, self._patterns())

    def _text(self, text: str) -> str:
        if self.config is not None and not self.config.redact_secrets:
            return text
        return redact_secrets_from_text(text, self._patterns())

    def _patterns(self) -> List[str]:
        return list(self.config.secret_patterns) if self.config else []

    def _emit(self, event: Event) -> None:
        self.store.save_event(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("event listener failed for %s", event.type)


def _split(text: str, size: int) -> List[str]:
    """Split into pieces of at most `size` UTF-8 bytes without cutting a character."""
    if not text:
        return []
    size = max(size, 4)
    chunks: List[str] = []
    start = used = 0
    for i, ch in enumerate(text):
        n = len(ch.encode("utf-8", "surrogatepass"))
        if used + n > size:
            chunks.append(text[start:i])
            start, used = i, 0
        used += n
    chunks.append(text[start:])
    return chunks
