# shellwatch/core/events.py
from __future__ import annotations

import time
import uuid
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, model_validator

ShellType = Literal["bash", "zsh", "nushell", "unknown"]

EVENT_TYPES = (
    "command_start",
    "command_end",
    "stdout_chunk",
    "stderr_chunk",
    "exit_status",
    "cwd_change",
    "env_change",
    "session_start",
    "session_end",
)


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id(prefix: str) -> str:
    return f"{prefix}_{now_ms()}_{uuid.uuid4().hex[:9]}"


class BaseEvent(BaseModel):
    id: str
    timestamp: int
    session_id: str
    shell_type: ShellType = "unknown"
    pane_id: Optional[str] = None
    tab_id: Optional[str] = None


class CommandStartEvent(BaseEvent):
    type: Literal["command_start"] = "command_start"
    command_id: str
    command: str
    args: List[str] = Field(default_factory=list)
    cwd: str = ""
    env_summary: Dict[str, str] = Field(default_factory=dict)
    pid: Optional[int] = None


class CommandEndEvent(BaseEvent):
    type: Literal["command_end"] = "command_end"
    command_id: str
    duration: int = 0


class StdoutChunkEvent(BaseEvent):
    type: Literal["stdout_chunk"] = "stdout_chunk"
    command_id: str
    chunk: str
    chunk_index: int


class StderrChunkEvent(BaseEvent):
    type: Literal["stderr_chunk"] = "stderr_chunk"
    command_id: str
    chunk: str
    chunk_index: int


class ExitStatusEvent(BaseEvent):
    type: Literal["exit_status"] = "exit_status"
    command_id: str
    exit_code: int
    success: bool = False

    @model_validator(mode="after")
    def _derive_success(self) -> "ExitStatusEvent":
        self.success = self.exit_code == 0
        return self


class CwdChangeEvent(BaseEvent):
    type: Literal["cwd_change"] = "cwd_change"
    cwd: str
    previous_cwd: Optional[str] = None


class EnvChangeEvent(BaseEvent):
    type: Literal["env_change"] = "env_change"
    env_summary: Dict[str, str] = Field(default_factory=dict)
    changed_keys: List[str] = Field(default_factory=list)


class SessionStartEvent(BaseEvent):
    type: Literal["session_start"] = "session_start"
    cwd: str = ""
    env_summary: Dict[str, str] = Field(default_factory=dict)


class SessionEndEvent(BaseEvent):
    type: Literal["session_end"] = "session_end"
    duration: int = 0


Event = Annotated[
    Union[
        CommandStartEvent,
        CommandEndEvent,
        StdoutChunkEvent,
        StderrChunkEvent,
        ExitStatusEvent,
        CwdChangeEvent,
        EnvChangeEvent,
        SessionStartEvent,
        SessionEndEvent,
    ],
    Field(discriminator="type"),
]

_ADAPTER: TypeAdapter[Event] = TypeAdapter(Event)


def parse_event(data: Dict[str, Any]) -> Event:
    return _ADAPTER.validate_python(data)


def dump_event(event: BaseEvent) -> Dict[str, Any]:
    return event.model_dump(mode="json")


def command_id_of(event: BaseEvent) -> Optional[str]:
    return getattr(event, "command_id", None)


class Session(BaseModel):
    id: str
    started_at: int
    ended_at: Optional[int] = None
    shell_type: ShellType = "unknown"
    cwd: str = ""
