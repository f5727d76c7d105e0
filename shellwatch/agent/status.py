# shellwatch/agent/status.py
from __future__ import annotations

import logging
import os
import pathlib
import tempfile
from typing import Literal, Optional

from pydantic import BaseModel, ValidationError

from ..core.events import now_ms
from ..utils.env import shellwatch_home

logger = logging.getLogger(__name__)

STATUS_NAME = "agent-status.json"

_SYMBOL = {"idle": "●", "analyzing": "⟳", "issues_found": "⚠"}


class AgentStatus(BaseModel):
    status: Literal["idle", "analyzing", "issues_found"] = "idle"
    last_command: Optional[str] = None
    last_command_timestamp: Optional[int] = None
    suggestion_count: int = 0
    high_priority_count: int = 0
    last_updated: int = 0


def status_path() -> pathlib.Path:
    return shellwatch_home() / STATUS_NAME


def load_status(path: Optional[pathlib.Path] = None) -> AgentStatus:
    p = path or status_path()
    if not p.exists():
        return AgentStatus(last_updated=now_ms())
    try:
        return AgentStatus.model_validate_json(p.read_text(encoding="utf-8"))
    except (ValidationError, ValueError, OSError) as e:
        logger.warning("ignoring unreadable status file %s: %s", p, e)
        return AgentStatus(last_updated=now_ms())


def save_status(status: AgentStatus, path: Optional[pathlib.Path] = None) -> None:
    p = path or status_path()
    p.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(p.parent), prefix=".status-", suffix=".tmp")
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(status.model_dump_json(indent=2))
    os.replace(tmp, p)


def update_status(path: Optional[pathlib.Path] = None, **changes) -> AgentStatus:
    current = load_status(path)
    updated = current.model_copy(update={**changes, "last_updated": now_ms()})
    save_status(updated, path)
    return updated


def format_status(status: AgentStatus) -> str:
    if status.status == "issues_found":
        n = status.high_priority_count
        text = f"{n} issue{'' if n == 1 else 's'}"
    else:
        text = status.status
    return f"{_SYMBOL[status.status]} {text}"
