# shellwatch/core/shells/factory.py
from __future__ import annotations

import os
from typing import Dict, List, Optional, Type

from .base import ShellAdapter
from .bash import BashAdapter
from .nushell import NushellAdapter
from .zsh import ZshAdapter
from ...utils.errors import ConfigError

ADAPTERS: Dict[str, Type[ShellAdapter]] = {
    "bash": BashAdapter,
    "zsh": ZshAdapter,
    "nushell": NushellAdapter,
}


def detect_shell_type(shell: Optional[str] = None) -> str:
    """Guess from $SHELL (or the given path). Returns 'unknown' when nothing matches."""
    name = os.path.basename(shell if shell is not None else os.environ.get("SHELL", "")).lower()
    if "zsh" in name:
        return "zsh"
    if "bash" in name:
        return "bash"
    if name in ("nu", "nushell"):
        return "nushell"
    return "unknown"


def create_shell_adapter(shell_type: Optional[str] = None) -> ShellAdapter:
    shell_type = shell_type or detect_shell_type()
    if shell_type == "unknown":
        # no hook for it, but programmatic capture still works; events stay labelled unknown
        adapter = BashAdapter()
        adapter.shell_type = "unknown"
        return adapter
    cls = ADAPTERS.get(shell_type)
    if cls is None:
        raise ConfigError(f"unsupported shell: {shell_type}", hint=f"use one of: {', '.join(ADAPTERS)}")
    return cls()


def available_adapters() -> List[str]:
    return list(ADAPTERS)
