# shellwatch/utils/env.py
from __future__ import annotations

import os
import pathlib
from typing import Dict

DEFAULT_HOME = "~/.shellwatch"


def shellwatch_home() -> pathlib.Path:
    """Data directory; SHELLWATCH_HOME overrides ~/.shellwatch."""
    return pathlib.Path(os.path.expanduser(os.environ.get("SHELLWATCH_HOME") or DEFAULT_HOME))


def load_env(path: str | None = None) -> Dict[str, str]:
    """
    Load <home>/.env into the current process env without clobbering
    anything already set in the real environment. Returns the parsed dict.

    Lines beginning with '#' and blank lines are ignored; the first '='
    splits KEY and VALUE. Surrounding quotes on the value are stripped.
    """
    p = pathlib.Path(os.path.expanduser(path)) if path else shellwatch_home() / ".env"
    if not p.exists():
        return {}

    env: Dict[str, str] = {}
    for raw in p.read_text(encoding="utf-8", errors="ignore").splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        k, v = line.split("=", 1)
        k, v = k.strip(), v.strip().strip('"').strip("'")
        if k.startswith("export "):
            k = k[len("export "):].strip()
        env[k] = v
        os.environ.setdefault(k, v)
    return env
