# shellwatch/doctor.py
from __future__ import annotations

import os

from rich.console import Console

from .core.redact import validate_redaction
from .core.storage import create_event_store
from .providers.factory import is_provider_available
from .utils.config import config_path
from .utils.env import shellwatch_home
from .utils.errors import ShellwatchError

console = Console()


def _line(label: str, value: str, ok: bool = True) -> None:
    mark = "[green]ok[/green]" if ok else "[red]!![/red]"
    console.print(f"{mark}  {label:<18} {value}", highlight=False)


def run_doctor(cfg) -> int:
    """Print a health report. Returns 1 when anything the observer needs is broken."""
    problems = 0

    _line("home", str(shellwatch_home()))
    path = config_path()
    _line("config", str(path) if path.exists() else f"{path} (defaults)")
    _line("observer", "enabled" if cfg.enabled else "disabled (shellwatch observer enable)", ok=cfg.enabled)
    _line("hook env", "SHELLWATCH_OBSERVER_ENABLED=" + os.getenv("SHELLWATCH_OBSERVER_ENABLED", ""),
          ok=bool(os.getenv("SHELLWATCH_OBSERVER_ENABLED")))

    redaction_ok = validate_redaction()
    if not redaction_ok:
        problems += 1
    _line("redaction", ("self-check passed" if redaction_ok else "self-check FAILED")
          + ("" if cfg.redact_secrets else " (disabled in config)"), ok=redaction_ok and cfg.redact_secrets)

    try:
        stats = create_event_store(cfg).get_stats()
        _line("storage", f"{cfg.storage.backend}: {stats.total_events} events, {stats.session_count} session(s)")
    except ShellwatchError as e:
        problems += 1
        _line("storage", str(e), ok=False)

    if not cfg.llm.enabled:
        _line("model layer", "disabled (heuristics and local search only)")
    else:
        up = is_provider_available(cfg)
        if not up:
            problems += 1
        _line("model layer", f"{cfg.llm.type}: {'reachable' if up else 'unavailable'}", ok=up)
        if cfg.llm.type == "ollama":
            _line("ollama", f"{cfg.llm.ollama.base_url} model={cfg.llm.ollama.model}")
        review = cfg.llm.safety.require_user_review
        _line("user review", "required" if review else "OFF", ok=review)

    _line("OPENAI_API_KEY", "set" if os.getenv("OPENAI_API_KEY") else "not set")
    _line("ANTHROPIC_API_KEY", "set" if os.getenv("ANTHROPIC_API_KEY") else "not set")
    return 1 if problems else 0
