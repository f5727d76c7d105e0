# shellwatch/cli.py
from __future__ import annotations

import argparse
import datetime
import json
import os
import shlex
import subprocess
import sys
import time
from typing import List, Optional

from rich.console import Console
from rich.prompt import Confirm

from .utils.config import ShellwatchConfig, load_config, save_config
from .utils.env import load_env, shellwatch_home
from .utils.errors import ShellwatchError
from .utils.log import setup_logging

console = Console()
err_console = Console(stderr=True)

TAIL_INTERVAL = 1.0


# ---- helpers ------------------------------------------------------------------

def _fail(message: str, hint: Optional[str] = None) -> int:
    err_console.print(f"[red][!][/red] {message}", highlight=False)
    if hint:
        err_console.print(f"    [dim]{hint}[/dim]", highlight=False)
    return 1


def _session_id(cfg: ShellwatchConfig, shell: str) -> str:
    return os.environ.get("SHELLWATCH_SESSION_ID") or cfg.session_id or f"{shell}_{os.getppid()}"


def _pending_path(session_id: str):
    safe = "".join(c if c.isalnum() or c in "-_." else "_" for c in session_id)
    return shellwatch_home() / "pending" / f"{safe}.json"


def _split_command(parts: List[str]) -> List[str]:
    # hooks pass the whole command line as one argument
    if len(parts) == 1:
        try:
            return shlex.split(parts[0]) or parts
        except ValueError:
            return parts
    return parts


def _format_event(e) -> str:
    ts = datetime.datetime.fromtimestamp(e.timestamp / 1000).strftime("%H:%M:%S")
    if e.type == "command_start":
        detail = " ".join([e.command] + list(e.args)) + f"  (cwd {e.cwd})"
    elif e.type in ("stdout_chunk", "stderr_chunk"):
        detail = f"#{e.chunk_index} {e.chunk[:80]!r}"
    elif e.type == "exit_status":
        detail = f"exit {e.exit_code}" + ("" if e.success else "  FAILED")
    elif e.type in ("command_end", "session_end"):
        detail = f"{e.duration} ms"
    elif e.type == "cwd_change":
        detail = f"{e.previous_cwd or '?'} -> {e.cwd}"
    elif e.type == "env_change":
        detail = ", ".join(e.changed_keys)
    else:
        detail = getattr(e, "cwd", "")
    return f"{ts}  {e.type:<14} {detail}"


def _interactive_reviewer(review_text: str, provider: str) -> bool:
    err_console.print(review_text, markup=False, highlight=False)
    if not sys.stdin.isatty():
        err_console.print("[yellow]no terminal to confirm on; not sending context[/yellow]")
        return False
    return Confirm.ask(f"Send this context to {provider}?", default=False, console=err_console)


def _decline_reviewer(review_text: str, provider: str) -> bool:
    return False


# ---- observer -----------------------------------------------------------------

def _observer_toggle(cfg: ShellwatchConfig, enabled: bool) -> int:
    cfg.enabled = enabled
    path = save_config(cfg)
    if enabled:
        console.print(f"[green][+][/green] observer enabled ({path})", highlight=False)
        console.print("    add to your shell rc file:")
        console.print('      export SHELLWATCH_OBSERVER_ENABLED=1', markup=False, highlight=False)
        console.print('      eval "$(shellwatch observer hook)"', markup=False, highlight=False)
    else:
        console.print(f"[+] observer disabled ({path})", highlight=False)
    return 0


def _observer_status(cfg: ShellwatchConfig) -> int:
    from .core.observer import TerminalObserver
    from .core.shells.factory import detect_shell_type

    observer = TerminalObserver(cfg)
    stats = observer.get_stats()
    console.print(f"enabled        {'yes' if cfg.enabled else 'no'}", highlight=False)
    console.print(f"shell          {cfg.shell_type or detect_shell_type()}", highlight=False)
    console.print(f"storage        {cfg.storage.backend} ({cfg.storage.path if cfg.storage.backend == 'local' else cfg.storage.redis_url})", highlight=False)
    console.print(f"redaction      {'on' if cfg.redact_secrets else 'OFF'}", highlight=False)
    console.print(f"events         {stats.total_events} in {stats.session_count} session(s)", highlight=False)
    for kind, n in sorted(stats.events_by_type.items()):
        console.print(f"  {kind:<14} {n}", highlight=False)
    console.print(f"model layer    {cfg.llm.type if cfg.llm.enabled else 'disabled'}", highlight=False)
    return 0


def _observer_hook(cfg: ShellwatchConfig, shell: Optional[str]) -> int:
    from .core.shells.factory import create_shell_adapter, detect_shell_type

    shell = shell or cfg.shell_type or detect_shell_type()
    if shell == "unknown":
        return _fail("could not detect your shell", hint="pass --shell bash|zsh|nushell")
    sys.stdout.write(create_shell_adapter(shell).get_hook_script())
    return 0


def _capture_start(cfg: ShellwatchConfig, args) -> int:
    from .core.events import now_ms
    from .core.observer import TerminalObserver

    if not cfg.enabled:
        return 0
    parts = _split_command(args.command)
    if not parts:
        return 0
    shell = args.shell or cfg.shell_type
    session = _session_id(cfg, shell or "shell")
    observer = TerminalObserver(cfg.model_copy(update={"shell_type": shell}))
    observer.start(session_id=session, cwd=args.cwd, env=os.environ)
    command_id = observer.capture_command(parts[0], parts[1:], cwd=args.cwd or os.getcwd(), env=os.environ, pid=os.getppid())
    observer.stop(end_session=False)

    pending = _pending_path(session)
    pending.parent.mkdir(parents=True, exist_ok=True)
    pending.write_text(json.dumps({"command_id": command_id, "started_at": now_ms(), "command": parts[0]}), encoding="utf-8")
    return 0


def _capture_end(cfg: ShellwatchConfig, args) -> int:
    from .core.observer import TerminalObserver

    if not cfg.enabled:
        return 0
    shell = args.shell or cfg.shell_type
    session = _session_id(cfg, shell or "shell")
    pending = _pending_path(session)
    if not pending.exists():
        return 0
    try:
        state = json.loads(pending.read_text(encoding="utf-8"))
    except ValueError:
        pending.unlink(missing_ok=True)
        return 0

    observer = TerminalObserver(cfg.model_copy(update={"shell_type": shell}))
    observer.start(session_id=session)
    observer.track_command(state["command_id"], int(state["started_at"]))
    observer.capture_exit(state["command_id"], args.exit_code)
    observer.capture_end(state["command_id"])
    observer.stop(end_session=False)
    pending.unlink(missing_ok=True)

    if args.exit_code != 0 and cfg.analysis.auto_analyze:
        # detached so the prompt comes back immediately
        subprocess.Popen(
            [sys.executable, "-m", "shellwatch", "analyze", "last", "--quiet"],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    return 0


def _observer_clear(cfg: ShellwatchConfig, days: Optional[int]) -> int:
    from .core.observer import TerminalObserver

    n = TerminalObserver(cfg).clear_events(days)
    scope = f"older than {days} day(s)" if days is not None else "in total"
    console.print(f"[+] removed {n} event(s) {scope}", highlight=False)
    return 0


# ---- events -------------------------------------------------------------------

def _events(cfg: ShellwatchConfig, args) -> int:
    from .core.observer import TerminalObserver

    observer = TerminalObserver(cfg)
    if args.target == "tail":
        return _events_tail(observer, args.type, args.interval)
    try:
        limit = int(args.target) if args.target else 20
    except ValueError:
        return _fail(f"expected a number or 'tail', got {args.target!r}")
    events = observer.get_events(type=args.type, limit=limit)
    if not events:
        return _fail("no events recorded yet", hint="run `shellwatch observer enable` and install the shell hook")
    for e in reversed(events):
        console.print(_format_event(e), markup=False, highlight=False)
    return 0


def _events_tail(observer, type: Optional[str], interval: float) -> int:
    seen = set()
    since = None
    recent = observer.get_events(type=type, limit=10)
    for e in reversed(recent):
        console.print(_format_event(e), markup=False, highlight=False)
        seen.add(e.id)
        since = e.timestamp
    try:
        while True:
            time.sleep(interval)
            observer.store.reload()
            fresh = [e for e in observer.get_events(type=type, since=since) if e.id not in seen]
            for e in reversed(fresh):
                console.print(_format_event(e), markup=False, highlight=False)
                seen.add(e.id)
                since = e.timestamp
    except KeyboardInterrupt:
        return 0


# ---- analysis -----------------------------------------------------------------

def _analyze_last(cfg: ShellwatchConfig, args) -> int:
    from .agent.service import AnalysisService
    from .agent.suggestions import format_suggestions_for_cli

    reviewer = _decline_reviewer if args.quiet else _interactive_reviewer
    service = AnalysisService(cfg, reviewer=reviewer)
    try:
        job_id = service.analyze_last_failure()
        if job_id is None:
            return _fail("no failed command found in the event log")
        job = service.wait_for_job(job_id, timeout=args.wait)
        if job is None or not job.done:
            return _fail(f"analysis still running after {args.wait:.0f}s", hint="re-run `shellwatch suggest top` shortly")
        if job.status == "failed":
            return _fail(f"analysis failed: {job.error}")
        if not args.quiet:
            console.print(f"[b]{job.command}[/b] exited {job.exit_code}", highlight=False)
            console.print(format_suggestions_for_cli(job.suggestions), markup=False, highlight=False)
        return 0
    finally:
        service.queue.shutdown(wait=False)


# ---- suggestions --------------------------------------------------------------

def _suggest(cfg: ShellwatchConfig, args) -> int:
    from .agent.status import format_status, load_status
    from .agent.suggestions import SuggestionStore, format_suggestion, format_suggestion_compact, format_suggestions_for_cli

    store = SuggestionStore()
    if args.action == "status":
        top = store.get_top(1)
        line = format_status(load_status())
        if top:
            line += "  " + format_suggestion_compact(top[0])
        console.print(line, markup=False, highlight=False)
        return 0
    if args.action == "top":
        top = store.get_top(args.limit)
        console.print(format_suggestions_for_cli(top), markup=False, highlight=False)
        return 0 if top else 1
    if args.action == "list":
        items = store.get_all(include_dismissed=args.all)
        for s in items:
            flags = " [dismissed]" if s.dismissed else (" [applied]" if s.applied else "")
            console.print(format_suggestion(s) + flags + "\n", markup=False, highlight=False)
        return 0 if items else 1
    if not args.id:
        return _fail(f"`suggest {args.action}` needs a suggestion id", hint="see `shellwatch suggest list`")
    if args.action == "dismiss":
        if not store.dismiss(args.id):
            return _fail(f"no suggestion with id {args.id}")
        console.print(f"[+] dismissed {args.id}", highlight=False)
        return 0
    if args.action == "apply":
        s = store.get(args.id)
        if s is None:
            return _fail(f"no suggestion with id {args.id}")
        store.apply(args.id)
        # shellwatch never runs a fix; it only hands the snippet back
        console.print(s.actionable_snippet or s.description, markup=False, highlight=False)
        return 0
    return 1


# ---- entry point --------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="shellwatch", description="observe shell commands and explain failures")
    p.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = p.add_subparsers(dest="cmd", required=True)

    o = sub.add_parser("observer", help="terminal observer controls")
    osub = o.add_subparsers(dest="ocmd", required=True)
    osub.add_parser("enable", help="turn capture on")
    osub.add_parser("disable", help="turn capture off")
    osub.add_parser("status", help="observer configuration and event counts")
    oh = osub.add_parser("hook", help="print the shell integration snippet")
    oh.add_argument("--shell", choices=["bash", "zsh", "nushell"])
    cs = osub.add_parser("capture-start", help="record a command start (called by shell hooks)")
    cs.add_argument("--shell", choices=["bash", "zsh", "nushell"])
    cs.add_argument("--cwd")
    cs.add_argument("command", nargs=argparse.REMAINDER)
    ce = osub.add_parser("capture-end", help="record a command's exit (called by shell hooks)")
    ce.add_argument("--shell", choices=["bash", "zsh", "nushell"])
    ce.add_argument("exit_code", type=int)
    oc = osub.add_parser("clear", help="delete recorded events")
    oc.add_argument("--days", type=int, help="only events older than this many days")

    e = sub.add_parser("events", help="show recorded events (`events tail` to follow)")
    e.add_argument("target", nargs="?", help="number of events, or 'tail'")
    e.add_argument("--type", help="only this event type")
    e.add_argument("--interval", type=float, default=TAIL_INTERVAL, help="tail poll interval in seconds")

    a = sub.add_parser("analyze", help="analyze a failed command")
    a.add_argument("which", choices=["last"])
    a.add_argument("--wait", type=float, default=15.0, help="seconds to wait for the result")
    a.add_argument("--quiet", action="store_true", help="no output; never sends context to a model")

    s = sub.add_parser("suggest", help="stored suggestions")
    s.add_argument("action", choices=["status", "top", "list", "dismiss", "apply"])
    s.add_argument("id", nargs="?")
    s.add_argument("--limit", type=int, default=5)
    s.add_argument("--all", action="store_true", help="include dismissed suggestions")

    sub.add_parser("doctor", help="check configuration, storage, redaction and model provider")
    sub.add_parser("ui", help="live suggestion viewer")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    load_env()

    try:
        cfg = load_config()
        if args.cmd == "observer":
            if args.ocmd == "enable":
                return _observer_toggle(cfg, True)
            if args.ocmd == "disable":
                return _observer_toggle(cfg, False)
            if args.ocmd == "status":
                return _observer_status(cfg)
            if args.ocmd == "hook":
                return _observer_hook(cfg, args.shell)
            if args.ocmd == "capture-start":
                if args.command and args.command[0] == "--":
                    args.command = args.command[1:]
                return _capture_start(cfg, args)
            if args.ocmd == "capture-end":
                return _capture_end(cfg, args)
            if args.ocmd == "clear":
                return _observer_clear(cfg, args.days)
        if args.cmd == "events":
            return _events(cfg, args)
        if args.cmd == "analyze":
            return _analyze_last(cfg, args)
        if args.cmd == "suggest":
            return _suggest(cfg, args)
        if args.cmd == "doctor":
            from .doctor import run_doctor
            return run_doctor(cfg)
        if args.cmd == "ui":
            from .ui.ui import run_ui
            run_ui(str(shellwatch_home()))
            return 0
    except ShellwatchError as e:
        return _fail(str(e), e.hint)
    return 1
