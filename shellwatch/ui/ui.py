# shellwatch/ui/ui.py
from __future__ import annotations

import os
from pathlib import Path
from typing import List

from rich.markup import escape
from textual.app import App, ComposeResult
from textual.containers import Vertical
from textual.widgets import Static

from ..agent.status import STATUS_NAME, format_status, load_status
from ..agent.suggestions import SUGGESTIONS_NAME, StoredSuggestion, SuggestionStore

_PRIORITY_STYLE = {"high": "bold red", "medium": "yellow", "low": "dim"}


def _mtime(path: str) -> float:
    try:
        return os.path.getmtime(path)
    except OSError:
        return 0.0


class ShellwatchUI(App):
    """
    Read-only viewer:
      • status line from agent-status.json
      • ranked suggestions from suggestions.json
    Both files are polled; the view re-renders only when one changes.
    """

    CSS = """
    Screen { layout: vertical; }
    #title   { height: 1; content-align: center middle; }
    #status  { height: 1; padding: 0 1; }
    #details { height: 1fr; padding: 0 1; overflow: auto; }
    """

    BINDINGS = [("q", "quit", "quit")]

    def __init__(self, home: str, limit: int = 10):
        super().__init__()
        self.home = os.path.expanduser(home)
        self.limit = limit
        self.status_file = os.path.join(self.home, STATUS_NAME)
        self.suggestions_file = os.path.join(self.home, SUGGESTIONS_NAME)
        self._seen = (-1.0, -1.0)
        self.status: Static | None = None
        self.details: Static | None = None

    def compose(self) -> ComposeResult:
        self.status = Static(id="status")
        self.details = Static(id="details")
        yield Vertical(Static("shellwatch", id="title"), self.status, self.details)

    def on_mount(self) -> None:
        self._tick()
        self.set_interval(0.5, self._tick)

    def render_suggestions(self, suggestions: List[StoredSuggestion]) -> str:
        if not suggestions:
            return "[dim]No suggestions yet.[/dim]"
        lines: list[str] = []
        for i, s in enumerate(suggestions, 1):
            style = _PRIORITY_STYLE.get(s.priority, "")
            lines.append(f"[b]{i}[/b] [{style}]{escape(s.title)}[/{style}]  [dim]{s.confidence:.0%} · {s.provenance.analyzer}[/dim]")
            if s.command:
                lines.append(f"    [dim]after:[/dim] {escape(s.command)}")
            lines.append(f"    {escape(s.description)}")
            if s.actionable_snippet:
                lines.extend(f"    [green]{escape(line)}[/green]" for line in s.actionable_snippet.splitlines())
            lines.append(f"    [dim]id: {s.id}[/dim]")
            lines.append("")
        return "\n".join(lines)

    def _tick(self) -> None:
        seen = (_mtime(self.status_file), _mtime(self.suggestions_file))
        if seen == self._seen:
            return
        self._seen = seen

        status = load_status(Path(self.status_file))
        top = SuggestionStore(Path(self.suggestions_file)).get_top(self.limit)
        if self.status is not None:
            last = status.last_command or "-"
            self.status.update(f"{escape(format_status(status))}    |    last: {escape(last)}")
        if self.details is not None:
            self.details.update(self.render_suggestions(top))


def run_ui(home: str) -> None:
    ShellwatchUI(home=home).run()
