# shellwatch/agent/analyzers/history.py
from __future__ import annotations

import shlex
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..pipeline import AnalysisContext, AnalysisSuggestion, Analyzer
from ...core.storage import EventStore

# command_start events looked at when building a command's history
HISTORY_WINDOW = 50
REPEATED_FAILURES = 3
RECENT_RUNS = 5
FREQUENT_RUNS = 5
SLOW_MS = 5000


@dataclass
class _Run:
    command: str
    args: List[str]
    exit_code: Optional[int]
    timestamp: int
    cwd: str = ""


class HistoryAnalyzer(Analyzer):
    """
    Looks at what happened before the failing command rather than at its
    output: repeated failures of the same command, an earlier successful run
    with the same shape, slow execution and heavy use.
    """

    name = "history"
    layer = 1

    def analyze(self, context: AnalysisContext, store: Optional[EventStore]) -> List[AnalysisSuggestion]:
        runs = [r for r in self._history(context, store) if r.command == context.command]
        out: List[AnalysisSuggestion] = []

        # newest first; the failing command itself counts as the latest run
        recent = [context.exit_code] + [r.exit_code for r in runs[: RECENT_RUNS - 1]]
        failures = sum(1 for code in recent if code not in (None, 0))
        if failures >= REPEATED_FAILURES:
            out.append(self.suggestion(
                "Repeated Command Failures",
                f'"{context.command}" has failed {failures} times in its last {len(recent)} runs. '
                "Check the command syntax or the environment before retrying.",
                0.7,
                type="warning",
                priority="high",
            ))

        similar = next(
            (r for r in runs if r.exit_code == 0 and len(r.args) == len(context.args)),
            None,
        )
        if similar is not None:
            where = f" in {similar.cwd}" if similar.cwd else ""
            out.append(self.suggestion(
                "Similar Successful Command",
                f"A run with the same number of arguments succeeded earlier{where}. Compare it with the failing one.",
                0.6,
                type="command",
                priority="medium",
                snippet=shlex.join([similar.command, *similar.args]),
            ))

        duration = self._duration(context, store)
        if duration is not None and duration > SLOW_MS:
            out.append(self.suggestion(
                "Slow Command Execution",
                f'"{context.command}" took {duration / 1000:.1f}s. Consider caching its results '
                "or a faster alternative.",
                0.5,
                type="optimization",
                priority="medium",
            ))

        if len(runs) + 1 > FREQUENT_RUNS:
            words = [context.command, *context.args]
            alias = "".join(w[0] for w in words if w[:1].isalnum()).lower() or "cmd"
            out.append(self.suggestion(
                "Frequently Used Command",
                f'"{context.command}" has been run {len(runs) + 1} times recently. An alias or script would save typing.',
                0.4,
                type="shortcut",
                priority="low",
                snippet=f"alias {alias}={shlex.quote(shlex.join(words))}",
            ))
        return out

    def _history(self, context: AnalysisContext, store: Optional[EventStore]) -> List[_Run]:
        """Earlier runs, newest first."""
        if store is None:
            return [
                _Run(p.command, list(p.args), p.exit_code, p.timestamp)
                for p in reversed(context.previous_commands)
            ]
        exits: Dict[str, int] = {e.command_id: e.exit_code for e in store.get_events(type="exit_status")}
        runs: List[_Run] = []
        for start in store.get_events(type="command_start"):
            if start.command_id == context.command_id:
                continue
            if context.started_at is not None and start.timestamp > context.started_at:
                continue
            runs.append(_Run(start.command, list(start.args), exits.get(start.command_id), start.timestamp, start.cwd))
            if len(runs) == HISTORY_WINDOW:
                break
        return runs

    def _duration(self, context: AnalysisContext, store: Optional[EventStore]) -> Optional[int]:
        if context.duration is not None:
            return context.duration
        if store is None or not context.command_id:
            return None
        # analysis can start on exit_status, before command_end is written
        end = next((e for e in store.get_events_by_command(context.command_id) if e.type == "command_end"), None)
        return end.duration if end is not None else None
