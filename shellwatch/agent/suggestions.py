# shellwatch/agent/suggestions.py
from __future__ import annotations

import json
import logging
import os
import pathlib
import tempfile
import threading
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError

from .pipeline import AnalysisSuggestion
from ..core.events import now_ms
from ..utils.env import shellwatch_home

logger = logging.getLogger(__name__)

SUGGESTIONS_NAME = "suggestions.json"
MAX_SUGGESTIONS = 100
PRIORITY_RANK = {"high": 3, "medium": 2, "low": 1}

_PRIORITY_MARK = {"high": "!!", "medium": "!", "low": "-"}
_COMPACT_MARK = {"high": "⚠", "medium": "▲", "low": "•"}


class StoredSuggestion(AnalysisSuggestion):
    command: Optional[str] = None
    dismissed: bool = False
    applied: bool = False


def rank_key(s: AnalysisSuggestion):
    return (PRIORITY_RANK.get(s.priority, 0), s.confidence, s.timestamp)


class SuggestionStore:
    """
    Suggestions shown to the user, persisted as one JSON file. This is the
    only place that sets the dismissed/applied flags.
    """

    def __init__(self, path: Optional[pathlib.Path] = None, max_suggestions: int = MAX_SUGGESTIONS):
        self.path = pathlib.Path(path) if path else shellwatch_home() / SUGGESTIONS_NAME
        self.max_suggestions = max_suggestions
        self.last_updated = 0
        self._items: Dict[str, StoredSuggestion] = {}
        self._lock = threading.Lock()
        self.load()

    # ---- persistence --------------------------------------------------------

    def load(self) -> None:
        with self._lock:
            self._items = {}
            if not self.path.exists():
                return
            try:
                data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
                for raw in data.get("suggestions", []):
                    s = StoredSuggestion.model_validate(raw)
                    self._items[s.id] = s
                self.last_updated = int(data.get("last_updated") or 0)
            except (ValueError, ValidationError, AttributeError, OSError) as e:
                logger.warning("suggestion file %s is unreadable, starting empty: %s", self.path, e)
                self._items = {}

    def _save(self) -> None:
        # caller holds self._lock
        self.last_updated = now_ms()
        payload = {
            "suggestions": [s.model_dump(mode="json") for s in self._items.values()],
            "last_updated": self.last_updated,
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), prefix=".suggestions-", suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
        os.replace(tmp, self.path)

    # ---- writes -------------------------------------------------------------

    def add(self, suggestions: Iterable[AnalysisSuggestion], command: Optional[str] = None) -> int:
        """Store new suggestions (ids already present are skipped). Returns how many were added."""
        added = 0
        with self._lock:
            for s in suggestions:
                if s.id in self._items:
                    continue
                self._items[s.id] = StoredSuggestion.model_validate({**s.model_dump(), "command": command or getattr(s, "command", None)})
                added += 1
            if len(self._items) > self.max_suggestions:
                keep = sorted(self._items.values(), key=lambda s: s.timestamp, reverse=True)[: self.max_suggestions]
                self._items = {s.id: s for s in sorted(keep, key=lambda s: s.timestamp)}
            self._save()
        return added

    def _flag(self, suggestion_id: str, **flags) -> bool:
        with self._lock:
            s = self._items.get(suggestion_id)
            if s is None:
                return False
            self._items[suggestion_id] = s.model_copy(update=flags)
            self._save()
            return True

    def dismiss(self, suggestion_id: str) -> bool:
        return self._flag(suggestion_id, dismissed=True)

    def apply(self, suggestion_id: str) -> bool:
        """Mark as applied by the user. Nothing is executed."""
        return self._flag(suggestion_id, applied=True)

    def clear(self) -> None:
        with self._lock:
            self._items = {}
            self._save()

    # ---- reads --------------------------------------------------------------

    def get(self, suggestion_id: str) -> Optional[StoredSuggestion]:
        return self._items.get(suggestion_id)

    def get_all(self, include_dismissed: bool = False) -> List[StoredSuggestion]:
        items = list(self._items.values())
        if not include_dismissed:
            items = [s for s in items if not s.dismissed]
        return sorted(items, key=lambda s: s.timestamp, reverse=True)

    def get_top(self, limit: int = 5) -> List[StoredSuggestion]:
        return sorted(self.get_all(), key=rank_key, reverse=True)[:limit]

    def get_by_priority(self, priority: str) -> List[StoredSuggestion]:
        return [s for s in self.get_all() if s.priority == priority]

    def get_by_type(self, type: str) -> List[StoredSuggestion]:
        return [s for s in self.get_all() if s.type == type]

    def get_for_command(self, command: str) -> List[StoredSuggestion]:
        return [s for s in self.get_all() if s.command == command]

    def __len__(self) -> int:
        return len(self._items)


# ---- rendering ----------------------------------------------------------------

def format_suggestion(s: AnalysisSuggestion) -> str:
    lines = [
        f"[{_PRIORITY_MARK[s.priority]}] {s.title}  ({s.type}, {s.confidence:.0%}, {s.provenance.analyzer})",
        f"    {s.description}",
    ]
    if s.actionable_snippet:
        lines.append("")
        lines.extend(f"    {line}" for line in s.actionable_snippet.splitlines())
    lines.append(f"    id: {s.id}")
    return "\n".join(lines)


def format_suggestions_for_cli(suggestions: List[AnalysisSuggestion]) -> str:
    if not suggestions:
        return "No suggestions available."
    out = [f"=== Suggestions ({len(suggestions)}) ==="]
    for prio in ("high", "medium", "low"):
        group = sorted((s for s in suggestions if s.priority == prio), key=rank_key, reverse=True)
        if not group:
            continue
        out.append("")
        out.append(f"{prio.upper()} PRIORITY:")
        out.extend(format_suggestion(s) + "\n" for s in group)
    return "\n".join(out).rstrip() + "\n"


def format_suggestion_compact(s: Optional[AnalysisSuggestion]) -> str:
    """One line for status bars; empty when there is nothing to show."""
    if s is None:
        return ""
    return f"{_COMPACT_MARK[s.priority]} {s.title}"
