# shellwatch/agent/service.py
from __future__ import annotations

import logging
import pathlib
from typing import Optional

from .analyzers.heuristic import create_heuristic_analyzers
from .analyzers.history import HistoryAnalyzer
from .analyzers.local_search import LocalSearchAnalyzer
from .analyzers.model import ModelAnalyzer
from .pipeline import AnalysisJob, AnalysisJobQueue
from .status import update_status
from .suggestions import SuggestionStore
from ..core.events import Event
from ..core.observer import TerminalObserver
from ..providers.base import ModelProvider, Reviewer
from ..providers.factory import create_provider

logger = logging.getLogger(__name__)

_UNSET = object()


class AnalysisService:
    """
    Wires observer, event store, job queue, analyzers, suggestion store and
    status file together. Built once at process entry and passed around.
    """

    def __init__(
        self,
        config,
        observer: Optional[TerminalObserver] = None,
        suggestions: Optional[SuggestionStore] = None,
        provider=_UNSET,
        reviewer: Optional[Reviewer] = None,
        status_path: Optional[pathlib.Path] = None,
    ):
        self.config = config
        self.observer = observer or TerminalObserver(config)
        self.observer.initialize()
        self.store = self.observer.store
        self.suggestions = suggestions or SuggestionStore()
        self.status_path = status_path
        self.provider: Optional[ModelProvider] = create_provider(config, reviewer) if provider is _UNSET else provider

        self.queue = AnalysisJobQueue(
            max_concurrent_jobs=config.analysis.max_concurrent_jobs,
            model_enabled=config.llm.enabled,
            store=self.store,
        )
        for analyzer in create_heuristic_analyzers():
            self.queue.register_analyzer(analyzer)
        self.queue.register_analyzer(HistoryAnalyzer())
        self.queue.register_analyzer(LocalSearchAnalyzer(timeout=config.analysis.search_timeout))
        self.queue.register_analyzer(ModelAnalyzer(self.provider))
        self.queue.on_complete(self._on_job_complete)

    def attach(self) -> None:
        """Analyze failures as soon as the observer records them."""
        self.observer.add_listener(self.on_event)

    def on_event(self, event: Event) -> None:
        if event.type == "exit_status" and not event.success:
            self.process_exit_status(event.command_id)

    def process_exit_status(self, command_id: str) -> Optional[str]:
        events = self.store.get_events_by_command(command_id)
        start = next((e for e in events if e.type == "command_start"), None)
        exit_ev = next((e for e in events if e.type == "exit_status"), None)
        if start is None or exit_ev is None or exit_ev.success:
            return None
        # must precede enqueue; the worker writes the final status
        update_status(
            self.status_path,
            status="analyzing",
            last_command=start.command,
            last_command_timestamp=start.timestamp,
        )
        known = {j.id for j in self.queue.get_all_jobs() if j.done}
        job_id = self.queue.enqueue_failure(command_id, events, self.store)
        if job_id in known:
            self._refresh_status()
        return job_id

    def analyze_last_failure(self) -> Optional[str]:
        """Queue the most recent failing command, if there is one."""
        for event in self.store.get_events(type="exit_status"):
            if not event.success:
                return self.process_exit_status(event.command_id)
        return None

    def wait_for_job(self, job_id: str, timeout: Optional[float] = None) -> Optional[AnalysisJob]:
        return self.queue.wait_for_job(job_id, timeout)

    def _on_job_complete(self, job: AnalysisJob) -> None:
        if job.status == "completed" and job.suggestions:
            self.suggestions.add(job.suggestions, command=job.command)
        self._refresh_status()

    def _refresh_status(self) -> None:
        high = len(self.suggestions.get_by_priority("high"))
        update_status(
            self.status_path,
            status="issues_found" if high else "idle",
            suggestion_count=len(self.suggestions.get_all()),
            high_priority_count=high,
        )

    def shutdown(self) -> None:
        self.queue.shutdown()
        self.observer.stop()
