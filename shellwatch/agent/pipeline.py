# shellwatch/agent/pipeline.py
from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Deque, Dict, List, Literal, Optional, Sequence, Set

from pydantic import BaseModel, ConfigDict, Field

from ..core.events import Event, command_id_of, new_id, now_ms
from ..core.storage import EventStore
from ..utils.errors import AnalyzerFailure

logger = logging.getLogger(__name__)

# a Layer 1 suggestion at or above this confidence makes Layer 2 unnecessary
HIGH_CONFIDENCE = 0.8
PREVIOUS_COMMANDS = 5

JobStatus = Literal["pending", "running", "completed", "cancelled", "failed"]
SuggestionType = Literal["command", "optimization", "shortcut", "warning", "tip"]
Priority = Literal["low", "medium", "high"]


class Provenance(BaseModel):
    model_config = ConfigDict(frozen=True)

    analyzer: str
    layer: Literal[1, 2, 3]
    timestamp: int


class AnalysisSuggestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: SuggestionType = "tip"
    priority: Priority = "medium"
    title: str
    description: str
    confidence: float = Field(ge=0.0, le=1.0)
    actionable_snippet: Optional[str] = None
    provenance: Provenance
    timestamp: int


class PreviousCommand(BaseModel):
    command: str
    args: List[str] = Field(default_factory=list)
    exit_code: Optional[int] = None
    timestamp: int


class AnalysisContext(BaseModel):
    command: str
    args: List[str] = Field(default_factory=list)
    cwd: str = ""
    env: Dict[str, str] = Field(default_factory=dict)
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    # identity and timing of the failing command, when known
    command_id: Optional[str] = None
    started_at: Optional[int] = None
    duration: Optional[int] = None
    previous_commands: List[PreviousCommand] = Field(default_factory=list)
    repo_files: Optional[List[str]] = None
    # suggestions produced by earlier layers, visible to the model layer
    prior_suggestions: List[AnalysisSuggestion] = Field(default_factory=list)


class AnalysisJob(BaseModel):
    id: str
    command_id: str
    command: str
    args: List[str] = Field(default_factory=list)
    cwd: str = ""
    env: Dict[str, str] = Field(default_factory=dict)
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    events: List[Event] = Field(default_factory=list)
    timestamp: int
    status: JobStatus = "pending"
    suggestions: List[AnalysisSuggestion] = Field(default_factory=list)
    error: Optional[str] = None
    completed_at: Optional[int] = None

    @property
    def done(self) -> bool:
        return self.status in ("completed", "cancelled", "failed")


class Analyzer(ABC):
    """One analysis step. Subclasses set `name` and `layer` and implement analyze()."""

    name = "analyzer"
    layer = 1

    @abstractmethod
    def analyze(self, context: AnalysisContext, store: Optional[EventStore]) -> List[AnalysisSuggestion]:
        ...

    def suggestion(
        self,
        title: str,
        description: str,
        confidence: float,
        type: SuggestionType = "tip",
        priority: Priority = "medium",
        snippet: Optional[str] = None,
    ) -> AnalysisSuggestion:
        ts = now_ms()
        return AnalysisSuggestion(
            id=new_id("sugg"),
            type=type,
            priority=priority,
            title=title,
            description=description,
            confidence=confidence,
            actionable_snippet=snippet,
            provenance=Provenance(analyzer=self.name, layer=self.layer, timestamp=ts),
            timestamp=ts,
        )


def _joined(events: Sequence[Event], kind: str) -> str:
    chunks = sorted((e for e in events if e.type == kind), key=lambda e: e.chunk_index)
    return "".join(e.chunk for e in chunks)


class AnalysisJobQueue:
    """
    Jobs for failed commands, run by at most `max_concurrent_jobs` worker
    threads. Pending jobs are promoted oldest first; a finishing worker
    promotes the next one before it exits.
    """

    def __init__(self, max_concurrent_jobs: int = 1, model_enabled: bool = False, store: Optional[EventStore] = None):
        self.max_concurrent_jobs = max(1, int(max_concurrent_jobs))
        self.model_enabled = model_enabled
        self.store = store
        self._analyzers: List[Analyzer] = []
        self._jobs: Dict[str, AnalysisJob] = {}
        self._job_stores: Dict[str, Optional[EventStore]] = {}
        self._pending: Deque[str] = deque()
        self._running: Set[str] = set()
        self._settled: Set[str] = set()
        self._lock = threading.Lock()
        self._changed = threading.Condition(self._lock)
        self._callbacks: List[Callable[[AnalysisJob], None]] = []
        self._closed = False
        self._executor = ThreadPoolExecutor(max_workers=self.max_concurrent_jobs, thread_name_prefix="shellwatch-analysis")

    # ---- setup --------------------------------------------------------------

    def register_analyzer(self, analyzer: Analyzer) -> None:
        if analyzer.layer not in (1, 2, 3):
            raise ValueError(f"analyzer {analyzer.name} has invalid layer {analyzer.layer}")
        with self._lock:
            self._analyzers.append(analyzer)
            self._analyzers.sort(key=lambda a: a.layer)

    @property
    def analyzers(self) -> List[Analyzer]:
        return list(self._analyzers)

    def set_model_enabled(self, enabled: bool) -> None:
        self.model_enabled = bool(enabled)

    def on_complete(self, callback: Callable[[AnalysisJob], None]) -> None:
        self._callbacks.append(callback)

    # ---- enqueue / cancel ---------------------------------------------------

    def enqueue_failure(self, command_id: str, events: Sequence[Event], store: Optional[EventStore] = None) -> Optional[str]:
        """
        Create a job when `events` hold both the command's start and a
        failing exit status. Returns the job id, or None when there is
        nothing to analyze.
        """
        mine = [e for e in events if command_id_of(e) == command_id]
        start = next((e for e in mine if e.type == "command_start"), None)
        exit_ev = next((e for e in mine if e.type == "exit_status"), None)
        if start is None or exit_ev is None or exit_ev.success:
            return None

        with self._lock:
            for job in self._jobs.values():
                if job.command_id == command_id and job.status in ("pending", "running", "completed"):
                    return job.id
            job = AnalysisJob(
                id=new_id("job"),
                command_id=command_id,
                command=start.command,
                args=list(start.args),
                cwd=start.cwd,
                env=dict(start.env_summary),
                exit_code=exit_ev.exit_code,
                stdout=_joined(mine, "stdout_chunk"),
                stderr=_joined(mine, "stderr_chunk"),
                events=list(mine),
                timestamp=now_ms(),
            )
            self._jobs[job.id] = job
            self._pending.append(job.id)
            self._job_stores[job.id] = store
            logger.debug("queued %s for %s (exit %s)", job.id, job.command, job.exit_code)
            self._promote()
            return job.id

    def cancel_job(self, job_id: str) -> bool:
        """Only pending jobs can be cancelled."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != "pending":
                return False
            self._pending.remove(job_id)
            self._job_stores.pop(job_id, None)
            job.status = "cancelled"
            job.completed_at = now_ms()
            self._settled.add(job_id)
            self._changed.notify_all()
            return True

    # ---- queries ------------------------------------------------------------

    def get_job(self, job_id: str) -> Optional[AnalysisJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    def get_last_job(self) -> Optional[AnalysisJob]:
        """Most recently completed job."""
        with self._lock:
            done = [j for j in self._jobs.values() if j.status == "completed"]
            if not done:
                return None
            return max(done, key=lambda j: (j.completed_at or 0, j.timestamp)).model_copy(deep=True)

    def get_all_jobs(self) -> List[AnalysisJob]:
        with self._lock:
            return [j.model_copy(deep=True) for j in self._jobs.values()]

    def running_count(self) -> int:
        with self._lock:
            return len(self._running)

    def wait_for_job(self, job_id: str, timeout: Optional[float] = None) -> Optional[AnalysisJob]:
        """Block until the job reaches a terminal state or `timeout` expires."""
        with self._changed:
            self._changed.wait_for(lambda: job_id not in self._jobs or job_id in self._settled, timeout=timeout)
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait)

    # ---- execution ----------------------------------------------------------

    def _promote(self) -> None:
        # caller holds self._lock
        while not self._closed and self._pending and len(self._running) < self.max_concurrent_jobs:
            job_id = self._pending.popleft()
            self._jobs[job_id].status = "running"
            self._running.add(job_id)
            self._executor.submit(self._run, job_id, self._job_stores.pop(job_id, None))

    def _run(self, job_id: str, store: Optional[EventStore]) -> None:
        try:
            self._execute(job_id, store if store is not None else self.store)
        finally:
            with self._lock:
                self._running.discard(job_id)
                job = self._jobs[job_id]
                if not job.done:
                    job.status = "failed"
                    job.error = job.error or "analysis aborted"
                job.completed_at = job.completed_at or now_ms()
                snapshot = job.model_copy(deep=True)
                self._promote()
            for cb in list(self._callbacks):
                try:
                    cb(snapshot)
                except Exception:
                    logger.exception("job completion callback failed for %s", job_id)
            # waiters wake only after callbacks have seen the result
            with self._lock:
                self._settled.add(job_id)
                self._changed.notify_all()

    def _execute(self, job_id: str, store: Optional[EventStore]) -> None:
        with self._lock:
            job = self._jobs[job_id].model_copy(deep=True)
        try:
            context = self.build_context(job, store)
        except Exception as e:
            logger.error("could not build analysis context for %s: %s", job_id, e)
            with self._lock:
                self._jobs[job_id].status = "failed"
                self._jobs[job_id].error = str(e)
            return

        suggestions: List[AnalysisSuggestion] = []
        first = self._run_layer(1, context, store)
        suggestions.extend(first)
        if not any(s.confidence >= HIGH_CONFIDENCE for s in first):
            suggestions.extend(self._run_layer(2, context, store))
        # the model layer is gated only by configuration, never by earlier confidence
        if self.model_enabled:
            informed = context.model_copy(update={"prior_suggestions": list(suggestions)})
            suggestions.extend(self._run_layer(3, informed, store))

        with self._lock:
            live = self._jobs[job_id]
            live.suggestions = suggestions
            live.status = "completed"
            live.completed_at = now_ms()
        logger.debug("%s completed with %d suggestions", job_id, len(suggestions))

    def _run_layer(self, layer: int, context: AnalysisContext, store: Optional[EventStore]) -> List[AnalysisSuggestion]:
        out: List[AnalysisSuggestion] = []
        for analyzer in [a for a in self._analyzers if a.layer == layer]:
            try:
                out.extend(analyzer.analyze(context, store) or [])
            except Exception as e:
                failure = AnalyzerFailure(analyzer.name, e)
                logger.error("%s", failure, exc_info=e)
        return out

    def build_context(self, job: AnalysisJob, store: Optional[EventStore]) -> AnalysisContext:
        start = next((e for e in job.events if e.type == "command_start"), None)
        end = next((e for e in job.events if e.type == "command_end"), None)
        return AnalysisContext(
            command=job.command,
            args=job.args,
            cwd=job.cwd,
            env=job.env,
            exit_code=job.exit_code,
            stdout=job.stdout,
            stderr=job.stderr,
            previous_commands=previous_commands(store, job) if store is not None else [],
            command_id=job.command_id,
            started_at=start.timestamp if start is not None else None,
            duration=end.duration if end is not None else None,
        )


def previous_commands(store: EventStore, job: AnalysisJob, limit: int = PREVIOUS_COMMANDS) -> List[PreviousCommand]:
    """The `limit` commands started before this job's command, oldest first, with exit codes."""
    start = next((e for e in job.events if e.type == "command_start"), None)
    before = start.timestamp if start is not None else job.timestamp
    starts = [
        e for e in store.get_events(type="command_start")
        if e.command_id != job.command_id and e.timestamp <= before
    ][:limit]
    out: List[PreviousCommand] = []
    for s in reversed(starts):
        exit_ev = next((e for e in store.get_events_by_command(s.command_id) if e.type == "exit_status"), None)
        out.append(PreviousCommand(
            command=s.command,
            args=list(s.args),
            exit_code=exit_ev.exit_code if exit_ev else None,
            timestamp=s.timestamp,
        ))
    return out
