"""Layered analysis: job queue, concurrency, layer gating and failure isolation."""

import threading

import pytest

from conftest import make_failure
from shellwatch.agent.pipeline import AnalysisJobQueue, Analyzer, previous_commands
from shellwatch.core.events import now_ms

WAIT = 5


class _Fixed(Analyzer):
    """Returns one suggestion at a fixed confidence and records each call."""

    def __init__(self, name, layer, confidence=0.5):
        self.name = name
        self.layer = layer
        self.confidence = confidence
        self.contexts = []

    def analyze(self, context, store):
        self.contexts.append(context)
        return [self.suggestion(f"{self.name} says", "details", self.confidence)]


class _Broken(Analyzer):
    name = "broken"
    layer = 1

    def analyze(self, context, store):
        raise RuntimeError("analyzer exploded")


class _Blocking(Analyzer):
    name = "blocking"
    layer = 1

    def __init__(self):
        self.release = threading.Event()
        self.entered = threading.Event()

    def analyze(self, context, store):
        self.entered.set()
        self.release.wait(WAIT)
        return []


@pytest.fixture
def queue(store):
    q = AnalysisJobQueue(max_concurrent_jobs=1, store=store)
    yield q
    q.shutdown(wait=False)


def _run(queue, store, **kw):
    cid = make_failure(store, **kw)
    job_id = queue.enqueue_failure(cid, store.get_events_by_command(cid), store)
    return queue.wait_for_job(job_id, timeout=WAIT)


# ── Enqueue ───────────────────────────────────────────────────────────────


class TestEnqueue:

    def test_successful_command_is_not_queued(self, queue, store):
        cid = make_failure(store, exit_code=0)
        assert queue.enqueue_failure(cid, store.get_events_by_command(cid)) is None

    def test_missing_start_is_not_queued(self, queue, store):
        cid = make_failure(store)
        events = [e for e in store.get_events_by_command(cid) if e.type != "command_start"]
        assert queue.enqueue_failure(cid, events) is None

    def test_same_command_is_deduplicated(self, queue, store):
        cid = make_failure(store)
        events = store.get_events_by_command(cid)
        first = queue.enqueue_failure(cid, events)
        assert queue.enqueue_failure(cid, events) == first
        assert len(queue.get_all_jobs()) == 1

    def test_job_carries_failure_details(self, queue, store):
        job = _run(queue, store, command="nix", args=("build", ".#foo"), stderr="error: boom", exit_code=1, cwd="/repo")
        assert job.status == "completed"
        assert job.command == "nix" and job.args == ["build", ".#foo"]
        assert job.stderr == "error: boom" and job.cwd == "/repo"
        assert job.completed_at is not None

    def test_analyzer_base_is_abstract(self):
        with pytest.raises(TypeError):
            Analyzer()

    def test_invalid_layer_is_rejected(self, queue):
        with pytest.raises(ValueError):
            queue.register_analyzer(_Fixed("bad", 4))


# ── Layer gating ──────────────────────────────────────────────────────────


class TestLayers:

    def test_confident_layer_one_skips_layer_two(self, queue, store):
        search = _Fixed("search", 2)
        queue.register_analyzer(_Fixed("rule", 1, confidence=0.9))
        queue.register_analyzer(search)
        job = _run(queue, store)
        assert search.contexts == []
        assert [s.title for s in job.suggestions] == ["rule says"]

    def test_unsure_layer_one_runs_layer_two(self, queue, store):
        search = _Fixed("search", 2)
        queue.register_analyzer(_Fixed("rule", 1, confidence=0.79))
        queue.register_analyzer(search)
        job = _run(queue, store)
        assert len(search.contexts) == 1
        assert [s.provenance.layer for s in job.suggestions] == [1, 2]

    def test_model_layer_off_by_default(self, queue, store):
        model = _Fixed("model", 3)
        queue.register_analyzer(model)
        _run(queue, store)
        assert model.contexts == []

    def test_model_layer_runs_even_after_confident_rule(self, queue, store):
        model = _Fixed("model", 3)
        queue.register_analyzer(_Fixed("rule", 1, confidence=0.95))
        queue.register_analyzer(model)
        queue.set_model_enabled(True)
        job = _run(queue, store)
        assert len(model.contexts) == 1
        assert [s.title for s in model.contexts[0].prior_suggestions] == ["rule says"]
        assert [s.provenance.layer for s in job.suggestions] == [1, 3]

    def test_failing_analyzer_is_isolated(self, queue, store):
        queue.register_analyzer(_Broken())
        queue.register_analyzer(_Fixed("rule", 1, confidence=0.6))
        job = _run(queue, store)
        assert job.status == "completed"
        assert [s.title for s in job.suggestions] == ["rule says"]


# ── Concurrency ───────────────────────────────────────────────────────────


class TestConcurrency:

    def test_single_worker_keeps_second_job_pending(self, queue, store):
        blocker = _Blocking()
        queue.register_analyzer(blocker)
        a = make_failure(store, command="first")
        b = make_failure(store, command="second")
        job_a = queue.enqueue_failure(a, store.get_events_by_command(a))
        assert blocker.entered.wait(WAIT)
        job_b = queue.enqueue_failure(b, store.get_events_by_command(b))
        assert queue.running_count() == 1
        assert queue.get_job(job_b).status == "pending"

        assert queue.cancel_job(job_b) is True
        assert queue.get_job(job_b).status == "cancelled"
        assert queue.cancel_job(job_b) is False
        assert queue.get_job(job_b).status == "cancelled"
        assert queue.cancel_job(job_a) is False

        blocker.release.set()
        assert queue.wait_for_job(job_a, timeout=WAIT).status == "completed"
        assert queue.cancel_job(job_a) is False
        assert queue.get_job(job_a).status == "completed"
        assert queue.cancel_job("job_missing") is False

    def test_pending_job_runs_after_first_finishes(self, queue, store):
        blocker = _Blocking()
        queue.register_analyzer(blocker)
        a = make_failure(store, command="first")
        b = make_failure(store, command="second")
        job_a = queue.enqueue_failure(a, store.get_events_by_command(a))
        blocker.entered.wait(WAIT)
        job_b = queue.enqueue_failure(b, store.get_events_by_command(b))
        blocker.release.set()
        assert queue.wait_for_job(job_b, timeout=WAIT).status == "completed"
        assert queue.get_last_job().id in (job_a, job_b)

    def test_completion_callback_runs_before_waiters_wake(self, queue, store):
        seen = []
        queue.on_complete(lambda job: seen.append(job.id))
        job = _run(queue, store)
        assert seen == [job.id]

    def test_callback_failure_is_logged_not_raised(self, queue, store):
        queue.on_complete(lambda job: 1 / 0)
        assert _run(queue, store).status == "completed"


def test_previous_commands_are_chronological(queue, store):
    t = now_ms()
    make_failure(store, command="one", exit_code=0, ts=t - 20)
    make_failure(store, command="two", exit_code=3, ts=t - 10)
    cid = make_failure(store, command="three", ts=t)
    job_id = queue.enqueue_failure(cid, store.get_events_by_command(cid))
    job = queue.wait_for_job(job_id, timeout=WAIT)
    history = previous_commands(store, job)
    assert [(p.command, p.exit_code) for p in history] == [("one", 0), ("two", 3)]
