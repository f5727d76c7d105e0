"""Event model, local JSON store and redis store."""

import json
from unittest.mock import patch

import fakeredis
import pytest
from pydantic import ValidationError

from shellwatch.core.events import (
    CommandStartEvent,
    ExitStatusEvent,
    SessionStartEvent,
    dump_event,
    new_id,
    now_ms,
    parse_event,
)
from shellwatch.core.storage import DAY_MS, LocalFileStore, RedisEventStore, create_event_store
from shellwatch.utils.errors import ConfigError


def _start(ts, session="s1", command="ls"):
    return CommandStartEvent(id=new_id("evt"), timestamp=ts, session_id=session, command_id=new_id("cmd"), command=command)


# ── Event model ───────────────────────────────────────────────────────────


class TestEvents:

    def test_exit_status_derives_success(self):
        ok = ExitStatusEvent(id="e1", timestamp=1, session_id="s", command_id="c", exit_code=0)
        bad = ExitStatusEvent(id="e2", timestamp=1, session_id="s", command_id="c", exit_code=127, success=True)
        assert ok.success is True
        assert bad.success is False

    def test_parse_dispatches_on_type(self):
        data = dump_event(_start(5, command="make"))
        event = parse_event(data)
        assert isinstance(event, CommandStartEvent)
        assert event.command == "make"

    def test_unknown_type_is_rejected(self):
        with pytest.raises(ValidationError):
            parse_event({"type": "keystroke", "id": "x", "timestamp": 1, "session_id": "s"})

    def test_ids_carry_prefix(self):
        assert new_id("cmd").startswith("cmd_")
        assert new_id("cmd") != new_id("cmd")


# ── Local store ───────────────────────────────────────────────────────────


class TestLocalFileStore:

    def test_events_survive_a_new_instance(self, tmp_path):
        a = LocalFileStore(str(tmp_path), retention_days=0)
        a.save_event(_start(now_ms(), command="git"))
        b = LocalFileStore(str(tmp_path), retention_days=0)
        events = b.get_events()
        assert len(events) == 1
        assert events[0].command == "git"

    def test_get_events_newest_first_with_filters(self, store):
        t = now_ms()
        store.save_event(_start(t - 30, command="a"))
        store.save_event(_start(t - 20, command="b"))
        store.save_event(SessionStartEvent(id=new_id("evt"), timestamp=t - 10, session_id="s1"))
        assert [e.type for e in store.get_events()] == ["session_start", "command_start", "command_start"]
        assert [e.command for e in store.get_events(type="command_start")] == ["b", "a"]
        assert len(store.get_events(since=t - 20)) == 2
        assert len(store.get_events(limit=1)) == 1

    def test_by_command_is_chronological(self, store):
        cid = "cmd_1"
        t = now_ms()
        store.save_event(ExitStatusEvent(id="e2", timestamp=t, session_id="s", command_id=cid, exit_code=1))
        store.save_event(CommandStartEvent(id="e1", timestamp=t, session_id="s", command_id=cid, command="x"))
        assert [e.type for e in store.get_events_by_command(cid)] == ["command_start", "exit_status"]

    def test_max_events_evicts_oldest(self, tmp_path):
        s = LocalFileStore(str(tmp_path), max_events=3, retention_days=0)
        t = now_ms()
        for i in range(5):
            s.save_event(_start(t + i, command=f"c{i}"))
        assert [e.command for e in s.get_events()] == ["c4", "c3", "c2"]

    def test_retention_drops_old_events(self, tmp_path):
        s = LocalFileStore(str(tmp_path), retention_days=1)
        s.save_event(_start(now_ms() - 2 * DAY_MS, command="old"))
        s.save_event(_start(now_ms(), command="new"))
        assert [e.command for e in s.get_events()] == ["new"]

    def test_clear_events_returns_count(self, store):
        t = now_ms()
        store.save_event(_start(t - 10 * DAY_MS))
        store.save_event(_start(t))
        assert store.clear_events(older_than=t - DAY_MS) == 1
        assert store.clear_events() == 1
        assert store.get_events() == []

    def test_stats(self, store):
        t = now_ms()
        store.save_event(_start(t, session="a"))
        store.save_event(_start(t, session="b"))
        store.save_event(SessionStartEvent(id=new_id("evt"), timestamp=t, session_id="a"))
        stats = store.get_stats()
        assert stats.total_events == 3
        assert stats.events_by_type == {"command_start": 2, "session_start": 1}
        assert stats.session_count == 2

    def test_corrupt_file_starts_empty(self, tmp_path):
        (tmp_path / LocalFileStore.FILE_NAME).write_text("{not json")
        s = LocalFileStore(str(tmp_path), retention_days=0)
        assert s.get_events() == []
        s.save_event(_start(now_ms()))
        assert len(json.loads((tmp_path / LocalFileStore.FILE_NAME).read_text())) == 1

    def test_reload_sees_other_writers(self, tmp_path):
        reader = LocalFileStore(str(tmp_path), retention_days=0)
        assert reader.get_events() == []
        LocalFileStore(str(tmp_path), retention_days=0).save_event(_start(now_ms()))
        assert reader.get_events() == []
        reader.reload()
        assert len(reader.get_events()) == 1


# ── Redis store ───────────────────────────────────────────────────────────


class TestRedisEventStore:

    def setup_method(self):
        self.client = fakeredis.FakeRedis()
        self.store = RedisEventStore(key_prefix="test:event:", retention_days=0, client=self.client)

    def test_save_and_query(self):
        t = now_ms()
        self.store.save_event(_start(t, command="first"))
        self.store.save_event(_start(t + 1, command="second"))
        assert [e.command for e in self.store.get_events()] == ["second", "first"]
        assert len(list(self.client.scan_iter(match="test:event:*"))) == 2

    def test_max_events(self):
        self.store.max_events = 2
        t = now_ms()
        for i in range(4):
            self.store.save_event(_start(t + i, command=f"c{i}"))
        assert [e.command for e in self.store.get_events()] == ["c3", "c2"]

    def test_eviction_uses_index_without_reading_events(self):
        self.store.max_events = 2
        t = now_ms()
        self.store.save_event(_start(t, command="c0"))
        self.store.save_event(_start(t + 1, command="c1"))
        with patch.object(self.client, "scan_iter", side_effect=AssertionError("full scan on write")), \
                patch.object(self.client, "mget", side_effect=AssertionError("full read on write")):
            self.store.save_event(_start(t + 2, command="c2"))
        assert [e.command for e in self.store.get_events()] == ["c2", "c1"]
        assert self.client.zcard(self.store.index_key) == 2

    def test_retention_evicts_through_index(self):
        self.store.retention_days = 1
        old = _start(now_ms() - 2 * DAY_MS, command="old")
        self.store.save_event(old)
        self.store.save_event(_start(now_ms(), command="new"))
        assert [e.command for e in self.store.get_events()] == ["new"]
        assert self.client.zscore(self.store.index_key, old.id) is None

    def test_clear_events_keeps_index_in_sync(self):
        self.store.save_event(_start(now_ms()))
        assert self.store.clear_events() == 1
        assert self.client.zcard(self.store.index_key) == 0

    def test_unreadable_value_is_skipped(self):
        self.client.set("test:event:junk", "nope")
        self.store.save_event(_start(now_ms()))
        assert len(self.store.get_events()) == 1


def test_factory_builds_configured_backend(config):
    assert isinstance(create_event_store(config), LocalFileStore)
    config.storage.backend = "sqlite"
    with pytest.raises(ConfigError):
        create_event_store(config)
