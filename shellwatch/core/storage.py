# shellwatch/core/storage.py
from __future__ import annotations

import json
import logging
import os
import pathlib
import tempfile
import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

import redis
from pydantic import BaseModel, Field, ValidationError

from .events import BaseEvent, Event, command_id_of, dump_event, now_ms, parse_event
from ..utils.errors import ConfigError, StorageUnavailable

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000

# tie-breaker for events sharing a millisecond
_PHASE = {
    "session_start": 0,
    "cwd_change": 1,
    "env_change": 1,
    "command_start": 2,
    "stdout_chunk": 3,
    "stderr_chunk": 4,
    "exit_status": 5,
    "command_end": 6,
    "session_end": 7,
}


def event_sort_key(event: BaseEvent):
    return (event.timestamp, _PHASE.get(event.type, 9), getattr(event, "chunk_index", 0))


class EventStats(BaseModel):
    total_events: int = 0
    events_by_type: Dict[str, int] = Field(default_factory=dict)
    session_count: int = 0


class EventStore(ABC):
    """
    Shared query logic and capacity policy. Backends provide the raw
    list/append/remove/commit primitives.
    """

    def __init__(self, max_events: int = 10000, retention_days: int = 30):
        self.max_events = max_events
        self.retention_days = retention_days
        self._lock = threading.RLock()

    # ---- backend primitives -------------------------------------------------

    @abstractmethod
    def _all(self) -> List[Event]: ...

    @abstractmethod
    def _append(self, event: Event) -> None: ...

    @abstractmethod
    def _remove(self, ids: Iterable[str]) -> None: ...

    def _commit(self) -> None:
        pass

    def reload(self) -> None:
        """Forget cached state so the next read sees writes made by other processes."""

    # ---- writes -------------------------------------------------------------

    def save_event(self, event: Event) -> None:
        with self._lock:
            self._append(event)
            self._enforce_limits()
            self._commit()

    def _enforce_limits(self) -> None:
        events = sorted(self._all(), key=event_sort_key)
        doomed: List[str] = []
        if self.retention_days > 0:
            cutoff = now_ms() - self.retention_days * DAY_MS
            doomed = [e.id for e in events if e.timestamp < cutoff]
            events = [e for e in events if e.timestamp >= cutoff]
        if self.max_events > 0 and len(events) > self.max_events:
            doomed.extend(e.id for e in events[: len(events) - self.max_events])
        if doomed:
            logger.debug("evicting %d events", len(doomed))
            self._remove(doomed)

    def clear_events(self, older_than: Optional[int] = None) -> int:
        """Remove all events, or those with timestamp < older_than (epoch ms). Returns the count."""
        with self._lock:
            events = self._all()
            doomed = [e.id for e in events if older_than is None or e.timestamp < older_than]
            if doomed:
                self._remove(doomed)
                self._commit()
            return len(doomed)

    # ---- queries ------------------------------------------------------------

    def get_events(self, type: Optional[str] = None, since: Optional[int] = None, limit: Optional[int] = None) -> List[Event]:
        """Newest first."""
        with self._lock:
            events = self._all()
        if type:
            events = [e for e in events if e.type == type]
        if since is not None:
            events = [e for e in events if e.timestamp >= since]
        events = sorted(events, key=event_sort_key, reverse=True)
        return events[:limit] if limit else events

    def get_events_by_command(self, command_id: str) -> List[Event]:
        """Oldest first."""
        with self._lock:
            events = [e for e in self._all() if command_id_of(e) == command_id]
        return sorted(events, key=event_sort_key)

    def get_events_by_session(self, session_id: str, limit: Optional[int] = None) -> List[Event]:
        with self._lock:
            events = [e for e in self._all() if e.session_id == session_id]
        events = sorted(events, key=event_sort_key, reverse=True)
        return events[:limit] if limit else events

    def get_stats(self) -> EventStats:
        with self._lock:
            events = self._all()
        by_type: Dict[str, int] = {}
        for e in events:
            by_type[e.type] = by_type.get(e.type, 0) + 1
        return EventStats(
            total_events=len(events),
            events_by_type=by_type,
            session_count=len({e.session_id for e in events}),
        )


class LocalFileStore(EventStore):
    """All events in one JSON array at <path>/events.json, cached in memory after first load."""

    FILE_NAME = "events.json"

    def __init__(self, path: str, max_events: int = 10000, retention_days: int = 30):
        super().__init__(max_events=max_events, retention_days=retention_days)
        self.dir = pathlib.Path(os.path.expanduser(path))
        self.file = self.dir / self.FILE_NAME
        self._events: Optional[List[Event]] = None

    def _load(self) -> List[Event]:
        if self._events is not None:
            return self._events
        events: List[Event] = []
        if self.file.exists():
            try:
                raw = json.loads(self.file.read_text(encoding="utf-8") or "[]")
                if not isinstance(raw, list):
                    raise ValueError("expected a JSON array")
                events = [parse_event(item) for item in raw]
            except (ValueError, ValidationError) as e:
                logger.warning("event log %s is corrupt, starting empty: %s", self.file, e)
                events = []
            except OSError as e:
                raise StorageUnavailable(f"cannot read {self.file}: {e}", hint="check permissions on the data directory") from e
        self._events = events
        return events

    def reload(self) -> None:
        """Drop the in-memory copy so the next read picks up writes from other processes."""
        with self._lock:
            self._events = None

    def _all(self) -> List[Event]:
        return list(self._load())

    def _append(self, event: Event) -> None:
        self._load().append(event)

    def _remove(self, ids: Iterable[str]) -> None:
        doomed = set(ids)
        self._events = [e for e in self._load() if e.id not in doomed]

    def _commit(self) -> None:
        payload = json.dumps([dump_event(e) for e in self._load()], ensure_ascii=False)
        try:
            self.dir.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=str(self.dir), prefix=".events-", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp, self.file)
        except OSError as e:
            raise StorageUnavailable(f"cannot write {self.file}: {e}", hint="check free space and permissions on the data directory") from e


class RedisEventStore(EventStore):
    """
    One JSON value per event under <key_prefix><event id>, plus a sorted
    set of event ids scored by timestamp so eviction never reads events.
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        key_prefix: str = "shellwatch:event:",
        max_events: int = 10000,
        retention_days: int = 30,
        client: Optional[redis.Redis] = None,
        index_key: Optional[str] = None,
    ):
        super().__init__(max_events=max_events, retention_days=retention_days)
        self.key_prefix = key_prefix
        # outside the event prefix so SCAN never returns it
        self.index_key = index_key or f"index:{key_prefix}"
        self.client = client if client is not None else redis.Redis.from_url(url)

    def _key(self, event_id: str) -> str:
        return f"{self.key_prefix}{event_id}"

    def _unavailable(self, e: Exception) -> StorageUnavailable:
        return StorageUnavailable(f"redis store unavailable: {e}", hint="start redis or set storage.backend: local")

    def _all(self) -> List[Event]:
        try:
            keys = list(self.client.scan_iter(match=f"{self.key_prefix}*"))
            values = self.client.mget(keys) if keys else []
        except redis.RedisError as e:
            raise self._unavailable(e) from e
        events: List[Event] = []
        for key, value in zip(keys, values):
            if value is None:
                continue
            try:
                events.append(parse_event(json.loads(value)))
            except (ValueError, ValidationError) as e:
                logger.warning("skipping unreadable event at %r: %s", key, e)
        return events

    def _append(self, event: Event) -> None:
        try:
            pipe = self.client.pipeline()
            pipe.set(self._key(event.id), json.dumps(dump_event(event), ensure_ascii=False))
            pipe.zadd(self.index_key, {event.id: event.timestamp})
            pipe.execute()
        except redis.RedisError as e:
            raise self._unavailable(e) from e

    def _remove(self, ids: Iterable[str]) -> None:
        ids = list(ids)
        if not ids:
            return
        try:
            pipe = self.client.pipeline()
            pipe.delete(*[self._key(i) for i in ids])
            pipe.zrem(self.index_key, *ids)
            pipe.execute()
        except redis.RedisError as e:
            raise self._unavailable(e) from e

    def _enforce_limits(self) -> None:
        try:
            doomed: List[str] = []
            if self.retention_days > 0:
                cutoff = now_ms() - self.retention_days * DAY_MS
                doomed = [_text(i) for i in self.client.zrangebyscore(self.index_key, "-inf", f"({cutoff}")]
            if self.max_events > 0:
                excess = self.client.zcard(self.index_key) - len(doomed) - self.max_events
                if excess > 0:
                    start = len(doomed)
                    doomed.extend(_text(i) for i in self.client.zrange(self.index_key, start, start + excess - 1))
        except redis.RedisError as e:
            raise self._unavailable(e) from e
        if doomed:
            logger.debug("evicting %d events", len(doomed))
            self._remove(doomed)


def _text(value) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


def create_event_store(config) -> EventStore:
    """Build the configured backend. `config` is a ShellwatchConfig."""
    storage = config.storage
    if storage.backend == "local":
        return LocalFileStore(storage.path, max_events=config.max_events, retention_days=config.retention_days)
    if storage.backend == "redis":
        return RedisEventStore(
            url=storage.redis_url,
            key_prefix=storage.key_prefix,
            max_events=config.max_events,
            retention_days=config.retention_days,
        )
    raise ConfigError(f"unknown storage backend: {storage.backend}", hint="use 'local' or 'redis'")
