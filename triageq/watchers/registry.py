"""Mailbox watcher runtime state and the registry that owns it."""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from triageq.config import MAIL_MAX_ACTIVITY, MAIL_MAX_MATCHES, MAIL_MAX_WATCHERS
from triageq.storage.models import (
    EmailActivityEntry,
    EmailMatch,
    MailWatcherConfig,
    PersistedWatcherState,
    WatcherStats,
)


def _match_ring() -> deque[EmailMatch]:
    return deque(maxlen=MAIL_MAX_MATCHES)


def _activity_ring() -> deque[EmailActivityEntry]:
    return deque(maxlen=MAIL_MAX_ACTIVITY)


@dataclass
class WatcherInstance:
    config: MailWatcherConfig
    stats: WatcherStats = field(default_factory=WatcherStats)
    matches: deque[EmailMatch] = field(default_factory=_match_ring)
    activity: deque[EmailActivityEntry] = field(default_factory=_activity_ring)
    is_paused: bool = True
    is_checking: bool = False

    @property
    def id(self) -> str:
        return self.config.id

    def add_match(self, match: EmailMatch) -> None:
        self.matches.appendleft(match)

    def add_activity(self, entry: EmailActivityEntry) -> None:
        self.activity.appendleft(entry)

    def remove_match(self, message_id: str) -> bool:
        kept = [m for m in self.matches if m.id != message_id]
        removed = len(kept) != len(self.matches)
        self.matches = deque(kept, maxlen=MAIL_MAX_MATCHES)
        return removed

    def snapshot(self) -> PersistedWatcherState:
        return PersistedWatcherState(
            config=self.config.model_copy(deep=True),
            stats=self.stats.model_copy(),
            matches=list(self.matches),
            activity=list(self.activity),
        )

    @classmethod
    def from_state(cls, state: PersistedWatcherState) -> WatcherInstance:
        """Rebuild from storage. Always paused; the engine decides whether to resume."""
        return cls(
            config=state.config,
            stats=state.stats,
            matches=deque(state.matches[:MAIL_MAX_MATCHES], maxlen=MAIL_MAX_MATCHES),
            activity=deque(state.activity[:MAIL_MAX_ACTIVITY], maxlen=MAIL_MAX_ACTIVITY),
            is_paused=True,
        )

    def status(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.config.name,
            "is_active": self.config.is_active,
            "is_paused": self.is_paused,
            "is_checking": self.is_checking,
            "interval_seconds": self.config.interval_seconds,
            "last_checked": self.config.last_checked.isoformat() if self.config.last_checked else None,
            "stats": self.stats.model_dump(mode="json"),
        }


class WatcherRegistry:
    """id -> WatcherInstance, plus one save lock per id."""

    def __init__(self, max_watchers: int = MAIL_MAX_WATCHERS) -> None:
        self.max_watchers = max_watchers
        self._instances: dict[str, WatcherInstance] = {}
        self._save_locks: dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._instances)

    def __contains__(self, watcher_id: object) -> bool:
        return watcher_id in self._instances

    def __iter__(self) -> Iterator[WatcherInstance]:
        return iter(list(self._instances.values()))

    def get(self, watcher_id: str) -> WatcherInstance | None:
        return self._instances.get(watcher_id)

    def is_full_for(self, watcher_id: str) -> bool:
        return watcher_id not in self._instances and len(self._instances) >= self.max_watchers

    def put(self, instance: WatcherInstance) -> None:
        self._instances[instance.id] = instance

    def remove(self, watcher_id: str) -> WatcherInstance | None:
        self._save_locks.pop(watcher_id, None)
        return self._instances.pop(watcher_id, None)

    def save_lock(self, watcher_id: str) -> asyncio.Lock:
        return self._save_locks.setdefault(watcher_id, asyncio.Lock())

    def clear(self) -> None:
        self._instances.clear()
        self._save_locks.clear()
