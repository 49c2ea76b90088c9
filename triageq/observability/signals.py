"""
Host-to-UI signals.

Fire-and-forget notifications (watcher lifecycle, per-item results, streaming
model output, tool calls, queue changes). Subscribers are plain callables;
a bounded history lets HTTP clients poll /api/events instead of holding a
push channel open. Safe to emit from worker threads.
"""

from __future__ import annotations

import itertools
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from triageq.observability.logging import get_logger
from triageq.observability.telemetry import counter

logger = get_logger(__name__)

Subscriber = Callable[["Signal"], None]


@dataclass(frozen=True)
class Signal:
    seq: int
    channel: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "seq": self.seq,
            "channel": self.channel,
            "payload": self.payload,
            "timestamp": self.timestamp,
        }


class HostSignals:
    """Broadcasts signals to subscribers and keeps the most recent ones."""

    def __init__(self, max_history: int = 500) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()
        self._history: deque[Signal] = deque(maxlen=max_history)
        self._seq = itertools.count(1)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a subscriber; returns a function that unregisters it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    @property
    def has_subscribers(self) -> bool:
        with self._lock:
            return bool(self._subscribers)

    def emit(self, channel: str, payload: dict[str, Any] | None = None) -> Signal:
        """
        Publish a signal.

        Side Effects:
            - Appends to the bounded history
            - Invokes every subscriber; a failing subscriber is logged and skipped
        """
        with self._lock:
            signal = Signal(seq=next(self._seq), channel=channel, payload=dict(payload or {}))
            self._history.append(signal)
            subscribers = list(self._subscribers)

        counter(f"signals.{channel}")
        for callback in subscribers:
            try:
                callback(signal)
            except Exception as e:
                logger.warning("Signal subscriber failed on %s: %s", channel, e)
        return signal

    def recent(self, since_seq: int = 0, limit: int = 100) -> list[Signal]:
        """Signals newer than since_seq, oldest first."""
        with self._lock:
            items = [s for s in self._history if s.seq > since_seq]
        return items[-limit:]
