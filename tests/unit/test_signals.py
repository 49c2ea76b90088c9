"""Tests for host signals and in-process telemetry."""

import time

from triageq.observability.signals import HostSignals
from triageq.observability.telemetry import counter, get_counters, get_p95, time_block


class TestHostSignals:
    def test_emit_reaches_subscribers_in_order(self):
        signals = HostSignals()
        seen = []
        signals.subscribe(lambda s: seen.append((s.seq, s.channel)))

        signals.emit("watcher:started", {"folder": "/tmp"})
        signals.emit("watcher:stopped")

        assert seen == [(1, "watcher:started"), (2, "watcher:stopped")]

    def test_failing_subscriber_does_not_block_others(self):
        signals = HostSignals()
        seen = []

        def broken(signal):
            raise RuntimeError("ui went away")

        signals.subscribe(broken)
        signals.subscribe(lambda s: seen.append(s.channel))

        signals.emit("pending:changed", {"count": 1})

        assert seen == ["pending:changed"]

    def test_unsubscribe(self):
        signals = HostSignals()
        seen = []
        unsubscribe = signals.subscribe(lambda s: seen.append(s))
        unsubscribe()

        signals.emit("fs:changed")

        assert seen == []
        assert not signals.has_subscribers

    def test_recent_is_bounded_and_filtered_by_seq(self):
        signals = HostSignals(max_history=3)
        for idx in range(5):
            signals.emit("tick", {"n": idx})

        assert [s.payload["n"] for s in signals.recent()] == [2, 3, 4]
        assert [s.seq for s in signals.recent(since_seq=4)] == [5]
        assert [s.seq for s in signals.recent(limit=1)] == [5]

    def test_to_dict(self):
        signal = HostSignals().emit("email:notify", {"title": "Receipts"})
        data = signal.to_dict()
        assert data["channel"] == "email:notify"
        assert data["payload"] == {"title": "Receipts"}


class TestTelemetry:
    def test_counter_accumulates(self):
        counter("mail.matches")
        counter("mail.matches", 2)
        assert get_counters()["mail.matches"] == 3

    def test_emit_counts_per_channel(self):
        HostSignals().emit("fs:changed")
        assert get_counters()["signals.fs:changed"] == 1

    def test_time_block_records_latency(self):
        with time_block("router.classify"):
            time.sleep(0.001)
        assert get_p95("router.classify") > 0
