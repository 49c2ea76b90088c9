"""
Tests for the folder watcher engine

The watchdog observer is replaced by a recording fake; events are fed to the
engine's loop-side intake directly.
"""

import asyncio
import json

import pytest
from conftest import FakeClient
from watchdog.events import FileCreatedEvent, FileModifiedEvent, FileMovedEvent

from triageq.config import ACTIVITY_LOG_FILENAME
from triageq.rules.evaluator import RuleEvaluator, RuleMatch
from triageq.storage.models import ActivityAction, FolderWatcherConfig, Rule
from triageq.watchers.activity_log import activity_log_stats, read_activity_log
from triageq.watchers.filesystem import FolderWatcherEngine, WatcherState, is_ignored


class FakeObserver:
    def __init__(self):
        self.scheduled = []
        self.started = False
        self.stopped = False

    def schedule(self, handler, path, recursive=False):
        self.scheduled.append((handler, path, recursive))

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def join(self, timeout=None):
        return None


class CountingEvaluator:
    def __init__(self, match: RuleMatch):
        self.match = match
        self.calls = []

    async def evaluate(self, path, rules):
        self.calls.append(path.name)
        return self.match


def _move_to_documents() -> str:
    return json.dumps({"matched_rule": 1, "action": "move", "destination": "Documents", "confidence": 0.9})


@pytest.fixture
def config(tmp_path):
    return FolderWatcherConfig(folder_path=str(tmp_path), rules=[Rule(text="Move PDFs to Documents")])


def _run(engine, config, *steps):
    """Start the engine, await each step, stop, and return the step results."""

    async def scenario():
        await engine.start(config)
        results = [await step() for step in steps]
        await engine.stop()
        return results

    return asyncio.run(scenario())


class TestProcessFile:
    """One file in, one activity entry out"""

    def test_matching_file_is_moved(self, tmp_path, config):
        invoice = tmp_path / "invoice.pdf"
        invoice.write_bytes(b"%PDF")
        engine = FolderWatcherEngine(RuleEvaluator(FakeClient(_move_to_documents())), observer_factory=FakeObserver)

        (entry,) = _run(engine, config, lambda: engine.process_file(invoice))

        assert entry.action is ActivityAction.MOVED
        assert entry.destination == "Documents"
        assert entry.new_name is None
        assert entry.matched_rule == 1
        assert (tmp_path / "Documents" / "invoice.pdf").exists()
        assert not invoice.exists()
        assert engine.files_processed == 1
        assert list(engine.activity) == [entry]

    def test_collision_gets_suffix_not_overwrite(self, tmp_path, config):
        (tmp_path / "Documents").mkdir()
        (tmp_path / "Documents" / "invoice.pdf").write_bytes(b"existing")
        invoice = tmp_path / "invoice.pdf"
        invoice.write_bytes(b"new")
        engine = FolderWatcherEngine(RuleEvaluator(FakeClient(_move_to_documents())), observer_factory=FakeObserver)

        (entry,) = _run(engine, config, lambda: engine.process_file(invoice))

        assert entry.action is ActivityAction.MOVED
        assert entry.new_name == "invoice (1).pdf"
        assert (tmp_path / "Documents" / "invoice.pdf").read_bytes() == b"existing"
        assert (tmp_path / "Documents" / "invoice (1).pdf").read_bytes() == b"new"

    def test_rename_is_recorded_as_renamed(self, tmp_path, config):
        scan = tmp_path / "scan001.pdf"
        scan.write_bytes(b"%PDF")
        match = RuleMatch(action="move", matched_rule=1, destination="Taxes", rename="2024-w2.pdf", used_ai=True)
        engine = FolderWatcherEngine(CountingEvaluator(match), observer_factory=FakeObserver)

        (entry,) = _run(engine, config, lambda: engine.process_file(scan))

        assert entry.action is ActivityAction.RENAMED
        assert entry.new_name == "2024-w2.pdf"
        assert (tmp_path / "Taxes" / "2024-w2.pdf").exists()

    def test_vanished_file_produces_no_entry(self, tmp_path, config):
        engine = FolderWatcherEngine(CountingEvaluator(RuleMatch(action="skip")), observer_factory=FakeObserver)

        (entry,) = _run(engine, config, lambda: engine.process_file(tmp_path / "gone.pdf"))

        assert entry is None
        assert engine.files_processed == 0

    def test_skip_is_recorded(self, tmp_path, config):
        notes = tmp_path / "notes.txt"
        notes.write_text("hi")
        engine = FolderWatcherEngine(
            CountingEvaluator(RuleMatch(action="skip", used_ai=True, reasoning="No rule applies")),
            observer_factory=FakeObserver,
        )

        (entry,) = _run(engine, config, lambda: engine.process_file(notes))

        assert entry.action is ActivityAction.SKIPPED
        assert notes.exists()

    def test_destination_outside_folder_is_error(self, tmp_path, config):
        doc = tmp_path / "doc.pdf"
        doc.write_bytes(b"%PDF")
        match = RuleMatch(action="move", destination="../elsewhere", used_ai=True)
        engine = FolderWatcherEngine(CountingEvaluator(match), observer_factory=FakeObserver)

        (entry,) = _run(engine, config, lambda: engine.process_file(doc))

        assert entry.action is ActivityAction.ERROR
        assert "escapes" in entry.error
        assert doc.exists()

    def test_activity_log_is_written(self, tmp_path, config):
        invoice = tmp_path / "invoice.pdf"
        invoice.write_bytes(b"%PDF")
        engine = FolderWatcherEngine(RuleEvaluator(FakeClient(_move_to_documents())), observer_factory=FakeObserver)

        _run(engine, config, lambda: engine.process_file(invoice))

        log_path = tmp_path / ACTIVITY_LOG_FILENAME
        rows = read_activity_log(log_path)
        assert len(rows) == 1
        assert rows[0]["Original Name"] == "invoice.pdf"
        assert rows[0]["Action"] == "moved"
        assert rows[0]["Used AI"] == "Yes"
        assert activity_log_stats(log_path)["by_action"] == {"moved": 1}


class TestLifecycle:
    def test_start_twice_fails(self, config):
        engine = FolderWatcherEngine(CountingEvaluator(RuleMatch(action="skip")), observer_factory=FakeObserver)

        async def scenario():
            first = await engine.start(config)
            second = await engine.start(config)
            await engine.stop()
            return first, second

        first, second = asyncio.run(scenario())

        assert first.success
        assert not second.success
        assert second.error == "Watcher already running"

    def test_start_missing_folder(self, tmp_path):
        engine = FolderWatcherEngine(CountingEvaluator(RuleMatch(action="skip")), observer_factory=FakeObserver)
        result = asyncio.run(engine.start(FolderWatcherConfig(folder_path=str(tmp_path / "nope"))))
        assert not result.success
        assert result.error.startswith("Folder does not exist")

    def test_observer_watches_top_level_only(self, tmp_path, config):
        engine = FolderWatcherEngine(CountingEvaluator(RuleMatch(action="skip")), observer_factory=FakeObserver)

        async def scenario():
            await engine.start(config)
            observer = engine._observer
            await engine.stop()
            return observer

        observer = asyncio.run(scenario())

        assert observer.started and observer.stopped
        (_, path, recursive) = observer.scheduled[0]
        assert path == str(tmp_path)
        assert recursive is False
        assert engine.state is WatcherState.STOPPED

    def test_pause_and_resume(self, config):
        engine = FolderWatcherEngine(CountingEvaluator(RuleMatch(action="skip")), observer_factory=FakeObserver)

        async def scenario():
            await engine.start(config)
            paused = engine.pause()
            state = engine.state
            resumed = engine.resume()
            await engine.stop()
            return paused, state, resumed

        paused, state, resumed = asyncio.run(scenario())

        assert paused.success and resumed.success
        assert state is WatcherState.PAUSED

    def test_update_rules(self, config):
        engine = FolderWatcherEngine(CountingEvaluator(RuleMatch(action="skip")), observer_factory=FakeObserver)

        async def scenario():
            await engine.start(config)
            engine.update_rules([Rule(text="a"), Rule(text="b")])
            status = engine.status()
            await engine.stop()
            return status

        assert asyncio.run(scenario())["rules"] == 2


class TestEventIntake:
    """Debounce and filtering on the loop side"""

    def test_rapid_events_are_debounced_to_one_evaluation(self, tmp_path, config):
        download = tmp_path / "report.pdf"
        download.write_bytes(b"%PDF")
        evaluator = CountingEvaluator(RuleMatch(action="skip"))
        engine = FolderWatcherEngine(evaluator, debounce_seconds=0.05, observer_factory=FakeObserver)

        async def scenario():
            await engine.start(config)
            for _ in range(3):
                engine._on_path_event(download)
                await asyncio.sleep(0.01)
            await asyncio.sleep(0.2)
            await engine.stop()

        asyncio.run(scenario())

        assert evaluator.calls == ["report.pdf"]

    def test_paused_watcher_ignores_events(self, tmp_path, config):
        download = tmp_path / "report.pdf"
        download.write_bytes(b"%PDF")
        evaluator = CountingEvaluator(RuleMatch(action="skip"))
        engine = FolderWatcherEngine(evaluator, debounce_seconds=0.01, observer_factory=FakeObserver)

        async def scenario():
            await engine.start(config)
            engine.pause()
            engine._on_path_event(download)
            await asyncio.sleep(0.05)
            await engine.stop()

        asyncio.run(scenario())

        assert evaluator.calls == []

    def test_subfolder_events_are_ignored(self, tmp_path, config):
        nested = tmp_path / "Documents"
        nested.mkdir()
        inner = nested / "already-sorted.pdf"
        inner.write_bytes(b"%PDF")
        evaluator = CountingEvaluator(RuleMatch(action="skip"))
        engine = FolderWatcherEngine(evaluator, debounce_seconds=0.01, observer_factory=FakeObserver)

        async def scenario():
            await engine.start(config)
            engine._on_path_event(inner)
            await asyncio.sleep(0.05)
            await engine.stop()

        asyncio.run(scenario())

        assert evaluator.calls == []

    @pytest.mark.parametrize(
        "name",
        [".DS_Store", "~$budget.xlsx", "movie.mp4.crdownload", "draft.tmp", ACTIVITY_LOG_FILENAME],
    )
    def test_ignored_names(self, tmp_path, name):
        assert is_ignored(tmp_path / name, tmp_path / ACTIVITY_LOG_FILENAME)

    def test_regular_file_not_ignored(self, tmp_path):
        assert not is_ignored(tmp_path / "invoice.pdf", tmp_path / ACTIVITY_LOG_FILENAME)


class TestObserverEvents:
    """Events arriving through the watchdog handler"""

    def _handler(self, engine):
        (handler, _, _) = engine._observer.scheduled[0]
        return handler

    def test_edit_to_existing_file_is_not_processed(self, tmp_path, config):
        existing = tmp_path / "report.pdf"
        existing.write_bytes(b"%PDF")
        evaluator = CountingEvaluator(RuleMatch(action="move", destination="Documents"))
        engine = FolderWatcherEngine(evaluator, debounce_seconds=0.01, observer_factory=FakeObserver)

        async def scenario():
            await engine.start(config)
            existing.write_bytes(b"%PDF edited")
            self._handler(engine).on_modified(FileModifiedEvent(str(existing)))
            await asyncio.sleep(0.05)
            await engine.stop()

        asyncio.run(scenario())

        assert evaluator.calls == []
        assert list(engine.activity) == []
        assert existing.exists()

    def test_writes_after_create_extend_the_debounce(self, tmp_path, config):
        download = tmp_path / "invoice.pdf"
        download.write_bytes(b"%PDF")
        evaluator = CountingEvaluator(RuleMatch(action="skip"))
        engine = FolderWatcherEngine(evaluator, debounce_seconds=0.05, observer_factory=FakeObserver)

        async def scenario():
            await engine.start(config)
            handler = self._handler(engine)
            handler.on_created(FileCreatedEvent(str(download)))
            await asyncio.sleep(0.02)
            handler.on_modified(FileModifiedEvent(str(download)))
            await asyncio.sleep(0.02)
            early = list(evaluator.calls)
            await asyncio.sleep(0.15)
            await engine.stop()
            return early

        early = asyncio.run(scenario())

        assert early == []
        assert evaluator.calls == ["invoice.pdf"]

    def test_move_into_folder_counts_as_new(self, tmp_path, config):
        arrived = tmp_path / "statement.pdf"
        arrived.write_bytes(b"%PDF")
        evaluator = CountingEvaluator(RuleMatch(action="skip"))
        engine = FolderWatcherEngine(evaluator, debounce_seconds=0.01, observer_factory=FakeObserver)

        async def scenario():
            await engine.start(config)
            self._handler(engine).on_moved(FileMovedEvent("/elsewhere/statement.pdf", str(arrived)))
            await asyncio.sleep(0.1)
            await engine.stop()

        asyncio.run(scenario())

        assert evaluator.calls == ["statement.pdf"]
