"""
Folder watcher engine.

A watchdog observer reports create, modify, and move-in events for the top
level of one folder. Events cross from the observer thread into the event loop
via call_soon_threadsafe, where a per-path debounce timer waits for the file to
stop changing before it is evaluated against the folder's rules.

Every processed file produces exactly one ActivityEntry, kept in memory and
optionally appended to the folder's workbook log.
"""

from __future__ import annotations

import asyncio
from collections import deque
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from triageq.config import FOLDER_ACTIVITY_MAX, FOLDER_DEBOUNCE_SECONDS
from triageq.files.operations import is_within, move_without_overwrite
from triageq.observability.logging import get_logger
from triageq.observability.signals import HostSignals
from triageq.observability.telemetry import counter, log_event
from triageq.rules.evaluator import RuleEvaluator, RuleMatch
from triageq.sheets.workbook_log import WorkbookLogWriter
from triageq.storage.models import ActivityAction, ActivityEntry, FolderWatcherConfig, Rule
from triageq.watchers.activity_log import ActivityLog
from triageq.watchers.lifecycle import OperationResult

logger = get_logger(__name__)

IGNORED_SUFFIXES = (".tmp", ".crdownload", ".part", ".download")


class WatcherState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"


def is_ignored(path: Path, log_path: Path | None = None) -> bool:
    """Hidden files, office lock files, partial downloads, and our own log."""
    name = path.name
    if name.startswith(".") or name.startswith("~$"):
        return True
    if name.lower().endswith(IGNORED_SUFFIXES):
        return True
    return log_path is not None and name == log_path.name


class _FolderEventHandler(FileSystemEventHandler):
    """Runs on the observer thread; only hands paths to the loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop, on_path: Callable[[Path, bool], None]) -> None:
        super().__init__()
        self._loop = loop
        self._on_path = on_path

    def _hand_off(self, raw_path: str | bytes, is_new: bool) -> None:
        path = Path(raw_path.decode() if isinstance(raw_path, bytes) else raw_path)
        self._loop.call_soon_threadsafe(self._on_path, path, is_new)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._hand_off(event.src_path, True)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._hand_off(event.src_path, False)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._hand_off(event.dest_path, True)


class FolderWatcherEngine:
    def __init__(
        self,
        evaluator: RuleEvaluator,
        signals: HostSignals | None = None,
        workbook: WorkbookLogWriter | None = None,
        debounce_seconds: float = FOLDER_DEBOUNCE_SECONDS,
        observer_factory: Callable[[], Any] = Observer,
    ) -> None:
        self.evaluator = evaluator
        self.signals = signals or HostSignals()
        self.workbook = workbook or WorkbookLogWriter()
        self.debounce_seconds = debounce_seconds
        self.observer_factory = observer_factory

        self.state = WatcherState.STOPPED
        self.config: FolderWatcherConfig | None = None
        self.activity: deque[ActivityEntry] = deque(maxlen=FOLDER_ACTIVITY_MAX)
        self.files_processed = 0
        self._observer: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._timers: dict[Path, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task] = set()
        self._log: ActivityLog | None = None

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    async def start(self, config: FolderWatcherConfig) -> OperationResult:
        if self.state is not WatcherState.STOPPED:
            return OperationResult.fail("Watcher already running")
        folder = config.folder
        if not folder.is_dir():
            return OperationResult.fail(f"Folder does not exist: {folder}")

        self._loop = asyncio.get_running_loop()
        self.config = config
        self._log = (
            ActivityLog(config.resolved_log_path(), self.workbook)
            if config.enable_activity_log
            else None
        )

        handler = _FolderEventHandler(self._loop, self._on_path_event)
        observer = self.observer_factory()
        observer.schedule(handler, str(folder), recursive=False)
        observer.start()
        self._observer = observer
        self.state = WatcherState.RUNNING

        self.signals.emit("watcher:started", {"folder": str(folder)})
        log_event("folder.watcher_started", folder=folder.name, rules=len(config.rules))
        return OperationResult.ok()

    async def stop(self) -> OperationResult:
        """
        Tear down the observer and wait for files already being processed.

        Side Effects:
            - Cancels pending debounce timers (those files are not processed)
        """
        if self.state is WatcherState.STOPPED:
            return OperationResult.fail("Watcher is not running")
        self.state = WatcherState.STOPPED
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            await asyncio.to_thread(observer.join, 5)
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

        self.signals.emit("watcher:stopped", {})
        log_event("folder.watcher_stopped", processed=self.files_processed)
        return OperationResult.ok()

    def pause(self) -> OperationResult:
        if self.state is not WatcherState.RUNNING:
            return OperationResult.fail("Watcher is not running")
        self.state = WatcherState.PAUSED
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self.signals.emit("watcher:paused", {})
        return OperationResult.ok()

    def resume(self) -> OperationResult:
        if self.state is not WatcherState.PAUSED:
            return OperationResult.fail("Watcher is not paused")
        self.state = WatcherState.RUNNING
        self.signals.emit("watcher:resumed", {})
        return OperationResult.ok()

    def update_rules(self, rules: list[Rule]) -> OperationResult:
        if self.config is None:
            return OperationResult.fail("Watcher has not been started")
        self.config = self.config.model_copy(update={"rules": list(rules)})
        log_event("folder.rules_updated", rules=len(rules))
        return OperationResult.ok()

    def status(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "is_running": self.state is WatcherState.RUNNING,
            "is_paused": self.state is WatcherState.PAUSED,
            "folder": self.config.folder_path if self.config else None,
            "rules": len(self.config.rules) if self.config else 0,
            "files_processed": self.files_processed,
            "pending": len(self._timers),
            "recent_activity": [e.model_dump(mode="json") for e in list(self.activity)[:10]],
        }

    # ------------------------------------------------------------------
    # Event intake (loop thread)
    # ------------------------------------------------------------------

    def _on_path_event(self, path: Path, is_new: bool = True) -> None:
        """
        Start or extend the debounce for a path.

        Only creations and moves into the folder start one; a modify event
        just extends a debounce already running, so edits to files that were
        there before never get processed.
        """
        if self.state is not WatcherState.RUNNING or self.config is None or self._loop is None:
            return
        if not is_new and path not in self._timers:
            return
        if path.parent.resolve() != self.config.folder.resolve():
            return
        if is_ignored(path, self._log.path if self._log else None):
            return

        existing = self._timers.pop(path, None)
        if existing is not None:
            existing.cancel()
        self._timers[path] = self._loop.call_later(self.debounce_seconds, self._on_stable, path)

    def _on_stable(self, path: Path) -> None:
        self._timers.pop(path, None)
        if self.state is not WatcherState.RUNNING:
            return
        task = asyncio.create_task(self.process_file(path), name=f"file:{path.name}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process_file(self, path: Path) -> ActivityEntry | None:
        """
        Evaluate one stable file and act on the decision.

        Returns:
            The recorded ActivityEntry, or None when the file vanished first
        """
        if self.config is None:
            return None
        if not await asyncio.to_thread(path.is_file):
            return None

        config = self.config
        self.signals.emit("watcher:file-detected", {"file": path.name})
        try:
            match = await self.evaluator.evaluate(path, config.rules)
            if match.action == "move" and match.destination:
                entry = await self._move(path, match)
            else:
                entry = ActivityEntry(
                    original_name=path.name,
                    action=ActivityAction.ERROR if match.failed else ActivityAction.SKIPPED,
                    matched_rule=match.matched_rule,
                    used_ai=match.used_ai,
                    used_vision=match.used_vision,
                    confidence=match.confidence,
                    reasoning=match.reasoning,
                    error=match.error,
                )
        except (OSError, ValueError) as e:
            counter("folder.file_failed")
            logger.error("Failed to process %s: %s", path.name, e)
            entry = ActivityEntry(original_name=path.name, action=ActivityAction.ERROR, error=str(e))

        await self._record(entry)
        return entry

    async def _move(self, path: Path, match: RuleMatch) -> ActivityEntry:
        assert self.config is not None
        folder = self.config.folder.resolve()
        target_dir = (folder / match.destination).resolve()
        if not is_within(target_dir, folder):
            raise ValueError(f"Destination escapes the watched folder: {match.destination}")

        new_name = match.rename or path.name
        target = target_dir / new_name
        if target == path.resolve():
            return ActivityEntry(
                original_name=path.name,
                action=ActivityAction.SKIPPED,
                matched_rule=match.matched_rule,
                used_ai=match.used_ai,
                used_vision=match.used_vision,
                confidence=match.confidence,
                reasoning="Already in place",
            )

        final = await asyncio.to_thread(move_without_overwrite, path, target)
        renamed = match.rename is not None and match.rename != path.name
        self.signals.emit("fs:changed", {"paths": [str(path), str(final)]})
        counter("folder.files_moved")
        return ActivityEntry(
            original_name=path.name,
            action=ActivityAction.RENAMED if renamed else ActivityAction.MOVED,
            destination=str(final.parent.relative_to(folder)),
            new_name=final.name if final.name != path.name else None,
            matched_rule=match.matched_rule,
            used_ai=match.used_ai,
            used_vision=match.used_vision,
            confidence=match.confidence,
            reasoning=match.reasoning,
        )

    async def _record(self, entry: ActivityEntry) -> None:
        self.activity.appendleft(entry)
        self.files_processed += 1
        if self._log is not None:
            try:
                await asyncio.to_thread(self._log.append, entry)
            except OSError as e:
                logger.error("Failed to write activity log: %s", e)
        self.signals.emit("watcher:file-processed", entry.model_dump(mode="json"))
        log_event("folder.file_processed", file=entry.original_name, action=entry.action.value)
