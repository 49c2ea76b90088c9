"""
Mailbox watcher engine.

Each watcher polls its mailbox on its own timer. A poll lists unread messages
since the last check (minus a small skew), skips ids already in the watcher's
processed-ID window, and handles the rest one at a time: evaluate against the
watcher's rules, and for interesting categories run the dynamic actions the
evaluator proposed plus the watcher's static category actions.

The per-watcher is_checking flag is the only guard against overlapping polls;
it is cleared in a finally block so a failing poll cannot wedge the watcher.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from triageq.config import (
    MAIL_CLOCK_SKEW_SECONDS,
    MAIL_FETCH_LIMIT,
    MAIL_LOOKBACK_SECONDS,
    MAIL_MAX_WATCHERS,
)
from triageq.errors import AuthorizationRequiredError
from triageq.gmail.provider import MailProvider, MessageRef
from triageq.observability.logging import get_logger
from triageq.observability.signals import HostSignals
from triageq.observability.telemetry import counter, log_event
from triageq.rules.email_actions import (
    ArchiveAction,
    DeleteAction,
    EmailAction,
    LogToSheetAction,
    LogToWorkbookAction,
    MarkReadAction,
    NotifyAction,
    StarAction,
    UnknownAction,
)
from triageq.rules.email_evaluator import EmailEvaluation, EmailEvaluator
from triageq.sheets.google_sheets import GoogleSheetsLogger
from triageq.sheets.workbook_log import WorkbookLogWriter
from triageq.storage.models import (
    EmailActivityEntry,
    EmailCategory,
    EmailDetail,
    EmailMatch,
    MailWatcherConfig,
)
from triageq.storage.watcher_state import WatcherStateRepository
from triageq.watchers.lifecycle import OperationResult, PollScheduler
from triageq.watchers.registry import WatcherInstance, WatcherRegistry

logger = get_logger(__name__)

UNREAD_QUERY = "is:unread"
_LABEL_ONLY_ACTIONS = (NotifyAction, MarkReadAction, ArchiveAction, StarAction)
_LOG_MEDIUM_KEYWORDS = ("excel", "sheet", "entry", "row", "xlsx", "csv", "spreadsheet", "log")


@dataclass(frozen=True)
class ActionOutcome:
    name: str
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class CheckSummary:
    watcher_id: str
    listed: int
    processed: int
    matched: int


def rules_imply_log_sync(rules: list[str]) -> bool:
    """True when rule text talks about deleting and about a log medium."""
    text = " ".join(rules).lower()
    return "delete" in text and any(k in text for k in _LOG_MEDIUM_KEYWORDS)


class MailboxWatcherEngine:
    def __init__(
        self,
        provider: MailProvider,
        evaluator: EmailEvaluator,
        store: WatcherStateRepository | None = None,
        *,
        workbook: WorkbookLogWriter | None = None,
        sheets: GoogleSheetsLogger | None = None,
        signals: HostSignals | None = None,
        registry: WatcherRegistry | None = None,
        scheduler: PollScheduler | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.provider = provider
        self.evaluator = evaluator
        self.store = store
        self.workbook = workbook or WorkbookLogWriter()
        self.sheets = sheets
        self.signals = signals or HostSignals()
        self.registry = registry or WatcherRegistry()
        self.scheduler = scheduler or PollScheduler()
        self.clock = clock
        self._label_ids: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, host: HostSignals | None = None) -> int:
        """
        Load every persisted watcher (paused), then auto-start the active ones
        when a host is attached to receive their signals.

        Returns:
            Number of watchers loaded
        """
        if self.store is None:
            return 0
        states = await asyncio.to_thread(self.store.load_all)
        for state in states:
            self.registry.put(WatcherInstance.from_state(state))
        log_event("mail.watchers_loaded", count=len(states))

        if host is not None:
            self.signals = host
            for instance in self.registry:
                if instance.config.is_active:
                    self._activate(instance)
        return len(states)

    async def start(self, config: MailWatcherConfig) -> OperationResult:
        if self.registry.is_full_for(config.id):
            counter("mail.start_rejected")
            return OperationResult.fail(
                f"Maximum of {MAIL_MAX_WATCHERS} email watchers reached", config.id
            )

        existing = self.registry.get(config.id)
        if existing is not None:
            if not config.processed_ids:
                config.processed_ids = list(existing.config.processed_ids)
            config.last_checked = config.last_checked or existing.config.last_checked
            existing.config = config
            instance = existing
        else:
            instance = WatcherInstance(config=config)
            self.registry.put(instance)

        self.scheduler.cancel(config.id)
        instance.is_paused = True
        await self._persist(config.id)

        if config.is_active:
            self._activate(instance)
        self.signals.emit("email:watcher-started", {"watcher_id": config.id, "name": config.name})
        log_event("mail.watcher_started", watcher_id=config.id, active=config.is_active)
        return OperationResult.ok(config.id)

    def _activate(self, instance: WatcherInstance) -> None:
        instance.is_paused = False
        self.scheduler.arm(instance.id, instance.config.interval_seconds, self.check_emails)
        self.scheduler.fire_now(instance.id, self.check_emails)

    async def stop(self, watcher_id: str) -> OperationResult:
        instance = self.registry.get(watcher_id)
        if instance is None:
            return OperationResult.fail("Watcher not found", watcher_id)
        self.scheduler.cancel(watcher_id)
        instance.is_paused = True
        instance.config.is_active = False
        await self._persist(watcher_id)
        self.signals.emit("email:watcher-stopped", {"watcher_id": watcher_id})
        return OperationResult.ok(watcher_id)

    async def pause(self, watcher_id: str) -> OperationResult:
        instance = self.registry.get(watcher_id)
        if instance is None:
            return OperationResult.fail("Watcher not found", watcher_id)
        self.scheduler.cancel(watcher_id)
        instance.is_paused = True
        await self._persist(watcher_id)
        self.signals.emit("email:watcher-paused", {"watcher_id": watcher_id})
        return OperationResult.ok(watcher_id)

    async def resume(self, watcher_id: str) -> OperationResult:
        instance = self.registry.get(watcher_id)
        if instance is None:
            return OperationResult.fail("Watcher not found", watcher_id)
        instance.config.is_active = True
        self._activate(instance)
        await self._persist(watcher_id)
        self.signals.emit("email:watcher-resumed", {"watcher_id": watcher_id})
        return OperationResult.ok(watcher_id)

    async def delete(self, watcher_id: str) -> OperationResult:
        self.scheduler.cancel(watcher_id)
        instance = self.registry.remove(watcher_id)
        if instance is None:
            return OperationResult.fail("Watcher not found", watcher_id)
        if self.store is not None:
            await asyncio.to_thread(self.store.delete, watcher_id)
        self.signals.emit("email:watcher-deleted", {"watcher_id": watcher_id})
        log_event("mail.watcher_deleted", watcher_id=watcher_id)
        return OperationResult.ok(watcher_id)

    async def shutdown(self) -> None:
        """Stop all timers, wait for running polls, and persist final state."""
        await self.scheduler.shutdown()
        for instance in self.registry:
            await self._persist(instance.id)
        self.registry.clear()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def status(self, watcher_id: str) -> dict[str, Any] | None:
        instance = self.registry.get(watcher_id)
        return instance.status() if instance else None

    def list_watchers(self) -> list[dict[str, Any]]:
        return [
            {**i.status(), "config": i.config.model_dump(mode="json", exclude={"processed_ids"})}
            for i in self.registry
        ]

    def matches(self, watcher_id: str) -> list[EmailMatch]:
        instance = self.registry.get(watcher_id)
        return list(instance.matches) if instance else []

    def activity(self, watcher_id: str) -> list[EmailActivityEntry]:
        instance = self.registry.get(watcher_id)
        return list(instance.activity) if instance else []

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def manual_check(self, watcher_id: str) -> OperationResult:
        instance = self.registry.get(watcher_id)
        if instance is None:
            return OperationResult.fail("Watcher not found", watcher_id)
        if instance.is_checking:
            return OperationResult.fail("A check is already running", watcher_id)
        summary = await self._check(watcher_id, ignore_pause=True)
        if summary is None:
            return OperationResult.fail("Check did not complete", watcher_id)
        return OperationResult.ok(watcher_id, processed=summary.processed, matched=summary.matched)

    async def check_emails(self, watcher_id: str) -> CheckSummary | None:
        """Scheduled poll. No-op when the watcher is paused, missing, or already checking."""
        return await self._check(watcher_id, ignore_pause=False)

    async def _check(self, watcher_id: str, ignore_pause: bool) -> CheckSummary | None:
        instance = self.registry.get(watcher_id)
        if instance is None or instance.is_checking:
            return None
        if instance.is_paused and not ignore_pause:
            return None

        instance.is_checking = True
        try:
            self.signals.emit("email:check-started", {"watcher_id": watcher_id})
            if not await self.provider.is_authorized():
                raise AuthorizationRequiredError("Gmail")

            refs = await self.provider.list_messages(
                UNREAD_QUERY, self._since(instance.config), MAIL_FETCH_LIMIT
            )
            fresh = [r for r in refs if not instance.config.has_processed(r.id)]
            matched = 0
            for ref in fresh:
                try:
                    if await self._process_message(instance, ref):
                        matched += 1
                except AuthorizationRequiredError:
                    raise
                except Exception as e:
                    instance.stats.errors += 1
                    counter("mail.message_failed")
                    logger.error("Watcher %s failed on message %s: %s", watcher_id, ref.id, e)
                    instance.add_activity(
                        EmailActivityEntry(email_id=ref.id, action="error", error=str(e))
                    )

            now = datetime.fromtimestamp(self.clock(), UTC)
            instance.stats.last_check_time = now
            instance.config.last_checked = now
            await self._persist(watcher_id)

            summary = CheckSummary(watcher_id, listed=len(refs), processed=len(fresh), matched=matched)
            self.signals.emit("email:stats-updated", {"watcher_id": watcher_id, **instance.status()["stats"]})
            self.signals.emit(
                "email:check-completed",
                {"watcher_id": watcher_id, "processed": summary.processed, "matched": matched},
            )
            log_event("mail.check_completed", watcher_id=watcher_id, processed=summary.processed, matched=matched)
            return summary
        except Exception as e:
            instance.stats.errors += 1
            counter("mail.check_failed")
            logger.error("Email check failed for watcher %s: %s", watcher_id, e)
            self.signals.emit("email:error", {"watcher_id": watcher_id, "error": str(e)})
            return None
        finally:
            instance.is_checking = False

    def _since(self, config: MailWatcherConfig) -> int:
        if config.last_checked is not None:
            return int(config.last_checked.timestamp()) - MAIL_CLOCK_SKEW_SECONDS
        return int(self.clock()) - MAIL_LOOKBACK_SECONDS

    async def _process_message(self, instance: WatcherInstance, ref: MessageRef) -> bool:
        config = instance.config
        detail = await self.provider.get_message(ref.id)
        if detail is None:
            config.remember(ref.id)
            return False

        evaluation = await self.evaluator.evaluate(detail, config.rules)
        instance.stats.emails_checked += 1

        if evaluation.error is not None:
            instance.stats.errors += 1
            instance.add_activity(self._activity(detail, evaluation, "error", evaluation.error))
        elif evaluation.category in config.categories:
            await self._handle_match(instance, detail, evaluation)
            config.remember(ref.id)
            return True

        config.remember(ref.id)
        return False

    async def _handle_match(
        self, instance: WatcherInstance, detail: EmailDetail, evaluation: EmailEvaluation
    ) -> None:
        config = instance.config
        outcomes = [
            await self._run_dynamic_action(instance, detail, action)
            for action in evaluation.actions
            if not isinstance(action, _LABEL_ONLY_ACTIONS)
        ]
        trashed = any(o.name == "delete" and o.success for o in outcomes)

        static: list[str] = list(config.actions.get(evaluation.category, []))
        for action in evaluation.actions:
            if isinstance(action, _LABEL_ONLY_ACTIONS) and action.type not in static:
                static.append(action.type)
        if trashed:
            static = [name for name in static if name == "notify"]
        outcomes.extend(await self._apply_static_actions(instance, detail, evaluation.category, static))

        performed = [o.name for o in outcomes if o.success]
        failures = [f"{o.name}: {o.error}" for o in outcomes if not o.success]
        if failures:
            instance.stats.errors += 1

        instance.add_match(
            EmailMatch(
                id=detail.id,
                subject=detail.subject,
                sender=detail.sender,
                date=detail.date,
                snippet=detail.snippet[:200],
                category=evaluation.category,
                confidence=evaluation.confidence,
                actions_performed=performed,
                matched_rule=evaluation.matched_rule,
            )
        )
        entry = self._activity(
            detail, evaluation, ", ".join(performed) or "matched", "; ".join(failures) or None
        )
        instance.add_activity(entry)
        instance.stats.matches_found += 1
        counter("mail.matches")

        self.signals.emit(
            "email:match-found",
            {"watcher_id": config.id, "email_id": detail.id, "category": evaluation.category.value},
        )
        self.signals.emit("email:activity", {"watcher_id": config.id, **entry.model_dump(mode="json")})
        if trashed:
            # already trashed remotely; drop it locally the way a user delete does
            await self.delete_message(config.id, detail.id, from_gmail=False)

    @staticmethod
    def _activity(
        detail: EmailDetail, evaluation: EmailEvaluation, action: str, error: str | None
    ) -> EmailActivityEntry:
        return EmailActivityEntry(
            email_id=detail.id,
            subject=detail.subject,
            sender=detail.sender,
            category=evaluation.category,
            action=action,
            confidence=evaluation.confidence,
            matched_rule=evaluation.matched_rule,
            error=error,
        )

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def _run_dynamic_action(
        self, instance: WatcherInstance, detail: EmailDetail, action: EmailAction
    ) -> ActionOutcome:
        config = instance.config
        try:
            if isinstance(action, LogToWorkbookAction):
                if not config.output_folder:
                    return ActionOutcome("log_to_workbook", False, "No output folder configured")
                path = Path(config.output_folder).expanduser() / Path(action.filename).name
                row = {**action.data, "email_id": detail.id}
                await asyncio.to_thread(self.workbook.append_row, path, row, "Emails")
                outcome = ActionOutcome("log_to_workbook", True)
            elif isinstance(action, LogToSheetAction):
                if self.sheets is None:
                    return ActionOutcome("log_to_sheet", False, "Google Sheets is not configured")
                row = {**action.data, "email_id": detail.id}
                await self.sheets.append_row(action.sheet_name, action.tab_name, row)
                outcome = ActionOutcome("log_to_sheet", True)
            elif isinstance(action, DeleteAction):
                await self.provider.trash(detail.id)
                outcome = ActionOutcome("delete", True)
            elif isinstance(action, UnknownAction):
                counter("mail.unknown_action")
                return ActionOutcome(f"unknown:{action.name}", False, f"Unknown action: {action.name}")
            else:
                return ActionOutcome(action.type, False, f"Unsupported dynamic action: {action.type}")
        except AuthorizationRequiredError:
            raise
        except Exception as e:
            logger.warning("Action %s failed for %s: %s", action.type, detail.id, e)
            return ActionOutcome(action.type, False, str(e))

        instance.stats.actions_performed += 1
        return outcome

    async def _apply_static_actions(
        self,
        instance: WatcherInstance,
        detail: EmailDetail,
        category: EmailCategory,
        names: list[str],
    ) -> list[ActionOutcome]:
        if not names:
            return []
        add: list[str] = []
        remove: list[str] = []
        done: list[str] = []
        for name in names:
            if name == "notify":
                self.signals.emit(
                    "email:notify",
                    {
                        "watcher_id": instance.id,
                        "title": f"{instance.config.name}: {category.value}",
                        "body": detail.subject,
                    },
                )
            elif name == "star":
                add.append("STARRED")
            elif name == "archive":
                remove.append("INBOX")
            elif name == "mark_read":
                remove.append("UNREAD")
            elif name == "apply_label":
                add.append(await self._ensure_label(instance.config.label_for(category)))
            else:
                continue
            done.append(name)

        if add or remove:
            try:
                await self.provider.modify_labels(detail.id, add, remove)
            except AuthorizationRequiredError:
                raise
            except Exception as e:
                failed = [n for n in done if n != "notify"]
                return [ActionOutcome(n, True) for n in done if n == "notify"] + [
                    ActionOutcome(n, False, str(e)) for n in failed
                ]

        instance.stats.actions_performed += 1
        return [ActionOutcome(n, True) for n in done]

    async def _ensure_label(self, name: str) -> str:
        """Label id for name, creating the label when no case-insensitive match exists."""
        key = name.lower()
        if key in self._label_ids:
            return self._label_ids[key]
        for label in await self.provider.list_labels():
            self._label_ids.setdefault(label.name.lower(), label.id)
        if key not in self._label_ids:
            created = await self.provider.create_label(name)
            self._label_ids[key] = created.id
        return self._label_ids[key]

    # ------------------------------------------------------------------
    # Deleting matched messages
    # ------------------------------------------------------------------

    async def delete_message(
        self, watcher_id: str, message_id: str, from_gmail: bool = True
    ) -> OperationResult:
        """
        Forget a matched message locally, mirror the removal into linked logs,
        and optionally trash it remotely. A remote failure does not undo the
        local removal.
        """
        instance = self.registry.get(watcher_id)
        if instance is None:
            return OperationResult.fail("Watcher not found", watcher_id)

        instance.remove_match(message_id)
        await self._persist(watcher_id)
        rows_removed = await self._sync_log_deletion(instance, message_id)

        if from_gmail:
            try:
                if not await self.provider.is_authorized():
                    raise AuthorizationRequiredError("Gmail")
                await self.provider.trash(message_id)
            except Exception as e:
                counter("mail.remote_delete_failed")
                logger.warning("Failed to delete %s from Gmail: %s", message_id, e)
                return OperationResult.fail(
                    f"Failed to delete from Gmail: {e}",
                    watcher_id,
                    removed_locally=True,
                    log_rows_removed=rows_removed,
                )

        self.signals.emit("email:message-deleted", {"watcher_id": watcher_id, "email_id": message_id})
        return OperationResult.ok(watcher_id, removed_locally=True, log_rows_removed=rows_removed)

    async def _sync_log_deletion(self, instance: WatcherInstance, message_id: str) -> int:
        config = instance.config
        if not config.linked_log_files:
            if rules_imply_log_sync(config.rules):
                log_event("mail.log_sync_unlinked", watcher_id=config.id)
                logger.warning(
                    "Watcher %s rules mention deleting log rows but no linked_log_files are "
                    "configured; log files were left unchanged",
                    config.id,
                )
            return 0

        removed = 0
        base = Path(config.output_folder).expanduser() if config.output_folder else None
        for name in config.linked_log_files:
            path = Path(name).expanduser()
            if not path.is_absolute():
                if base is None:
                    logger.warning("Linked log %s is relative but no output folder is set", name)
                    continue
                path = base / path
            try:
                removed += await asyncio.to_thread(self.workbook.delete_rows_by_id, path, message_id)
            except Exception as e:
                logger.error("Failed to remove %s from %s: %s", message_id, path.name, e)
        return removed

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _persist(self, watcher_id: str) -> None:
        if self.store is None:
            return
        instance = self.registry.get(watcher_id)
        if instance is None:
            return
        async with self.registry.save_lock(watcher_id):
            await asyncio.to_thread(self.store.save, instance.snapshot())
