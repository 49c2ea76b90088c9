"""
Tests for the mailbox watcher engine

Uses an in-memory mail provider and a scripted evaluator. Timers are replaced
with a recording scheduler so checks only run when a test asks for them.
"""

import asyncio

import pytest
from conftest import FakeMailProvider, RecordingScheduler, ScriptedEvaluator, make_email

from triageq.gmail.provider import Label
from triageq.rules.email_actions import DeleteAction, LogToWorkbookAction, NotifyAction
from triageq.rules.email_evaluator import EmailEvaluation
from triageq.sheets.workbook_log import WorkbookLogWriter
from triageq.storage.models import EmailCategory, MailWatcherConfig
from triageq.watchers.mailbox import MailboxWatcherEngine, rules_imply_log_sync


def _receipt(*actions, confidence=0.9) -> EmailEvaluation:
    return EmailEvaluation(
        category=EmailCategory.RECEIPT,
        confidence=confidence,
        matched_rule="Track receipts",
        actions=list(actions),
    )


def _config(**overrides) -> MailWatcherConfig:
    fields = {
        "id": "watcher_test",
        "name": "Receipts",
        "rules": ["Track receipts"],
        "categories": [EmailCategory.RECEIPT],
    }
    fields.update(overrides)
    return MailWatcherConfig(**fields)


def _engine(provider, evaluation=None, **kwargs):
    evaluator = ScriptedEvaluator(evaluation or _receipt())
    engine = MailboxWatcherEngine(provider, evaluator, scheduler=RecordingScheduler(), **kwargs)
    return engine, evaluator


class TestLifecycle:
    """Start, pause, stop, resume, delete"""

    def test_start_arms_timer_and_fires_first_check(self):
        engine, _ = _engine(FakeMailProvider())

        result = asyncio.run(engine.start(_config(interval_seconds=120)))

        assert result.success
        assert engine.scheduler.armed == {"watcher_test": 120}
        assert engine.scheduler.fired == ["watcher_test"]
        assert engine.status("watcher_test")["is_paused"] is False

    def test_interval_is_clamped(self):
        assert _config(interval_seconds=5).interval_seconds == 60

    def test_sixth_watcher_is_rejected(self):
        engine, _ = _engine(FakeMailProvider())

        async def scenario():
            results = [await engine.start(_config(id=f"w{i}", name=f"W{i}")) for i in range(6)]
            restart = await engine.start(_config(id="w0", name="W0 renamed"))
            return results, restart

        results, restart = asyncio.run(scenario())

        assert [r.success for r in results] == [True] * 5 + [False]
        assert results[-1].error == "Maximum of 5 email watchers reached"
        assert restart.success
        assert len(engine.registry) == 5

    def test_pause_keeps_active_flag_stop_clears_it(self):
        engine, _ = _engine(FakeMailProvider())

        async def scenario():
            await engine.start(_config())
            await engine.pause("watcher_test")
            paused = engine.status("watcher_test")
            await engine.stop("watcher_test")
            stopped = engine.status("watcher_test")
            return paused, stopped

        paused, stopped = asyncio.run(scenario())

        assert paused["is_paused"] and paused["is_active"]
        assert stopped["is_paused"] and not stopped["is_active"]
        assert not engine.scheduler.is_armed("watcher_test")

    def test_resume_reactivates(self):
        engine, _ = _engine(FakeMailProvider())

        async def scenario():
            await engine.start(_config())
            await engine.stop("watcher_test")
            return await engine.resume("watcher_test")

        assert asyncio.run(scenario()).success
        status = engine.status("watcher_test")
        assert status["is_active"] and not status["is_paused"]
        assert engine.scheduler.is_armed("watcher_test")

    def test_unknown_watcher(self):
        engine, _ = _engine(FakeMailProvider())
        for op in (engine.stop, engine.pause, engine.resume, engine.delete, engine.manual_check):
            result = asyncio.run(op("missing"))
            assert not result.success
            assert result.error == "Watcher not found"

    def test_scheduled_check_is_noop_while_paused(self):
        provider = FakeMailProvider([make_email("m1")])
        engine, evaluator = _engine(provider)

        async def scenario():
            await engine.start(_config())
            await engine.pause("watcher_test")
            return await engine.check_emails("watcher_test")

        assert asyncio.run(scenario()) is None
        assert provider.list_calls == 0
        assert evaluator.calls == []


class TestChecking:
    """Polling, dedupe, and actions"""

    def test_static_actions_are_batched_into_one_label_change(self):
        provider = FakeMailProvider([make_email("m1")])
        config = _config(actions={EmailCategory.RECEIPT: ["star", "markRead", "apply_label"]})
        engine, _ = _engine(provider)

        async def scenario():
            await engine.start(config)
            return await engine.manual_check("watcher_test")

        result = asyncio.run(scenario())

        assert result.success
        assert result.details == {"processed": 1, "matched": 1}
        assert provider.modified == [("m1", ["STARRED", "Label_1"], ["UNREAD"])]
        assert provider.created_labels == ["Receipt"]
        (match,) = engine.matches("watcher_test")
        assert match.actions_performed == ["star", "mark_read", "apply_label"]

    def test_label_is_created_once(self):
        provider = FakeMailProvider([make_email("m1"), make_email("m2")])
        config = _config(
            actions={EmailCategory.RECEIPT: ["apply_label"]},
            custom_labels={EmailCategory.RECEIPT: "Finance/Receipts"},
        )
        engine, _ = _engine(provider)

        async def scenario():
            await engine.start(config)
            await engine.manual_check("watcher_test")

        asyncio.run(scenario())

        assert provider.created_labels == ["Finance/Receipts"]
        assert [m[1] for m in provider.modified] == [["Label_1"], ["Label_1"]]

    def test_existing_label_is_matched_case_insensitively(self):
        provider = FakeMailProvider([make_email("m1")])
        provider.labels.append(Label(id="Label_99", name="receipt"))
        engine, _ = _engine(provider)

        async def scenario():
            await engine.start(_config(actions={EmailCategory.RECEIPT: ["apply_label"]}))
            await engine.manual_check("watcher_test")

        asyncio.run(scenario())

        assert provider.created_labels == []
        assert provider.modified == [("m1", ["Label_99"], [])]

    def test_processed_messages_are_not_reevaluated(self):
        provider = FakeMailProvider([make_email("m1"), make_email("m2")])
        engine, evaluator = _engine(provider)

        async def scenario():
            await engine.start(_config())
            await engine.manual_check("watcher_test")
            return await engine.manual_check("watcher_test")

        second = asyncio.run(scenario())

        assert evaluator.calls == ["m1", "m2"]
        assert second.details["processed"] == 0

    def test_processed_id_window_evicts_oldest(self):
        provider = FakeMailProvider([make_email(f"m{i}") for i in range(1, 6)])
        engine, _ = _engine(provider)

        async def scenario():
            await engine.start(_config(max_processed_ids=3))
            await engine.manual_check("watcher_test")

        asyncio.run(scenario())

        assert engine.registry.get("watcher_test").config.processed_ids == ["m3", "m4", "m5"]

    def test_uninteresting_category_is_remembered_without_actions(self):
        provider = FakeMailProvider([make_email("m1")])
        evaluation = EmailEvaluation(category=EmailCategory.OTHER, confidence=0.8)
        engine, _ = _engine(provider, evaluation)

        async def scenario():
            await engine.start(_config(actions={EmailCategory.RECEIPT: ["star"]}))
            return await engine.manual_check("watcher_test")

        result = asyncio.run(scenario())

        assert result.details["matched"] == 0
        assert provider.modified == []
        assert engine.registry.get("watcher_test").config.has_processed("m1")
        assert engine.matches("watcher_test") == []

    def test_overlapping_checks_are_refused(self):
        provider = FakeMailProvider([make_email("m1")], delay=0.05)
        engine, _ = _engine(provider)

        async def scenario():
            await engine.start(_config())
            return await asyncio.gather(
                engine.manual_check("watcher_test"),
                engine.manual_check("watcher_test"),
                engine.check_emails("watcher_test"),
            )

        first, second, scheduled = asyncio.run(scenario())

        assert first.success
        assert second.error == "A check is already running"
        assert scheduled is None
        assert provider.max_active == 1
        assert engine.status("watcher_test")["is_checking"] is False

    def test_unauthorized_provider_is_recorded_as_error(self):
        provider = FakeMailProvider([make_email("m1")])
        provider.authorized = False
        engine, _ = _engine(provider)
        errors = []
        engine.signals.subscribe(lambda s: errors.append(s.payload) if s.channel == "email:error" else None)

        async def scenario():
            await engine.start(_config())
            return await engine.manual_check("watcher_test")

        result = asyncio.run(scenario())

        assert not result.success
        assert engine.status("watcher_test")["stats"]["errors"] == 1
        assert "Gmail" in errors[0]["error"]
        assert engine.status("watcher_test")["is_checking"] is False

    def test_evaluation_error_is_logged_as_activity(self):
        provider = FakeMailProvider([make_email("m1")])
        evaluation = EmailEvaluation(category=EmailCategory.OTHER, confidence=0.0, error="quota exceeded")
        engine, _ = _engine(provider, evaluation)

        async def scenario():
            await engine.start(_config())
            await engine.manual_check("watcher_test")

        asyncio.run(scenario())

        (entry,) = engine.activity("watcher_test")
        assert entry.action == "error"
        assert entry.error == "quota exceeded"


class TestDynamicActions:
    def test_delete_suppresses_label_actions_but_keeps_notify(self):
        provider = FakeMailProvider([make_email("m1")])
        config = _config(actions={EmailCategory.RECEIPT: ["notify", "star", "archive"]})
        engine, _ = _engine(provider, _receipt(DeleteAction()))
        notes = []
        engine.signals.subscribe(lambda s: notes.append(s.payload) if s.channel == "email:notify" else None)

        async def scenario():
            await engine.start(config)
            await engine.manual_check("watcher_test")

        asyncio.run(scenario())

        assert provider.trashed == ["m1"]
        assert provider.modified == []
        assert len(notes) == 1
        (entry,) = engine.activity("watcher_test")
        assert entry.action == "delete, notify"

    def test_model_delete_forgets_match_and_syncs_linked_log(self, tmp_path):
        writer = WorkbookLogWriter()
        log = tmp_path / "receipts.xlsx"
        writer.append_row(log, {"Vendor": "Acme", "email_id": "m1"}, "Emails")
        writer.append_row(log, {"Vendor": "Other", "email_id": "m2"}, "Emails")
        provider = FakeMailProvider([make_email("m1")])
        engine, _ = _engine(provider, _receipt(DeleteAction()))
        deleted = []
        engine.signals.subscribe(
            lambda s: deleted.append(s.payload) if s.channel == "email:message-deleted" else None
        )

        async def scenario():
            await engine.start(_config(output_folder=str(tmp_path), linked_log_files=["receipts.xlsx"]))
            await engine.manual_check("watcher_test")

        asyncio.run(scenario())

        assert provider.trashed == ["m1"]
        assert engine.matches("watcher_test") == []
        assert [r["email_id"] for r in writer.read_rows(log, "Emails")] == ["m2"]
        assert deleted == [{"watcher_id": "watcher_test", "email_id": "m1"}]
        assert engine.status("watcher_test")["stats"]["matches_found"] == 1

    def test_model_label_actions_merge_with_static(self):
        provider = FakeMailProvider([make_email("m1")])
        engine, _ = _engine(provider, _receipt(NotifyAction(message="New receipt")))

        async def scenario():
            await engine.start(_config(actions={EmailCategory.RECEIPT: ["star"]}))
            await engine.manual_check("watcher_test")

        asyncio.run(scenario())

        (match,) = engine.matches("watcher_test")
        assert match.actions_performed == ["star", "notify"]

    def test_log_to_workbook_writes_row_with_email_id(self, tmp_path):
        provider = FakeMailProvider([make_email("m1")])
        action = LogToWorkbookAction(filename="receipts", data={"Vendor": "Acme", "Amount": 12.5})
        engine, _ = _engine(provider, _receipt(action))

        async def scenario():
            await engine.start(_config(output_folder=str(tmp_path)))
            await engine.manual_check("watcher_test")

        asyncio.run(scenario())

        rows = WorkbookLogWriter().read_rows(tmp_path / "receipts.xlsx", "Emails")
        assert rows == [{"Vendor": "Acme", "Amount": 12.5, "email_id": "m1"}]

    def test_log_to_workbook_without_output_folder_fails_softly(self):
        provider = FakeMailProvider([make_email("m1")])
        engine, _ = _engine(provider, _receipt(LogToWorkbookAction(data={"a": 1})))

        async def scenario():
            await engine.start(_config())
            await engine.manual_check("watcher_test")

        asyncio.run(scenario())

        (entry,) = engine.activity("watcher_test")
        assert "No output folder configured" in entry.error
        assert engine.status("watcher_test")["stats"]["errors"] == 1


class TestDeleteMessage:
    """Removing a match locally, in linked logs, and in Gmail"""

    def _matched_engine(self, provider, **config_overrides):
        engine, _ = _engine(provider)

        async def scenario():
            await engine.start(_config(**config_overrides))
            await engine.manual_check("watcher_test")

        asyncio.run(scenario())
        assert len(engine.matches("watcher_test")) == 1
        return engine

    def test_remote_failure_still_removes_locally(self):
        provider = FakeMailProvider([make_email("m1")])
        engine = self._matched_engine(provider)
        provider.fail_trash = True

        result = asyncio.run(engine.delete_message("watcher_test", "m1"))

        assert not result.success
        assert result.error.startswith("Failed to delete from Gmail")
        assert result.details["removed_locally"] is True
        assert engine.matches("watcher_test") == []

    def test_local_only_delete(self):
        provider = FakeMailProvider([make_email("m1")])
        engine = self._matched_engine(provider)

        result = asyncio.run(engine.delete_message("watcher_test", "m1", from_gmail=False))

        assert result.success
        assert provider.trashed == []

    def test_linked_log_rows_are_removed(self, tmp_path):
        writer = WorkbookLogWriter()
        log = tmp_path / "receipts.xlsx"
        writer.append_row(log, {"Vendor": "Acme", "email_id": "m1"}, "Emails")
        writer.append_row(log, {"Vendor": "Other", "email_id": "m2"}, "Emails")
        provider = FakeMailProvider([make_email("m1")])
        engine = self._matched_engine(
            provider, output_folder=str(tmp_path), linked_log_files=["receipts.xlsx"]
        )

        result = asyncio.run(engine.delete_message("watcher_test", "m1"))

        assert result.success
        assert result.details["log_rows_removed"] == 1
        assert [r["email_id"] for r in writer.read_rows(log, "Emails")] == ["m2"]
        assert provider.trashed == ["m1"]

    def test_unlinked_rules_leave_logs_alone(self, tmp_path):
        provider = FakeMailProvider([make_email("m1")])
        engine = self._matched_engine(
            provider, rules=["Log receipts to Excel; if I delete one, delete its row too"]
        )

        result = asyncio.run(engine.delete_message("watcher_test", "m1", from_gmail=False))

        assert result.details["log_rows_removed"] == 0


@pytest.mark.parametrize(
    ("rules", "expected"),
    [
        (["When I delete an email, remove the Excel row"], True),
        (["Delete newsletters"], False),
        (["Log receipts to a spreadsheet"], False),
    ],
)
def test_rules_imply_log_sync(rules, expected):
    assert rules_imply_log_sync(rules) is expected
