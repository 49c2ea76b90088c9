"""
Process-wide wiring.

AutomationRuntime builds every long-lived component once (signals, trash,
pending queue, classification client, both watcher engines, and the agent)
so the API and tests share a single object graph instead of module globals.
"""

from __future__ import annotations

from pathlib import Path

from triageq.actions.pending import PendingActionsQueue
from triageq.config import DATA_DIR
from triageq.files.trash import TrashBin
from triageq.gmail.auth import GoogleAuthSession
from triageq.gmail.client import GmailMailProvider
from triageq.gmail.provider import MailProvider
from triageq.llm.chat import ChatSessionFactory, gemini_chat_factory
from triageq.llm.client import ClassificationClient
from triageq.observability.logging import get_logger
from triageq.observability.signals import HostSignals
from triageq.observability.telemetry import log_event
from triageq.router.classifier import TaskRouter
from triageq.router.executor import TierExecutor
from triageq.router.metrics import SessionMetrics
from triageq.router.orchestrator import Orchestrator
from triageq.rules.email_evaluator import EmailEvaluator
from triageq.rules.evaluator import RuleEvaluator
from triageq.sheets.google_sheets import GoogleSheetsLogger
from triageq.sheets.workbook_log import WorkbookLogWriter
from triageq.storage.watcher_state import WatcherStateRepository, load_or_create_key
from triageq.watchers.filesystem import FolderWatcherEngine, WatcherState
from triageq.watchers.mailbox import MailboxWatcherEngine

logger = get_logger(__name__)


class AutomationRuntime:
    def __init__(
        self,
        data_dir: Path | None = None,
        *,
        client=None,
        mail_provider: MailProvider | None = None,
        state_store: WatcherStateRepository | None = None,
        chat_factory: ChatSessionFactory = gemini_chat_factory,
    ) -> None:
        self.data_dir = Path(data_dir or DATA_DIR).expanduser()
        self.signals = HostSignals()
        self.trash = TrashBin(self.data_dir / "trash")
        self.pending = PendingActionsQueue(self.trash, self.signals)
        self.client = client or ClassificationClient()
        self.workbook = WorkbookLogWriter()
        self.google_auth = GoogleAuthSession()
        self.metrics = SessionMetrics()

        self.folder_watcher = FolderWatcherEngine(
            RuleEvaluator(self.client), self.signals, workbook=self.workbook
        )
        self.mail_watchers = MailboxWatcherEngine(
            mail_provider or GmailMailProvider(self.google_auth),
            EmailEvaluator(self.client),
            state_store
            or WatcherStateRepository(
                self.data_dir / "triageq.db", encryption_key=load_or_create_key(self.data_dir)
            ),
            workbook=self.workbook,
            sheets=GoogleSheetsLogger(self.google_auth),
            signals=self.signals,
        )
        self.orchestrator = Orchestrator(
            TaskRouter(self.client),
            TierExecutor(chat_factory, self.signals),
            self.pending,
            client=self.client,
            metrics=self.metrics,
            signals=self.signals,
        )

    async def start(self, host: HostSignals | None = None) -> int:
        """
        Load persisted mailbox watchers. Active ones resume only when a host
        is attached to receive their signals.

        Returns:
            Number of mailbox watchers loaded
        """
        loaded = await self.mail_watchers.initialize(host)
        log_event("runtime.started", mail_watchers=loaded, host=host is not None)
        return loaded

    async def shutdown(self) -> None:
        if self.folder_watcher.state is not WatcherState.STOPPED:
            await self.folder_watcher.stop()
        await self.mail_watchers.shutdown()
        log_event("runtime.stopped")
