"""
Pytest configuration for triageq tests

Provides fakes for the model client and the mail provider, plus telemetry
isolation shared across all test files
"""

from __future__ import annotations

import asyncio
from collections import deque

import pytest

from triageq.errors import ClassificationError
from triageq.gmail.provider import Label, MessageRef
from triageq.llm.client import LLMResponse
from triageq.observability.telemetry import reset_telemetry
from triageq.storage.models import EmailDetail


@pytest.fixture(autouse=True)
def _isolated_telemetry():
    """Counters are process-global; start and end every test from zero"""
    reset_telemetry()
    yield
    reset_telemetry()


class FakeClient:
    """Model client that replays canned responses in order"""

    def __init__(self, *texts: str, error: Exception | None = None):
        self.texts = deque(texts)
        self.error = error
        self.calls: list[dict] = []

    async def generate(self, prompt, **kwargs):
        self.calls.append({"prompt": prompt, **kwargs})
        if self.error is not None:
            raise self.error
        if not self.texts:
            raise ClassificationError("No canned response left")
        return LLMResponse(text=self.texts.popleft(), input_tokens=120, output_tokens=40, model="fake")


class FakeMailProvider:
    """In-memory mailbox; tracks concurrency so overlap tests can assert on it"""

    def __init__(self, messages: list[EmailDetail] | None = None, delay: float = 0.0):
        self.messages = {m.id: m for m in messages or []}
        self.delay = delay
        self.authorized = True
        self.fail_trash = False
        self.labels: list[Label] = []
        self.modified: list[tuple[str, list[str], list[str]]] = []
        self.trashed: list[str] = []
        self.list_calls = 0
        self.created_labels: list[str] = []
        self.active = 0
        self.max_active = 0

    async def is_authorized(self) -> bool:
        return self.authorized

    async def list_messages(self, query, since, max_results):
        self.list_calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            return [MessageRef(id=m) for m in list(self.messages)[:max_results]]
        finally:
            self.active -= 1

    async def get_message(self, message_id):
        return self.messages.get(message_id)

    async def modify_labels(self, message_id, add, remove):
        self.modified.append((message_id, list(add), list(remove)))

    async def trash(self, message_id):
        if self.fail_trash:
            raise RuntimeError("Gmail API unavailable")
        self.trashed.append(message_id)

    async def list_labels(self):
        return list(self.labels)

    async def create_label(self, name):
        label = Label(id=f"Label_{len(self.labels) + 1}", name=name)
        self.labels.append(label)
        self.created_labels.append(name)
        return label


class RecordingScheduler:
    """Stands in for PollScheduler; records timers instead of running them"""

    def __init__(self):
        self.armed = {}
        self.fired = []

    def arm(self, watcher_id, interval_seconds, tick):
        self.armed[watcher_id] = interval_seconds

    def fire_now(self, watcher_id, tick):
        self.fired.append(watcher_id)

    def cancel(self, watcher_id):
        return self.armed.pop(watcher_id, None) is not None

    def is_armed(self, watcher_id):
        return watcher_id in self.armed

    async def shutdown(self):
        self.armed.clear()


class ScriptedEvaluator:
    """Email evaluator that returns the same evaluation for every message"""

    def __init__(self, evaluation):
        self.evaluation = evaluation
        self.calls = []

    async def evaluate(self, email, rules):
        self.calls.append(email.id)
        return self.evaluation


def make_email(message_id: str, subject: str = "Your receipt", sender: str = "shop@example.com") -> EmailDetail:
    return EmailDetail(id=message_id, subject=subject, sender=sender, snippet="Thanks for your order")


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def mail_provider():
    return FakeMailProvider()
