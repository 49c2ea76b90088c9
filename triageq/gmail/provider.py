"""Mail provider contract used by the mailbox watcher."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from triageq.storage.models import EmailDetail


@dataclass(frozen=True)
class MessageRef:
    id: str
    thread_id: str = ""


@dataclass(frozen=True)
class Label:
    id: str
    name: str


class MailProvider(Protocol):
    async def is_authorized(self) -> bool: ...

    async def list_messages(self, query: str, since: int, max_results: int) -> list[MessageRef]: ...

    async def get_message(self, message_id: str) -> EmailDetail | None: ...

    async def modify_labels(self, message_id: str, add: list[str], remove: list[str]) -> None: ...

    async def trash(self, message_id: str) -> None: ...

    async def list_labels(self) -> list[Label]: ...

    async def create_label(self, name: str) -> Label: ...
