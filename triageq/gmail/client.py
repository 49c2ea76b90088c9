"""
Gmail provider over googleapiclient.

Every request runs in a worker thread behind a RetryPolicy and a shared
CircuitBreaker. HttpErrors become AdapterErrors carrying the HTTP status so
the retry policy can tell rate limits and 5xx apart from caller mistakes.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable
from typing import Any, TypeVar

from googleapiclient.errors import HttpError

from triageq.errors import AuthorizationRequiredError
from triageq.gmail.auth import GoogleAuthSession
from triageq.gmail.parser import GmailParsingError, parse_message
from triageq.gmail.provider import Label, MessageRef
from triageq.infrastructure.retry import AdapterError, CircuitBreaker, RetryPolicy
from triageq.observability.logging import get_logger
from triageq.observability.telemetry import counter, log_event, time_block
from triageq.storage.models import EmailDetail

logger = get_logger(__name__)

T = TypeVar("T")


class GmailMailProvider:
    def __init__(
        self,
        auth: GoogleAuthSession,
        retry_policy: RetryPolicy | None = None,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self.auth = auth
        self.retry_policy = retry_policy or RetryPolicy(stage="gmail")
        self.breaker = breaker or CircuitBreaker(stage="gmail", fail_max=3, reset_timeout=30.0)
        self._local = threading.local()

    def _gmail(self) -> Any:
        # httplib2 connections are not thread-safe, so each worker thread builds its own
        local = self._local
        service = getattr(local, "service", None)
        if service is None:
            service = local.service = self.auth.build_service("gmail", "v1")
        return service

    def _request(self, stage: str, build_request: Callable[[Any], Any]) -> Any:
        def attempt() -> Any:
            try:
                return build_request(self._gmail().users()).execute()
            except HttpError as e:
                status = getattr(e.resp, "status", None)
                raise AdapterError(f"Gmail {stage} failed: {e}", int(status) if status else None) from e

        with time_block(f"gmail.{stage}"):
            return self.breaker.call(self.retry_policy.execute, attempt)

    async def _run(self, stage: str, build_request: Callable[[Any], Any]) -> Any:
        try:
            return await asyncio.to_thread(self._request, stage, build_request)
        except AuthorizationRequiredError:
            self._local = threading.local()
            raise

    async def is_authorized(self) -> bool:
        return await asyncio.to_thread(self.auth.is_signed_in)

    async def list_messages(self, query: str, since: int, max_results: int) -> list[MessageRef]:
        full_query = f"after:{since} {query}".strip()
        response = await self._run(
            "list",
            lambda users: users.messages().list(userId="me", q=full_query, maxResults=max_results),
        )
        refs = [
            MessageRef(id=m["id"], thread_id=m.get("threadId", ""))
            for m in response.get("messages", [])
        ]
        counter("gmail.messages.listed", len(refs))
        return refs

    async def get_message(self, message_id: str) -> EmailDetail | None:
        try:
            message = await self._run(
                "get",
                lambda users: users.messages().get(userId="me", id=message_id, format="full"),
            )
        except AdapterError as e:
            if e.status_code == 404:
                log_event("gmail.message_gone", message_id=message_id)
                return None
            raise
        try:
            return parse_message(message)
        except GmailParsingError as e:
            counter("gmail.parse_failed")
            logger.warning("Could not parse Gmail message %s: %s", message_id, e)
            return None

    async def modify_labels(self, message_id: str, add: list[str], remove: list[str]) -> None:
        body = {"addLabelIds": add, "removeLabelIds": remove}
        await self._run(
            "modify",
            lambda users: users.messages().modify(userId="me", id=message_id, body=body),
        )
        counter("gmail.messages.modified")

    async def trash(self, message_id: str) -> None:
        await self._run("trash", lambda users: users.messages().trash(userId="me", id=message_id))
        counter("gmail.messages.trashed")

    async def list_labels(self) -> list[Label]:
        response = await self._run("labels", lambda users: users.labels().list(userId="me"))
        return [Label(id=item["id"], name=item["name"]) for item in response.get("labels", [])]

    async def create_label(self, name: str) -> Label:
        body = {"name": name, "labelListVisibility": "labelShow", "messageListVisibility": "show"}
        created = await self._run(
            "create_label", lambda users: users.labels().create(userId="me", body=body)
        )
        log_event("gmail.label_created", name=name)
        return Label(id=created["id"], name=created["name"])
