"""
Pending-actions queue.

Destructive operations requested by rules or agent tools are staged here and
only run after explicit approval. Deletions go to the recoverable trash, never
straight to unlink. An entry leaves the queue when its action succeeds or when
the user keeps the file; a failed execution leaves it queued.
"""

from __future__ import annotations

import asyncio
import itertools
import shutil
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from triageq.errors import PendingActionError
from triageq.files.operations import format_size
from triageq.files.trash import TrashBin
from triageq.observability.logging import get_logger
from triageq.observability.signals import HostSignals
from triageq.observability.telemetry import counter, log_event

logger = get_logger(__name__)


class PendingKind(str, Enum):
    DELETE = "delete"
    MOVE = "move"
    RENAME = "rename"
    OVERWRITE = "overwrite"


@dataclass(frozen=True)
class PendingAction:
    id: str
    kind: PendingKind
    source_path: str
    file_name: str
    file_size: int
    reason: str
    created_at: float
    destination_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["size_display"] = format_size(self.file_size)
        return data


@dataclass(frozen=True)
class ActionResult:
    action_id: str
    success: bool
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


def _same_path(a: Path, b: Path) -> bool:
    return a.resolve() == b.resolve()


class PendingActionsQueue:
    def __init__(self, trash: TrashBin, signals: HostSignals | None = None) -> None:
        self.trash = trash
        self.signals = signals or HostSignals()
        self._actions: dict[str, PendingAction] = {}
        self._executing: set[str] = set()
        self._seq = itertools.count(1)

    def _next_id(self) -> str:
        return f"action_{int(time.time() * 1000)}_{next(self._seq)}"

    def _changed(self) -> None:
        self.signals.emit("pending:changed", {"count": len(self._actions)})

    # ------------------------------------------------------------------
    # Staging
    # ------------------------------------------------------------------

    async def queue_action(
        self,
        kind: PendingKind,
        source: Path,
        destination: Path | None = None,
        reason: str | None = None,
    ) -> PendingAction:
        """
        Stage an action against source, snapshotting its size.

        Raises:
            PendingActionError: If source cannot be stat'ed, or a non-delete
                action has no destination or targets the source itself
        """
        if kind is not PendingKind.DELETE and destination is None:
            raise PendingActionError(f"{kind.value} requires a destination path")
        if destination is not None and _same_path(source, destination):
            raise PendingActionError(f"{source.name} is already at {destination}")
        try:
            stat = await asyncio.to_thread(source.stat)
        except OSError as e:
            raise PendingActionError(f"Cannot queue {source}: {e}") from e

        action = PendingAction(
            id=self._next_id(),
            kind=kind,
            source_path=str(source),
            file_name=source.name,
            file_size=stat.st_size,
            reason=reason or f"Requested {kind.value}",
            created_at=time.time(),
            destination_path=str(destination) if destination is not None else None,
        )
        self._actions[action.id] = action
        counter("pending.queued")
        log_event("pending.queued", action_id=action.id, kind=kind.value, file=action.file_name)
        self.signals.emit("pending:new-action", action.to_dict())
        self._changed()
        return action

    async def queue_deletion(self, path: Path, reason: str | None = None) -> PendingAction:
        return await self.queue_action(PendingKind.DELETE, path, reason=reason or "Requested deletion")

    async def queue_multiple(self, paths: list[Path], reason: str | None = None) -> list[PendingAction]:
        """Queue each path for deletion; individual failures are logged and skipped."""
        queued: list[PendingAction] = []
        for path in paths:
            try:
                queued.append(await self.queue_deletion(path, reason))
            except PendingActionError as e:
                counter("pending.queue_failed")
                logger.warning("Skipping %s: %s", path, e)
        return queued

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def list(self) -> list[PendingAction]:
        return list(self._actions.values())

    def get(self, action_id: str) -> PendingAction | None:
        return self._actions.get(action_id)

    def count(self) -> int:
        return len(self._actions)

    def total_size(self) -> int:
        return sum(a.file_size for a in self._actions.values())

    # ------------------------------------------------------------------
    # Approval
    # ------------------------------------------------------------------

    async def execute(self, action_id: str) -> ActionResult:
        """
        Run one queued action; the entry is removed only if it succeeds.

        Side Effects:
            - Moves files (delete -> trash; move/rename/overwrite as staged)
            - Emits fs:changed on success and pending:changed on removal
        """
        action = self._actions.get(action_id)
        if action is None:
            return ActionResult(action_id, False, "Action not found in queue")
        if action_id in self._executing:
            return ActionResult(action_id, False, "Action is already executing")

        self._executing.add(action_id)
        try:
            details = await asyncio.to_thread(self._perform, action)
        except (OSError, PendingActionError) as e:
            counter("pending.execute_failed")
            logger.error("Pending action %s failed: %s", action_id, e)
            return ActionResult(action_id, False, str(e))
        finally:
            self._executing.discard(action_id)

        self._actions.pop(action_id, None)
        counter("pending.executed")
        log_event("pending.executed", action_id=action_id, kind=action.kind.value)
        self.signals.emit("fs:changed", {"paths": [action.source_path], "reason": action.kind.value})
        self._changed()
        return ActionResult(action_id, True, details=details)

    def _perform(self, action: PendingAction) -> dict[str, Any]:
        source = Path(action.source_path)
        if action.kind is PendingKind.DELETE:
            entry = self.trash.move_to_trash(source)
            return {"trash_path": entry.trash_path}

        destination = Path(action.destination_path or "")
        if _same_path(source, destination):
            raise PendingActionError(f"Source and destination are the same file: {source}")
        if action.kind is PendingKind.OVERWRITE:
            if not source.exists():
                raise FileNotFoundError(f"No such file: {source}")
            replaced = None
            if destination.exists():
                replaced = self.trash.move_to_trash(destination).trash_path
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(source), str(destination))
            return {"destination": str(destination), "replaced_trash_path": replaced}

        # move / rename never clobber an existing file
        if destination.exists():
            raise PendingActionError(f"Destination already exists: {destination}")
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(source), str(destination))
        return {"destination": str(destination)}

    async def execute_all(self) -> list[ActionResult]:
        return await self.execute_selected([a.id for a in self.list()])

    async def execute_selected(self, action_ids: list[str]) -> list[ActionResult]:
        results = []
        for action_id in action_ids:
            results.append(await self.execute(action_id))
        return results

    def remove(self, action_id: str) -> bool:
        """Keep the file: drop the entry without performing its action."""
        removed = self._actions.pop(action_id, None) is not None
        if removed:
            counter("pending.kept")
            self._changed()
        return removed

    def keep_all(self) -> int:
        count = len(self._actions)
        self._actions.clear()
        if count:
            counter("pending.kept", count)
            self._changed()
        return count
