"""Mailbox watcher endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from triageq.api.dependencies import get_runtime, operation_response
from triageq.runtime import AutomationRuntime
from triageq.storage.models import MailWatcherConfig

router = APIRouter(prefix="/api/mail-watchers", tags=["mail-watchers"])


def _require(runtime: AutomationRuntime, watcher_id: str) -> None:
    if watcher_id not in runtime.mail_watchers.registry:
        raise HTTPException(status_code=404, detail="Watcher not found")


@router.get("")
async def list_watchers(runtime: AutomationRuntime = Depends(get_runtime)) -> list[dict[str, Any]]:
    return runtime.mail_watchers.list_watchers()


@router.post("")
async def start_watcher(
    config: MailWatcherConfig, runtime: AutomationRuntime = Depends(get_runtime)
) -> JSONResponse:
    return operation_response(await runtime.mail_watchers.start(config))


@router.get("/{watcher_id}")
async def watcher_status(
    watcher_id: str, runtime: AutomationRuntime = Depends(get_runtime)
) -> dict[str, Any]:
    status = runtime.mail_watchers.status(watcher_id)
    if status is None:
        raise HTTPException(status_code=404, detail="Watcher not found")
    return status


@router.delete("/{watcher_id}")
async def delete_watcher(
    watcher_id: str, runtime: AutomationRuntime = Depends(get_runtime)
) -> JSONResponse:
    return operation_response(await runtime.mail_watchers.delete(watcher_id))


@router.post("/{watcher_id}/stop")
async def stop_watcher(
    watcher_id: str, runtime: AutomationRuntime = Depends(get_runtime)
) -> JSONResponse:
    return operation_response(await runtime.mail_watchers.stop(watcher_id))


@router.post("/{watcher_id}/pause")
async def pause_watcher(
    watcher_id: str, runtime: AutomationRuntime = Depends(get_runtime)
) -> JSONResponse:
    return operation_response(await runtime.mail_watchers.pause(watcher_id))


@router.post("/{watcher_id}/resume")
async def resume_watcher(
    watcher_id: str, runtime: AutomationRuntime = Depends(get_runtime)
) -> JSONResponse:
    return operation_response(await runtime.mail_watchers.resume(watcher_id))


@router.post("/{watcher_id}/check")
async def check_now(
    watcher_id: str, runtime: AutomationRuntime = Depends(get_runtime)
) -> JSONResponse:
    return operation_response(await runtime.mail_watchers.manual_check(watcher_id))


@router.get("/{watcher_id}/matches")
async def watcher_matches(
    watcher_id: str, runtime: AutomationRuntime = Depends(get_runtime)
) -> list[dict[str, Any]]:
    _require(runtime, watcher_id)
    return [m.model_dump(mode="json") for m in runtime.mail_watchers.matches(watcher_id)]


@router.get("/{watcher_id}/activity")
async def watcher_activity(
    watcher_id: str, runtime: AutomationRuntime = Depends(get_runtime)
) -> list[dict[str, Any]]:
    _require(runtime, watcher_id)
    return [a.model_dump(mode="json") for a in runtime.mail_watchers.activity(watcher_id)]


@router.delete("/{watcher_id}/matches/{message_id}")
async def delete_message(
    watcher_id: str,
    message_id: str,
    from_gmail: bool = Query(True),
    runtime: AutomationRuntime = Depends(get_runtime),
) -> JSONResponse:
    return operation_response(
        await runtime.mail_watchers.delete_message(watcher_id, message_id, from_gmail)
    )
