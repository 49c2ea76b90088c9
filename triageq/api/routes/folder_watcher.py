"""Folder watcher control endpoints."""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from triageq.api.dependencies import get_runtime, operation_response
from triageq.runtime import AutomationRuntime
from triageq.storage.models import FolderWatcherConfig, Rule
from triageq.watchers.activity_log import activity_log_stats, read_activity_log

router = APIRouter(prefix="/api/folder-watcher", tags=["folder-watcher"])


@router.post("/start")
async def start_watcher(
    config: FolderWatcherConfig, runtime: AutomationRuntime = Depends(get_runtime)
) -> JSONResponse:
    return operation_response(await runtime.folder_watcher.start(config))


@router.post("/stop")
async def stop_watcher(runtime: AutomationRuntime = Depends(get_runtime)) -> JSONResponse:
    return operation_response(await runtime.folder_watcher.stop())


@router.post("/pause")
async def pause_watcher(runtime: AutomationRuntime = Depends(get_runtime)) -> JSONResponse:
    return operation_response(runtime.folder_watcher.pause())


@router.post("/resume")
async def resume_watcher(runtime: AutomationRuntime = Depends(get_runtime)) -> JSONResponse:
    return operation_response(runtime.folder_watcher.resume())


@router.get("/status")
async def watcher_status(runtime: AutomationRuntime = Depends(get_runtime)) -> dict[str, Any]:
    return runtime.folder_watcher.status()


@router.put("/rules")
async def update_rules(
    rules: list[Rule], runtime: AutomationRuntime = Depends(get_runtime)
) -> JSONResponse:
    return operation_response(runtime.folder_watcher.update_rules(rules))


@router.get("/activity")
async def recent_activity(
    limit: int = Query(50, ge=1, le=100), runtime: AutomationRuntime = Depends(get_runtime)
) -> list[dict[str, Any]]:
    return [e.model_dump(mode="json") for e in list(runtime.folder_watcher.activity)[:limit]]


def _log_path(runtime: AutomationRuntime):
    config = runtime.folder_watcher.config
    if config is None or not config.enable_activity_log:
        raise HTTPException(status_code=404, detail="No activity log configured")
    return config.resolved_log_path()


@router.get("/log")
async def activity_log(
    limit: int = Query(100, ge=1, le=1000), runtime: AutomationRuntime = Depends(get_runtime)
) -> list[dict[str, Any]]:
    path = _log_path(runtime)
    return await asyncio.to_thread(read_activity_log, path, limit, runtime.workbook)


@router.get("/log/stats")
async def activity_stats(runtime: AutomationRuntime = Depends(get_runtime)) -> dict[str, Any]:
    path = _log_path(runtime)
    return await asyncio.to_thread(activity_log_stats, path, runtime.workbook)
