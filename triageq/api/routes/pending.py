"""
Pending-actions review endpoints.

Nothing destructive happens until one of the execute endpoints is called;
"keep" endpoints drop entries without touching the filesystem.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from triageq.actions.pending import ActionResult
from triageq.api.dependencies import get_runtime
from triageq.files.operations import format_size
from triageq.runtime import AutomationRuntime

router = APIRouter(prefix="/api/pending", tags=["pending"])


class ExecuteSelectedRequest(BaseModel):
    action_ids: list[str] = Field(min_length=1)


class RestoreRequest(BaseModel):
    trash_path: str


def _result_dict(result: ActionResult) -> dict[str, Any]:
    return asdict(result)


@router.get("")
async def list_pending(runtime: AutomationRuntime = Depends(get_runtime)) -> dict[str, Any]:
    queue = runtime.pending
    return {
        "count": queue.count(),
        "total_size": queue.total_size(),
        "total_size_display": format_size(queue.total_size()),
        "actions": [a.to_dict() for a in queue.list()],
    }


@router.post("/execute-all")
async def execute_all(runtime: AutomationRuntime = Depends(get_runtime)) -> dict[str, Any]:
    results = await runtime.pending.execute_all()
    return {
        "executed": sum(1 for r in results if r.success),
        "failed": sum(1 for r in results if not r.success),
        "results": [_result_dict(r) for r in results],
    }


@router.post("/execute")
async def execute_selected(
    body: ExecuteSelectedRequest, runtime: AutomationRuntime = Depends(get_runtime)
) -> dict[str, Any]:
    results = await runtime.pending.execute_selected(body.action_ids)
    return {"results": [_result_dict(r) for r in results]}


@router.post("/keep-all")
async def keep_all(runtime: AutomationRuntime = Depends(get_runtime)) -> dict[str, Any]:
    return {"kept": runtime.pending.keep_all()}


@router.post("/{action_id}/execute")
async def execute_one(
    action_id: str, runtime: AutomationRuntime = Depends(get_runtime)
) -> JSONResponse:
    result = await runtime.pending.execute(action_id)
    if result.success:
        status_code = 200
    elif result.error == "Action not found in queue":
        status_code = 404
    else:
        status_code = 409
    return JSONResponse(status_code=status_code, content=_result_dict(result))


@router.delete("/{action_id}")
async def keep_file(action_id: str, runtime: AutomationRuntime = Depends(get_runtime)) -> dict[str, Any]:
    if not runtime.pending.remove(action_id):
        raise HTTPException(status_code=404, detail="Action not found in queue")
    return {"success": True, "action_id": action_id}


@router.get("/trash")
async def list_trash(runtime: AutomationRuntime = Depends(get_runtime)) -> list[dict[str, Any]]:
    entries = await asyncio.to_thread(runtime.trash.entries)
    return [asdict(e) for e in entries]


@router.post("/trash/restore")
async def restore_from_trash(
    body: RestoreRequest, runtime: AutomationRuntime = Depends(get_runtime)
) -> dict[str, Any]:
    try:
        restored = await asyncio.to_thread(runtime.trash.restore, body.trash_path)
    except KeyError as e:
        raise HTTPException(status_code=404, detail="Not in trash") from e
    except FileNotFoundError as e:
        raise HTTPException(status_code=410, detail="Trashed file is missing") from e
    runtime.signals.emit("fs:changed", {"paths": [str(restored)], "reason": "restore"})
    return {"success": True, "restored_to": str(restored)}


@router.post("/trash/empty")
async def empty_trash(runtime: AutomationRuntime = Depends(get_runtime)) -> dict[str, Any]:
    return {"removed": await asyncio.to_thread(runtime.trash.empty)}
