"""Request-scoped access to the shared runtime."""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse

from triageq.runtime import AutomationRuntime
from triageq.watchers.lifecycle import OperationResult

NOT_FOUND_ERRORS = {"Watcher not found", "Action not found in queue"}


def get_runtime(request: Request) -> AutomationRuntime:
    return request.app.state.runtime


def operation_response(result: OperationResult) -> JSONResponse:
    """200 on success, 404 for unknown ids, 409 for any other refusal."""
    if result.success:
        status_code = 200
    elif result.error in NOT_FOUND_ERRORS:
        status_code = 404
    else:
        status_code = 409
    return JSONResponse(status_code=status_code, content=result.to_dict())
