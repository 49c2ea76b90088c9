"""Polling feed of recent host signals for UIs without a push channel."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from triageq.api.dependencies import get_runtime
from triageq.runtime import AutomationRuntime

router = APIRouter(prefix="/api/events", tags=["events"])


@router.get("")
async def recent_events(
    since: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    channel: str | None = Query(None, description="Channel prefix, e.g. 'email:'"),
    runtime: AutomationRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    recent = runtime.signals.recent(since, limit)
    signals = [s for s in recent if s.channel.startswith(channel)] if channel else recent
    return {
        "events": [s.to_dict() for s in signals],
        "last_seq": recent[-1].seq if recent else since,
    }
