"""Health endpoint: service status and credential readiness (no API calls)."""

from __future__ import annotations

import os
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends

from triageq.api.dependencies import get_runtime
from triageq.config import APP_VERSION
from triageq.observability.telemetry import get_counters, get_p95
from triageq.runtime import AutomationRuntime

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
async def health_check(runtime: AutomationRuntime = Depends(get_runtime)) -> dict[str, Any]:
    has_api_key = bool(os.getenv("GOOGLE_API_KEY"))
    has_project = bool(os.getenv("GOOGLE_CLOUD_PROJECT"))

    return {
        "status": "healthy",
        "service": "TriageQ API",
        "version": APP_VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
        "llm": {
            "ready": has_api_key or has_project,
            "google_api_key": has_api_key,
            "google_cloud_project": has_project,
        },
        "google_signed_in": runtime.google_auth.is_signed_in(),
        "folder_watcher": runtime.folder_watcher.state.value,
        "mail_watchers": len(runtime.mail_watchers.registry),
        "pending_actions": runtime.pending.count(),
    }


@router.get("/health/stats")
async def health_stats() -> dict[str, Any]:
    """In-process counters and router latency, for debugging a running host."""
    return {
        "counters": get_counters(),
        "router_classify_p95_seconds": get_p95("router.classify"),
    }
