"""Agent chat, routing preview, and session metrics."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from triageq.api.dependencies import get_runtime
from triageq.router.classifier import TaskClassification
from triageq.router.orchestrator import AgentRequest, AgentResponse
from triageq.runtime import AutomationRuntime

router = APIRouter(prefix="/api/agent", tags=["agent"])


class ClassifyRequest(BaseModel):
    message: str = Field(min_length=1)
    selected_file: str | None = None


@router.post("/chat", response_model=AgentResponse)
async def chat(request: AgentRequest, runtime: AutomationRuntime = Depends(get_runtime)) -> AgentResponse:
    return await runtime.orchestrator.chat(request)


@router.post("/classify", response_model=TaskClassification)
async def classify(
    request: ClassifyRequest, runtime: AutomationRuntime = Depends(get_runtime)
) -> TaskClassification:
    return await runtime.orchestrator.router.classify(request.message, request.selected_file)


@router.get("/metrics")
async def metrics(runtime: AutomationRuntime = Depends(get_runtime)) -> dict[str, Any]:
    return runtime.metrics.snapshot()


@router.post("/metrics/reset")
async def reset_metrics(runtime: AutomationRuntime = Depends(get_runtime)) -> dict[str, Any]:
    runtime.metrics.reset()
    return runtime.metrics.snapshot()
