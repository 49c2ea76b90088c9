"""
Two-layer agent: route on the minimal tier, then execute on the selected tier.

A failed or empty execution below the maximum tier is retried exactly once on
the maximum tier. A second failure is reported in the response, not raised.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

from triageq.actions.pending import PendingActionsQueue
from triageq.llm.chat import ChatMessage
from triageq.llm.prompts import render_prompt
from triageq.llm.tiers import ExecutorTier
from triageq.observability.logging import get_logger
from triageq.observability.signals import HostSignals
from triageq.observability.telemetry import counter, log_event
from triageq.router.classifier import TaskClassification, TaskRouter
from triageq.router.executor import ExecutionContext, ExecutionResult, TierExecutor
from triageq.router.metrics import SessionMetrics
from triageq.router.tools import ToolExecutor

logger = get_logger(__name__)

# charged when the router reports no usage metadata
ROUTER_FALLBACK_USAGE = (100, 50)


class AgentMessage(BaseModel):
    role: str = "user"
    content: str

    @field_validator("role")
    @classmethod
    def _known_role(cls, value: str) -> str:
        return "assistant" if value in ("assistant", "model") else "user"


class AgentRequest(BaseModel):
    messages: list[AgentMessage] = Field(min_length=1)
    granted_folders: list[str] = Field(min_length=1)
    selected_file: str | None = None
    selected_is_directory: bool = False


class ToolCallOut(BaseModel):
    name: str
    args: dict[str, Any]
    result: dict[str, Any]


class AgentResponse(BaseModel):
    message: str
    tool_calls: list[ToolCallOut] = Field(default_factory=list)
    error: str | None = None
    classification: TaskClassification | None = None
    executor_used: ExecutorTier | None = None
    escalated: bool = False


def build_system_instruction(request: AgentRequest) -> str:
    folders = "\n".join(f"- {f}" for f in request.granted_folders)
    selection = ""
    if request.selected_file:
        if request.selected_is_directory:
            selection = f"\nThe user selected the folder {request.selected_file}; \"this folder\" means it.\n"
        else:
            parent = Path(request.selected_file).parent
            selection = (
                f"\nThe user selected the file {request.selected_file}; \"this file\" means it. "
                f"For folder-wide work use {parent}.\n"
            )
    return render_prompt("agent_system", granted_folders=folders, selection=selection)


class Orchestrator:
    def __init__(
        self,
        router: TaskRouter,
        executor: TierExecutor,
        queue: PendingActionsQueue,
        client=None,
        metrics: SessionMetrics | None = None,
        signals: HostSignals | None = None,
    ) -> None:
        self.router = router
        self.executor = executor
        self.queue = queue
        self.client = client
        self.metrics = metrics or SessionMetrics()
        self.signals = signals or HostSignals()

    async def chat(self, request: AgentRequest) -> AgentResponse:
        history = [ChatMessage(m.role, m.content) for m in request.messages[:-1]]
        message = request.messages[-1].content

        self.signals.emit("agent:routing-start", {})
        classification, usage = await self.router.classify_with_usage(message, request.selected_file)
        self.metrics.record_usage(ExecutorTier.MINIMAL, *(usage if any(usage) else ROUTER_FALLBACK_USAGE))
        self.signals.emit("agent:routing-complete", classification.model_dump(mode="json"))

        tier = classification.recommended_tier or ExecutorTier.BALANCED
        context = ExecutionContext(
            system_instruction=build_system_instruction(request),
            tools=ToolExecutor(
                [Path(f) for f in request.granted_folders],
                self.queue,
                client=self.client,
                signals=self.signals,
            ),
        )

        try:
            result = await self.executor.run(tier, history, message, context)
        except Exception as e:
            logger.error("Executor %s failed: %s", tier.value, e)
            if tier is ExecutorTier.MAXIMUM:
                return self._failure(e, classification, tier)

            self.metrics.escalated()
            counter("orchestrator.escalations")
            self.signals.emit(
                "agent:escalated", {"from": tier.value, "to": ExecutorTier.MAXIMUM.value, "error": str(e)}
            )
            try:
                result = await self.executor.run(ExecutorTier.MAXIMUM, history, message, context)
            except Exception as retry_error:
                logger.error("Escalated executor failed: %s", retry_error)
                return self._failure(retry_error, classification, ExecutorTier.MAXIMUM, escalated=True)
            return self._success(result, classification, escalated=True)

        return self._success(result, classification)

    def _success(
        self, result: ExecutionResult, classification: TaskClassification, escalated: bool = False
    ) -> AgentResponse:
        self.metrics.record_usage(result.tier, result.input_tokens, result.output_tokens)
        self.metrics.task_completed()
        self.signals.emit("agent:metrics", self.metrics.snapshot())
        log_event(
            "orchestrator.completed",
            tier=result.tier.value,
            tool_calls=len(result.tool_calls),
            escalated=escalated,
        )
        return AgentResponse(
            message=result.text or "Done.",
            tool_calls=[ToolCallOut(name=c.name, args=c.args, result=c.result) for c in result.tool_calls],
            classification=classification,
            executor_used=result.tier,
            escalated=escalated,
        )

    def _failure(
        self,
        error: Exception,
        classification: TaskClassification,
        tier: ExecutorTier,
        escalated: bool = False,
    ) -> AgentResponse:
        counter("orchestrator.failed")
        return AgentResponse(
            message="",
            error=f"Error: {error}",
            classification=classification,
            executor_used=tier,
            escalated=escalated,
        )
