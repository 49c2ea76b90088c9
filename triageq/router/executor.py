"""Tier executor: one chat turn plus a bounded tool-calling loop."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from triageq.config import ROUTER_MAX_TOOL_ROUNDS
from triageq.errors import TriageError
from triageq.llm.chat import ChatMessage, ChatSessionFactory, gemini_chat_factory
from triageq.llm.tiers import ExecutorTier
from triageq.observability.logging import get_logger
from triageq.observability.signals import HostSignals
from triageq.observability.telemetry import counter, log_event
from triageq.router.metrics import estimate_usage
from triageq.router.tools import TOOL_DECLARATIONS, ToolExecutor

logger = get_logger(__name__)


class EmptyTurnError(TriageError):
    """The model produced neither text nor tool calls."""


@dataclass(frozen=True)
class ToolCallRecord:
    name: str
    args: dict[str, Any]
    result: dict[str, Any]


@dataclass(frozen=True)
class ExecutionContext:
    system_instruction: str
    tools: ToolExecutor


@dataclass
class ExecutionResult:
    tier: ExecutorTier
    text: str
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    rounds: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    hit_round_limit: bool = False


class TierExecutor:
    def __init__(
        self,
        session_factory: ChatSessionFactory = gemini_chat_factory,
        signals: HostSignals | None = None,
        max_rounds: int = ROUTER_MAX_TOOL_ROUNDS,
    ) -> None:
        self.session_factory = session_factory
        self.signals = signals or HostSignals()
        self.max_rounds = max_rounds

    def _on_chunk(self, text: str) -> None:
        self.signals.emit("agent:stream-chunk", {"text": text})

    async def run(
        self,
        tier: ExecutorTier,
        history: list[ChatMessage],
        message: str,
        context: ExecutionContext,
    ) -> ExecutionResult:
        """
        Send message on tier and keep answering tool calls until the model
        stops calling tools or max_rounds is reached.

        Raises:
            EmptyTurnError: If the model returned nothing at all
            Exception: Provider errors propagate so the caller can escalate
        """
        session = self.session_factory(tier, context.system_instruction, history, TOOL_DECLARATIONS)
        turn = await session.send_message(message, self._on_chunk)
        if not turn.text and not turn.function_calls:
            raise EmptyTurnError(f"{tier.value} returned an empty turn")

        records: list[ToolCallRecord] = []
        reported_in = turn.input_tokens or 0
        reported_out = turn.output_tokens or 0
        usage_reported = turn.input_tokens is not None
        text = turn.text
        rounds = 0

        while turn.function_calls and rounds < self.max_rounds:
            rounds += 1
            self.signals.emit("agent:tool-start", {"round": rounds})
            results: list[tuple[str, dict[str, Any]]] = []
            for call in turn.function_calls:
                self.signals.emit("agent:tool-call", {"name": call.name, "args": call.args})
                result = await context.tools.execute(call.name, call.args)
                records.append(ToolCallRecord(call.name, call.args, result))
                self.signals.emit("agent:tool-result", {"name": call.name, "result": result})
                results.append((call.name, result))

            turn = await session.send_tool_results(results, self._on_chunk)
            text = turn.text
            reported_in += turn.input_tokens or 0
            reported_out += turn.output_tokens or 0

        hit_limit = bool(turn.function_calls)
        if hit_limit:
            counter("executor.round_limit")
            logger.warning("Tool loop on %s stopped after %d rounds", tier.value, rounds)
        self.signals.emit("agent:stream-end", {"tier": tier.value})

        if usage_reported:
            input_tokens, output_tokens = reported_in, reported_out
        else:
            input_tokens, output_tokens = estimate_usage(
                [m.content for m in history] + [message], text, len(records)
            )

        log_event("executor.completed", tier=tier.value, rounds=rounds, tool_calls=len(records))
        return ExecutionResult(
            tier=tier,
            text=text,
            tool_calls=records,
            rounds=rounds,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            hit_round_limit=hit_limit,
        )
