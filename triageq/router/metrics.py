"""Per-session token, cost, and tier accounting for the agent."""

from __future__ import annotations

import threading
import time
from typing import Any

from triageq.llm.tiers import PRICING, ExecutorTier, profile_for

INPUT_OVERHEAD_TOKENS = 500
TOKENS_PER_TOOL_CALL = 50


def estimate_usage(message_texts: list[str], reply_text: str, tool_calls: int) -> tuple[int, int]:
    """Fallback token counts when the provider reports no usage metadata."""
    input_tokens = sum(len(t) for t in message_texts) // 4 + INPUT_OVERHEAD_TOKENS
    output_tokens = len(reply_text) // 4 + tool_calls * TOKENS_PER_TOOL_CALL
    return input_tokens, output_tokens


def cost_for(pricing_key: str, input_tokens: int, output_tokens: int) -> float:
    price = PRICING[pricing_key]
    return (input_tokens / 1_000_000) * price["input"] + (output_tokens / 1_000_000) * price["output"]


class SessionMetrics:
    def __init__(self, clock=time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self.tasks_completed = 0
            self.total_input_tokens = 0
            self.total_output_tokens = 0
            self.tier_usage: dict[ExecutorTier, int] = {tier: 0 for tier in ExecutorTier}
            self.escalations = 0
            self.total_cost = 0.0
            self.start_time = self._clock()

    def record_usage(self, tier: ExecutorTier, input_tokens: int, output_tokens: int) -> None:
        with self._lock:
            self.total_input_tokens += input_tokens
            self.total_output_tokens += output_tokens
            self.tier_usage[tier] += 1
            self.total_cost += cost_for(profile_for(tier).pricing_key, input_tokens, output_tokens)

    def task_completed(self) -> None:
        with self._lock:
            self.tasks_completed += 1

    def escalated(self) -> None:
        with self._lock:
            self.escalations += 1

    @property
    def estimated_savings(self) -> float:
        """Savings versus running every token through the pro tier."""
        pro_cost = cost_for("pro", self.total_input_tokens, self.total_output_tokens)
        return max(0.0, pro_cost - self.total_cost)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "tasks_completed": self.tasks_completed,
                "total_input_tokens": self.total_input_tokens,
                "total_output_tokens": self.total_output_tokens,
                "tier_usage": {tier.value: n for tier, n in self.tier_usage.items()},
                "escalations": self.escalations,
                "total_cost": round(self.total_cost, 6),
                "estimated_savings": round(self.estimated_savings, 6),
                "session_seconds": round(self._clock() - self.start_time, 1),
            }
