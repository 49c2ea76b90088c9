"""
Task router: classify a chat request and pick the cheapest capable tier.

Classification runs on the minimal tier in JSON mode. Any failure (transport,
parse, or validation) yields a conservative default that lands on the
balanced tier rather than an error.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from triageq.config import ROUTER_MAXIMUM_COMPLEXITY, ROUTER_MAXIMUM_STEPS, ROUTER_MINIMAL_STEPS
from triageq.errors import ClassificationError
from triageq.llm.json_extraction import extract_json
from triageq.llm.prompts import render_prompt
from triageq.llm.tiers import ExecutorTier
from triageq.observability.logging import get_logger
from triageq.observability.telemetry import counter, log_event, time_block

logger = get_logger(__name__)

DEFAULT_REASONING = "Default classification due to router error"


class TaskType(str, Enum):
    SIMPLE_QUERY = "simple_query"
    SINGLE_FILE_OP = "single_file_op"
    MULTI_FILE_OP = "multi_file_op"
    FILE_ORGANIZATION = "file_organization"
    DATA_EXTRACTION = "data_extraction"
    IMAGE_ANALYSIS = "image_analysis"
    BATCH_PROCESSING = "batch_processing"
    CONTENT_GENERATION = "content_generation"
    COMPLEX_REASONING = "complex_reasoning"


class TaskClassification(BaseModel):
    task_type: TaskType
    requires_vision: bool = False
    requires_multi_tool: bool = False
    estimated_steps: int = Field(default=1, ge=1)
    complexity: float = Field(default=0.5, ge=0.0, le=1.0)
    reasoning: str = ""
    recommended_tier: ExecutorTier | None = None

    @field_validator("estimated_steps", mode="before")
    @classmethod
    def _coerce_steps(cls, value: object) -> int:
        try:
            return max(1, int(float(value)))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 1

    @field_validator("complexity", mode="before")
    @classmethod
    def _clamp_complexity(cls, value: object) -> float:
        try:
            return min(1.0, max(0.0, float(value)))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 0.5


def default_classification() -> TaskClassification:
    return TaskClassification(
        task_type=TaskType.MULTI_FILE_OP,
        requires_vision=False,
        requires_multi_tool=True,
        estimated_steps=3,
        complexity=0.5,
        reasoning=DEFAULT_REASONING,
        recommended_tier=ExecutorTier.BALANCED,
    )


def select_executor(classification: TaskClassification) -> ExecutorTier:
    """
    Tier selection, first match wins:

    1. maximum: complexity >= 0.8, complex_reasoning, or multi-tool with > 5 steps
    2. minimal: simple_query / single_file_op, no vision, <= 2 steps
    3. balanced otherwise
    """
    c = classification
    if (
        c.complexity >= ROUTER_MAXIMUM_COMPLEXITY
        or c.task_type is TaskType.COMPLEX_REASONING
        or (c.requires_multi_tool and c.estimated_steps > ROUTER_MAXIMUM_STEPS)
    ):
        return ExecutorTier.MAXIMUM
    if (
        c.task_type in (TaskType.SIMPLE_QUERY, TaskType.SINGLE_FILE_OP)
        and not c.requires_vision
        and c.estimated_steps <= ROUTER_MINIMAL_STEPS
    ):
        return ExecutorTier.MINIMAL
    return ExecutorTier.BALANCED


class TaskRouter:
    def __init__(self, client) -> None:
        self.client = client

    async def classify(self, message: str, selected_file: str | None = None) -> TaskClassification:
        classification, _ = await self.classify_with_usage(message, selected_file)
        return classification

    async def classify_with_usage(
        self, message: str, selected_file: str | None = None
    ) -> tuple[TaskClassification, tuple[int, int]]:
        """
        Classify message and report the router call's own token usage.

        Usage is (0, 0) when the model was never reached; a fallback after a
        bad answer still reports what that answer cost.
        """
        context = f"Selected file: {selected_file}\n" if selected_file else ""
        prompt = render_prompt("router", message=message, context=context)
        usage = (0, 0)

        try:
            with time_block("router.classify"):
                response = await self.client.generate(
                    prompt,
                    tier=ExecutorTier.MINIMAL,
                    temperature=0.1,
                    max_output_tokens=500,
                    json_mode=True,
                )
            usage = (response.input_tokens, response.output_tokens)
            data: dict[str, Any] = extract_json(response.text)
            classification = TaskClassification.model_validate(data)
        except (ClassificationError, json.JSONDecodeError, ValidationError) as e:
            counter("router.fallback")
            logger.warning("Router classification failed, using default: %s", e)
            return default_classification(), usage

        classification.recommended_tier = select_executor(classification)
        log_event(
            "router.classified",
            task_type=classification.task_type.value,
            tier=classification.recommended_tier.value,
            steps=classification.estimated_steps,
            complexity=classification.complexity,
        )
        return classification, usage
