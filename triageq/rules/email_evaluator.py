"""Email evaluator: category, confidence, and dynamic actions for one message."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from triageq.config import EMAIL_BODY_TRUNCATION, LLM_RULE_TEMPERATURE
from triageq.errors import ClassificationError
from triageq.llm.json_extraction import extract_json
from triageq.llm.prompts import render_prompt
from triageq.observability.logging import get_logger
from triageq.observability.telemetry import counter, log_event
from triageq.rules.email_actions import EmailAction, parse_actions
from triageq.storage.models import EmailCategory, EmailDetail

logger = get_logger(__name__)


class _EmailAnswer(BaseModel):
    category: EmailCategory = EmailCategory.OTHER
    confidence: float = 0.5
    matched_rule: str | None = None
    reasoning: str = ""
    actions: list[Any] = Field(default_factory=list)

    @field_validator("category", mode="before")
    @classmethod
    def _coerce_category(cls, value: object) -> EmailCategory:
        try:
            return EmailCategory(str(value).strip().lower())
        except ValueError:
            return EmailCategory.OTHER

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, value: object) -> float:
        try:
            return min(max(float(value), 0.0), 1.0)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 0.5

    @field_validator("matched_rule", "reasoning", mode="before")
    @classmethod
    def _coerce_text(cls, value: object) -> object:
        return value if value is None or isinstance(value, str) else str(value)


@dataclass(frozen=True)
class EmailEvaluation:
    category: EmailCategory
    confidence: float
    matched_rule: str | None = None
    reasoning: str = ""
    actions: list[EmailAction] = field(default_factory=list)
    error: str | None = None


def _fallback(reason: str, error: str | None = None) -> EmailEvaluation:
    return EmailEvaluation(category=EmailCategory.OTHER, confidence=0.0, reasoning=reason, error=error)


class EmailEvaluator:
    def __init__(self, client) -> None:
        self.client = client

    async def evaluate(self, email: EmailDetail, rules: list[str]) -> EmailEvaluation:
        if not rules:
            return _fallback("No rules configured")

        prompt = render_prompt(
            "email_rules",
            rules="\n".join(f"{idx}. {text}" for idx, text in enumerate(rules, start=1)),
            categories=", ".join(c.value for c in EmailCategory),
            sender=email.sender,
            subject=email.subject,
            date=email.date,
            body=(email.body or email.snippet)[:EMAIL_BODY_TRUNCATION],
        )

        try:
            response = await self.client.generate(
                prompt, temperature=LLM_RULE_TEMPERATURE, max_output_tokens=800, json_mode=True
            )
        except ClassificationError as e:
            counter("rules.email.classification_failed")
            return _fallback("Classification failed", str(e))

        try:
            answer = _EmailAnswer.model_validate(extract_json(response.text))
        except (json.JSONDecodeError, ValidationError) as e:
            counter("rules.email.parse_failed")
            logger.warning("Failed to parse email evaluation for %s: %s", email.id, e)
            return _fallback("Failed to parse AI response")

        evaluation = EmailEvaluation(
            category=answer.category,
            confidence=answer.confidence,
            matched_rule=answer.matched_rule,
            reasoning=answer.reasoning,
            actions=parse_actions(answer.actions),
        )
        log_event(
            "rules.email.evaluated",
            email_id=email.id,
            category=evaluation.category.value,
            confidence=evaluation.confidence,
            actions=[a.type for a in evaluation.actions],
        )
        return evaluation
