"""
File rule evaluator.

Maps (file, ordered rules) to one decision: move somewhere (optionally with a
new name) or skip. Images whose rules talk about receipts, screenshots, or
photos get a vision pre-pass first. Nothing here raises into the watch loop:
capability errors and unparseable answers both come back as skip results that
carry the reason.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ValidationError, field_validator

from triageq.config import LLM_RULE_MAX_TOKENS, LLM_RULE_TEMPERATURE
from triageq.errors import ClassificationError
from triageq.files.operations import format_size
from triageq.llm.json_extraction import extract_json
from triageq.llm.prompts import render_prompt
from triageq.observability.logging import get_logger
from triageq.observability.telemetry import counter, log_event
from triageq.rules.vision import (
    ImageAnalysis,
    analyze_image,
    generate_filename,
    is_image,
    rules_need_vision,
)
from triageq.storage.models import Rule, ordered_enabled_rules

logger = get_logger(__name__)


class RuleDecision(BaseModel):
    """Shape of the model's JSON answer, coerced leniently."""

    matched_rule: int | None = None
    action: str = "skip"
    destination: str | None = None
    rename: str | None = None
    confidence: float = 0.5
    reasoning: str = ""

    @field_validator("matched_rule", mode="before")
    @classmethod
    def _coerce_rule(cls, value: object) -> int | None:
        if value in (None, "", "null"):
            return None
        try:
            return int(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return None

    @field_validator("action", mode="before")
    @classmethod
    def _coerce_action(cls, value: object) -> str:
        return str(value or "skip").strip().lower()

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, value: object) -> float:
        try:
            number = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 0.5
        return min(max(number, 0.0), 1.0)

    @field_validator("reasoning", mode="before")
    @classmethod
    def _coerce_reasoning(cls, value: object) -> str:
        return "" if value is None else str(value)


@dataclass(frozen=True)
class RuleMatch:
    action: Literal["move", "skip"]
    matched_rule: int | None = None
    destination: str | None = None
    rename: str | None = None
    confidence: float = 0.0
    used_ai: bool = False
    used_vision: bool = False
    reasoning: str = ""
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


def _clean_rename(rename: str | None, original: Path) -> str | None:
    if not rename:
        return None
    name = Path(rename.strip().replace("\\", "/")).name
    if not name or name in (".", ".."):
        return None
    if not Path(name).suffix and original.suffix:
        name += original.suffix
    return name


def _format_rules(rules: list[Rule]) -> str:
    return "\n".join(f"{idx}. {rule.text}" for idx, rule in enumerate(rules, start=1))


class RuleEvaluator:
    def __init__(self, client) -> None:
        self.client = client

    async def evaluate(self, path: Path, rules: list[Rule]) -> RuleMatch:
        enabled = ordered_enabled_rules(rules)
        if not enabled:
            return RuleMatch(action="skip", reasoning="No enabled rules")

        try:
            stat = await asyncio.to_thread(path.stat)
        except OSError as e:
            return RuleMatch(action="skip", reasoning="File not readable", error=str(e))

        analysis: ImageAnalysis | None = None
        if is_image(path) and rules_need_vision([r.text for r in enabled]):
            try:
                analysis = await analyze_image(self.client, path)
            except (ClassificationError, OSError) as e:
                counter("rules.vision.fallback")
                logger.warning("Vision pass failed for %s, using text only: %s", path.name, e)

        prompt = render_prompt(
            "file_rules",
            rules=_format_rules(enabled),
            file_name=path.name,
            extension=path.suffix.lower() or "(none)",
            file_size=format_size(stat.st_size),
            image_analysis=f"- Image analysis: {analysis.summary()}\n" if analysis else "",
        )

        try:
            response = await self.client.generate(
                prompt,
                temperature=LLM_RULE_TEMPERATURE,
                max_output_tokens=LLM_RULE_MAX_TOKENS,
                json_mode=True,
            )
        except ClassificationError as e:
            counter("rules.file.classification_failed")
            return RuleMatch(
                action="skip",
                used_ai=True,
                used_vision=analysis is not None,
                reasoning="Classification failed",
                error=str(e),
            )

        fallback_day = datetime.fromtimestamp(stat.st_mtime).date()
        match = self._parse(response.text, path, len(enabled), analysis, fallback_day)
        log_event(
            "rules.file.evaluated",
            file=path.name,
            action=match.action,
            matched_rule=match.matched_rule,
            confidence=match.confidence,
            used_vision=match.used_vision,
        )
        return match

    def _parse(
        self,
        text: str,
        path: Path,
        rule_count: int,
        analysis: ImageAnalysis | None,
        fallback_day: date,
    ) -> RuleMatch:
        used_vision = analysis is not None
        try:
            decision = RuleDecision.model_validate(extract_json(text))
        except (json.JSONDecodeError, ValidationError) as e:
            counter("rules.file.parse_failed")
            logger.warning("Failed to parse rule response for %s: %s", path.name, e)
            return RuleMatch(
                action="skip",
                confidence=0.0,
                used_ai=True,
                used_vision=used_vision,
                reasoning="Failed to parse AI response",
            )

        matched = decision.matched_rule
        if matched is not None and not 1 <= matched <= rule_count:
            matched = None

        destination = (decision.destination or "").strip() or None
        if decision.action != "move" or destination is None:
            return RuleMatch(
                action="skip",
                matched_rule=matched,
                confidence=decision.confidence,
                used_ai=True,
                used_vision=used_vision,
                reasoning=decision.reasoning,
            )

        rename = _clean_rename(decision.rename, path)
        if analysis is not None:
            # receipts and screenshots always get the canonical name, whatever the model proposed
            rename = generate_filename(analysis, path, fallback_day) or rename

        return RuleMatch(
            action="move",
            matched_rule=matched,
            destination=destination,
            rename=rename,
            confidence=decision.confidence,
            used_ai=True,
            used_vision=used_vision,
            reasoning=decision.reasoning,
        )
