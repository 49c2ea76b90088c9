"""
Image pre-analysis and deterministic file naming.

The vision pass only extracts structured fields; the final name for receipts
and screenshots is built here so the same image always gets the same name no
matter how the model phrases its answer.
"""

from __future__ import annotations

import json
import re
from datetime import date, datetime
from pathlib import Path

from pydantic import BaseModel, ValidationError, field_validator

from triageq.config import LLM_RULE_TEMPERATURE
from triageq.errors import ClassificationError
from triageq.llm.client import IMAGE_MIME_TYPES, ImageInput
from triageq.llm.json_extraction import extract_json
from triageq.llm.prompts import load_prompt
from triageq.observability.logging import get_logger
from triageq.observability.telemetry import counter

logger = get_logger(__name__)

IMAGE_EXTENSIONS = frozenset(IMAGE_MIME_TYPES)
VISION_KEYWORDS = ("receipt", "screenshot", "photo", "picture", "image")
_IMAGE_TYPES = {"receipt", "screenshot", "photo", "document", "other"}


class ImageAnalysis(BaseModel):
    image_type: str = "other"
    vendor: str | None = None
    date: str | None = None
    amount: float | None = None
    description: str | None = None

    @field_validator("image_type", mode="before")
    @classmethod
    def _normalize_type(cls, value: object) -> str:
        text = str(value or "other").strip().lower()
        return text if text in _IMAGE_TYPES else "other"

    @field_validator("amount", mode="before")
    @classmethod
    def _parse_amount(cls, value: object) -> float | None:
        if value is None or value == "":
            return None
        if isinstance(value, (int, float)):
            return float(value)
        cleaned = re.sub(r"[^\d.\-]", "", str(value))
        try:
            return float(cleaned)
        except ValueError:
            return None

    def summary(self) -> str:
        parts = [f"type={self.image_type}"]
        for name in ("vendor", "date", "amount", "description"):
            value = getattr(self, name)
            if value not in (None, ""):
                parts.append(f"{name}={value}")
        return ", ".join(parts)


def is_image(path: Path) -> bool:
    return path.suffix.lower() in IMAGE_EXTENSIONS


def rules_need_vision(rule_texts: list[str]) -> bool:
    joined = " ".join(rule_texts).lower()
    return any(keyword in joined for keyword in VISION_KEYWORDS)


async def analyze_image(client, path: Path) -> ImageAnalysis:
    """Run the vision pre-pass.

    Raises:
        ClassificationError: If the call fails or the answer is not usable JSON
    """
    image = ImageInput.from_path(path)
    response = await client.generate(
        load_prompt("image_analysis"),
        image=image,
        temperature=LLM_RULE_TEMPERATURE,
        max_output_tokens=300,
        json_mode=True,
    )
    try:
        analysis = ImageAnalysis.model_validate(extract_json(response.text))
    except (json.JSONDecodeError, ValidationError) as e:
        counter("rules.vision.parse_failed")
        raise ClassificationError(f"Unusable image analysis: {e}") from e
    counter("rules.vision.analyzed")
    return analysis


def _slug(text: str, max_words: int = 5) -> str:
    words = re.findall(r"[A-Za-z0-9]+", text)
    return "-".join(w.lower() for w in words[:max_words])


def _vendor_token(vendor: str) -> str:
    words = re.findall(r"[A-Za-z0-9]+", vendor)
    return "".join(w[:1].upper() + w[1:] for w in words)


def _normalize_date(value: str | None, fallback: date) -> str:
    if value:
        for fmt in ("%Y-%m-%d", "%m/%d/%Y", "%d/%m/%Y", "%Y/%m/%d", "%b %d, %Y", "%B %d, %Y"):
            try:
                return datetime.strptime(value.strip(), fmt).date().isoformat()
            except ValueError:
                continue
    return fallback.isoformat()


def generate_filename(analysis: ImageAnalysis, path: Path, fallback_date: date) -> str | None:
    """Build the canonical name for a receipt or screenshot; None for other image types.

    Receipts:    YYYY-MM-DD_Vendor_$12.34.ext
    Screenshots: Screenshot_YYYY-MM-DD_short-description.ext
    """
    ext = path.suffix.lower()
    day = _normalize_date(analysis.date, fallback_date)

    if analysis.image_type == "receipt":
        parts = [day]
        vendor = _vendor_token(analysis.vendor or "")
        parts.append(vendor or "Receipt")
        if analysis.amount is not None:
            parts.append(f"${analysis.amount:.2f}")
        return "_".join(parts) + ext

    if analysis.image_type == "screenshot":
        slug = _slug(analysis.description or "") or _slug(analysis.vendor or "")
        name = f"Screenshot_{day}"
        if slug:
            name = f"{name}_{slug}"
        return name + ext

    return None
