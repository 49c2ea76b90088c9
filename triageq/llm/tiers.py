"""Execution tiers: which Gemini model and generation budget each tier uses."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from triageq.config import GEMINI_FLASH_MODEL, GEMINI_PRO_MODEL


class ExecutorTier(str, Enum):
    MINIMAL = "flash-minimal"
    BALANCED = "flash-high"
    MAXIMUM = "pro-high"


@dataclass(frozen=True)
class TierProfile:
    tier: ExecutorTier
    model_name: str
    pricing_key: str
    temperature: float
    max_output_tokens: int
    description: str


TIER_PROFILES: dict[ExecutorTier, TierProfile] = {
    ExecutorTier.MINIMAL: TierProfile(
        tier=ExecutorTier.MINIMAL,
        model_name=GEMINI_FLASH_MODEL,
        pricing_key="flash",
        temperature=0.1,
        max_output_tokens=1024,
        description="Fast, low cost. Routing and single-step lookups.",
    ),
    ExecutorTier.BALANCED: TierProfile(
        tier=ExecutorTier.BALANCED,
        model_name=GEMINI_FLASH_MODEL,
        pricing_key="flash",
        temperature=0.4,
        max_output_tokens=4096,
        description="Multi-step file work and extraction.",
    ),
    ExecutorTier.MAXIMUM: TierProfile(
        tier=ExecutorTier.MAXIMUM,
        model_name=GEMINI_PRO_MODEL,
        pricing_key="pro",
        temperature=0.4,
        max_output_tokens=8192,
        description="Complex reasoning and escalation target.",
    ),
}

# USD per 1M tokens
PRICING: dict[str, dict[str, float]] = {
    "flash": {"input": 0.50, "output": 3.00},
    "pro": {"input": 2.00, "output": 12.00},
}


def profile_for(tier: ExecutorTier) -> TierProfile:
    return TIER_PROFILES[tier]
