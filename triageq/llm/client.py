"""Classification capability client.

One async entry point, generate(), for every text, image, and JSON-mode call
the rule evaluators and router make. Blocking SDK calls run in a worker
thread; transient Vertex AI / Gemini errors are converted to builtin
exception types and retried with tenacity.
"""

from __future__ import annotations

import asyncio
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from triageq.config import LLM_MAX_RETRIES
from triageq.errors import ClassificationError
from triageq.llm.gemini import get_gemini_model_with_options, image_part
from triageq.llm.tiers import ExecutorTier, profile_for
from triageq.observability.logging import get_logger
from triageq.observability.telemetry import counter, time_block

logger = get_logger(__name__)

IMAGE_MIME_TYPES: dict[str, str] = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".heic": "image/heic",
    ".heif": "image/heif",
    ".bmp": "image/bmp",
}


@dataclass(frozen=True)
class ImageInput:
    data: bytes
    mime_type: str

    @classmethod
    def from_path(cls, path: Path) -> ImageInput:
        mime_type = IMAGE_MIME_TYPES.get(path.suffix.lower())
        if mime_type is None:
            mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return cls(data=path.read_bytes(), mime_type=mime_type)


@dataclass(frozen=True)
class LLMResponse:
    text: str
    input_tokens: int
    output_tokens: int
    model: str


def estimate_tokens(text: str) -> int:
    """Rough token estimate (4 chars per token) when usage metadata is missing."""
    return max(1, len(text) // 4)


def usage_from_response(response: Any, prompt_text: str, output_text: str) -> tuple[int, int]:
    usage = getattr(response, "usage_metadata", None)
    input_tokens = getattr(usage, "prompt_token_count", None) if usage is not None else None
    output_tokens = getattr(usage, "candidates_token_count", None) if usage is not None else None
    if not input_tokens:
        input_tokens = estimate_tokens(prompt_text)
    if not output_tokens:
        output_tokens = estimate_tokens(output_text)
    return int(input_tokens), int(output_tokens)


class ClassificationClient:
    """Async wrapper over the Gemini model manager."""

    def __init__(self, model_factory=get_gemini_model_with_options, counter_prefix: str = "llm") -> None:
        self._model_factory = model_factory
        self.counter_prefix = counter_prefix

    async def generate(
        self,
        prompt: str,
        *,
        tier: ExecutorTier = ExecutorTier.MINIMAL,
        system_instruction: str | None = None,
        image: ImageInput | None = None,
        temperature: float = 0.1,
        max_output_tokens: int = 500,
        json_mode: bool = False,
    ) -> LLMResponse:
        """Run one generation call.

        Raises:
            ClassificationError: On non-retryable failures or when retries are exhausted
        """
        try:
            return await asyncio.to_thread(
                self._generate_with_retry,
                prompt,
                tier,
                system_instruction,
                image,
                temperature,
                max_output_tokens,
                json_mode,
            )
        except ClassificationError:
            raise
        except Exception as e:
            counter(f"{self.counter_prefix}.failed")
            raise ClassificationError(f"Classification call failed: {e}") from e

    @retry(
        stop=stop_after_attempt(LLM_MAX_RETRIES),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((TimeoutError, ConnectionError, OSError)),
        reraise=True,
    )
    def _generate_with_retry(
        self,
        prompt: str,
        tier: ExecutorTier,
        system_instruction: str | None,
        image: ImageInput | None,
        temperature: float,
        max_output_tokens: int,
        json_mode: bool,
    ) -> LLMResponse:
        from google.api_core.exceptions import (
            DeadlineExceeded,
            InternalServerError,
            ResourceExhausted,
            ServiceUnavailable,
        )

        profile = profile_for(tier)
        model = self._model_factory(
            model_name=profile.model_name, system_instruction=system_instruction
        )

        generation_config: dict[str, Any] = {
            "temperature": temperature,
            "max_output_tokens": max_output_tokens,
        }
        if json_mode:
            generation_config["response_mime_type"] = "application/json"

        contents: list[Any] = [prompt]
        if image is not None:
            contents.append(image_part(image.data, image.mime_type))

        try:
            with time_block(f"{self.counter_prefix}.generate"):
                response = model.generate_content(contents, generation_config=generation_config)
            text = response.text
        except DeadlineExceeded as e:
            counter(f"{self.counter_prefix}.timeout")
            raise TimeoutError(f"LLM call timed out: {e}") from e
        except ServiceUnavailable as e:
            counter(f"{self.counter_prefix}.service_unavailable")
            logger.warning("LLM service unavailable, will retry: %s", e)
            raise ConnectionError(f"LLM service unavailable: {e}") from e
        except ResourceExhausted as e:
            counter(f"{self.counter_prefix}.rate_limited")
            logger.warning("LLM rate limited (429), will retry: %s", e)
            raise OSError(f"LLM rate limited: {e}") from e
        except InternalServerError as e:
            counter(f"{self.counter_prefix}.internal_error")
            logger.warning("LLM internal error (500), will retry: %s", e)
            raise ConnectionError(f"LLM internal error: {e}") from e
        except ValueError as e:
            # response.text raises ValueError when the candidate was blocked
            raise ClassificationError(f"Model returned no text: {e}") from e

        counter(f"{self.counter_prefix}.calls")
        input_tokens, output_tokens = usage_from_response(response, prompt, text)
        return LLMResponse(
            text=text,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model=profile.model_name,
        )
