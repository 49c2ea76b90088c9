"""
Gemini model manager.

Supports two backends, detected once per process:
  1. Vertex AI SDK (google-cloud-aiplatform) with GOOGLE_CLOUD_PROJECT
  2. google-generativeai with GOOGLE_API_KEY (local desktop use)

Models are cached per model name; models that need a system instruction or
tool declarations are created fresh because both are per-instance settings
in the Gemini API.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Any

from triageq.config import GEMINI_FLASH_MODEL, GEMINI_LOCATION, GOOGLE_CLOUD_PROJECT
from triageq.observability.logging import get_logger

logger = get_logger(__name__)


class GeminiInitializationError(RuntimeError):
    """Raised when no Gemini backend can be initialized."""


@lru_cache(maxsize=1)
def get_backend() -> str:
    """
    Initialize the SDK and return "vertexai" or "genai".

    Env vars are read fresh because settings may have been imported before
    dotenv ran.

    Raises:
        GeminiInitializationError: If neither backend is usable
    """
    project = os.getenv("GOOGLE_CLOUD_PROJECT") or GOOGLE_CLOUD_PROJECT
    location = os.getenv("GEMINI_LOCATION", "") or GEMINI_LOCATION or "us-central1"

    if project:
        try:
            import vertexai

            vertexai.init(project=project, location=location)
            logger.info("Initialized Gemini backend (Vertex AI): project=%s, location=%s", project, location)
            return "vertexai"
        except ImportError:
            logger.info("Vertex AI SDK not installed, trying google-generativeai fallback")

    try:
        import google.generativeai as genai
    except ImportError as e:
        raise GeminiInitializationError(
            "No Gemini SDK available. Install google-cloud-aiplatform or google-generativeai."
        ) from e

    api_key = os.getenv("GOOGLE_API_KEY")
    if not api_key:
        raise GeminiInitializationError(
            "Neither GOOGLE_CLOUD_PROJECT nor GOOGLE_API_KEY is set. "
            "Configure one of them to enable classification."
        )

    try:
        genai.configure(api_key=api_key)
    except Exception as e:
        logger.error("Failed to initialize Gemini: %s", e)
        raise GeminiInitializationError(f"Failed to initialize Gemini: {e}") from e

    logger.info("Initialized Gemini backend (google-generativeai)")
    return "genai"


@lru_cache(maxsize=8)
def get_gemini_model(model_name: str = GEMINI_FLASH_MODEL) -> Any:
    """Shared model instance for a model name (no system instruction, no tools)."""
    return _build_model(model_name)


def get_gemini_model_with_options(
    model_name: str | None = None,
    system_instruction: str | None = None,
    tools: list[Any] | None = None,
) -> Any:
    """Model configured with a system instruction and/or tool declarations.

    Falls back to the cached instance when neither is given.
    """
    name = model_name or GEMINI_FLASH_MODEL
    if system_instruction is None and not tools:
        return get_gemini_model(name)
    return _build_model(name, system_instruction=system_instruction, tools=tools)


def _build_model(
    model_name: str,
    system_instruction: str | None = None,
    tools: list[Any] | None = None,
) -> Any:
    backend = get_backend()
    kwargs: dict[str, Any] = {}
    if system_instruction is not None:
        kwargs["system_instruction"] = system_instruction
    if tools:
        kwargs["tools"] = tools

    if backend == "vertexai":
        from vertexai.generative_models import GenerativeModel

        return GenerativeModel(model_name, **kwargs)

    import google.generativeai as genai

    return genai.GenerativeModel(model_name, **kwargs)


def image_part(data: bytes, mime_type: str) -> Any:
    """Inline image content in the shape the active backend expects."""
    if get_backend() == "vertexai":
        from vertexai.generative_models import Part

        return Part.from_data(data=data, mime_type=mime_type)
    return {"mime_type": mime_type, "data": data}


def clear_model_cache() -> None:
    """
    Drop cached models and backend detection.

    Side Effects:
        - Clears lru caches; next call re-initializes the SDK
    """
    get_gemini_model.cache_clear()
    get_backend.cache_clear()
    logger.info("Cleared Gemini model cache")
