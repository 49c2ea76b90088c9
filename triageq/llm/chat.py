"""
Streaming, tool-calling chat sessions over the active Gemini backend.

The SDK objects differ between Vertex AI and google-generativeai (history
content, tool declarations, function responses), so the conversions live here
and the executor only sees ChatTurn values.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from triageq.llm.gemini import get_backend, get_gemini_model_with_options
from triageq.llm.tiers import ExecutorTier, profile_for
from triageq.observability.logging import get_logger
from triageq.observability.telemetry import counter, time_block

logger = get_logger(__name__)

ChunkHandler = Callable[[str], None]


@dataclass(frozen=True)
class ChatMessage:
    role: str  # "user" or "assistant"
    content: str


@dataclass(frozen=True)
class FunctionCall:
    name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass
class ChatTurn:
    text: str = ""
    function_calls: list[FunctionCall] = field(default_factory=list)
    input_tokens: int | None = None
    output_tokens: int | None = None


class ChatSession(Protocol):
    async def send_message(self, text: str, on_chunk: ChunkHandler) -> ChatTurn: ...

    async def send_tool_results(
        self, results: list[tuple[str, dict[str, Any]]], on_chunk: ChunkHandler
    ) -> ChatTurn: ...


class ChatSessionFactory(Protocol):
    def __call__(
        self,
        tier: ExecutorTier,
        system_instruction: str,
        history: list[ChatMessage],
        declarations: list[dict[str, Any]],
    ) -> ChatSession: ...


def _plain(value: Any) -> Any:
    """Convert proto map/list composites from function-call args into plain Python."""
    if hasattr(value, "items"):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)) or type(value).__name__ == "RepeatedComposite":
        return [_plain(v) for v in value]
    return value


class GeminiChatSession:
    """One multi-turn chat. Blocking SDK calls run in a worker thread."""

    def __init__(
        self,
        tier: ExecutorTier,
        system_instruction: str,
        history: list[ChatMessage],
        declarations: list[dict[str, Any]],
    ) -> None:
        self.tier = tier
        self.profile = profile_for(tier)
        self.backend = get_backend()
        model = get_gemini_model_with_options(
            model_name=self.profile.model_name,
            system_instruction=system_instruction,
            tools=[self._tool(declarations)] if declarations else None,
        )
        self._chat = model.start_chat(history=[self._content(m) for m in history])
        self._generation_config = {
            "temperature": self.profile.temperature,
            "max_output_tokens": self.profile.max_output_tokens,
        }

    def _tool(self, declarations: list[dict[str, Any]]) -> Any:
        if self.backend == "vertexai":
            from vertexai.generative_models import FunctionDeclaration, Tool

            return Tool(
                function_declarations=[
                    FunctionDeclaration(
                        name=d["name"], description=d["description"], parameters=d["parameters"]
                    )
                    for d in declarations
                ]
            )
        return {"function_declarations": declarations}

    def _content(self, message: ChatMessage) -> Any:
        role = "model" if message.role == "assistant" else "user"
        if self.backend == "vertexai":
            from vertexai.generative_models import Content, Part

            return Content(role=role, parts=[Part.from_text(message.content)])
        return {"role": role, "parts": [message.content]}

    def _function_responses(self, results: list[tuple[str, dict[str, Any]]]) -> list[Any]:
        if self.backend == "vertexai":
            from vertexai.generative_models import Part

            return [Part.from_function_response(name=n, response={"result": r}) for n, r in results]

        import google.generativeai as genai

        return [
            genai.protos.Part(
                function_response=genai.protos.FunctionResponse(name=n, response={"result": r})
            )
            for n, r in results
        ]

    async def send_message(self, text: str, on_chunk: ChunkHandler) -> ChatTurn:
        return await asyncio.to_thread(self._stream, text, on_chunk)

    async def send_tool_results(
        self, results: list[tuple[str, dict[str, Any]]], on_chunk: ChunkHandler
    ) -> ChatTurn:
        return await asyncio.to_thread(self._stream, self._function_responses(results), on_chunk)

    def _stream(self, content: Any, on_chunk: ChunkHandler) -> ChatTurn:
        turn = ChatTurn()
        with time_block(f"chat.{self.tier.value}"):
            stream = self._chat.send_message(
                content, stream=True, generation_config=self._generation_config
            )
            for chunk in stream:
                for part in self._parts(chunk):
                    call = getattr(part, "function_call", None)
                    if call is not None and getattr(call, "name", ""):
                        turn.function_calls.append(FunctionCall(call.name, _plain(call.args or {})))
                        continue
                    text = getattr(part, "text", "") or ""
                    if text:
                        turn.text += text
                        on_chunk(text)
                usage = getattr(chunk, "usage_metadata", None)
                if usage is not None:
                    turn.input_tokens = getattr(usage, "prompt_token_count", None) or turn.input_tokens
                    turn.output_tokens = getattr(usage, "candidates_token_count", None) or turn.output_tokens
        counter(f"chat.turns.{self.tier.value}")
        return turn

    @staticmethod
    def _parts(chunk: Any) -> list[Any]:
        candidates = getattr(chunk, "candidates", None) or []
        if not candidates:
            return []
        content = getattr(candidates[0], "content", None)
        return list(getattr(content, "parts", None) or [])


def gemini_chat_factory(
    tier: ExecutorTier,
    system_instruction: str,
    history: list[ChatMessage],
    declarations: list[dict[str, Any]],
) -> ChatSession:
    return GeminiChatSession(tier, system_instruction, history, declarations)
