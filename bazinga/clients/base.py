"""Provider-agnostic LLM client interface and wire-format helpers."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from bazinga.models.llm import GenerateRequest, LLMResponse, Message, ModelInfo, StreamChunk


class LLMProvider(ABC):
    """A model backend that can stream chunks for the orchestrator."""

    name: str = ""

    @abstractmethod
    async def stream_response(self, request: GenerateRequest) -> AsyncIterator[StreamChunk]:
        """Start a streaming request.

        Errors that prevent the stream from starting are raised here; the returned
        iterator yields chunks until end of turn.
        """

    @abstractmethod
    async def generate_response(self, request: GenerateRequest) -> LLMResponse:
        """Run a non-streaming request."""

    @abstractmethod
    def get_available_models(self) -> list[ModelInfo]: ...

    @abstractmethod
    def get_default_model(self) -> str: ...

    def supports_function_calling(self) -> bool:
        return True

    def estimate_tokens(self, text: str) -> int:
        return len(text) // 4

    def get_token_limit(self) -> int:
        return 100_000

    async def close(self) -> None:
        return None


def split_system_prompt(messages: list[Message]) -> tuple[str, list[Message]]:
    """Pull system messages out of the conversation into one prompt string."""
    system_parts = [msg.text() for msg in messages if msg.role == "system"]
    rest = [msg for msg in messages if msg.role != "system"]
    return "\n\n".join(part for part in system_parts if part), rest


def to_alternating_dicts(messages: list[Message]) -> list[dict[str, str]]:
    """Flatten messages to plain text and merge consecutive same-role turns.

    Tool-role messages are sent as user turns. The first message is kept as a
    user turn because providers reject an assistant-first conversation.
    """
    result: list[dict[str, str]] = []
    for msg in messages:
        role = "assistant" if msg.role == "assistant" else "user"
        text = msg.text()
        if not text:
            continue
        if result and result[-1]["role"] == role:
            result[-1]["content"] += f"\n\n{text}"
        else:
            result.append({"role": role, "content": text})

    if result and result[0]["role"] != "user":
        result.insert(0, {"role": "user", "content": "(conversation continues)"})
    return result
