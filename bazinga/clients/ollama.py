"""Ollama provider backed by the ollama client library."""

from collections.abc import AsyncIterator, Sequence
from typing import Any

import httpx
import ollama
from cuid2 import cuid_wrapper

from bazinga.clients.base import LLMProvider, split_system_prompt, to_alternating_dicts
from bazinga.errors import ProviderError
from bazinga.models.llm import GenerateRequest, LLMResponse, LLMUsage, ModelInfo, StreamChunk, ToolCall
from bazinga.utils.logging import get_logger

logger = get_logger(__name__)

_tool_id = cuid_wrapper()

# Library errors plus transport failures it lets through
CLIENT_ERRORS = (ollama.ResponseError, ConnectionError, httpx.HTTPError)


class OllamaProvider(LLMProvider):
    """Local models served by Ollama. Tool calls arrive complete, not as fragments."""

    name = "ollama"

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "qwen2.5-coder:latest",
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 300.0,
    ):
        self.model = model
        client_options: dict[str, Any] = {"transport": transport} if transport is not None else {}
        self.client = ollama.AsyncClient(host=base_url.rstrip("/"), timeout=timeout, **client_options)

    def get_available_models(self) -> list[ModelInfo]:
        return [ModelInfo(id=self.model, name=self.model, provider=self.name)]

    def get_default_model(self) -> str:
        return self.model

    def get_token_limit(self) -> int:
        return 32_000

    def _chat_arguments(self, request: GenerateRequest) -> dict[str, Any]:
        system_prompt, conversation = split_system_prompt(request.messages)
        messages = to_alternating_dicts(conversation)
        if system_prompt:
            messages.insert(0, {"role": "system", "content": system_prompt})

        arguments: dict[str, Any] = {
            "model": request.model or self.model,
            "messages": messages,
            "options": {"temperature": request.temperature, "num_predict": request.max_tokens},
        }
        if request.tools:
            arguments["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.input_schema,
                    },
                }
                for tool in request.tools
            ]
        return arguments

    @staticmethod
    def _tool_calls(message: ollama.Message) -> list[ToolCall]:
        calls: Sequence[ollama.Message.ToolCall] = message.tool_calls or []
        return [
            ToolCall(id=_tool_id(), name=call.function.name, input=dict(call.function.arguments or {}))
            for call in calls
        ]

    async def stream_response(self, request: GenerateRequest) -> AsyncIterator[StreamChunk]:
        arguments = self._chat_arguments(request)
        logger.debug(f"Streaming {arguments['model']} from ollama with {len(arguments['messages'])} messages")
        try:
            parts = await self.client.chat(stream=True, **arguments)
        except CLIENT_ERRORS as e:
            raise ProviderError(f"{self.name} request failed: {e}") from e
        return self._iterate(parts)

    async def _iterate(self, parts: AsyncIterator[ollama.ChatResponse]) -> AsyncIterator[StreamChunk]:
        saw_tools = False
        try:
            async for part in parts:
                if content := part.message.content:
                    yield StreamChunk(content=content)
                for tool_call in self._tool_calls(part.message):
                    saw_tools = True
                    yield StreamChunk(type="content_block_start", tool_call=tool_call)

                if part.done:
                    if saw_tools:
                        yield StreamChunk(type="content_block_stop")
                    yield StreamChunk(type="message_stop")
                    break
        except CLIENT_ERRORS as e:
            raise ProviderError(f"{self.name} stream error: {e}") from e

    async def generate_response(self, request: GenerateRequest) -> LLMResponse:
        arguments = self._chat_arguments(request)
        try:
            response = await self.client.chat(stream=False, **arguments)
        except CLIENT_ERRORS as e:
            raise ProviderError(f"{self.name} request failed: {e}") from e

        input_tokens = response.prompt_eval_count or 0
        output_tokens = response.eval_count or 0
        return LLMResponse(
            id=_tool_id(),
            model=response.model or arguments["model"],
            content=response.message.content or "",
            tool_calls=self._tool_calls(response.message),
            stop_reason=response.done_reason,
            usage=LLMUsage(input_tokens, output_tokens, input_tokens + output_tokens),
            provider=self.name,
        )

    async def close(self) -> None:
        await self.client.close()
