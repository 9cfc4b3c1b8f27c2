"""OpenAI-compatible chat completions provider over httpx."""

import json
from collections.abc import AsyncIterator
from typing import Any

import httpx

from bazinga.clients.base import LLMProvider, split_system_prompt, to_alternating_dicts
from bazinga.errors import ProviderError
from bazinga.models.llm import GenerateRequest, LLMResponse, LLMUsage, ModelInfo, StreamChunk, ToolCall
from bazinga.utils.logging import get_logger

logger = get_logger(__name__)

OPENAI_MODELS = [
    ("gpt-4o", "GPT-4o", 128_000),
    ("gpt-4o-mini", "GPT-4o mini", 128_000),
    ("gpt-4.1", "GPT-4.1", 1_000_000),
]


class OpenAIProvider(LLMProvider):
    """Streams /chat/completions as server-sent events."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        default_model: str = "gpt-4o",
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 120.0,
    ):
        self.default_model = default_model
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {api_key}"},
            transport=transport,
            timeout=timeout,
        )

    def get_available_models(self) -> list[ModelInfo]:
        return [
            ModelInfo(id=model_id, name=name, provider=self.name, max_tokens=limit)
            for model_id, name, limit in OPENAI_MODELS
        ]

    def get_default_model(self) -> str:
        return self.default_model

    def get_token_limit(self) -> int:
        return 128_000

    def _build_payload(self, request: GenerateRequest, stream: bool) -> dict[str, Any]:
        system_prompt, conversation = split_system_prompt(request.messages)
        messages = to_alternating_dicts(conversation)
        if system_prompt:
            messages.insert(0, {"role": "system", "content": system_prompt})

        payload: dict[str, Any] = {
            "model": request.model or self.default_model,
            "messages": messages,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "stream": stream,
        }
        if request.tools:
            payload["tools"] = [
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
        return payload

    async def _send(self, payload: dict[str, Any], stream: bool) -> httpx.Response:
        request = self.client.build_request("POST", "/chat/completions", json=payload)
        try:
            response = await self.client.send(request, stream=stream)
        except httpx.HTTPError as e:
            raise ProviderError(f"{self.name} request failed: {e}") from e

        if response.status_code >= 400:
            body = (await response.aread()).decode("utf-8", errors="replace")
            await response.aclose()
            raise ProviderError(f"{self.name} API error {response.status_code}: {body}")
        return response

    async def stream_response(self, request: GenerateRequest) -> AsyncIterator[StreamChunk]:
        payload = self._build_payload(request, stream=True)
        logger.debug(f"Streaming {payload['model']} with {len(payload['messages'])} messages")
        response = await self._send(payload, stream=True)
        return self._iterate_events(response)

    async def _iterate_events(self, response: httpx.Response) -> AsyncIterator[StreamChunk]:
        # Tool call index -> id, for argument fragments that only carry the index
        tool_ids: dict[int, str] = {}
        try:
            async for line in response.aiter_lines():
                if not line.startswith("data:"):
                    continue
                data = line.removeprefix("data:").strip()
                if data == "[DONE]":
                    yield StreamChunk(type="message_stop")
                    break

                try:
                    event = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning(f"Skipping malformed {self.name} stream event: {data[:200]}")
                    continue

                for choice in event.get("choices", []):
                    delta = choice.get("delta") or {}
                    if content := delta.get("content"):
                        yield StreamChunk(id=event.get("id", ""), content=content)

                    for tool_delta in delta.get("tool_calls") or []:
                        index = tool_delta.get("index", 0)
                        function = tool_delta.get("function") or {}
                        if tool_delta.get("id"):
                            tool_ids[index] = tool_delta["id"]
                            yield StreamChunk(
                                type="content_block_start",
                                id=event.get("id", ""),
                                index=index,
                                tool_call=ToolCall(id=tool_delta["id"], name=function.get("name", "")),
                            )
                        if arguments := function.get("arguments"):
                            yield StreamChunk(id=event.get("id", ""), index=index, tool_input_delta=arguments)

                    if choice.get("finish_reason"):
                        yield StreamChunk(type="content_block_stop", id=event.get("id", ""))
        except httpx.HTTPError as e:
            raise ProviderError(f"{self.name} stream failed: {e}") from e
        finally:
            await response.aclose()

    async def generate_response(self, request: GenerateRequest) -> LLMResponse:
        payload = self._build_payload(request, stream=False)
        response = await self._send(payload, stream=False)
        data = response.json()

        message = data["choices"][0]["message"] if data.get("choices") else {}
        tool_calls = []
        for call in message.get("tool_calls") or []:
            function = call.get("function") or {}
            try:
                arguments = json.loads(function.get("arguments") or "{}")
            except json.JSONDecodeError:
                logger.warning(f"Invalid tool arguments from {self.name} for {function.get('name')}")
                arguments = {}
            tool_calls.append(ToolCall(id=call.get("id", ""), name=function.get("name", ""), input=arguments))

        usage_data = data.get("usage") or {}
        return LLMResponse(
            id=data.get("id", ""),
            model=data.get("model", payload["model"]),
            content=message.get("content") or "",
            tool_calls=tool_calls,
            stop_reason=data["choices"][0].get("finish_reason") if data.get("choices") else None,
            usage=LLMUsage(
                input_tokens=usage_data.get("prompt_tokens", 0),
                output_tokens=usage_data.get("completion_tokens", 0),
                total_tokens=usage_data.get("total_tokens", 0),
            ),
            provider=self.name,
        )

    async def close(self) -> None:
        await self.client.aclose()
