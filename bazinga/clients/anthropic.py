"""Anthropic API client with rate limiting and error handling."""

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import tiktoken
from anthropic import APIError, AsyncAnthropic, AsyncAnthropicBedrock
from limits import parse
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter

from bazinga.clients.base import LLMProvider, split_system_prompt, to_alternating_dicts
from bazinga.errors import ProviderError
from bazinga.models.llm import (
    GenerateRequest,
    LLMResponse,
    LLMUsage,
    ModelInfo,
    StreamChunk,
    ToolCall,
)
from bazinga.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

ANTHROPIC_MODELS = [
    ("claude-sonnet-4-20250514", "Claude Sonnet 4"),
    ("claude-opus-4-20250514", "Claude Opus 4"),
    ("claude-3-7-sonnet-20250219", "Claude 3.7 Sonnet"),
    ("claude-3-5-haiku-20241022", "Claude 3.5 Haiku"),
]


@dataclass
class AnthropicConfig:
    """Configuration for Anthropic API client."""

    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 4096
    temperature: float = 0.7
    max_retries: int = 3
    retry_delay: float = 1.0

    # Token limits for validation and truncation
    max_conversation_tokens: int = 200000  # Claude 4 Sonnet default context window


class AnthropicRateLimiter:
    """Moving-window rate limiter using the limits library."""

    def __init__(self, requests_per_minute: int = 50, tokens_per_minute: int = 40_000):
        """Initialize rate limiter.

        Args:
            requests_per_minute: Maximum requests per minute
            tokens_per_minute: Maximum tokens per minute
        """
        self.storage = MemoryStorage()
        self.limiter = MovingWindowRateLimiter(self.storage)

        self.request_limit = parse(f"{requests_per_minute}/minute")
        self.token_limit = parse(f"{tokens_per_minute}/minute")

    async def _wait_for_reset(self, limit, identifier: str, label: str) -> None:
        window_stats = self.limiter.get_window_stats(limit, identifier)
        if window_stats:
            wait_time = max(0.0, window_stats.reset_time - time.time())
            if wait_time > 0:
                logger.warning(f"{label} rate limit exceeded, waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)

    async def check_rate_limit(self, estimated_tokens: int, identifier: str = "anthropic") -> None:
        """Wait until the request fits within the request and token windows."""
        logger.debug(f"Checking rate limit for {estimated_tokens} tokens, identifier: {identifier}")

        if not self.limiter.hit(self.request_limit, identifier):
            await self._wait_for_reset(self.request_limit, identifier, "Request")

        token_identifier = f"{identifier}_tokens"
        if not self.limiter.hit(self.token_limit, token_identifier, cost=max(1, estimated_tokens)):
            await self._wait_for_reset(self.token_limit, token_identifier, "Token")


class AnthropicProvider(LLMProvider):
    """Anthropic Messages API provider with streaming tool use."""

    name = "anthropic"
    tokenizer: tiktoken.Encoding | None = None

    def __init__(
        self,
        api_key: str | None = None,
        config: AnthropicConfig | None = None,
        base_url: str | None = None,
        client: Any = None,
    ):
        """Initialize Anthropic provider.

        Args:
            api_key: Anthropic API key (the SDK falls back to ANTHROPIC_API_KEY)
            config: Client configuration
            base_url: Alternate API endpoint
            client: Pre-built async client, used for tests and Bedrock
        """
        self.config = config or AnthropicConfig()
        self.client = client or AsyncAnthropic(api_key=api_key or None, base_url=base_url)
        self.rate_limiter = AnthropicRateLimiter()

        try:
            # Close approximation for Claude
            self.tokenizer = tiktoken.encoding_for_model("gpt-4")
        except Exception as e:
            logger.warning(f"Tokenizer unavailable, using character estimate: {e}")
            self.tokenizer = None

    def get_available_models(self) -> list[ModelInfo]:
        return [
            ModelInfo(id=model_id, name=name, provider=self.name, max_tokens=self.config.max_tokens)
            for model_id, name in ANTHROPIC_MODELS
        ]

    def get_default_model(self) -> str:
        return self.config.model

    def get_token_limit(self) -> int:
        return self.config.max_conversation_tokens

    def estimate_tokens(self, text: str) -> int:
        """Estimate token count for text."""
        if self.tokenizer is None:
            return len(text) // 4
        try:
            return len(self.tokenizer.encode(text, disallowed_special=()))
        except ValueError:
            return len(text) // 4

    def _build_params(self, request: GenerateRequest) -> dict[str, Any]:
        system_prompt, conversation = split_system_prompt(request.messages)
        params: dict[str, Any] = {
            "model": request.model or self.config.model,
            "max_tokens": request.max_tokens or self.config.max_tokens,
            "temperature": request.temperature,
            "messages": to_alternating_dicts(conversation),
        }
        if system_prompt:
            params["system"] = system_prompt
        if request.tools:
            params["tools"] = [tool.model_dump() for tool in request.tools]
        return params

    async def _check_rate_limit(self, params: dict[str, Any]) -> None:
        text = params.get("system", "") + "".join(msg["content"] for msg in params["messages"])
        estimated_tokens = self.estimate_tokens(text)
        logger.debug(f"Estimated tokens: {estimated_tokens}")
        await self.rate_limiter.check_rate_limit(estimated_tokens, self.name)

    async def _request_with_retries(self, call: Callable[[], Awaitable[T]]) -> T:
        """Execute an API request, retrying rate limits and server errors."""
        for attempt in range(self.config.max_retries):
            try:
                return await call()

            except APIError as e:
                status_code = getattr(e, "status_code", None)
                last_attempt = attempt >= self.config.max_retries - 1
                if status_code == 429 and not last_attempt:  # Rate limit exceeded
                    retry_after = 60
                    response = getattr(e, "response", None)
                    if response is not None:
                        retry_after = int(response.headers.get("retry-after", 60))
                    if retry_after < 120:
                        logger.warning(f"Rate limited by {self.name}, retrying in {retry_after}s")
                        await asyncio.sleep(retry_after)
                        continue

                elif status_code is not None and status_code >= 500 and not last_attempt:
                    # Server error, retry with exponential backoff
                    await asyncio.sleep(self.config.retry_delay * (2**attempt))
                    continue

                raise ProviderError(f"{self.name} request failed: {e}") from e

        raise ProviderError(f"Failed to complete request after {self.config.max_retries} attempts")

    async def stream_response(self, request: GenerateRequest) -> AsyncIterator[StreamChunk]:
        params = self._build_params(request)
        await self._check_rate_limit(params)

        logger.debug(
            f"Streaming {params['model']} with {len(params['messages'])} messages, "
            f"{len(params.get('tools', []))} tools"
        )
        stream = await self._request_with_retries(lambda: self.client.messages.create(**params, stream=True))
        return self._iterate_stream(stream)

    async def _iterate_stream(self, stream) -> AsyncIterator[StreamChunk]:
        message_id = ""
        try:
            async for event in stream:
                match event.type:
                    case "message_start":
                        message_id = event.message.id
                    case "content_block_start":
                        block = event.content_block
                        if block.type == "tool_use":
                            yield StreamChunk(
                                type="content_block_start",
                                id=message_id,
                                index=event.index,
                                tool_call=ToolCall(id=block.id, name=block.name, input=dict(block.input or {})),
                            )
                    case "content_block_delta":
                        delta = event.delta
                        if delta.type == "text_delta":
                            yield StreamChunk(id=message_id, index=event.index, content=delta.text)
                        elif delta.type == "input_json_delta":
                            yield StreamChunk(id=message_id, index=event.index, tool_input_delta=delta.partial_json)
                    case "content_block_stop":
                        yield StreamChunk(type="content_block_stop", id=message_id, index=event.index)
                    case "message_stop":
                        yield StreamChunk(type="message_stop", id=message_id)
        except APIError as e:
            raise ProviderError(f"{self.name} stream failed: {e}") from e
        finally:
            await stream.close()

    async def generate_response(self, request: GenerateRequest) -> LLMResponse:
        params = self._build_params(request)
        await self._check_rate_limit(params)

        response = await self._request_with_retries(lambda: self.client.messages.create(**params))

        text_parts = []
        tool_calls = []
        for block in response.content:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append(ToolCall(id=block.id, name=block.name, input=dict(block.input or {})))

        usage = LLMUsage()
        if response.usage:
            usage = LLMUsage(
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
                total_tokens=response.usage.input_tokens + response.usage.output_tokens,
            )

        logger.debug(f"Response received - Stop reason: {response.stop_reason}, Content blocks: {len(response.content)}")
        return LLMResponse(
            id=response.id,
            model=response.model,
            content="".join(text_parts),
            tool_calls=tool_calls,
            stop_reason=response.stop_reason,
            usage=usage,
            provider=self.name,
        )

    async def close(self) -> None:
        await self.client.close()


class BedrockProvider(AnthropicProvider):
    """Claude models served through AWS Bedrock."""

    name = "bedrock"

    def __init__(
        self,
        region: str = "us-east-1",
        profile: str = "",
        access_key_id: str = "",
        secret_access_key: str = "",
        session_token: str = "",
        model: str = "anthropic.claude-3-5-sonnet-20241022-v2:0",
        client: Any = None,
    ):
        client = client or AsyncAnthropicBedrock(
            aws_region=region,
            aws_profile=profile or None,
            aws_access_key=access_key_id or None,
            aws_secret_key=secret_access_key or None,
            aws_session_token=session_token or None,
        )
        super().__init__(config=AnthropicConfig(model=model), client=client)

    def get_available_models(self) -> list[ModelInfo]:
        return [ModelInfo(id=self.config.model, name=self.config.model, provider=self.name)]
