"""LLM-related data models and types (provider-agnostic)."""

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


# Content block types
class TextBlock(BaseModel):
    """Text content block."""

    type: Literal["text"] = "text"
    text: str

    class Config:
        extra = "ignore"  # Ignore any additional fields from providers


class ToolUseBlock(BaseModel):
    """Tool use content block."""

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)

    class Config:
        extra = "ignore"  # Ignore any additional fields from providers


ContentBlock = TextBlock | ToolUseBlock

Role = Literal["user", "assistant", "system", "tool"]


class Message(BaseModel):
    """A message in the conversation history."""

    role: Role
    content: str | list[ContentBlock]
    name: str | None = None
    tool_call_id: str | None = None

    def text(self) -> str:
        """Flatten the content to plain text, rendering tool_use blocks inline."""
        if isinstance(self.content, str):
            return self.content

        parts = []
        for block in self.content:
            if isinstance(block, TextBlock):
                parts.append(block.text)
            else:
                parts.append(f'<tool_use tool="{block.name}" tool_id="{block.id}">{json.dumps(block.input)}</tool_use>')
        return "\n".join(parts)

    def tool_use_blocks(self) -> list[ToolUseBlock]:
        if isinstance(self.content, str):
            return []
        return [block for block in self.content if isinstance(block, ToolUseBlock)]


class ToolCall(BaseModel):
    """A structured request from the model to invoke a named tool."""

    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)
    type: str = "function"


class ToolSpec(BaseModel):
    """Tool schema advertised to the provider."""

    name: str
    description: str
    input_schema: dict[str, Any]


@dataclass
class StreamChunk:
    """One element of a provider stream."""

    type: str = "content_block_delta"
    id: str = ""
    index: int = 0
    content: str = ""
    tool_call: ToolCall | None = None
    tool_input_delta: str = ""


@dataclass
class GenerateRequest:
    """Provider request for a single model invocation."""

    messages: list[Message]
    model: str = ""
    max_tokens: int = 4096
    temperature: float = 0.7
    tools: list[ToolSpec] = field(default_factory=list)
    stream: bool = False


@dataclass
class LLMUsage:
    """Token/resource usage information from LLM provider."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


@dataclass
class LLMResponse:
    """Provider-agnostic response from a non-streaming call."""

    id: str
    model: str
    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    stop_reason: str | None = None
    usage: LLMUsage | None = None
    provider: str = "anthropic"
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class ModelInfo:
    """A model offered by a provider."""

    id: str
    name: str
    provider: str
    max_tokens: int = 4096
    supports_tools: bool = True
