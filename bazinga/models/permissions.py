"""Permission and tool-queue models."""

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from bazinga.models.llm import ToolCall


class RiskLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PermissionLevel(StrEnum):
    DENY = "deny"
    PROMPT = "prompt"
    ALLOW = "allow"


class ToolState(StrEnum):
    PENDING = "pending"
    AWAITING_PERMISSION = "awaiting_permission"
    EXECUTING = "executing"
    COMPLETED = "completed"
    DENIED = "denied"
    CANCELLED = "cancelled"


@dataclass
class PermissionDecision:
    """A user's (or cache's) answer to a permission request."""

    approved: bool
    remember: bool = False
    reason: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class ToolPermissionRule:
    """Default permission for a tool, escalated to PROMPT when a condition matches."""

    tool_name: str
    permission: PermissionLevel
    file_patterns: list[str] = field(default_factory=list)
    commands: list[str] = field(default_factory=list)


@dataclass
class PendingToolCall:
    """A tool call waiting in the queue for a user decision."""

    id: str
    tool_call: ToolCall
    response: "asyncio.Future[PermissionDecision]"
    state: ToolState = ToolState.PENDING
    risk: RiskLevel = RiskLevel.MEDIUM
    risk_reasons: list[str] = field(default_factory=list)
    affected_resources: list[str] = field(default_factory=list)
    prompt: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
