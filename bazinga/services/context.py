"""Token-budgeted context assembly for each model request."""

from collections.abc import Callable
from typing import TYPE_CHECKING

from bazinga.models.llm import Message
from bazinga.services.prompts import build_system_prompt, follow_up_instruction
from bazinga.utils.logging import get_logger

if TYPE_CHECKING:
    from bazinga.models.session import Session

logger = get_logger(__name__)

TokenEstimator = Callable[[str], int]

SUMMARY_PREFIX = "Previous conversation summary: "
SUMMARY_SNIPPET_CHARS = 120


def estimate_tokens(text: str) -> int:
    """Default estimate of four characters per token."""
    return len(text) // 4


class ContextManager:
    """Builds the message list for a request without exceeding the token budget.

    The budget is ``target_ratio * max_tokens``. The system prompt is always
    present (truncated if it alone would not fit), history is pruned from the
    oldest end, and an optional summary notes what was dropped.
    """

    def __init__(
        self,
        max_tokens: int = 100_000,
        target_ratio: float = 0.8,
        estimator: TokenEstimator = estimate_tokens,
        summarize_dropped: bool = True,
    ):
        self.max_tokens = max_tokens
        self.target_ratio = target_ratio
        self.estimator = estimator
        self.summarize_dropped = summarize_dropped

    @property
    def budget(self) -> int:
        return int(self.max_tokens * self.target_ratio)

    def count_tokens(self, messages: list[Message]) -> int:
        return sum(self.estimator(message.text()) for message in messages)

    def _fit_text(self, text: str, limit: int) -> str:
        """Longest prefix of text whose estimate stays within limit."""
        if limit <= 0:
            return ""
        if self.estimator(text) <= limit:
            return text
        low, high = 0, len(text)
        while low < high:
            mid = (low + high + 1) // 2
            if self.estimator(text[:mid]) <= limit:
                low = mid
            else:
                high = mid - 1
        return text[:low]

    def _summary(self, dropped: list[Message], limit: int) -> Message | None:
        snippets = []
        for message in dropped:
            if message.role != "user":
                continue
            text = " ".join(message.text().split())
            if text and not text.startswith("<tool_result"):
                snippets.append(text[:SUMMARY_SNIPPET_CHARS])

        summary = f"{SUMMARY_PREFIX}{len(dropped)} earlier messages omitted."
        if snippets:
            summary += " Earlier requests: " + "; ".join(snippets)
        summary = self._fit_text(summary, limit)
        if not summary:
            return None
        return Message(role="system", content=summary)

    def build_optimized_context(
        self,
        session: "Session",
        history: list[Message],
        latest_user_text: str,
        follow_up: bool = False,
    ) -> list[Message]:
        """Assemble [system, (summary), history..., (follow-up instruction)].

        Args:
            session: Source of memory, session files and project summary
            history: Conversation so far; never mutated
            latest_user_text: The request this turn is answering
            follow_up: Append an instruction to finish the request from tool results

        Returns:
            Messages whose estimated token total is within the budget
        """
        budget = self.budget

        trailing: list[Message] = []
        if follow_up:
            instruction = follow_up_instruction(latest_user_text)
            if not history or history[-1].text() != instruction:
                trailing.append(Message(role="user", content=self._fit_text(instruction, budget)))
        trailing_tokens = self.count_tokens(trailing)

        system_text = build_system_prompt(
            session.memory_content,
            session.files,
            session.root_path,
            session.get_project_summary(),
        )
        fitted_system = self._fit_text(system_text, budget - trailing_tokens)
        if len(fitted_system) < len(system_text):
            logger.warning(f"System prompt truncated from {len(system_text)} to {len(fitted_system)} chars")
        system = Message(role="system", content=fitted_system)

        remaining = budget - trailing_tokens - self.estimator(fitted_system)
        kept: list[Message] = []
        for message in reversed(history):
            tokens = self.estimator(message.text())
            if tokens > remaining:
                break
            kept.append(message)
            remaining -= tokens
        kept.reverse()

        messages = [system]
        dropped = history[: len(history) - len(kept)]
        if dropped:
            logger.info(f"Context pruned {len(dropped)} of {len(history)} history messages to fit {budget} tokens")
            if self.summarize_dropped and (summary := self._summary(dropped, remaining)) is not None:
                messages.append(summary)

        messages.extend(kept)
        messages.extend(trailing)
        return messages
