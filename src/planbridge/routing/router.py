"""Plan router — decides once per turn whether chat text is really a plan."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

from planbridge.config.models import PlanRoutingConfig
from planbridge.routing.detector import classify, has_early_plan_indicators
from planbridge.routing.naming import generate_plan_file_name

logger = logging.getLogger(__name__)

#: ``classify(text) -> (confidence, title)``.
Classifier = Callable[[str], tuple[float, str | None]]


class RoutingDecision(StrEnum):
    UNDECIDED = "undecided"
    CHAT = "chat"
    PLAN = "plan"


class Destination(StrEnum):
    CHAT = "chat"
    PLAN = "plan"


@dataclass(frozen=True)
class RoutedText:
    """Where a piece of text goes.

    ``decided_now`` is set on the single result that commits the turn to
    a plan; its ``text`` is everything accumulated so far, not just the
    fragment that was fed.
    """

    destination: Destination
    text: str
    decided_now: bool = False


class PlanRouter:
    """Routes a turn's chat-destined text to the chat or the plan sink.

    Text is held as chat until enough has accumulated to classify. A
    confident classification commits the turn to ``PLAN`` irrevocably and
    moves the accumulated chat text over to the plan; an undecided turn
    settles to ``CHAT`` on :meth:`finish`.
    """

    def __init__(
        self,
        classifier: Classifier = classify,
        *,
        early_check: Callable[[str], bool] = has_early_plan_indicators,
        namer: Callable[[str], str] = generate_plan_file_name,
        min_length: int = 100,
        threshold: float = 0.4,
        enabled: bool = True,
    ) -> None:
        self._classifier = classifier
        self._early_check = early_check
        self._namer = namer
        self._min_length = min_length
        self._threshold = threshold
        self._enabled = enabled

        self.decision = RoutingDecision.UNDECIDED
        self.confidence = 0.0
        self.plan_title: str | None = None
        self.plan_name: str | None = None
        self._chat: list[str] = []
        self._plan: list[str] = []
        self._chat_length = 0

    @classmethod
    def from_config(cls, config: PlanRoutingConfig) -> PlanRouter:
        return cls(
            min_length=config.min_length,
            threshold=config.confidence_threshold,
            enabled=config.enabled,
        )

    @property
    def chat_text(self) -> str:
        """Text delivered to chat; empty once the turn is a plan."""
        if self.decision is RoutingDecision.PLAN:
            return ""
        return "".join(self._chat)

    @property
    def plan_text(self) -> str:
        return "".join(self._plan)

    def feed(self, text: str) -> RoutedText:
        """Route one chat-destined text fragment."""
        if self.decision is RoutingDecision.PLAN:
            self._plan.append(text)
            return RoutedText(Destination.PLAN, text)

        self._chat.append(text)
        self._chat_length += len(text)

        if self.decision is RoutingDecision.UNDECIDED and self._should_classify():
            accumulated = "".join(self._chat)
            if self._early_check(accumulated):
                confidence, title = self._classifier(accumulated)
                if confidence >= self._threshold:
                    return self._commit_plan(accumulated, confidence, title)

        return RoutedText(Destination.CHAT, text)

    def finish(self) -> RoutingDecision:
        """Settle an undecided turn to chat and return the final decision."""
        if self.decision is RoutingDecision.UNDECIDED:
            self.decision = RoutingDecision.CHAT
        return self.decision

    def _should_classify(self) -> bool:
        return self._enabled and self._chat_length >= self._min_length

    def _commit_plan(
        self, accumulated: str, confidence: float, title: str | None
    ) -> RoutedText:
        self.decision = RoutingDecision.PLAN
        self.confidence = confidence
        self.plan_title = title
        self.plan_name = self._namer(title or "")
        self._plan = [accumulated]
        self._chat = []
        logger.info(
            "turn routed to plan %s (confidence %.2f)", self.plan_name, confidence
        )
        return RoutedText(Destination.PLAN, accumulated, decided_now=True)
