"""Heuristic classifier that tells plan documents apart from chat replies.

Scores markdown structure (plan-ish headings, "here's the plan" intros,
phase/step sections, task checkboxes, list density) into a confidence
between 0 and 1.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

#: Content shorter than this (after trimming) is never a plan.
MIN_CLASSIFY_LENGTH = 50

#: Confidence at which ``PlanDetection.is_plan`` is set.
PLAN_CONFIDENCE = 0.35

#: Characters scanned by the early-indicator check.
EARLY_SCAN_CHARS = 500

_PLAN_MARKERS = [
    re.compile(r"^#+\s*(Plan|Implementation Plan|Feature Plan|Project Plan)", re.I | re.M),
    re.compile(r"^#+\s*(Overview|Summary|Approach)", re.I | re.M),
    re.compile(r"^#+\s*(Phase \d+|Step \d+|Task \d+)", re.I | re.M),
    re.compile(r"^#+\s*(Implementation|Architecture|Design)", re.I | re.M),
]

_INTRO_PATTERNS = [
    re.compile(r"here'?s?\s+(the|a|my)\s+plan", re.I),
    re.compile(r"i'?ll\s+outline\s+(the|a)\s+plan", re.I),
    re.compile(r"let\s+me\s+(create|draft|outline)\s+(a|the)\s+plan", re.I),
    re.compile(r"here'?s?\s+an?\s+(implementation|feature|detailed)\s+plan", re.I),
    re.compile(r"the\s+following\s+plan", re.I),
    re.compile(r"proposed\s+plan", re.I),
]

_STRUCTURE_PATTERNS = [
    re.compile(r"^##\s+.*\n+.*\n+###\s+", re.M),
    re.compile(r"^##\s+Phase\s+\d", re.M),
    re.compile(r"^##\s+Task\s+\d", re.M),
    re.compile(r"^##\s+Step\s+\d", re.M),
    re.compile(r"^-\s+\[[ x]\]", re.M),
]

_HEADING_RE = re.compile(r"^#+\s+", re.M)
_FIRST_HEADING_RE = re.compile(r"^#+\s+(.+)$", re.M)
_BULLET_RE = re.compile(r"^[-*]\s+", re.M)
_NUMBERED_RE = re.compile(r"^\d+\.\s+", re.M)


@dataclass(frozen=True)
class PlanDetection:
    """Result of scoring a piece of text."""

    is_plan: bool
    confidence: float
    title: str | None
    start_index: int


def detect_plan_content(content: str) -> PlanDetection:
    """Score *content* and report whether it reads like a plan."""
    if not content or len(content.strip()) < MIN_CLASSIFY_LENGTH:
        return PlanDetection(False, 0.0, None, -1)

    confidence = 0.0
    start = -1
    title: str | None = None

    for pattern in _PLAN_MARKERS:
        match = pattern.search(content)
        if match:
            confidence += 0.3
            if start == -1 or match.start() < start:
                start = match.start()
            if title is None:
                title = _heading_text(content, match.start())

    for pattern in _INTRO_PATTERNS:
        match = pattern.search(content)
        if match:
            confidence += 0.2
            if start == -1 or match.start() < start:
                start = match.start()
            break

    for pattern in _STRUCTURE_PATTERNS:
        if pattern.search(content):
            confidence += 0.15

    headings = len(_HEADING_RE.findall(content))
    if headings >= 3:
        confidence += 0.1
    if headings >= 5:
        confidence += 0.1

    if len(_BULLET_RE.findall(content)) >= 3:
        confidence += 0.05
    if len(_NUMBERED_RE.findall(content)) >= 3:
        confidence += 0.05

    confidence = min(confidence, 1.0)
    is_plan = confidence >= PLAN_CONFIDENCE

    if is_plan and title is None:
        first = _FIRST_HEADING_RE.search(content)
        if first:
            title = first.group(1).strip()

    return PlanDetection(
        is_plan=is_plan,
        confidence=confidence,
        title=title,
        start_index=max(0, start) if is_plan else -1,
    )


def has_early_plan_indicators(content: str) -> bool:
    """Cheap pre-check on the first few hundred characters."""
    if len(content) < 20:
        return False
    prefix = content[:EARLY_SCAN_CHARS]
    if any(p.search(prefix) for p in _INTRO_PATTERNS):
        return True
    return any(p.search(prefix) for p in _PLAN_MARKERS)


def extract_plan_title(content: str) -> str | None:
    """Best-effort title: plan heading, then any heading, then the first line."""
    for pattern in _PLAN_MARKERS:
        match = pattern.search(content)
        if match:
            return _heading_text(content, match.start())

    first = _FIRST_HEADING_RE.search(content)
    if first:
        return first.group(1).strip()

    first_line = content.strip().split("\n")[0]
    if first_line and len(first_line) <= 100:
        cleaned = re.sub(r"^#+\s*", "", first_line).replace("*", "").strip()
        return cleaned or None
    return None


def classify(content: str) -> tuple[float, str | None]:
    """Adapter with the ``(confidence, title)`` shape the router expects."""
    detection = detect_plan_content(content)
    return detection.confidence, detection.title


def _heading_text(content: str, line_start: int) -> str:
    end = content.find("\n", line_start)
    line = content[line_start:] if end == -1 else content[line_start:end]
    return line.lstrip("#").strip()
