"""Plan document names: ``plan-{name}-{M.DD.YY}-{HHmm}.md``."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime

#: Name used when a title sanitizes to nothing.
FALLBACK_PLAN_NAME = "plan"

_MAX_NAME_LENGTH = 50
_FILE_NAME_RE = re.compile(r"^plan-(.+)-(\d{1,2}\.\d{2}\.\d{2})-(\d{4})\.md$")


@dataclass(frozen=True)
class ParsedPlanFileName:
    name: str
    date: str
    time: str


def sanitize_plan_name(title: str) -> str:
    """Lower-case *title* and reduce it to ``[a-z0-9-]``."""
    name = re.sub(r"[^a-z0-9]+", "-", title.lower().strip())
    name = re.sub(r"-+", "-", name).strip("-")
    return name[:_MAX_NAME_LENGTH].rstrip("-")


def generate_plan_file_name(title: str, when: datetime | None = None) -> str:
    """Build a filesystem-safe plan file name from a title and timestamp."""
    when = when or datetime.now()
    name = sanitize_plan_name(title) or FALLBACK_PLAN_NAME
    date = f"{when.month}.{when.day:02d}.{when.year % 100:02d}"
    time = f"{when.hour:02d}{when.minute:02d}"
    return f"plan-{name}-{date}-{time}.md"


def parse_plan_file_name(file_name: str) -> ParsedPlanFileName | None:
    """Split a generated file name back into its parts."""
    match = _FILE_NAME_RE.match(file_name)
    if match is None:
        return None
    return ParsedPlanFileName(match.group(1), match.group(2), match.group(3))
