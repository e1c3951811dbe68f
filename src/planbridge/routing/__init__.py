"""Routing — classify a turn's text as chat or plan."""

from planbridge.routing.detector import (
    PlanDetection,
    classify,
    detect_plan_content,
    extract_plan_title,
    has_early_plan_indicators,
)
from planbridge.routing.naming import (
    generate_plan_file_name,
    parse_plan_file_name,
    sanitize_plan_name,
)
from planbridge.routing.router import (
    Classifier,
    Destination,
    PlanRouter,
    RoutedText,
    RoutingDecision,
)

__all__ = [
    "Classifier",
    "Destination",
    "PlanDetection",
    "PlanRouter",
    "RoutedText",
    "RoutingDecision",
    "classify",
    "detect_plan_content",
    "extract_plan_title",
    "generate_plan_file_name",
    "has_early_plan_indicators",
    "parse_plan_file_name",
    "sanitize_plan_name",
]
