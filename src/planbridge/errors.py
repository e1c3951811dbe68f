"""Map raw CLI / spawn error text to user-facing explanations."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum

_INSTALL_URL = "https://docs.anthropic.com/claude-code/installation"


class ErrorCategory(StrEnum):
    CLI_NOT_FOUND = "cli_not_found"
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    PERMISSION = "permission"
    SESSION = "session"
    TIMEOUT = "timeout"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


class Severity(StrEnum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class CLIErrorInfo:
    original_message: str
    message: str
    category: ErrorCategory
    severity: Severity
    recoverable: bool
    suggestion: str | None = None
    help_url: str | None = None
    code: str | None = None


@dataclass(frozen=True)
class _Pattern:
    regex: re.Pattern[str]
    category: ErrorCategory
    severity: Severity
    message: str
    suggestion: str
    recoverable: bool
    help_url: str | None = None


def _p(
    pattern: str,
    category: ErrorCategory,
    severity: Severity,
    message: str,
    suggestion: str,
    recoverable: bool,
    help_url: str | None = None,
) -> _Pattern:
    return _Pattern(
        re.compile(pattern, re.I), category, severity, message, suggestion, recoverable, help_url
    )


_C = ErrorCategory
_S = Severity
_NOT_FOUND_HINT = "Install Claude Code CLI and ensure it is in your PATH."

# First match wins, so order matters.
_PATTERNS: list[_Pattern] = [
    _p(r"ENOENT", _C.CLI_NOT_FOUND, _S.ERROR, "Claude CLI not found", _NOT_FOUND_HINT, False, _INSTALL_URL),
    _p(r"command not found|claude.*not found", _C.CLI_NOT_FOUND, _S.ERROR,
       "Claude CLI not found", _NOT_FOUND_HINT, False, _INSTALL_URL),
    _p(r"is not recognized as an internal or external command", _C.CLI_NOT_FOUND, _S.ERROR,
       "Claude CLI not found", _NOT_FOUND_HINT, False, _INSTALL_URL),
    _p(r"not authenticated|authentication required|please login|unauthorized",
       _C.AUTHENTICATION, _S.ERROR, "Authentication required",
       'Run "claude login" in your terminal to authenticate.', False),
    _p(r"invalid.*api.*key|api.*key.*invalid", _C.AUTHENTICATION, _S.ERROR, "Invalid API key",
       'Check your API key configuration or re-authenticate with "claude login".', False),
    _p(r"expired.*token|token.*expired", _C.AUTHENTICATION, _S.ERROR, "Authentication expired",
       'Your session has expired. Run "claude login" to re-authenticate.', False),
    _p(r"rate.*limit|too many requests|429", _C.RATE_LIMIT, _S.WARNING, "Rate limit reached",
       "Please wait a moment before sending another message.", True),
    _p(r"quota.*exceeded|usage.*limit", _C.RATE_LIMIT, _S.ERROR, "Usage quota exceeded",
       "You have reached your usage limit. Check your plan or wait for the limit to reset.", False),
    _p(r"ECONNREFUSED|connection refused", _C.NETWORK, _S.ERROR, "Connection refused",
       "Check your internet connection and try again.", True),
    _p(r"ENOTFOUND|DNS|getaddrinfo", _C.NETWORK, _S.ERROR, "Unable to reach server",
       "Check your internet connection and DNS settings.", True),
    _p(r"ETIMEDOUT|timed out|timeout|no output for", _C.TIMEOUT, _S.WARNING, "Request timed out",
       "The request took too long. Try again or check your connection.", True),
    _p(r"network.*error|socket.*error|ENETUNREACH", _C.NETWORK, _S.ERROR, "Network error",
       "Check your internet connection and try again.", True),
    _p(r"EACCES|permission denied", _C.PERMISSION, _S.ERROR, "Permission denied",
       "Check file permissions or run with appropriate access rights.", False),
    _p(r"not allowed|forbidden|403", _C.PERMISSION, _S.ERROR, "Action not permitted",
       "You may not have permission to perform this action.", False),
    _p(r"session.*not found|invalid.*session", _C.SESSION, _S.WARNING, "Session not found",
       "The session may have expired. Start a new conversation.", True),
    _p(r"session.*expired", _C.SESSION, _S.WARNING, "Session expired",
       "Start a new conversation to continue.", True),
    _p(r"invalid.*input|validation.*error|malformed", _C.VALIDATION, _S.ERROR, "Invalid input",
       "Check your message and try again.", True),
    _p(r"message.*too long|content.*too large|payload.*too large", _C.VALIDATION, _S.WARNING,
       "Message too long", "Try sending a shorter message.", True),
    _p(r"500|internal.*server.*error", _C.UNKNOWN, _S.ERROR, "Server error",
       "An unexpected error occurred. Please try again later.", True),
    _p(r"502|503|504|bad gateway|service unavailable", _C.NETWORK, _S.WARNING,
       "Service temporarily unavailable",
       "The service is temporarily unavailable. Please try again in a moment.", True),
]

#: Categories worth retrying automatically.
_TRANSIENT = {ErrorCategory.NETWORK, ErrorCategory.TIMEOUT, ErrorCategory.RATE_LIMIT}


def classify_cli_error(message: str, code: str | None = None) -> CLIErrorInfo:
    """Match *message* (or *code*) against the known CLI failure patterns."""
    normalized = message.strip()
    for pattern in _PATTERNS:
        if pattern.regex.search(normalized) or (code and pattern.regex.search(code)):
            return CLIErrorInfo(
                original_message=normalized,
                message=pattern.message,
                category=pattern.category,
                severity=pattern.severity,
                recoverable=pattern.recoverable,
                suggestion=pattern.suggestion,
                help_url=pattern.help_url,
                code=code,
            )
    return CLIErrorInfo(
        original_message=normalized,
        message="An unexpected error occurred",
        category=ErrorCategory.UNKNOWN,
        severity=Severity.ERROR,
        recoverable=True,
        suggestion="Please try again. If the problem persists, check the CLI output for details.",
        code=code,
    )


def format_error_for_display(info: CLIErrorInfo) -> str:
    if info.suggestion:
        return f"{info.message}\n\n{info.suggestion}"
    return info.message


def should_retry(info: CLIErrorInfo) -> bool:
    return info.recoverable and info.category in _TRANSIENT


def retry_delay(info: CLIErrorInfo, attempt: int = 1) -> float:
    """Exponential backoff in seconds, capped at 30."""
    base = 5.0 if info.category is ErrorCategory.RATE_LIMIT else 1.0
    return min(base * 2 ** (attempt - 1), 30.0)
