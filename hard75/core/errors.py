"""
75 Hard Tracker — Error classification.

Turns whatever went wrong (an exception, a bare message, an HTTP error
payload) into an AppError with a category, a severity and a message that is
safe to show to the user. Keeps a bounded history for diagnostics.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    AUTH = "auth"
    DATABASE = "database"
    NETWORK = "network"
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Marker message for writes parked in the pending-change queue.
QUEUED_FOR_SYNC = "Offline - queued for sync"

_MSG_AUTH = "Please sign in again to continue."
_MSG_VALIDATION = "Please check your input and try again."
_MSG_NETWORK = "Unable to connect to the server. Please check your internet connection."
_MSG_DATABASE = "Unable to save your data. Please try again in a moment."
_MSG_SERVER = "Server error. Please try again in a moment."
_MSG_CONFIG = "Application configuration is incomplete. Please check your environment variables."
_MSG_NOT_FOUND = "We couldn't find that item. It may have been deleted."
_MSG_DEFAULT = "Something went wrong. Please try again."


@dataclass
class AppError:
    """A classified error, ready to be logged or shown."""

    code: str
    message: str
    user_message: str
    severity: Severity
    category: ErrorCategory
    details: Any = None
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def is_queued(self) -> bool:
        """True when the failed write was kept for a later sync."""
        return self.message == QUEUED_FOR_SYNC


# ---------------------------------------------------------------------------
# Error sources — one constructor per kind of input
# ---------------------------------------------------------------------------


@dataclass
class ExceptionSource:
    exc: BaseException


@dataclass
class MessageSource:
    message: str


@dataclass
class HttpErrorSource:
    status: int | None
    message: str
    body: Any = None


ErrorSource = ExceptionSource | MessageSource | HttpErrorSource


# (substring, code, category, severity, user message); first match wins
_EXCEPTION_PATTERNS: list[tuple[tuple[str, ...], str, ErrorCategory, Severity, str]] = [
    (("Missing", "environment"), "MISSING_ENV_VAR", ErrorCategory.CONFIGURATION, Severity.CRITICAL, _MSG_CONFIG),
    (("fetch",), "NETWORK_ERROR", ErrorCategory.NETWORK, Severity.HIGH, _MSG_NETWORK),
    (("Unauthorized",), "AUTH_ERROR", ErrorCategory.AUTH, Severity.MEDIUM, _MSG_AUTH),
    (("Database error",), "DATABASE_ERROR", ErrorCategory.DATABASE, Severity.HIGH, _MSG_DATABASE),
    (("validation",), "VALIDATION_ERROR", ErrorCategory.VALIDATION, Severity.LOW, _MSG_VALIDATION),
]

# Transport failures that never mention "fetch" in their message.
_NETWORK_EXCEPTION_NAMES = (
    "ConnectError",
    "ConnectTimeout",
    "ReadTimeout",
    "WriteTimeout",
    "PoolTimeout",
    "TimeoutException",
    "NetworkError",
    "RemoteProtocolError",
    "ConnectionError",
)


def _default_user_message(category: ErrorCategory) -> str:
    return {
        ErrorCategory.AUTH: _MSG_AUTH,
        ErrorCategory.VALIDATION: _MSG_VALIDATION,
        ErrorCategory.NETWORK: _MSG_NETWORK,
        ErrorCategory.DATABASE: _MSG_DATABASE,
        ErrorCategory.CONFIGURATION: _MSG_CONFIG,
    }.get(category, _MSG_DEFAULT)


def classify(
    source: ErrorSource,
    category: ErrorCategory = ErrorCategory.UNKNOWN,
    severity: Severity = Severity.MEDIUM,
) -> AppError:
    """Build an AppError from a source without recording it anywhere.

    Exceptions are classified by message patterns; HTTP sources by status.
    When nothing matches, the caller's category and severity are kept.
    """
    code = "UNKNOWN_ERROR"
    user_message = _MSG_DEFAULT
    details: Any = None

    if isinstance(source, ExceptionSource):
        exc = source.exc
        message = str(exc) or type(exc).__name__
        details = exc
        for needles, p_code, p_cat, p_sev, p_msg in _EXCEPTION_PATTERNS:
            if all(n in message for n in needles):
                code, category, severity, user_message = p_code, p_cat, p_sev, p_msg
                break
        else:
            if any(cls.__name__ in _NETWORK_EXCEPTION_NAMES for cls in type(exc).__mro__):
                code, category, severity, user_message = (
                    "NETWORK_ERROR", ErrorCategory.NETWORK, Severity.HIGH, _MSG_NETWORK,
                )
            elif category is not ErrorCategory.UNKNOWN:
                user_message = _default_user_message(category)

    elif isinstance(source, HttpErrorSource):
        message = source.message
        details = {"status": source.status, "body": source.body}
        status = source.status
        if status == 401:
            code, category, user_message = "AUTH_ERROR", ErrorCategory.AUTH, _MSG_AUTH
            severity = Severity.MEDIUM
        elif status == 404:
            code, category, severity, user_message = (
                "NOT_FOUND", ErrorCategory.VALIDATION, Severity.LOW, _MSG_NOT_FOUND,
            )
        elif status is not None and 400 <= status < 500:
            code, category, severity, user_message = (
                "VALIDATION_ERROR", ErrorCategory.VALIDATION, Severity.LOW, _MSG_VALIDATION,
            )
        elif status is not None and status >= 500:
            code, category, severity, user_message = (
                "SERVER_ERROR", ErrorCategory.DATABASE, Severity.HIGH, _MSG_SERVER,
            )
        else:
            code, category, severity, user_message = (
                "NETWORK_ERROR", ErrorCategory.NETWORK, Severity.HIGH, _MSG_NETWORK,
            )

    else:
        message = source.message
        if category is not ErrorCategory.UNKNOWN:
            user_message = _default_user_message(category)
        if category is ErrorCategory.VALIDATION:
            code = "VALIDATION_ERROR"
        elif category is ErrorCategory.CONFIGURATION:
            code, severity = "MISSING_ENV_VAR", Severity.CRITICAL

    return AppError(
        code=code,
        message=message,
        user_message=user_message,
        severity=severity,
        category=category,
        details=details,
    )


def as_source(error: Any) -> ErrorSource:
    """Wrap a raw value in the matching ErrorSource.

    Only used at the edges where a value of unknown shape arrives; internal
    callers build sources directly.
    """
    if isinstance(error, (ExceptionSource, MessageSource, HttpErrorSource)):
        return error
    if isinstance(error, BaseException):
        return ExceptionSource(error)
    if isinstance(error, dict) and "error" in error:
        return HttpErrorSource(error.get("status"), str(error["error"]), error)
    return MessageSource(str(error))


class ErrorHandler:
    """Classifies errors and keeps the most recent ones in memory."""

    def __init__(self, max_errors: int = 100) -> None:
        self._errors: deque[AppError] = deque(maxlen=max_errors)

    def handle(
        self,
        source: ErrorSource,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: Severity = Severity.MEDIUM,
        log: bool = True,
    ) -> AppError:
        """Classify, record and (optionally) log an error."""
        app_error = classify(source, category, severity)
        self._errors.appendleft(app_error)
        if log:
            self._log(app_error)
        return app_error

    @staticmethod
    def _log(error: AppError) -> None:
        level = (
            logging.ERROR
            if error.severity in (Severity.CRITICAL, Severity.HIGH)
            else logging.WARNING
        )
        logger.log(
            level,
            "[%s] %s: %s (severity=%s, at=%s)",
            error.category.value.upper(),
            error.code,
            error.message,
            error.severity.value,
            error.timestamp.isoformat(),
        )

    def get_errors(self, category: ErrorCategory | None = None) -> list[AppError]:
        """Recent errors, newest first, optionally filtered by category."""
        if category is None:
            return list(self._errors)
        return [e for e in self._errors if e.category is category]

    def clear_errors(self) -> None:
        self._errors.clear()

    def get_error_stats(self) -> dict[str, int]:
        stats: dict[str, int] = {}
        for error in self._errors:
            stats[error.category.value] = stats.get(error.category.value, 0) + 1
        return stats

    def has_critical_errors(self) -> bool:
        return any(e.severity is Severity.CRITICAL for e in self._errors)

    def get_user_message(self, error: AppError | ErrorSource) -> str:
        if isinstance(error, AppError):
            return error.user_message
        return classify(error).user_message

    # Shortcuts for the common call sites

    def handle_api_error(self, source: ErrorSource) -> AppError:
        return self.handle(source, ErrorCategory.NETWORK, Severity.HIGH)

    def handle_auth_error(self, source: ErrorSource) -> AppError:
        return self.handle(source, ErrorCategory.AUTH, Severity.MEDIUM)

    def handle_database_error(self, source: ErrorSource) -> AppError:
        return self.handle(source, ErrorCategory.DATABASE, Severity.HIGH)

    def handle_validation_error(self, source: ErrorSource) -> AppError:
        return self.handle(source, ErrorCategory.VALIDATION, Severity.LOW)

    def handle_configuration_error(self, source: ErrorSource) -> AppError:
        return self.handle(source, ErrorCategory.CONFIGURATION, Severity.CRITICAL)


def is_auth_error(error: AppError) -> bool:
    return error.category is ErrorCategory.AUTH


def is_database_error(error: AppError) -> bool:
    return error.category is ErrorCategory.DATABASE


def is_network_error(error: AppError) -> bool:
    return error.category is ErrorCategory.NETWORK


def is_validation_error(error: AppError) -> bool:
    return error.category is ErrorCategory.VALIDATION


def is_transient(error: AppError) -> bool:
    """Failures worth retrying later: the request may succeed unchanged."""
    return error.category in (ErrorCategory.NETWORK, ErrorCategory.DATABASE)


# ---------------------------------------------------------------------------
# Presentation policy
# ---------------------------------------------------------------------------


@dataclass
class Notice:
    """How a UI should surface a message."""

    text: str
    level: str                        # "success" | "error" | "warning" | "critical"
    auto_dismiss_seconds: float | None
    offer_reload: bool = False


def notice_for(error: AppError) -> Notice:
    """Critical and configuration errors stay up and offer a reload."""
    if error.severity is Severity.CRITICAL or error.category is ErrorCategory.CONFIGURATION:
        return Notice(error.user_message, "critical", None, offer_reload=True)
    if error.category is ErrorCategory.VALIDATION:
        return Notice(error.user_message, "warning", 3)
    return Notice(error.user_message, "error", 5)


def success_notice(text: str) -> Notice:
    return Notice(text, "success", 3)
