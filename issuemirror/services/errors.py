"""Tracker error classification and the typed error surface"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import gitlab
import httpx
import requests
from sqlalchemy.exc import IntegrityError

logger = logging.getLogger(__name__)


class ErrorCode(str, enum.Enum):
    """Classified tracker failure"""

    RATE_LIMITED = "RATE_LIMITED"
    NETWORK = "NETWORK"
    DUPLICATE = "DUPLICATE"
    VALIDATION = "VALIDATION"
    UNKNOWN = "UNKNOWN"


# Codes of the error surface exposed to callers.
GITHUB_API_ERROR = "GITHUB_API_ERROR"
VALIDATION_ERROR = "VALIDATION_ERROR"

_RETRIABLE = frozenset({ErrorCode.RATE_LIMITED, ErrorCode.NETWORK})

_RATE_LIMIT_PATTERNS = ("rate limit", "abuse detection", "abuse rate")
_DUPLICATE_PATTERNS = (
    "already exists",
    "duplicate key",
    "unique constraint",
    "uniqueness violation",
    "duplicate entry",
)
_NETWORK_PATTERNS = (
    "econnreset",
    "econnrefused",
    "etimedout",
    "connection reset",
    "connection refused",
    "connection aborted",
    "timed out",
    "timeout",
    "socket hang up",
    "network error",
)

_NETWORK_TYPES = (
    httpx.TransportError,
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    ConnectionError,
    TimeoutError,
)


@dataclass(frozen=True)
class Classification:
    code: ErrorCode
    retriable: bool
    message: str
    status: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)


class MirrorSyncError(Exception):
    """Typed failure surfaced to callers of the mirror engine.

    `code` is GITHUB_API_ERROR (rate limit, network, unknown, unrecovered
    duplicate) or VALIDATION_ERROR; `details` carries the classification.
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        classification: Optional[Classification] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}
        self.classification = classification

    @property
    def retriable(self) -> bool:
        return bool(self.classification and self.classification.retriable)

    @classmethod
    def validation(cls, message: str, details: Optional[Dict[str, Any]] = None) -> "MirrorSyncError":
        return cls(VALIDATION_ERROR, message, details)

    @classmethod
    def from_classification(cls, classification: Classification, operation: str) -> "MirrorSyncError":
        code = VALIDATION_ERROR if classification.code == ErrorCode.VALIDATION else GITHUB_API_ERROR
        details: Dict[str, Any] = {
            "classification": classification.code.value,
            "retriable": classification.retriable,
        }
        if classification.status is not None:
            details["status"] = classification.status
        details.update(classification.details)
        return cls(
            code,
            f"Failed to {operation}: {classification.message}",
            details,
            classification=classification,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data

    def __repr__(self):
        return f"<MirrorSyncError(code={self.code}, message={self.message!r})>"


def _status_of(exc: BaseException) -> Optional[int]:
    response = getattr(exc, "response", None)
    for candidate in (
        getattr(response, "status_code", None),
        getattr(exc, "response_code", None),
        getattr(exc, "status_code", None),
        getattr(exc, "status", None),
    ):
        if candidate is None:
            continue
        try:
            return int(candidate)
        except (TypeError, ValueError):
            continue
    return None


def _headers_of(exc: BaseException) -> Mapping[str, Any]:
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None)
    if headers is None and isinstance(response, dict):
        headers = response.get("headers")
    if headers is None:
        return {}
    # httpx.Headers/requests' CaseInsensitiveDict already ignore case; plain dicts don't.
    return {str(k).lower(): v for k, v in dict(headers).items()}


def _message_of(exc: BaseException) -> str:
    parts = [str(exc)]
    if isinstance(exc, gitlab.exceptions.GitlabError) and exc.error_message:
        parts.append(str(exc.error_message))
    response = getattr(exc, "response", None)
    if isinstance(exc, httpx.HTTPStatusError):
        try:
            parts.append(response.text)
        except httpx.ResponseNotRead:
            pass
    return " ".join(p for p in parts if p).strip() or exc.__class__.__name__


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _rate_limit_details(headers: Mapping[str, Any]) -> Dict[str, Any]:
    details: Dict[str, Any] = {}
    for header, key in (
        ("retry-after", "retry_after"),
        ("x-ratelimit-reset", "reset"),
        ("x-ratelimit-remaining", "remaining"),
        ("x-ratelimit-limit", "limit"),
    ):
        value = _as_int(headers.get(header))
        if value is not None:
            details[key] = value
    return details


class ErrorClassifier:
    """Maps transport-level failures onto the small ErrorCode taxonomy."""

    def classify(self, exc: BaseException) -> Classification:
        message = _message_of(exc)
        lowered = message.lower()

        if isinstance(exc, IntegrityError):
            # NOT NULL / foreign-key violations are not a lost create race.
            if any(p in lowered for p in _DUPLICATE_PATTERNS):
                return self._result(ErrorCode.DUPLICATE, message)
            return self._result(ErrorCode.UNKNOWN, message)

        status = _status_of(exc)
        headers = _headers_of(exc)

        if isinstance(exc, _NETWORK_TYPES) and status is None:
            return self._result(ErrorCode.NETWORK, message)

        if self._is_rate_limited(status, headers, lowered):
            return self._result(
                ErrorCode.RATE_LIMITED, message, status, _rate_limit_details(headers)
            )

        if status == 409 or (
            status in (None, 400, 422) and any(p in lowered for p in _DUPLICATE_PATTERNS)
        ):
            return self._result(ErrorCode.DUPLICATE, message, status)

        if status is None and any(p in lowered for p in _NETWORK_PATTERNS):
            return self._result(ErrorCode.NETWORK, message)

        if status is not None and 400 <= status < 500:
            return self._result(ErrorCode.VALIDATION, message, status)

        return self._result(ErrorCode.UNKNOWN, message, status)

    @staticmethod
    def _is_rate_limited(status: Optional[int], headers: Mapping[str, Any], lowered: str) -> bool:
        if status == 429:
            return True
        mentions_limit = any(p in lowered for p in _RATE_LIMIT_PATTERNS)
        if status == 403:
            return str(headers.get("x-ratelimit-remaining", "")).strip() == "0" or mentions_limit
        return status is None and mentions_limit

    @staticmethod
    def _result(
        code: ErrorCode,
        message: str,
        status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Classification:
        return Classification(
            code=code,
            retriable=code in _RETRIABLE,
            message=message,
            status=status,
            details=details or {},
        )


def classify_error(exc: BaseException) -> Classification:
    """Module-level convenience wrapper around ErrorClassifier.classify."""
    return ErrorClassifier().classify(exc)
