"""Error taxonomy for migration runs.

Run-level errors (a source fetch failing, a missing dependency mapping) abort
the current run. Item-level errors (a target write being rejected) are caught
by the executor, recorded as a failed outcome and never abort a batch.
"""

from datetime import datetime
from typing import Any, Dict, Mapping, Optional


class MigrationError(Exception):
    """Base class for all migration errors."""

    def __init__(
        self,
        message: str,
        code: str = "MIGRATION_ERROR",
        retriable: bool = False,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.retriable = retriable
        self.context = context or {}
        self.timestamp = datetime.utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "type": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "retriable": self.retriable,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }


class ConfigurationError(MigrationError):
    """Missing or invalid credentials/settings."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", False, context)


class FetchError(MigrationError):
    """The source collection could not be read. Fatal for the run."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, f"FETCH_ERROR_{status or 'UNKNOWN'}", False, context)
        self.status = status


class DependencyError(MigrationError):
    """A prerequisite ID mapping is empty or missing."""

    def __init__(self, message: str, missing: Optional[str] = None):
        super().__init__(message, "DEPENDENCY_NOT_SATISFIED", False, {"missing": missing})
        self.missing = missing


class DuplicateError(MigrationError):
    """The target already holds an item with the same natural key."""

    def __init__(
        self,
        message: str,
        identifier: str = "",
        existing_id: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, "DUPLICATE_ITEM", False, context)
        self.identifier = identifier
        self.existing_id = existing_id


class TransientError(MigrationError):
    """A temporary failure (5xx, connection reset). Safe to retry."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, f"TRANSIENT_{status or 'NETWORK'}", True, context)
        self.status = status


class RateLimitError(TransientError):
    """The target rejected the request for exceeding its rate limit."""

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, 429, context)
        self.code = "RATE_LIMIT_EXCEEDED"
        self.retry_after = retry_after


class TargetWriteError(MigrationError):
    """The target rejected the payload (4xx other than 429). Not retried."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, f"TARGET_ERROR_{status or 'UNKNOWN'}", False, context)
        self.status = status


def is_retriable(error: BaseException) -> bool:
    """Check whether an error may succeed on retry."""
    if isinstance(error, MigrationError):
        return error.retriable
    return False


def extract_error_message(body: Any, default: str) -> str:
    """Pull the most specific message out of an API error body."""
    if isinstance(body, dict):
        if isinstance(body.get("title"), str):
            return body["title"]
        if isinstance(body.get("message"), str):
            return body["message"]
        errors = body.get("errors")
        if isinstance(errors, dict) and errors:
            return "; ".join(f"{k}: {v}" for k, v in errors.items())
        if isinstance(errors, list) and errors:
            return "; ".join(
                e.get("message", str(e)) if isinstance(e, dict) else str(e)
                for e in errors
            )
    if isinstance(body, list) and body and isinstance(body[0], dict):
        # BigCommerce v2 returns a list of {status, message}
        return body[0].get("message", default)
    return default


def _retry_after_seconds(headers: Mapping[str, str]) -> Optional[float]:
    reset_ms = headers.get("X-Rate-Limit-Time-Reset-Ms") or headers.get("x-rate-limit-time-reset-ms")
    if reset_ms:
        try:
            return int(reset_ms) / 1000.0
        except ValueError:
            pass

    retry_after = headers.get("Retry-After") or headers.get("retry-after")
    if retry_after:
        try:
            return float(retry_after)
        except ValueError:
            pass

    return None


def classify_http_error(
    status: int,
    body: Any = None,
    headers: Optional[Mapping[str, str]] = None,
    context: Optional[Dict[str, Any]] = None
) -> MigrationError:
    """
    Map a failed target response to the error taxonomy.

    Args:
        status: HTTP status code
        body: Decoded response body (dict, list or text)
        headers: Response headers
        context: Extra context to attach

    Returns:
        DuplicateError, RateLimitError, TransientError or TargetWriteError
    """
    headers = headers or {}
    message = extract_error_message(body, f"HTTP {status}")

    if status == 429:
        return RateLimitError(message, _retry_after_seconds(headers), context)

    if status >= 500:
        return TransientError(message, status, context)

    lowered = message.lower()
    if status == 409 or (status == 422 and ("exist" in lowered or "duplicate" in lowered or "unique" in lowered)):
        return DuplicateError(message, context=context)

    return TargetWriteError(message, status, context)
