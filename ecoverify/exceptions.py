"""Verification Engine Exception Hierarchy.

Exception hierarchy for the ecoverify engine with rich error context for
debugging, monitoring and HTTP error mapping.

Exception Hierarchy:
    VerificationException (base)
    ├── PreconditionError
    │   ├── NotFoundError
    │   ├── MethodologyUnavailableError
    │   ├── DuplicateVerificationError
    │   ├── DuplicateMethodologyError
    │   └── InvalidTransitionError
    ├── EvidenceError
    │   ├── EvidencePolicyError
    │   ├── FileParseError
    │   └── EvidenceStoreError
    └── ConfigurationError

Precondition errors make a request logically meaningless and are always
surfaced to the caller. Evidence errors are mostly caught inside the
pipeline and turned into lower scores or grades; only ``EvidencePolicyError``
(an upload that breaks size/MIME policy) escapes to the caller.

Example:
    >>> from ecoverify.exceptions import DuplicateVerificationError
    >>> raise DuplicateVerificationError(
    ...     message="Verification already exists for credit 42 and method vwba-v2",
    ...     context={"credit_id": "42", "method_id": "vwba-v2"},
    ... )
"""

from typing import Any, Dict, Optional
from datetime import datetime, timezone
import json
import re
import traceback as tb


# ==============================================================================
# Base Exception
# ==============================================================================

class VerificationException(Exception):
    """Base exception for all verification engine errors.

    Attributes:
        message: Human-readable error message
        error_code: Unique error identifier (e.g., "EV_PRECONDITION_NOT_FOUND_ERROR")
        context: Dictionary with error-specific details
        timestamp: When the error occurred (UTC)
        traceback_str: Stack at the point of construction
    """

    ERROR_PREFIX = "EV"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        """Initialize exception with rich context.

        Args:
            message: Human-readable error message
            error_code: Unique error identifier (auto-generated if not provided)
            context: Dictionary with error-specific details
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self._generate_error_code()
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)
        self.traceback_str = "".join(tb.format_stack()[:-1])

    def _generate_error_code(self) -> str:
        """Generate an error code from the class name.

        Returns:
            Error code like "EV_PRECONDITION_NOT_FOUND_ERROR"
        """
        class_name = self.__class__.__name__
        error_type = re.sub(r'(?<!^)(?=[A-Z])', '_', class_name).upper()
        return f"{self.ERROR_PREFIX}_{error_type}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for serialization.

        Returns:
            Dictionary with all error details
        """
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "traceback": self.traceback_str,
        }

    def to_json(self) -> str:
        """Convert exception to JSON string."""
        return json.dumps(self.to_dict(), indent=2, default=str)

    def __str__(self) -> str:
        return f"[{self.error_code}] - {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message='{self.message}', "
            f"error_code='{self.error_code}')"
        )


# ==============================================================================
# Precondition Exceptions
# ==============================================================================

class PreconditionError(VerificationException):
    """A submission or lifecycle action cannot proceed.

    Raised synchronously to the caller and never downgraded to a score.
    """
    ERROR_PREFIX = "EV_PRECONDITION"


class NotFoundError(PreconditionError):
    """A referenced credit, methodology, result or evidence file does not exist.

    Example:
        >>> raise NotFoundError(
        ...     message="Credit 99999 not found",
        ...     entity_type="credit",
        ...     entity_id="99999",
        ... )
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
    ):
        context = context or {}
        if entity_type:
            context["entity_type"] = entity_type
        if entity_id is not None:
            context["entity_id"] = entity_id
        super().__init__(message, context=context)


class MethodologyUnavailableError(PreconditionError):
    """The methodology is unknown, inactive or has no registered handler."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        method_id: Optional[str] = None,
    ):
        context = context or {}
        if method_id:
            context["method_id"] = method_id
        super().__init__(message, context=context)


class DuplicateVerificationError(PreconditionError):
    """An active verification already exists for the (credit, methodology) pair."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        existing_result_id: Optional[str] = None,
    ):
        context = context or {}
        if existing_result_id:
            context["existing_result_id"] = existing_result_id
        super().__init__(message, context=context)


class DuplicateMethodologyError(PreconditionError):
    """A methodology with the same id is already registered."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        method_id: Optional[str] = None,
    ):
        context = context or {}
        if method_id:
            context["method_id"] = method_id
        super().__init__(message, context=context)


class InvalidTransitionError(PreconditionError):
    """A lifecycle action is not allowed from the record's current status.

    Example:
        >>> raise InvalidTransitionError(
        ...     message="Cannot revoke a pending verification",
        ...     current_status="pending",
        ...     target_status="revoked",
        ... )
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        current_status: Optional[str] = None,
        target_status: Optional[str] = None,
    ):
        context = context or {}
        if current_status:
            context["current_status"] = current_status
        if target_status:
            context["target_status"] = target_status
        super().__init__(message, context=context)


# ==============================================================================
# Evidence Exceptions
# ==============================================================================

class EvidenceError(VerificationException):
    """Base exception for evidence handling errors."""
    ERROR_PREFIX = "EV_EVIDENCE"


class EvidencePolicyError(EvidenceError):
    """An evidence submission violates size or MIME type policy."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        file_name: Optional[str] = None,
    ):
        context = context or {}
        if file_name:
            context["file_name"] = file_name
        super().__init__(message, context=context)


class FileParseError(EvidenceError):
    """Structured file content could not be parsed.

    The pipeline treats this as "no structured data available".
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        file_name: Optional[str] = None,
        detected_format: Optional[str] = None,
        cause: Optional[Exception] = None,
    ):
        context = context or {}
        if file_name:
            context["file_name"] = file_name
        if detected_format:
            context["detected_format"] = detected_format
        if cause:
            context["cause"] = str(cause)
            context["cause_type"] = type(cause).__name__
        super().__init__(message, context=context)


class EvidenceStoreError(EvidenceError):
    """The content-addressable evidence store failed a put or get."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        locator: Optional[str] = None,
        attempts: Optional[int] = None,
    ):
        context = context or {}
        if locator:
            context["locator"] = locator
        if attempts is not None:
            context["attempts"] = attempts
        super().__init__(message, context=context)


# ==============================================================================
# Configuration Exceptions
# ==============================================================================

class ConfigurationError(VerificationException):
    """Invalid engine or methodology configuration."""
    ERROR_PREFIX = "EV_CONFIG"


# ==============================================================================
# Utilities
# ==============================================================================

def format_exception_chain(exc: Exception) -> str:
    """Format an exception and its causes for logging.

    Args:
        exc: Exception to format

    Returns:
        Formatted string with full exception chain
    """
    lines = []
    current: Optional[BaseException] = exc

    while current is not None:
        if isinstance(current, VerificationException):
            lines.append(str(current))
            lines.append(f"  Context: {current.context}")
        else:
            lines.append(f"{type(current).__name__}: {current}")
        current = getattr(current, "__cause__", None)

    return "\n".join(lines)


def is_retriable(exc: Exception) -> bool:
    """Check whether an operation that raised ``exc`` may be retried.

    Only evidence store failures are retriable; precondition and policy
    errors will fail the same way again.

    Args:
        exc: Exception to check

    Returns:
        True if operation should be retried
    """
    if isinstance(exc, EvidenceStoreError):
        return True
    return False


__all__ = [
    "VerificationException",
    "PreconditionError",
    "NotFoundError",
    "MethodologyUnavailableError",
    "DuplicateVerificationError",
    "DuplicateMethodologyError",
    "InvalidTransitionError",
    "EvidenceError",
    "EvidencePolicyError",
    "FileParseError",
    "EvidenceStoreError",
    "ConfigurationError",
    "format_exception_chain",
    "is_retriable",
]
