"""Tests for the verification engine exception hierarchy.

Covers:
- Base exception context and serialization
- Error code generation per family
- Keyword context helpers on subclasses
- Exception utilities
"""

import json
from datetime import datetime

import pytest

from ecoverify.exceptions import (
    ConfigurationError,
    DuplicateMethodologyError,
    DuplicateVerificationError,
    EvidenceError,
    EvidencePolicyError,
    EvidenceStoreError,
    FileParseError,
    InvalidTransitionError,
    MethodologyUnavailableError,
    NotFoundError,
    PreconditionError,
    VerificationException,
    format_exception_chain,
    is_retriable,
)


# ==============================================================================
# Base Exception Tests
# ==============================================================================

class TestVerificationException:
    """Tests for base VerificationException."""

    def test_create_basic_exception(self):
        """Can create basic exception with message."""
        exc = VerificationException("Something went wrong")

        assert exc.message == "Something went wrong"
        assert exc.error_code == "EV_VERIFICATION_EXCEPTION"
        assert exc.context == {}
        assert isinstance(exc.timestamp, datetime)

    def test_explicit_error_code_and_context(self):
        """Explicit error code and context are kept."""
        exc = VerificationException(
            "Test error", error_code="EV_TEST_001", context={"count": 42},
        )

        assert exc.error_code == "EV_TEST_001"
        assert exc.context == {"count": 42}

    def test_str_representation(self):
        """String form is '[code] - message'."""
        exc = VerificationException("boom", error_code="EV_X")
        assert str(exc) == "[EV_X] - boom"

    def test_to_dict_and_json(self):
        """Serialization includes type, code, message and context."""
        exc = NotFoundError("Credit 7 not found", entity_type="credit", entity_id="7")

        data = exc.to_dict()
        assert data["error_type"] == "NotFoundError"
        assert data["error_code"] == "EV_PRECONDITION_NOT_FOUND_ERROR"
        assert data["context"] == {"entity_type": "credit", "entity_id": "7"}
        assert "traceback" in data

        parsed = json.loads(exc.to_json())
        assert parsed["message"] == "Credit 7 not found"


# ==============================================================================
# Hierarchy Tests
# ==============================================================================

class TestHierarchy:
    """Subclass relationships and error code prefixes."""

    @pytest.mark.parametrize("cls", [
        NotFoundError,
        MethodologyUnavailableError,
        DuplicateVerificationError,
        DuplicateMethodologyError,
        InvalidTransitionError,
    ])
    def test_precondition_family(self, cls):
        """Precondition errors share the EV_PRECONDITION prefix."""
        exc = cls("nope")
        assert isinstance(exc, PreconditionError)
        assert isinstance(exc, VerificationException)
        assert exc.error_code.startswith("EV_PRECONDITION_")

    @pytest.mark.parametrize("cls", [EvidencePolicyError, FileParseError, EvidenceStoreError])
    def test_evidence_family(self, cls):
        """Evidence errors share the EV_EVIDENCE prefix."""
        exc = cls("bad file")
        assert isinstance(exc, EvidenceError)
        assert exc.error_code.startswith("EV_EVIDENCE_")

    def test_configuration_error_code(self):
        """Configuration errors use EV_CONFIG."""
        assert ConfigurationError("x").error_code == "EV_CONFIG_CONFIGURATION_ERROR"


class TestContextHelpers:
    """Keyword arguments land in the context dictionary."""

    def test_duplicate_verification_context(self):
        exc = DuplicateVerificationError(
            "Verification already exists",
            context={"credit_id": "42"},
            existing_result_id="VER-abc",
        )
        assert exc.context == {"credit_id": "42", "existing_result_id": "VER-abc"}

    def test_invalid_transition_context(self):
        exc = InvalidTransitionError(
            "Cannot revoke", current_status="pending", target_status="revoked",
        )
        assert exc.context["current_status"] == "pending"
        assert exc.context["target_status"] == "revoked"

    def test_file_parse_error_records_cause(self):
        cause = ValueError("Expecting value")
        exc = FileParseError(
            "File parsing failed", file_name="a.json", detected_format="json", cause=cause,
        )
        assert exc.context["cause"] == "Expecting value"
        assert exc.context["cause_type"] == "ValueError"
        assert exc.context["detected_format"] == "json"

    def test_store_error_attempts(self):
        exc = EvidenceStoreError("down", locator="mem://x", attempts=3)
        assert exc.context == {"locator": "mem://x", "attempts": 3}


# ==============================================================================
# Utility Tests
# ==============================================================================

class TestUtilities:
    """Tests for exception utilities."""

    def test_format_exception_chain(self):
        """Chained causes are listed in order."""
        try:
            try:
                raise ConnectionError("node unreachable")
            except ConnectionError as inner:
                raise EvidenceStoreError("IPFS retrieval failed", locator="bafy") from inner
        except EvidenceStoreError as exc:
            formatted = format_exception_chain(exc)

        lines = formatted.splitlines()
        assert "IPFS retrieval failed" in lines[0]
        assert "Context:" in lines[1]
        assert lines[2] == "ConnectionError: node unreachable"

    def test_is_retriable(self):
        """Only evidence store failures are retriable."""
        assert is_retriable(EvidenceStoreError("down"))
        assert not is_retriable(NotFoundError("missing"))
        assert not is_retriable(EvidencePolicyError("too big"))
        assert not is_retriable(ValueError("x"))
