# -*- coding: utf-8 -*-
"""
Verification Engine Configuration

Centralized configuration for the verification engine covering:
- Evidence upload policy (maximum size, allowed MIME types)
- Evidence pipeline execution (worker pool size, parse row limit)
- Evidence archival to the content-addressable store (toggle, retries)
- Verification lifecycle (auto-resolution, default validity period)
- IPFS evidence store client settings

All settings can be overridden via environment variables with the
``ECOVERIFY_`` prefix (e.g. ``ECOVERIFY_MAX_WORKERS``).

Example:
    >>> from ecoverify.config import get_config
    >>> cfg = get_config()
    >>> print(cfg.max_file_size_bytes, cfg.auto_resolve)
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from typing import Any, List, Optional

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Environment variable prefix
# ---------------------------------------------------------------------------

_ENV_PREFIX = "ECOVERIFY_"

_DEFAULT_ALLOWED_MIME_TYPES = [
    "application/pdf",
    "application/json",
    "text/csv",
    "text/plain",
    "image/jpeg",
    "image/png",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
]


# ---------------------------------------------------------------------------
# VerificationConfig
# ---------------------------------------------------------------------------


@dataclass
class VerificationConfig:
    """Complete configuration for the verification engine.

    Attributes:
        max_file_size_bytes: Largest evidence file accepted by attach_evidence.
        allowed_mime_types: MIME types accepted by attach_evidence.
        confidence_threshold: Default minimum confidence for methodologies
            registered without one and without a handler.
        max_workers: Thread pool size for per-file evidence processing.
        max_parse_rows: Row limit applied when parsing structured evidence.
        archive_verified_evidence: Whether verified files are archived to
            the evidence store.
        archive_retries: Attempts made for each archival put.
        auto_resolve: Resolve verified/rejected directly after a
            verification run instead of waiting for reviewer sign-off.
        default_validation_period_days: Validity of a verified result when
            the methodology does not define one. 0 means no expiry.
        enable_provenance: Whether to record provenance chain entries.
        evidence_store_backend: Evidence store used by the service facade,
            ``memory`` or ``ipfs``.
        ipfs_api_url: Base URL of the IPFS (kubo) RPC API.
        ipfs_timeout_seconds: Per-request timeout for the IPFS client.
        ipfs_retries: Attempts made for each IPFS retrieval.
    """

    # -- Evidence upload policy ------------------------------------------------
    max_file_size_bytes: int = 50 * 1024 * 1024
    allowed_mime_types: List[str] = field(
        default_factory=lambda: list(_DEFAULT_ALLOWED_MIME_TYPES),
    )

    # -- Methodology defaults --------------------------------------------------
    confidence_threshold: float = 0.8

    # -- Pipeline execution ----------------------------------------------------
    max_workers: int = 4
    max_parse_rows: int = 10000

    # -- Archival --------------------------------------------------------------
    archive_verified_evidence: bool = True
    archive_retries: int = 3

    # -- Lifecycle -------------------------------------------------------------
    auto_resolve: bool = False
    default_validation_period_days: int = 365
    enable_provenance: bool = True

    # -- Evidence store --------------------------------------------------------
    evidence_store_backend: str = "memory"
    ipfs_api_url: str = "http://localhost:5001"
    ipfs_timeout_seconds: int = 30
    ipfs_retries: int = 3

    # ------------------------------------------------------------------
    # Factory helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_env(cls) -> VerificationConfig:
        """Build a VerificationConfig from environment variables.

        Every field can be overridden via ``ECOVERIFY_<FIELD_UPPER>``.
        Boolean values accept ``true/1/yes`` (case-insensitive). Lists are
        comma-separated.

        Returns:
            Populated VerificationConfig instance.
        """
        prefix = _ENV_PREFIX
        defaults = cls()

        def _env(name: str, default: Any = None) -> Optional[str]:
            return os.environ.get(f"{prefix}{name}", default)

        def _bool(name: str, default: bool) -> bool:
            val = _env(name)
            if val is None:
                return default
            return val.lower() in ("true", "1", "yes")

        def _int(name: str, default: int) -> int:
            val = _env(name)
            if val is None:
                return default
            try:
                return int(val)
            except ValueError:
                logger.warning(
                    "Invalid integer for %s%s=%s, using default %d",
                    prefix, name, val, default,
                )
                return default

        def _float(name: str, default: float) -> float:
            val = _env(name)
            if val is None:
                return default
            try:
                return float(val)
            except ValueError:
                logger.warning(
                    "Invalid float for %s%s=%s, using default %s",
                    prefix, name, val, default,
                )
                return default

        def _list(name: str, default: List[str]) -> List[str]:
            val = _env(name)
            if val is None:
                return list(default)
            return [item.strip() for item in val.split(",") if item.strip()]

        config = cls(
            max_file_size_bytes=_int(
                "MAX_FILE_SIZE_BYTES", defaults.max_file_size_bytes,
            ),
            allowed_mime_types=_list(
                "ALLOWED_MIME_TYPES", defaults.allowed_mime_types,
            ),
            confidence_threshold=_float(
                "CONFIDENCE_THRESHOLD", defaults.confidence_threshold,
            ),
            max_workers=_int("MAX_WORKERS", defaults.max_workers),
            max_parse_rows=_int("MAX_PARSE_ROWS", defaults.max_parse_rows),
            archive_verified_evidence=_bool(
                "ARCHIVE_VERIFIED_EVIDENCE", defaults.archive_verified_evidence,
            ),
            archive_retries=_int("ARCHIVE_RETRIES", defaults.archive_retries),
            auto_resolve=_bool("AUTO_RESOLVE", defaults.auto_resolve),
            default_validation_period_days=_int(
                "DEFAULT_VALIDATION_PERIOD_DAYS",
                defaults.default_validation_period_days,
            ),
            enable_provenance=_bool(
                "ENABLE_PROVENANCE", defaults.enable_provenance,
            ),
            evidence_store_backend=_env(
                "EVIDENCE_STORE_BACKEND", defaults.evidence_store_backend,
            ).lower(),
            ipfs_api_url=_env("IPFS_API_URL", defaults.ipfs_api_url),
            ipfs_timeout_seconds=_int(
                "IPFS_TIMEOUT_SECONDS", defaults.ipfs_timeout_seconds,
            ),
            ipfs_retries=_int("IPFS_RETRIES", defaults.ipfs_retries),
        )

        logger.info(
            "VerificationConfig loaded: max_file_size=%d, workers=%d, "
            "archive=%s/%d retries, auto_resolve=%s",
            config.max_file_size_bytes,
            config.max_workers,
            config.archive_verified_evidence,
            config.archive_retries,
            config.auto_resolve,
        )
        return config


# ---------------------------------------------------------------------------
# Thread-safe singleton accessor
# ---------------------------------------------------------------------------

_config_instance: Optional[VerificationConfig] = None
_config_lock = threading.Lock()


def get_config() -> VerificationConfig:
    """Return the singleton VerificationConfig, creating from env if needed.

    Returns:
        VerificationConfig singleton instance.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = VerificationConfig.from_env()
    return _config_instance


def set_config(config: VerificationConfig) -> None:
    """Replace the singleton VerificationConfig (useful for testing).

    Args:
        config: New configuration to install.
    """
    global _config_instance
    with _config_lock:
        _config_instance = config
    logger.info("VerificationConfig replaced programmatically")


def reset_config() -> None:
    """Reset the singleton (primarily for test teardown)."""
    global _config_instance
    with _config_lock:
        _config_instance = None


__all__ = [
    "VerificationConfig",
    "get_config",
    "set_config",
    "reset_config",
]
