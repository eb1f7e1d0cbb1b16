# -*- coding: utf-8 -*-
"""Tests for VerificationConfig and the config singleton."""

import pytest

from ecoverify.config import VerificationConfig, get_config, reset_config, set_config


class TestDefaults:
    """Default values."""

    def test_upload_policy_defaults(self):
        cfg = VerificationConfig()
        assert cfg.max_file_size_bytes == 50 * 1024 * 1024
        assert "application/pdf" in cfg.allowed_mime_types
        assert "text/csv" in cfg.allowed_mime_types
        assert "application/zip" not in cfg.allowed_mime_types

    def test_lifecycle_defaults(self):
        cfg = VerificationConfig()
        assert cfg.auto_resolve is False
        assert cfg.default_validation_period_days == 365
        assert cfg.confidence_threshold == 0.8
        assert cfg.evidence_store_backend == "memory"

    def test_mime_list_not_shared(self):
        """Each instance gets its own MIME list."""
        a, b = VerificationConfig(), VerificationConfig()
        a.allowed_mime_types.append("application/zip")
        assert "application/zip" not in b.allowed_mime_types


class TestFromEnv:
    """Environment overrides with the ECOVERIFY_ prefix."""

    def test_reads_typed_values(self, monkeypatch):
        monkeypatch.setenv("ECOVERIFY_MAX_WORKERS", "8")
        monkeypatch.setenv("ECOVERIFY_AUTO_RESOLVE", "yes")
        monkeypatch.setenv("ECOVERIFY_CONFIDENCE_THRESHOLD", "0.9")
        monkeypatch.setenv("ECOVERIFY_ALLOWED_MIME_TYPES", "text/csv, application/json")
        monkeypatch.setenv("ECOVERIFY_EVIDENCE_STORE_BACKEND", "IPFS")

        cfg = VerificationConfig.from_env()

        assert cfg.max_workers == 8
        assert cfg.auto_resolve is True
        assert cfg.confidence_threshold == pytest.approx(0.9)
        assert cfg.allowed_mime_types == ["text/csv", "application/json"]
        assert cfg.evidence_store_backend == "ipfs"

    def test_invalid_numbers_fall_back_to_defaults(self, monkeypatch):
        monkeypatch.setenv("ECOVERIFY_MAX_WORKERS", "many")
        monkeypatch.setenv("ECOVERIFY_CONFIDENCE_THRESHOLD", "high")

        cfg = VerificationConfig.from_env()

        assert cfg.max_workers == 4
        assert cfg.confidence_threshold == 0.8

    def test_false_boolean(self, monkeypatch):
        monkeypatch.setenv("ECOVERIFY_ENABLE_PROVENANCE", "off")
        assert VerificationConfig.from_env().enable_provenance is False


class TestSingleton:
    """get_config / set_config / reset_config."""

    def test_set_and_get(self):
        cfg = VerificationConfig(max_workers=1)
        set_config(cfg)
        assert get_config() is cfg

    def test_reset_rebuilds_from_env(self, monkeypatch):
        reset_config()
        monkeypatch.setenv("ECOVERIFY_ARCHIVE_RETRIES", "7")
        first = get_config()
        assert first.archive_retries == 7
        assert get_config() is first
