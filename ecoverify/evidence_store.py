# -*- coding: utf-8 -*-
"""
Evidence Store Gateway

Content-addressable storage for evidence bytes. The pipeline archives
verified files through ``put`` and retrieves bytes for re-hashing through
``get``. Store-side integrity flags are informational only; the pipeline
always recomputes the hash itself.

Implementations:
    - InMemoryEvidenceStore: process-local dictionary keyed by SHA-256
    - IPFSEvidenceStore: kubo RPC API over HTTP via requests

Example:
    >>> from ecoverify.evidence_store import InMemoryEvidenceStore
    >>> store = InMemoryEvidenceStore()
    >>> locator = store.put(b"flow readings", {"file_name": "flow.csv"})
    >>> store.get(locator).content
    b'flow readings'
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from ecoverify.exceptions import EvidenceStoreError

logger = logging.getLogger(__name__)

_CID_PATTERN = re.compile(r"^[A-Za-z0-9]{46,}$")


@dataclass(frozen=True)
class RetrievedEvidence:
    """Bytes returned by an evidence store.

    Attributes:
        content: Retrieved bytes.
        locator: Locator the bytes were fetched from.
        verified: Store-side hash check result; True when no hash was given.
    """

    content: bytes
    locator: str
    verified: bool


def _store_verified(content: bytes, expected_hash: Optional[str]) -> bool:
    if not expected_hash:
        return True
    return hashlib.sha256(content).hexdigest() == expected_hash.lower()


class EvidenceStore(ABC):
    """Content-addressable evidence store interface."""

    @abstractmethod
    def put(self, content: bytes, metadata: Optional[Dict[str, Any]] = None) -> str:
        """Store bytes and return a locator.

        Raises:
            EvidenceStoreError: If the store rejects the write.
        """

    @abstractmethod
    def get(self, locator: str, expected_hash: Optional[str] = None) -> RetrievedEvidence:
        """Retrieve bytes by locator.

        Raises:
            EvidenceStoreError: If the bytes cannot be retrieved.
        """


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class InMemoryEvidenceStore(EvidenceStore):
    """Thread-safe in-process store keyed by the SHA-256 of the content."""

    LOCATOR_PREFIX = "mem://"

    def __init__(self) -> None:
        self._blobs: Dict[str, bytes] = {}
        self._metadata: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def put(self, content: bytes, metadata: Optional[Dict[str, Any]] = None) -> str:
        locator = self.LOCATOR_PREFIX + hashlib.sha256(content).hexdigest()
        with self._lock:
            self._blobs[locator] = bytes(content)
            self._metadata[locator] = dict(metadata or {})
        logger.debug("Stored %d bytes at %s", len(content), locator)
        return locator

    def get(self, locator: str, expected_hash: Optional[str] = None) -> RetrievedEvidence:
        with self._lock:
            content = self._blobs.get(locator)
        if content is None:
            raise EvidenceStoreError(
                message=f"No evidence stored at {locator}", locator=locator,
            )
        return RetrievedEvidence(
            content=content,
            locator=locator,
            verified=_store_verified(content, expected_hash),
        )

    def metadata_for(self, locator: str) -> Dict[str, Any]:
        """Metadata recorded alongside a stored blob."""
        with self._lock:
            return dict(self._metadata.get(locator, {}))

    def __len__(self) -> int:
        with self._lock:
            return len(self._blobs)


# ---------------------------------------------------------------------------
# IPFS store
# ---------------------------------------------------------------------------


class IPFSEvidenceStore(EvidenceStore):
    """Evidence store backed by an IPFS node's RPC API.

    Files are added pinned with CIDv1. When metadata is supplied it is
    added as a sibling ``<file_name>.metadata.json`` object. Retrieval
    retries with linear backoff.

    Attributes:
        api_url: Base URL of the kubo RPC API.
        timeout: Per-request timeout in seconds.
        retries: Attempts per retrieval.
        backoff_seconds: Base delay between retrieval attempts.
    """

    def __init__(
        self,
        api_url: str = "http://localhost:5001",
        timeout: float = 30,
        retries: int = 3,
        backoff_seconds: float = 1.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.retries = max(1, retries)
        self.backoff_seconds = backoff_seconds
        self._session = session or requests.Session()
        logger.info(
            "IPFSEvidenceStore initialized: url=%s, timeout=%ss, retries=%d",
            self.api_url, self.timeout, self.retries,
        )

    @classmethod
    def from_config(cls, config: Any) -> IPFSEvidenceStore:
        """Build a store from a VerificationConfig."""
        return cls(
            api_url=config.ipfs_api_url,
            timeout=config.ipfs_timeout_seconds,
            retries=config.ipfs_retries,
        )

    def _endpoint(self, command: str) -> str:
        return f"{self.api_url}/api/v0/{command}"

    def _add(self, file_name: str, content: bytes) -> Dict[str, Any]:
        response = self._session.post(
            self._endpoint("add"),
            params={"pin": "true", "cid-version": "1"},
            files={"file": (file_name, content)},
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()

    def put(self, content: bytes, metadata: Optional[Dict[str, Any]] = None) -> str:
        file_name = (metadata or {}).get("file_name", "evidence.bin")
        try:
            result = self._add(file_name, content)
        except (requests.RequestException, ValueError) as exc:
            logger.error("IPFS add failed for %s: %s", file_name, exc)
            raise EvidenceStoreError(
                message=f"IPFS upload failed: {exc}", attempts=1,
            ) from exc

        cid = result.get("Hash")
        if not cid:
            raise EvidenceStoreError(message="IPFS add returned no CID")

        if metadata:
            document = dict(metadata)
            document["original_hash"] = hashlib.sha256(content).hexdigest()
            try:
                meta_result = self._add(
                    f"{file_name}.metadata.json",
                    json.dumps(document, indent=2, default=str).encode(),
                )
                logger.debug(
                    "Uploaded metadata for %s as %s", file_name, meta_result.get("Hash"),
                )
            except (requests.RequestException, ValueError) as exc:
                logger.warning("IPFS metadata upload failed for %s: %s", file_name, exc)

        logger.info("Evidence %s uploaded to IPFS as %s", file_name, cid)
        return cid

    def get(self, locator: str, expected_hash: Optional[str] = None) -> RetrievedEvidence:
        if not _CID_PATTERN.match(locator):
            raise EvidenceStoreError(
                message=f"Invalid CID format: {locator}", locator=locator,
            )

        last_error: Optional[Exception] = None
        for attempt in range(1, self.retries + 1):
            try:
                response = self._session.post(
                    self._endpoint("cat"),
                    params={"arg": locator},
                    timeout=self.timeout,
                )
                response.raise_for_status()
                content = response.content
                if not content:
                    raise EvidenceStoreError(
                        message="No content retrieved from IPFS", locator=locator,
                    )
                verified = _store_verified(content, expected_hash)
                if not verified:
                    logger.error(
                        "IPFS content for %s does not match expected hash", locator,
                    )
                logger.info(
                    "Retrieved %d bytes from IPFS %s (verified=%s)",
                    len(content), locator, verified,
                )
                return RetrievedEvidence(content=content, locator=locator, verified=verified)
            except requests.RequestException as exc:
                last_error = exc
                logger.warning(
                    "IPFS retrieval attempt %d/%d for %s failed: %s",
                    attempt, self.retries, locator, exc,
                )
                if attempt < self.retries:
                    time.sleep(self.backoff_seconds * attempt)

        raise EvidenceStoreError(
            message=f"IPFS retrieval failed: {last_error}",
            locator=locator,
            attempts=self.retries,
        ) from last_error

    def pin(self, locator: str) -> None:
        """Pin an object so the node keeps it."""
        try:
            response = self._session.post(
                self._endpoint("pin/add"),
                params={"arg": locator},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.error("IPFS pin failed for %s: %s", locator, exc)
            raise EvidenceStoreError(
                message=f"IPFS pin failed: {exc}", locator=locator,
            ) from exc
        logger.info("Pinned %s", locator)


__all__ = [
    "EvidenceStore",
    "RetrievedEvidence",
    "InMemoryEvidenceStore",
    "IPFSEvidenceStore",
]
