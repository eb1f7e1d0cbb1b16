# -*- coding: utf-8 -*-
"""
Verification Provenance Tracker

SHA-256 chain-hashed audit trail of every verification record mutation:
methodology registration and activation, submissions, evidence attachment,
pipeline runs, status transitions. Each entry links to its predecessor so
that any later edit to the log is detectable by replaying the chain.

Example:
    >>> from ecoverify.provenance import ProvenanceTracker, hash_payload
    >>> tracker = ProvenanceTracker()
    >>> tracker.record(
    ...     entity_type="verification_result",
    ...     entity_id="VER-1a2b3c4d5e6f",
    ...     action="submit",
    ...     data_hash=hash_payload({"credit_id": "42"}),
    ...     user_id="0xvalidator",
    ... )
    >>> assert tracker.verify_chain()
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Return current UTC datetime with microseconds zeroed."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def hash_payload(data: Any) -> str:
    """Deterministic SHA-256 of a JSON-serialisable value or pydantic model."""
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    serialized = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(serialized.encode()).hexdigest()


# ---------------------------------------------------------------------------
# ProvenanceEntry model
# ---------------------------------------------------------------------------


class ProvenanceEntry(BaseModel):
    """A single entry in the provenance chain."""

    entry_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique provenance entry ID",
    )
    entity_type: str = Field(
        ..., description="Type of entity (methodology, verification_result, evidence)",
    )
    entity_id: str = Field(
        ..., description="ID of the entity this entry refers to",
    )
    action: str = Field(
        ..., description="Action performed (register, submit, run, review, revoke)",
    )
    data_hash: str = Field(
        ..., description="SHA-256 hash of the entity state after the action",
    )
    previous_hash: str = Field(
        ..., description="Chain hash of the previous entry",
    )
    timestamp: datetime = Field(
        default_factory=_utcnow, description="When this entry was recorded",
    )
    user_id: str = Field(
        default="system", description="Actor who performed the action",
    )
    chain_hash: str = Field(
        default="", description="Combined chain hash for this entry",
    )
    metadata: Dict[str, Any] = Field(
        default_factory=dict, description="Additional metadata for this entry",
    )

    model_config = {"extra": "forbid"}


# ---------------------------------------------------------------------------
# ProvenanceTracker
# ---------------------------------------------------------------------------


class ProvenanceTracker:
    """Thread-safe SHA-256 chained audit log.

    Example:
        >>> tracker = ProvenanceTracker()
        >>> tracker.record("verification_result", "VER-1", "submit", "ab12")
        >>> len(tracker.get_chain("VER-1"))
        1
    """

    _GENESIS_HASH = hashlib.sha256(b"ecoverify-provenance-genesis").hexdigest()

    def __init__(self) -> None:
        self._entries: List[ProvenanceEntry] = []
        self._last_chain_hash: str = self._GENESIS_HASH
        self._entity_index: Dict[str, List[int]] = {}
        self._lock = threading.Lock()
        logger.info("ProvenanceTracker initialized")

    def record(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        data_hash: str,
        user_id: str = "system",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Append an entry to the chain.

        Args:
            entity_type: Type of entity.
            entity_id: ID of the entity.
            action: Action performed.
            data_hash: SHA-256 of the entity state after the action.
            user_id: Actor who performed the action.
            metadata: Optional additional metadata.

        Returns:
            The entry_id of the new entry.
        """
        with self._lock:
            entry = ProvenanceEntry(
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                data_hash=data_hash,
                previous_hash=self._last_chain_hash,
                user_id=user_id,
                metadata=metadata or {},
            )
            entry.chain_hash = self._chain_hash_for(entry)

            self._entity_index.setdefault(entity_id, []).append(
                len(self._entries),
            )
            self._entries.append(entry)
            self._last_chain_hash = entry.chain_hash

        logger.debug(
            "Recorded provenance: %s %s %s -> %s",
            entity_type, action, entity_id, entry.entry_id,
        )
        return entry.entry_id

    def get_chain(self, entity_id: str) -> List[ProvenanceEntry]:
        """Return the entries for one entity, oldest first."""
        with self._lock:
            indices = list(self._entity_index.get(entity_id, []))
            return [self._entries[i] for i in indices]

    def verify_chain(self, entity_id: Optional[str] = None) -> bool:
        """Verify chain integrity.

        With no entity_id the whole log is replayed from genesis. With an
        entity_id each of that entity's entries is checked against the
        previous hash it recorded.

        Returns:
            True if intact, False if any entry was tampered with.
        """
        if entity_id is None:
            with self._lock:
                entries = list(self._entries)
            current = self._GENESIS_HASH
            for entry in entries:
                if entry.previous_hash != current:
                    logger.warning(
                        "Chain link broken at entry %s", entry.entry_id,
                    )
                    return False
                if entry.chain_hash != self._chain_hash_for(entry):
                    logger.warning(
                        "Chain verification failed at entry %s", entry.entry_id,
                    )
                    return False
                current = entry.chain_hash
            return True

        for entry in self.get_chain(entity_id):
            if entry.chain_hash != self._chain_hash_for(entry):
                logger.warning(
                    "Chain verification failed for entity %s at entry %s",
                    entity_id, entry.entry_id,
                )
                return False
        return True

    def export_json(self) -> str:
        """Export all entries as a JSON string."""
        with self._lock:
            records = [e.model_dump(mode="json") for e in self._entries]
        return json.dumps(records, indent=2, default=str)

    @property
    def entry_count(self) -> int:
        """Return the number of provenance entries."""
        return len(self._entries)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _chain_hash_for(entry: ProvenanceEntry) -> str:
        entry_hash = hash_payload({
            "entity_type": entry.entity_type,
            "entity_id": entry.entity_id,
            "action": entry.action,
            "data_hash": entry.data_hash,
            "previous_hash": entry.previous_hash,
            "timestamp": entry.timestamp.isoformat(),
            "user_id": entry.user_id,
        })
        combined = f"{entry.previous_hash}:{entry_hash}"
        return hashlib.sha256(combined.encode()).hexdigest()


__all__ = [
    "ProvenanceEntry",
    "ProvenanceTracker",
    "hash_payload",
]
