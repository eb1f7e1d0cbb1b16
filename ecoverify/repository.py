# -*- coding: utf-8 -*-
"""
Verification Persistence Gateway

Interface between the verification engine and its relational store, plus a
thread-safe in-memory implementation used for standalone operation and
tests. Records are copied on the way in and out so callers never share
mutable state with the store.

The one operation that must be atomic is ``create_result_if_absent``: the
duplicate-submission check and the insert happen under a single lock.

Example:
    >>> from ecoverify.repository import InMemoryVerificationRepository
    >>> repo = InMemoryVerificationRepository()
    >>> repo.register_credit("42")
    >>> repo.credit_exists("42")
    True
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Set

from ecoverify.models import (
    EvidenceFile,
    VerificationMethod,
    VerificationResult,
    VerificationStatus,
)

logger = logging.getLogger(__name__)


class VerificationRepository(ABC):
    """Persistence gateway for methods, results and evidence."""

    # -- Credits ----------------------------------------------------------

    @abstractmethod
    def credit_exists(self, credit_id: str) -> bool:
        """Return True if the credit is known."""

    # -- Methods ----------------------------------------------------------

    @abstractmethod
    def get_method(self, method_id: str) -> Optional[VerificationMethod]:
        """Return a methodology by id, or None."""

    @abstractmethod
    def save_method(self, method: VerificationMethod) -> VerificationMethod:
        """Insert or replace a methodology."""

    @abstractmethod
    def list_methods(self) -> List[VerificationMethod]:
        """Return all methodologies in registration order."""

    # -- Results ----------------------------------------------------------

    @abstractmethod
    def create_result_if_absent(
        self,
        result: VerificationResult,
        blocking_statuses: Iterable[VerificationStatus],
    ) -> Optional[VerificationResult]:
        """Atomically insert ``result`` unless a blocking record exists.

        Returns:
            The existing record for the same (credit, method) whose status is
            in ``blocking_statuses``, or None if ``result`` was inserted.
        """

    @abstractmethod
    def get_result(self, result_id: str) -> Optional[VerificationResult]:
        """Return a verification result by id, or None."""

    @abstractmethod
    def save_result(self, result: VerificationResult) -> VerificationResult:
        """Replace an existing verification result."""

    @abstractmethod
    def list_results(
        self,
        credit_id: Optional[str] = None,
        statuses: Optional[Iterable[VerificationStatus]] = None,
    ) -> List[VerificationResult]:
        """Return results, newest submission first."""

    # -- Evidence ---------------------------------------------------------

    @abstractmethod
    def add_evidence(self, evidence: EvidenceFile) -> EvidenceFile:
        """Insert an evidence record."""

    @abstractmethod
    def save_evidence(self, evidence: EvidenceFile) -> EvidenceFile:
        """Replace an existing evidence record."""

    @abstractmethod
    def get_evidence(self, evidence_id: str) -> Optional[EvidenceFile]:
        """Return an evidence record by id, or None."""

    @abstractmethod
    def list_evidence(self, result_id: str) -> List[EvidenceFile]:
        """Return the evidence attached to a result in attachment order."""


class InMemoryVerificationRepository(VerificationRepository):
    """Dictionary-backed repository guarded by a re-entrant lock."""

    def __init__(self, credit_ids: Iterable[str] = ()) -> None:
        self._lock = threading.RLock()
        self._credits: Set[str] = set(credit_ids)
        self._methods: Dict[str, VerificationMethod] = {}
        self._results: Dict[str, VerificationResult] = {}
        self._evidence: Dict[str, EvidenceFile] = {}
        self._evidence_by_result: Dict[str, List[str]] = {}

    # -- Credits ----------------------------------------------------------

    def register_credit(self, credit_id: str) -> None:
        """Make a credit known to the repository."""
        with self._lock:
            self._credits.add(credit_id)

    def credit_exists(self, credit_id: str) -> bool:
        with self._lock:
            return credit_id in self._credits

    # -- Methods ----------------------------------------------------------

    def get_method(self, method_id: str) -> Optional[VerificationMethod]:
        with self._lock:
            method = self._methods.get(method_id)
            return method.model_copy(deep=True) if method else None

    def save_method(self, method: VerificationMethod) -> VerificationMethod:
        with self._lock:
            self._methods[method.method_id] = method.model_copy(deep=True)
        return method

    def list_methods(self) -> List[VerificationMethod]:
        with self._lock:
            return [m.model_copy(deep=True) for m in self._methods.values()]

    # -- Results ----------------------------------------------------------

    def create_result_if_absent(
        self,
        result: VerificationResult,
        blocking_statuses: Iterable[VerificationStatus],
    ) -> Optional[VerificationResult]:
        blocking = set(blocking_statuses)
        with self._lock:
            for existing in self._results.values():
                if (
                    existing.credit_id == result.credit_id
                    and existing.method_id == result.method_id
                    and existing.status in blocking
                ):
                    return existing.model_copy(deep=True)
            self._results[result.result_id] = result.model_copy(deep=True)
        logger.debug(
            "Inserted verification result %s for credit %s",
            result.result_id, result.credit_id,
        )
        return None

    def get_result(self, result_id: str) -> Optional[VerificationResult]:
        with self._lock:
            result = self._results.get(result_id)
            return result.model_copy(deep=True) if result else None

    def save_result(self, result: VerificationResult) -> VerificationResult:
        with self._lock:
            if result.result_id not in self._results:
                raise KeyError(result.result_id)
            self._results[result.result_id] = result.model_copy(deep=True)
        return result

    def list_results(
        self,
        credit_id: Optional[str] = None,
        statuses: Optional[Iterable[VerificationStatus]] = None,
    ) -> List[VerificationResult]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            selected = [
                r.model_copy(deep=True)
                for r in self._results.values()
                if (credit_id is None or r.credit_id == credit_id)
                and (wanted is None or r.status in wanted)
            ]
        # Insertion order breaks ties between same-second submissions.
        ordered = list(enumerate(selected))
        ordered.sort(key=lambda pair: (pair[1].submitted_at, pair[0]), reverse=True)
        return [r for _, r in ordered]

    # -- Evidence ---------------------------------------------------------

    def add_evidence(self, evidence: EvidenceFile) -> EvidenceFile:
        with self._lock:
            self._evidence[evidence.evidence_id] = evidence.model_copy(deep=True)
            self._evidence_by_result.setdefault(
                evidence.verification_result_id, [],
            ).append(evidence.evidence_id)
        return evidence

    def save_evidence(self, evidence: EvidenceFile) -> EvidenceFile:
        with self._lock:
            if evidence.evidence_id not in self._evidence:
                raise KeyError(evidence.evidence_id)
            self._evidence[evidence.evidence_id] = evidence.model_copy(deep=True)
        return evidence

    def get_evidence(self, evidence_id: str) -> Optional[EvidenceFile]:
        with self._lock:
            evidence = self._evidence.get(evidence_id)
            return evidence.model_copy(deep=True) if evidence else None

    def list_evidence(self, result_id: str) -> List[EvidenceFile]:
        with self._lock:
            ids = self._evidence_by_result.get(result_id, [])
            return [self._evidence[i].model_copy(deep=True) for i in ids]


__all__ = [
    "VerificationRepository",
    "InMemoryVerificationRepository",
]
