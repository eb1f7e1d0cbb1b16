# -*- coding: utf-8 -*-
"""
Field Extraction

Explicit three-outcome extraction of calculation inputs from evidence
metadata. Every lookup reports whether the value was present, fell back to
a documented default, or is missing with no default, so that a methodology
never mistakes an absent measurement for a real zero.

Example:
    >>> from ecoverify.extraction import extract_field, to_float
    >>> result = extract_field(
    ...     "project_water_volume",
    ...     [("EVD-1", {"water_volume": "150000"})],
    ...     keys=("project_water_volume", "water_volume"),
    ...     default=0.0,
    ...     coerce=to_float,
    ... )
    >>> result.status, result.value
    (<ExtractionStatus.PRESENT: 'present'>, 150000.0)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


class ExtractionStatus(str, Enum):
    """Outcome of a single field lookup."""
    PRESENT = "present"
    DEFAULTED = "defaulted"
    MISSING = "missing"


# Sentinel for "this field has no default".
NO_DEFAULT: Any = object()


@dataclass(frozen=True)
class FieldExtraction:
    """Result of extracting one named field.

    Attributes:
        name: Canonical field name.
        status: PRESENT, DEFAULTED or MISSING.
        value: Extracted or default value; None when MISSING.
        source: Identifier of the evidence the value came from, if any.
    """

    name: str
    status: ExtractionStatus
    value: Any = None
    source: Optional[str] = None

    @property
    def ok(self) -> bool:
        """True unless the field is missing with no default."""
        return self.status != ExtractionStatus.MISSING

    def describe(self) -> dict:
        """Serialisable summary used in calculation payloads."""
        return {
            "status": self.status.value,
            "value": self.value,
            "source": self.source,
        }


def to_float(value: Any) -> float:
    """Coerce a metadata value to a finite float.

    Raises:
        ValueError: If the value is not numeric or not finite.
    """
    if isinstance(value, bool):
        raise ValueError("boolean is not a measurement")
    result = float(value)
    if not math.isfinite(result):
        raise ValueError(f"non-finite value: {value!r}")
    return result


def to_str(value: Any) -> str:
    """Coerce a metadata value to a non-empty stripped string."""
    text = str(value).strip()
    if not text:
        raise ValueError("empty string")
    return text


def extract_field(
    name: str,
    sources: Iterable[Tuple[Optional[str], Optional[Mapping[str, Any]]]],
    keys: Sequence[str],
    default: Any = NO_DEFAULT,
    coerce: Optional[Callable[[Any], Any]] = None,
) -> FieldExtraction:
    """Look up ``name`` in an ordered sequence of metadata mappings.

    The first source holding any of ``keys`` with a coercible value wins.
    Values that fail coercion are logged and skipped.

    Args:
        name: Canonical field name reported on the result.
        sources: ``(source_id, mapping)`` pairs in priority order. ``None``
            mappings are ignored.
        keys: Accepted key aliases, tried in order within each mapping.
        default: Value used when no source provides the field. Omit for
            fields that have no default.
        coerce: Optional converter raising ValueError/TypeError on bad input.

    Returns:
        FieldExtraction describing the outcome.
    """
    for source_id, mapping in sources:
        if not mapping:
            continue
        for key in keys:
            if key not in mapping or mapping[key] is None:
                continue
            raw = mapping[key]
            if coerce is None:
                return FieldExtraction(name, ExtractionStatus.PRESENT, raw, source_id)
            try:
                return FieldExtraction(
                    name, ExtractionStatus.PRESENT, coerce(raw), source_id,
                )
            except (TypeError, ValueError) as exc:
                logger.warning(
                    "Ignoring unusable value for %s (key=%s, source=%s): %s",
                    name, key, source_id, exc,
                )

    if default is NO_DEFAULT:
        logger.debug("Field %s missing with no default", name)
        return FieldExtraction(name, ExtractionStatus.MISSING)
    return FieldExtraction(name, ExtractionStatus.DEFAULTED, default)


def missing_fields(extractions: Iterable[FieldExtraction]) -> List[str]:
    """Names of extractions that are missing with no default."""
    return [e.name for e in extractions if not e.ok]


__all__ = [
    "ExtractionStatus",
    "FieldExtraction",
    "NO_DEFAULT",
    "extract_field",
    "missing_fields",
    "to_float",
    "to_str",
]
