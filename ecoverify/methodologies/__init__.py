# -*- coding: utf-8 -*-
"""
Methodology handlers and their registry.

Example:
    >>> from ecoverify.methodologies import build_default_methodology_registry
    >>> build_default_methodology_registry().method_ids()
    ['vwba-v2']
"""

from ecoverify.methodologies.base import MethodologyHandler, compute_evidence_set_hash
from ecoverify.methodologies.registry import (
    MethodologyRegistry,
    build_default_methodology_registry,
)
from ecoverify.methodologies.vwba import VWBAMethodologyHandler, VWBAPolicy

__all__ = [
    "MethodologyHandler",
    "MethodologyRegistry",
    "VWBAMethodologyHandler",
    "VWBAPolicy",
    "build_default_methodology_registry",
    "compute_evidence_set_hash",
]
