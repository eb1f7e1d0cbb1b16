# -*- coding: utf-8 -*-
"""
Methodology Registry

Immutable mapping from methodology id to handler, assembled once at
startup. Lookups are lock-free and safe from any thread.

Example:
    >>> from ecoverify.methodologies.registry import build_default_methodology_registry
    >>> registry = build_default_methodology_registry()
    >>> "vwba-v2" in registry
    True
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Iterable, Iterator, List, Mapping, Optional

from ecoverify.exceptions import ConfigurationError
from ecoverify.methodologies.base import MethodologyHandler
from ecoverify.methodologies.vwba import VWBAMethodologyHandler

logger = logging.getLogger(__name__)


class MethodologyRegistry:
    """Read-only methodology id to handler mapping."""

    def __init__(self, handlers: Iterable[MethodologyHandler] = ()) -> None:
        mapping = {}
        for handler in handlers:
            if not handler.method_id:
                raise ConfigurationError(
                    f"Handler {type(handler).__name__} has no method_id",
                )
            if handler.method_id in mapping:
                raise ConfigurationError(
                    f"Duplicate methodology handler for {handler.method_id}",
                    context={"method_id": handler.method_id},
                )
            mapping[handler.method_id] = handler
        self._handlers: Mapping[str, MethodologyHandler] = MappingProxyType(mapping)
        logger.info(
            "MethodologyRegistry built with %d handlers: %s",
            len(mapping), ", ".join(sorted(mapping)) or "none",
        )

    def get(self, method_id: str) -> Optional[MethodologyHandler]:
        """Return the handler for ``method_id``, or None."""
        return self._handlers.get(method_id)

    def method_ids(self) -> List[str]:
        """Registered methodology ids, sorted."""
        return sorted(self._handlers)

    def __contains__(self, method_id: object) -> bool:
        return method_id in self._handlers

    def __iter__(self) -> Iterator[str]:
        return iter(self._handlers)

    def __len__(self) -> int:
        return len(self._handlers)


def build_default_methodology_registry(
    extra_handlers: Iterable[MethodologyHandler] = (),
) -> MethodologyRegistry:
    """Registry holding the built-in VWBA handler plus ``extra_handlers``."""
    return MethodologyRegistry([VWBAMethodologyHandler(), *extra_handlers])


__all__ = [
    "MethodologyRegistry",
    "build_default_methodology_registry",
]
