"""Keyed lookup of source adapters handing out one fresh instance per job."""

from __future__ import annotations

from typing import Callable, Dict

import structlog

from .base import SourceAdapter

AdapterFactory = Callable[[], SourceAdapter]


class UnknownSourceError(KeyError):
    """No adapter is registered for the requested source code."""

    def __str__(self) -> str:
        return f"No adapter registered for source: {self.args[0]}"


class AdapterRegistry:
    """Map source codes to adapter factories."""

    def __init__(self) -> None:
        self._factories: Dict[str, AdapterFactory] = {}
        self.logger = structlog.get_logger("harvester.adapters")

    def register(self, source_code: str, adapter: SourceAdapter | AdapterFactory) -> None:
        """Register a template instance (copied per job) or a zero-arg factory."""

        if isinstance(adapter, SourceAdapter):
            factory: AdapterFactory = adapter.new_instance
        elif callable(adapter):
            factory = adapter
        else:
            raise TypeError("adapter must be a SourceAdapter or a factory callable")
        self._factories[source_code] = factory
        self.logger.info("adapter_registered", source=source_code)

    def create(self, source_code: str) -> SourceAdapter:
        try:
            factory = self._factories[source_code]
        except KeyError:
            self.logger.error("adapter_missing", source=source_code)
            raise UnknownSourceError(source_code) from None
        return factory()

    def codes(self) -> list[str]:
        return sorted(self._factories)

    def clear(self) -> None:
        self._factories.clear()

    def __contains__(self, source_code: object) -> bool:
        return source_code in self._factories


__all__ = ["AdapterFactory", "AdapterRegistry", "UnknownSourceError"]
