"""Source adapters and their registry."""

from .base import AdapterNotInitialisedError, SourceAdapter
from .registry import AdapterFactory, AdapterRegistry, UnknownSourceError
from .template import TemplateAdapter, register_template_sources

__all__ = [
    "AdapterFactory",
    "AdapterNotInitialisedError",
    "AdapterRegistry",
    "SourceAdapter",
    "TemplateAdapter",
    "UnknownSourceError",
    "register_template_sources",
]
