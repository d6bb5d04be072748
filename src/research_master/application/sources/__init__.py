"""Source registry."""

from .registry import RegistryEntry, SourceRegistry

__all__ = ["RegistryEntry", "SourceRegistry"]
