"""
Source Registry - the routing authority.

Holds every provider instance, indexed by id and queryable by capability.
The registry is populated during startup, frozen, and then shared by
reference. After :meth:`SourceRegistry.freeze` it is never mutated, so
concurrent dispatch calls can read it without locking.

Usage:
    registry = SourceRegistry.from_sources(
        [ArxivSource(), CrossRefSource()],
        disabled=["crossref"],
    )
    for source in registry.with_capability(SourceCapabilities.SEARCH):
        ...
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from research_master.domain.entities import Source, SourceCapabilities, has
from research_master.shared.exceptions import (
    ConfigurationError,
    DuplicateSourceIdError,
    UnknownSourceError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RegistryEntry:
    """One registered provider."""

    source_id: str
    capabilities: SourceCapabilities
    source: Source


class SourceRegistry:
    """Capability-indexed collection of providers, in registration order."""

    def __init__(self) -> None:
        self._entries: dict[str, RegistryEntry] = {}
        self._frozen = False

    @classmethod
    def from_sources(
        cls,
        sources: Iterable[Source],
        *,
        enabled: Iterable[str] | None = None,
        disabled: Iterable[str] = (),
    ) -> SourceRegistry:
        """
        Build and freeze a registry.

        Args:
            sources: Provider instances, in the order they should be merged
            enabled: If given, only these ids are registered
            disabled: Ids that are never registered

        Raises:
            DuplicateSourceIdError: two sources share an id
        """
        enabled_ids = set(enabled) if enabled is not None else None
        disabled_ids = set(disabled)
        registry = cls()
        for source in sources:
            sid = source.source_id
            if sid in disabled_ids or (enabled_ids is not None and sid not in enabled_ids):
                logger.info(f"Source disabled by configuration: {sid}")
                continue
            registry.register(source)
        if enabled_ids:
            missing = enabled_ids - set(registry.ids())
            if missing:
                logger.warning(f"Enabled sources not available: {', '.join(sorted(missing))}")
        registry.freeze()
        return registry

    # -------------------------------------------------------------------------
    # Startup phase
    # -------------------------------------------------------------------------

    def register(
        self,
        source: Source,
        *,
        source_id: str | None = None,
        capabilities: SourceCapabilities | None = None,
    ) -> RegistryEntry:
        """
        Register a provider.

        ``source_id`` and ``capabilities`` default to what the source
        declares. On failure the registry is left unchanged.

        Raises:
            DuplicateSourceIdError: id already registered
            ConfigurationError: registry already frozen, or empty id
        """
        if self._frozen:
            raise ConfigurationError(
                f"Cannot register {source_id or source.source_id!r}: registry is frozen"
            )
        sid = source_id if source_id is not None else source.source_id
        if not sid:
            raise ConfigurationError(f"Source {source!r} has an empty id")
        if sid in self._entries:
            raise DuplicateSourceIdError(sid)

        entry = RegistryEntry(
            source_id=sid,
            capabilities=source.capabilities if capabilities is None else capabilities,
            source=source,
        )
        self._entries[sid] = entry
        logger.debug(f"Registered source {sid} ({', '.join(entry.capabilities.labels())})")
        return entry

    def freeze(self) -> None:
        """End the startup phase; later ``register`` calls fail."""
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    # -------------------------------------------------------------------------
    # Read API
    # -------------------------------------------------------------------------

    def get(self, source_id: str) -> Source | None:
        entry = self._entries.get(source_id)
        return entry.source if entry else None

    def require(self, source_id: str) -> Source:
        entry = self._entries.get(source_id)
        if entry is None:
            raise UnknownSourceError(source_id)
        return entry.source

    def capabilities_of(self, source_id: str) -> SourceCapabilities | None:
        entry = self._entries.get(source_id)
        return entry.capabilities if entry else None

    def all(self) -> Iterator[Source]:
        return (entry.source for entry in self._entries.values())

    def entries(self) -> Iterator[RegistryEntry]:
        return iter(self._entries.values())

    def with_capability(self, flag: SourceCapabilities) -> Iterator[Source]:
        return (entry.source for entry in self.entries_with(flag))

    def entries_with(self, flag: SourceCapabilities) -> Iterator[RegistryEntry]:
        return (entry for entry in self._entries.values() if has(entry.capabilities, flag))

    def ids(self) -> list[str]:
        return list(self._entries)

    def has(self, source_id: str) -> bool:
        return source_id in self._entries

    def is_empty(self) -> bool:
        return not self._entries

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Source]:
        return self.all()

    async def aclose(self) -> None:
        """Close every provider's network resources."""
        for entry in self._entries.values():
            try:
                await entry.source.aclose()
            except Exception as e:
                logger.warning(f"Error closing source {entry.source_id}: {e}")
