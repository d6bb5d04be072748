"""
Dispatch Results - per-provider outcomes and their aggregate.

Each provider call ends in exactly one outcome: :class:`ProviderSuccess`
carrying the provider's value, or :class:`ProviderFailure` carrying the
error that provider produced. Aggregates keep outcomes in registration
order so reports are deterministic.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from typing_extensions import TypeAliasType

from research_master.domain.entities import Paper, SearchQuery, SearchResponse
from research_master.shared.exceptions import ResearchMasterError

T = TypeVar("T")


@dataclass(frozen=True)
class ProviderSuccess(Generic[T]):
    source_id: str
    value: T
    cached: bool = False
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class ProviderFailure:
    source_id: str
    error: ResearchMasterError
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        return {"source": self.source_id, "status": "error", **self.error.to_dict()}


ProviderOutcome = TypeAliasType(
    "ProviderOutcome", ProviderSuccess[T] | ProviderFailure, type_params=(T,)
)


def _encode_value(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


@dataclass(frozen=True)
class DispatchResult(Generic[T]):
    """Outcomes of one fanned-out operation, in registration order."""

    operation: str
    outcomes: tuple[ProviderOutcome[T], ...] = ()

    @property
    def successes(self) -> list[ProviderSuccess[T]]:
        return [o for o in self.outcomes if isinstance(o, ProviderSuccess)]

    @property
    def failures(self) -> list[ProviderFailure]:
        return [o for o in self.outcomes if isinstance(o, ProviderFailure)]

    @property
    def values(self) -> list[T]:
        return [o.value for o in self.successes]

    @property
    def is_partial(self) -> bool:
        """Some providers succeeded and some failed."""
        return bool(self.failures) and bool(self.successes)

    @property
    def all_failed(self) -> bool:
        return bool(self.outcomes) and not self.successes

    def outcome_for(self, source_id: str) -> ProviderOutcome[T] | None:
        return next((o for o in self.outcomes if o.source_id == source_id), None)

    def to_dict(self, encode: Callable[[T], Any] = _encode_value) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "results": [
                {
                    "source": o.source_id,
                    "status": "ok",
                    "cached": o.cached,
                    "elapsed_ms": round(o.elapsed_ms, 1),
                    "value": encode(o.value),
                }
                for o in self.successes
            ],
            "failures": [f.to_dict() for f in self.failures],
        }


@dataclass(frozen=True)
class SearchResult(DispatchResult[SearchResponse]):
    """Merged search output: papers plus the per-provider report."""

    query: SearchQuery | None = None
    papers: tuple[Paper, ...] = field(default_factory=tuple)
    deduplicated: bool = False

    def __len__(self) -> int:
        return len(self.papers)

    def to_dict(self, encode: Callable[[SearchResponse], Any] = _encode_value) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "query": self.query.query if self.query else None,
            "total": len(self.papers),
            "deduplicated": self.deduplicated,
            "papers": [paper.to_dict() for paper in self.papers],
            "sources": [
                {
                    "source": o.source_id,
                    "status": "ok",
                    "cached": o.cached,
                    "count": len(o.value.papers),
                    "elapsed_ms": round(o.elapsed_ms, 1),
                }
                for o in self.successes
            ],
            "failures": [f.to_dict() for f in self.failures],
        }


@dataclass(frozen=True)
class LookupResult(DispatchResult[Paper]):
    """Single-paper lookups (DOI / id) across providers."""

    def best(self) -> Paper | None:
        """First found paper in registration order, enriched by the others."""
        found = self.values
        if not found:
            return None
        paper = found[0]
        for other in found[1:]:
            paper = paper.merged_with(other)
        return paper
