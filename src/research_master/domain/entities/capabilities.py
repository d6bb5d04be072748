"""
Source capability flags.

A provider declares a constant :class:`SourceCapabilities` set when it is
registered; the dispatcher checks the set before every call instead of
branching on provider type.
"""

from __future__ import annotations

from enum import Flag, auto
from functools import reduce


class SourceCapabilities(Flag):
    """Orthogonal features a provider may support."""

    NONE = 0
    SEARCH = auto()
    DOWNLOAD = auto()
    READ = auto()
    CITATIONS = auto()
    DOI_LOOKUP = auto()
    AUTHOR_SEARCH = auto()

    @classmethod
    def all(cls) -> SourceCapabilities:
        return union(*cls)

    def labels(self) -> list[str]:
        """Lowercase flag names, in declaration order."""
        return [flag.name.lower() for flag in type(self) if flag and flag in self]


def has(capabilities: SourceCapabilities, flag: SourceCapabilities) -> bool:
    """True when every bit of ``flag`` is present in ``capabilities``."""
    return (capabilities & flag) == flag


def union(*capabilities: SourceCapabilities) -> SourceCapabilities:
    return reduce(lambda a, b: a | b, capabilities, SourceCapabilities.NONE)


def intersection(*capabilities: SourceCapabilities) -> SourceCapabilities:
    if not capabilities:
        return SourceCapabilities.NONE
    return reduce(lambda a, b: a & b, capabilities)
