"""
ResultAggregator - merging, sorting and de-duplicating provider results.

Pure functions over :class:`Paper` values; no I/O.

1. ``merge_responses``: concatenate in provider registration order, then
   provider-reported order
2. ``sort_papers``: stable sort by the query's ``SortBy`` key
3. ``deduplicate_papers``: opt-in Union-Find collapse of records that
   describe the same work (DOI first, optionally title + authors)

Example:
    >>> papers = merge_responses(responses, SortBy.DATE)
    >>> unique = deduplicate_papers(papers)
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from research_master.domain.entities import Paper, SearchResponse, SortBy

_DATE_RE = re.compile(r"(\d{4})(?:[-/.](\d{1,2}))?(?:[-/.](\d{1,2}))?")

# Titles shorter than this are too generic to match on ("Introduction")
TITLE_MIN_LENGTH = 20


class DeduplicationStrategy(Enum):
    """
    Strategy for detecting duplicate papers.

    STRICT: Only ``primary_id()`` matches (DOI, else provider + paper id)
    MODERATE: STRICT + normalized title match with overlapping authors
    """

    STRICT = "strict"
    MODERATE = "moderate"


@dataclass
class DeduplicationStats:
    """Statistics from a de-duplication pass."""

    total_input: int = 0
    unique_papers: int = 0
    dedup_by_id: int = 0
    dedup_by_title: int = 0

    @property
    def duplicates_removed(self) -> int:
        return self.total_input - self.unique_papers

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_input": self.total_input,
            "unique_papers": self.unique_papers,
            "duplicates_removed": self.duplicates_removed,
            "dedup_by_id": self.dedup_by_id,
            "dedup_by_title": self.dedup_by_title,
        }


# =============================================================================
# Union-Find for O(n) Deduplication
# =============================================================================


class UnionFind:
    """
    Union-Find (Disjoint Set Union) over indexes ``0..n-1``.

    - find: O(α(n)) amortized, with path compression
    - union: O(α(n)) amortized, by rank
    """

    def __init__(self, n: int):
        self.parent = list(range(n))
        self.rank = [0] * n

    def find(self, x: int) -> int:
        """Find root with path compression."""
        if self.parent[x] != x:
            self.parent[x] = self.find(self.parent[x])
        return self.parent[x]

    def union(self, x: int, y: int) -> bool:
        """Union by rank. Returns True if x and y were in different sets."""
        px, py = self.find(x), self.find(y)
        if px == py:
            return False
        if self.rank[px] < self.rank[py]:
            px, py = py, px
        self.parent[py] = px
        if self.rank[px] == self.rank[py]:
            self.rank[px] += 1
        return True

    def get_groups(self) -> list[list[int]]:
        """Groups of member indexes, ordered by each group's first member."""
        groups: dict[int, list[int]] = {}
        for i in range(len(self.parent)):
            groups.setdefault(self.find(i), []).append(i)
        return list(groups.values())


# =============================================================================
# Normalization
# =============================================================================


def normalize_doi(doi: str) -> str:
    """Normalize DOI for comparison."""
    doi = doi.lower().strip()
    for prefix in ["https://doi.org/", "http://doi.org/", "https://dx.doi.org/", "doi:"]:
        doi = doi.removeprefix(prefix)
    return doi.strip()


def normalize_title(title: str) -> str:
    """Lowercase, strip punctuation, collapse whitespace."""
    if not title:
        return ""
    title = re.sub(r"[^\w\s]", "", title.lower())
    return re.sub(r"\s+", " ", title).strip()


def _author_surnames(paper: Paper) -> set[str]:
    names: set[str] = set()
    for author in paper.author_list():
        # "Vaswani, Ashish" or "Ashish Vaswani"
        surname = author.split(",")[0] if "," in author else author.split()[-1]
        surname = normalize_title(surname)
        if surname:
            names.add(surname)
    return names


def dedup_key(paper: Paper) -> str:
    """Identity key derived from ``primary_id()``."""
    if paper.doi:
        return f"doi:{normalize_doi(paper.doi)}"
    return f"id:{paper.source}:{paper.paper_id}"


def publication_sort_key(paper: Paper) -> tuple[int, int, int] | None:
    """``(year, month, day)`` parsed from the free-form date, or ``None``."""
    if not paper.published_date:
        return None
    match = _DATE_RE.search(paper.published_date)
    if not match:
        return None
    year, month, day = match.groups()
    return int(year), int(month or 0), int(day or 0)


# =============================================================================
# Merge / sort
# =============================================================================


def sort_papers(papers: Sequence[Paper], sort_by: SortBy) -> list[Paper]:
    """
    Stable sort: ties (and unknown values) keep their incoming order.

    DATE and CITATIONS sort descending with missing values last;
    RELEVANCE leaves provider order untouched.
    """
    if sort_by is SortBy.DATE:
        keyed = [(publication_sort_key(p), p) for p in papers]
        return [p for _, p in sorted(
            keyed,
            key=lambda item: (item[0] is not None, item[0] or (0, 0, 0)),
            reverse=True,
        )]
    if sort_by is SortBy.CITATIONS:
        return sorted(
            papers,
            key=lambda p: (p.citations is not None, p.citations or 0),
            reverse=True,
        )
    return list(papers)


def merge_responses(
    responses: Iterable[SearchResponse],
    sort_by: SortBy = SortBy.RELEVANCE,
) -> list[Paper]:
    """Concatenate responses (already in registration order) and sort."""
    merged = [paper for response in responses for paper in response.papers]
    return sort_papers(merged, sort_by)


# =============================================================================
# Deduplication
# =============================================================================


def deduplicate_papers(
    papers: Sequence[Paper],
    strategy: DeduplicationStrategy = DeduplicationStrategy.STRICT,
    stats: DeduplicationStats | None = None,
) -> list[Paper]:
    """
    Collapse papers describing the same work.

    Each group of duplicates becomes one entry at the position of its
    first member; that member is the primary record and the others fill
    its empty fields (:meth:`Paper.merged_with`).
    """
    stats = stats if stats is not None else DeduplicationStats()
    stats.total_input = len(papers)
    n = len(papers)
    if n == 0:
        stats.unique_papers = 0
        return []

    uf = UnionFind(n)
    id_to_idx: dict[str, int] = {}
    title_to_idx: dict[str, list[int]] = {}
    use_title = strategy is DeduplicationStrategy.MODERATE

    for i, paper in enumerate(papers):
        key = dedup_key(paper)
        if key in id_to_idx:
            if uf.union(i, id_to_idx[key]):
                stats.dedup_by_id += 1
        else:
            id_to_idx[key] = i

        if not use_title:
            continue
        title = normalize_title(paper.title)
        if len(title) < TITLE_MIN_LENGTH:
            continue
        surnames = _author_surnames(paper)
        for j in title_to_idx.get(title, []):
            other = _author_surnames(papers[j])
            if not surnames or not other or surnames & other:
                if uf.union(i, j):
                    stats.dedup_by_title += 1
                break
        title_to_idx.setdefault(title, []).append(i)

    unique: list[Paper] = []
    for members in uf.get_groups():
        primary = papers[members[0]]
        for idx in members[1:]:
            primary = primary.merged_with(papers[idx])
        unique.append(primary)

    stats.unique_papers = len(unique)
    return unique
