"""Sequence similarity scoring. Pure functions, no I/O."""

from typing import Hashable, Iterable, Sequence

from core.models import (
    CopyPastePayload,
    FormPayload,
    NavigationPayload,
)


def levenshtein_distance(a: Sequence[Hashable], b: Sequence[Hashable]) -> int:
    """
    Edit distance between two token sequences.

    Substitution, insertion and deletion each cost 1.
    """
    rows, cols = len(a) + 1, len(b) + 1
    matrix = [[0] * cols for _ in range(rows)]
    for i in range(rows):
        matrix[i][0] = i
    for j in range(cols):
        matrix[0][j] = j

    for i in range(1, rows):
        for j in range(1, cols):
            cost = 0 if a[i - 1] == b[j - 1] else 1
            matrix[i][j] = min(
                matrix[i - 1][j] + 1,         # deletion
                matrix[i][j - 1] + 1,         # insertion
                matrix[i - 1][j - 1] + cost,  # substitution
            )
    return matrix[-1][-1]


def navigation_similarity(urls_a: Sequence[str], urls_b: Sequence[str]) -> float:
    """1 - normalized edit distance over URL sequences; 0 if either is empty."""
    if not urls_a or not urls_b:
        return 0.0
    distance = levenshtein_distance(urls_a, urls_b)
    return 1.0 - distance / max(len(urls_a), len(urls_b))


def jaccard(a: Iterable[Hashable], b: Iterable[Hashable]) -> float:
    """Jaccard index; 0 if either side is empty."""
    set_a, set_b = set(a), set(b)
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def form_similarity(names_a: Iterable[str], names_b: Iterable[str]) -> float:
    """Jaccard index over field-name sets."""
    return jaccard(names_a, names_b)


def payload_similarity(a, b) -> float:
    """Similarity of two payloads of the same pattern type."""
    if isinstance(a, NavigationPayload) and isinstance(b, NavigationPayload):
        return navigation_similarity(a.urls(), b.urls())
    if isinstance(a, FormPayload) and isinstance(b, FormPayload):
        return form_similarity(a.field_names(), b.field_names())
    if isinstance(a, CopyPastePayload) and isinstance(b, CopyPastePayload):
        return jaccard(
            (p.signature() for p in a.pairs),
            (p.signature() for p in b.pairs),
        )
    return 0.0
