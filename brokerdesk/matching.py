from __future__ import annotations

import re
from difflib import SequenceMatcher
from typing import Any, Iterable

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize(text: Any) -> str:
    return str(text or "").strip().lower()


def normalize_identification(value: Any) -> str:
    return _NON_ALNUM.sub("", normalize(value))


def names_match(a: Any, b: Any) -> bool:
    """Loose match used by the import wizards: either name contains the other."""
    left, right = normalize(a), normalize(b)
    if not left or not right:
        return False
    return left in right or right in left


def name_similarity(a: Any, b: Any) -> float:
    return SequenceMatcher(None, normalize(a), normalize(b)).ratio()


def resolve_by_name(
    name: Any,
    candidates: Iterable[dict[str, Any]],
    key: str = "name",
) -> dict[str, Any] | None:
    if not normalize(name):
        return None
    for candidate in candidates:
        if names_match(candidate.get(key), name):
            return candidate
    return None


def resolve_exact(
    name: Any,
    candidates: Iterable[dict[str, Any]],
    key: str = "name",
) -> dict[str, Any] | None:
    wanted = normalize(name)
    if not wanted:
        return None
    for candidate in candidates:
        if normalize(candidate.get(key)) == wanted:
            return candidate
    return None


def closest_name(
    name: Any,
    candidates: Iterable[dict[str, Any]],
    key: str = "name",
    threshold: float = 0.6,
) -> str | None:
    """Best fuzzy suggestion for an unresolved name, shown next to the error."""
    best_name: str | None = None
    best_score = threshold
    for candidate in candidates:
        score = name_similarity(name, candidate.get(key))
        if score >= best_score:
            best_score = score
            best_name = candidate.get(key)
    return best_name
