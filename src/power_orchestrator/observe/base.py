"""
Observation helpers.

Observation functions are read only. They return a freshly mapped state on
every call and never cache.

Multi resource observations
A pattern observation returns an ordered list of Observation pairs.
An empty list is a valid result: the pattern matched nothing.
When the parent of the search does not exist, the observation raises
ScopeNotFound instead. The two cases are different error kinds on purpose.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Generic, Iterable, TypeVar

from power_orchestrator.core.types import Target

T = TypeVar("T")


@dataclass(frozen=True)
class Observation(Generic[T]):
    """A target paired with the state observed for it."""

    target: Target
    state: T


@dataclass(frozen=True)
class Selection(Generic[T]):
    """
    Result of pattern based targeting.

    pattern
    The regular expression actually used.

    explicit
    True when the caller supplied the pattern, False when it was defaulted.
    Callers warn on an empty explicit selection and stay silent otherwise.

    matches
    Ordered observations of every matching resource.
    """

    pattern: str
    explicit: bool
    matches: list[Observation[T]] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.matches


def select_matching(
    observations: Iterable[Observation[T]],
    pattern: str | None,
    default_pattern: str = ".*",
) -> Selection[T]:
    """
    Filter observations by identifier with re.search.

    Order of the input is preserved.
    """
    explicit = pattern is not None
    used = pattern if pattern is not None else default_pattern
    regex = re.compile(used)
    matches = [obs for obs in observations if regex.search(obs.target.identifier)]
    return Selection(pattern=used, explicit=explicit, matches=matches)


def first_present(raw: dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first key present in a loosely typed backend payload."""
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return default
