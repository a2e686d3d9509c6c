"""
Release-name ordering.

Distribution releases are known by codename, so "is this release at
least bionic" needs a lookup table rather than a numeric comparison.
ReleaseOrder wraps one such table; unknown names are a caller bug and
raise SandkitUsageError.

Usage:
    from sandkit.releases import release_ge

    if release_ge(release, "focal"):
        ...
"""

from __future__ import annotations

from typing import Dict, Iterable, Tuple

from sandkit.exceptions import SandkitUsageError

# Oldest first
DEFAULT_RELEASES: Tuple[str, ...] = (
    "wheezy",
    "jessie",
    "stretch",
    "buster",
    "bullseye",
    "bookworm",
    "trixie",
    "sid",
    "precise",
    "trusty",
    "xenial",
    "bionic",
    "focal",
    "jammy",
    "noble",
    "kali-rolling",
)


class ReleaseOrder:
    """Ordinal lookup over an ordered list of release names."""

    def __init__(self, names: Iterable[str]) -> None:
        self.names: Tuple[str, ...] = tuple(names)
        self._index: Dict[str, int] = {}
        for position, name in enumerate(self.names):
            if name in self._index:
                raise ValueError(f"Duplicate release name: {name}")
            self._index[name] = position

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def index(self, name: str) -> int:
        try:
            return self._index[name]
        except KeyError:
            raise SandkitUsageError(
                f"Unknown release: {name!r}",
                code="unknown_release",
                details={"release": name},
            ) from None

    def compare(self, a: str, b: str) -> int:
        """Return -1, 0 or 1 as a is older than, equal to, or newer than b."""
        ia, ib = self.index(a), self.index(b)
        return (ia > ib) - (ia < ib)

    def lt(self, a: str, b: str) -> bool:
        return self.compare(a, b) < 0

    def ge(self, a: str, b: str) -> bool:
        return self.compare(a, b) >= 0


default_order = ReleaseOrder(DEFAULT_RELEASES)


def release_lt(a: str, b: str) -> bool:
    return default_order.lt(a, b)


def release_ge(a: str, b: str) -> bool:
    return default_order.ge(a, b)
