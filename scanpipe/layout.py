"""Mapping from physical scan captures to logical page positions.

A raw capture may hold one page (``single``), two facing pages side by
side (``double``) or one face of a sheet folded in half and scanned open
(``double-folded``). The folded case presents its four logical pages in
reversed, rotated order; the mapping below undoes that.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Layout(str, Enum):
    SINGLE = "single"
    DOUBLE = "double"
    DOUBLE_FOLDED = "double-folded"

    @property
    def sides(self) -> int:
        """Number of logical pages emitted per raw capture."""
        return 1 if self is Layout.SINGLE else 2

    @property
    def cleanup_layout(self) -> str:
        """Layout name understood by the deskew tool."""
        return "single" if self is Layout.SINGLE else "double"


@dataclass(frozen=True)
class SideTarget:
    """One output side of a raw page and where it lands."""

    side: int
    target: int


@dataclass(frozen=True)
class Resolution:
    targets: tuple[SideTarget, ...]
    pre_rotation: int = 0

    @property
    def indices(self) -> tuple[int, ...]:
        return tuple(item.target for item in self.targets)


def resolve(layout: Layout, page: int) -> Resolution:
    """Return the target indices and pre-rotation for raw page ``page``.

    ``page`` is 1-based and counted after blank pages were dropped.
    """
    if page < 1:
        raise ValueError(f"Raw page index must be >= 1, got {page}")

    if layout is Layout.SINGLE:
        return Resolution(targets=(SideTarget(1, page),))

    if layout is Layout.DOUBLE:
        return Resolution(targets=(SideTarget(1, 2 * page - 1), SideTarget(2, 2 * page)))

    if page % 2:
        base = (page - 1) * 2
        return Resolution(
            targets=(SideTarget(1, base + 4), SideTarget(2, base + 1)),
            pre_rotation=90,
        )
    base = (page - 2) * 2
    return Resolution(
        targets=(SideTarget(1, base + 2), SideTarget(2, base + 3)),
        pre_rotation=-90,
    )


def total_targets(layout: Layout, raw_pages: int) -> int:
    """Number of target pages produced by ``raw_pages`` captures."""
    return raw_pages * layout.sides


__all__ = ["Layout", "Resolution", "SideTarget", "resolve", "total_targets"]
