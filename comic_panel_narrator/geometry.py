"""
Pure helpers for normalized panel rectangles.

Every rectangle is (x, y, w, h) with each value relative to the owning page's
pixel size, so (0, 0, 1, 1) always covers the whole page.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

# Smallest width or height a panel may have; split and crop-edge results at or
# below it are rejected.
MIN_EDGE_HEIGHT = 0.005

TOP = "top"
BOTTOM = "bottom"

# Slack for float error when a rect is clamped flush against an edge.
EPSILON = 1e-9

# Resize handles: corners and edge midpoints.
HANDLES = ("tl", "t", "tr", "l", "r", "bl", "b", "br")


@dataclass(frozen=True)
class Rect:
    """A normalized rectangle."""
    x: float
    y: float
    w: float
    h: float

    @property
    def right(self) -> float:
        return self.x + self.w

    @property
    def bottom(self) -> float:
        return self.y + self.h

    @property
    def area(self) -> float:
        return self.w * self.h

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.x, self.y, self.w, self.h)


FULL_PAGE = Rect(0.0, 0.0, 1.0, 1.0)


def _unit(value: float) -> float:
    return max(0.0, min(1.0, value))


def clamp(rect: Rect) -> Rect:
    """Clip the origin into the unit square and shrink w/h so the rect stays inside it."""
    x = _unit(rect.x)
    y = _unit(rect.y)
    w = max(0.0, min(rect.w, 1.0 - x))
    h = max(0.0, min(rect.h, 1.0 - y))
    return Rect(x, y, w, h)


def is_valid(rect: Rect) -> bool:
    """True when the rect is wider and taller than MIN_EDGE_HEIGHT and lies inside the page."""
    return (
        rect.w > MIN_EDGE_HEIGHT and rect.h > MIN_EDGE_HEIGHT and
        rect.x >= 0 and rect.y >= 0 and
        rect.right <= 1.0 + EPSILON and rect.bottom <= 1.0 + EPSILON
    )


def overlaps(a: Rect, b: Rect) -> bool:
    """Axis-aligned overlap test. Rectangles that only touch do not overlap."""
    return not (a.right <= b.x or a.x >= b.right or a.bottom <= b.y or a.y >= b.bottom)


def contains_point(rect: Rect, x: float, y: float) -> bool:
    return rect.x <= x <= rect.right and rect.y <= y <= rect.bottom


def split(rect: Rect, y_split: float) -> Optional[Tuple[Rect, Rect]]:
    """
    Split a rect along a horizontal line in page space.

    Returns (top, bottom) sharing the original x and w, or None unless both
    halves are taller than MIN_EDGE_HEIGHT.
    """
    top_h = y_split - rect.y
    bottom_h = rect.bottom - y_split
    if top_h <= MIN_EDGE_HEIGHT or bottom_h <= MIN_EDGE_HEIGHT:
        return None
    top = Rect(rect.x, rect.y, rect.w, top_h)
    bottom = Rect(rect.x, y_split, rect.w, bottom_h)
    return top, bottom


def crop_edge(rect: Rect, y: float, direction: str) -> Optional[Rect]:
    """
    Move the top or bottom edge of a rect to page-Y `y`.

    Returns None when the remaining height would be MIN_EDGE_HEIGHT or less.
    """
    y = _unit(y)
    if direction == TOP:
        new_h = rect.bottom - y
        if new_h <= MIN_EDGE_HEIGHT:
            return None
        return Rect(rect.x, y, rect.w, new_h)
    if direction == BOTTOM:
        new_h = y - rect.y
        if new_h <= MIN_EDGE_HEIGHT:
            return None
        return Rect(rect.x, rect.y, rect.w, new_h)
    raise ValueError(f"Unknown crop direction: {direction}")


def normalize(x: float, y: float, w: float, h: float) -> Rect:
    """Turn a rect with negative width/height into the same area with a positive size."""
    if w < 0:
        x += w
        w = -w
    if h < 0:
        y += h
        h = -h
    return Rect(x, y, w, h)


def from_points(x0: float, y0: float, x1: float, y1: float) -> Rect:
    """Rect spanned by two corner points in any order."""
    return normalize(x0, y0, x1 - x0, y1 - y0)


def translate(rect: Rect, dx: float, dy: float) -> Rect:
    """Move a rect by (dx, dy), keeping it fully on the page."""
    x = max(0.0, min(1.0 - rect.w, rect.x + dx))
    y = max(0.0, min(1.0 - rect.h, rect.y + dy))
    return Rect(x, y, rect.w, rect.h)


def resize(rect: Rect, handle: str, dx: float, dy: float) -> Rect:
    """
    Apply a handle drag of (dx, dy) to `rect`.

    Dragging past the opposite edge flips the origin instead of leaving a
    negative size; the result is clamped to the page.
    """
    if handle not in HANDLES:
        raise ValueError(f"Unknown resize handle: {handle}")

    x, y, w, h = rect.as_tuple()
    if "l" in handle:
        x += dx
        w -= dx
    if "r" in handle:
        w += dx
    if "t" in handle:
        y += dy
        h -= dy
    if "b" in handle:
        h += dy

    return clamp(normalize(x, y, w, h))


def to_pixels(rect: Rect, width: int, height: int) -> Tuple[int, int, int, int]:
    """Convert to an integer (left, top, right, bottom) pixel box inside a width x height page."""
    left = min(max(int(round(rect.x * width)), 0), width)
    top = min(max(int(round(rect.y * height)), 0), height)
    right = min(max(int(round(rect.right * width)), 0), width)
    bottom = min(max(int(round(rect.bottom * height)), 0), height)
    return left, top, right, bottom


def from_pixels(box: Tuple[int, int, int, int], width: int, height: int) -> Rect:
    """Inverse of to_pixels for an (x1, y1, x2, y2) box."""
    x1, y1, x2, y2 = box
    return clamp(Rect(x1 / width, y1 / height, (x2 - x1) / width, (y2 - y1) / height))
