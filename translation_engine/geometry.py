"""Geometry helpers shared by clustering and layout adjustment.

All boxes are (x, y, width, height) with a top-left origin. Distances between
boxes are edge-to-edge and symmetric in their arguments.
"""
from __future__ import annotations

from enum import Enum
from typing import Protocol

from .utils import clamp, is_finite

# Page classification
SCROLLING_MIN_HEIGHT = 2300.0
SCROLLING_ASPECT = 2.0  # height > aspect * width

# Thresholds are tuned against this resolution
REFERENCE_WIDTH = 1200.0
REFERENCE_HEIGHT = 2000.0

VERTICAL_ANGLE_MIN = 70.0
VERTICAL_ANGLE_MAX = 110.0


class Box(Protocol):
    x: float
    y: float
    width: float
    height: float


class LayoutMode(str, Enum):
    SCROLLING = "scrolling"  # long strip, left-to-right
    PANELED = "paneled"  # discrete panels, right-to-left


def layout_mode(page_width: float, page_height: float) -> LayoutMode:
    if page_height > SCROLLING_MIN_HEIGHT or page_height > SCROLLING_ASPECT * page_width:
        return LayoutMode.SCROLLING
    return LayoutMode.PANELED


def normalize_angle(angle: float) -> float:
    """Map any angle into (-180, 180]."""
    a = angle % 360.0
    if a > 180.0:
        a -= 360.0
    return a


def is_vertical(angle: float) -> bool:
    return VERTICAL_ANGLE_MIN <= abs(normalize_angle(angle)) <= VERTICAL_ANGLE_MAX


def angle_difference(a: float, b: float) -> float:
    """Smallest difference between two baselines, mod 180."""
    d = abs(a - b) % 180.0
    return min(d, 180.0 - d)


def page_scale(
    page_width: float,
    page_height: float,
    *,
    min_scale: float = 1.0,
    max_scale: float = 2.0,
) -> tuple[float, float]:
    """Per-axis multiplier for distance thresholds relative to the reference page."""
    sx = clamp(page_width / REFERENCE_WIDTH, min_scale, max_scale)
    sy = clamp(page_height / REFERENCE_HEIGHT, min_scale, max_scale)
    return sx, sy


def estimate_symbol_metrics(width: float, height: float, angle: float, text: str) -> tuple[float, float]:
    """Approximate glyph width/height from a box and its text.

    Horizontal runs spread glyphs along x, vertical runs along y.
    """
    lines = [ln for ln in text.split("\n") if ln.strip()] or [text]
    longest = max(1, max(len(ln.strip()) for ln in lines))
    n_lines = max(1, len(lines))
    if is_vertical(angle):
        return width / n_lines, height / longest
    return width / longest, height / n_lines


def is_valid_box(b: Box) -> bool:
    return is_finite(b.x, b.y, b.width, b.height) and b.width > 0 and b.height > 0


def horizontal_gap(a: Box, b: Box) -> float:
    """Distance between facing x edges; 0 when the x ranges overlap."""
    return max(0.0, max(a.x, b.x) - min(a.x + a.width, b.x + b.width))


def vertical_gap(a: Box, b: Box) -> float:
    return max(0.0, max(a.y, b.y) - min(a.y + a.height, b.y + b.height))


def horizontal_overlap(a: Box, b: Box) -> float:
    """Signed: negative values are the gap."""
    return min(a.x + a.width, b.x + b.width) - max(a.x, b.x)


def vertical_overlap(a: Box, b: Box) -> float:
    return min(a.y + a.height, b.y + b.height) - max(a.y, b.y)


def union_box(*boxes: Box) -> tuple[float, float, float, float]:
    x0 = min(b.x for b in boxes)
    y0 = min(b.y for b in boxes)
    x1 = max(b.x + b.width for b in boxes)
    y1 = max(b.y + b.height for b in boxes)
    return x0, y0, x1 - x0, y1 - y0


def boxes_overlap(a: Box, b: Box, eps: float = 0.0) -> bool:
    return horizontal_overlap(a, b) > eps and vertical_overlap(a, b) > eps
