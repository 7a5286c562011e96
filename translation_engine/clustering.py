"""Block clustering: merge raw OCR fragments into logical text blocks.

Architecture:
1. Classify the page (scrolling strip vs. paneled page) -> reading order
2. Convert fragments to blocks (symbol metrics, noise flag)
3. Merge passes: union-find over the pairwise proximity graph, each
   connected component folded into one block in reading order
4. Repeat passes until one performs no merge, then sort in reading order

Key invariants:
- Deterministic: same fragments + config = same blocks
- should_merge is symmetric and never raises on bad geometry
- At most n - 1 merges for n fragments; every productive pass removes a block
"""
from __future__ import annotations

import logging
import statistics
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from .cleaner import NoiseFilter
from .geometry import (
    LayoutMode,
    angle_difference,
    estimate_symbol_metrics,
    horizontal_gap,
    horizontal_overlap,
    is_valid_box,
    is_vertical,
    layout_mode,
    page_scale,
    union_box,
    vertical_gap,
    vertical_overlap,
)
from .types import Block, Fragment
from .utils import is_finite

logger = logging.getLogger(__name__)

# Coefficients are multiples of the larger glyph width (sW) or height (sH) of
# the two candidates, after page scaling. All are overridable from config.
DEFAULT_COEFFICIENTS: dict[str, float] = {
    "angle_tolerance": 10.0,  # degrees, compared mod 180
    "min_symbol_size": 12.0,  # px floor for sW/sH
    "min_page_scale": 1.0,
    "max_page_scale": 2.0,
    # vertical runs (columnar text)
    "vertical_origin_dy": 2.2,  # sH
    "vertical_origin_dx": 4.5,  # sW
    "vertical_side_gap": 2.5,  # sW
    "vertical_aligned_overlap": 0.15,  # sH
    "vertical_aligned_gap": 2.2,  # sW
    # horizontal runs
    "horizontal_overlap_vgap": 0.4,  # sH
    "horizontal_overlap_ratio": 0.2,  # of the narrower width
    "horizontal_stack_vgap": 0.8,  # sH
    "horizontal_stack_center": 0.45,  # of the wider width
    "horizontal_inline_gap": 1.5,  # sW
    "horizontal_inline_line_overlap": 0.5,  # sH shared between the two lines
    # merge ordering: origins further apart than this are "separated"
    "order_split": 0.5,  # sW (vertical) / sH (horizontal)
}


@dataclass
class BlockClusterer:
    cluster_cfg: dict[str, Any] = field(default_factory=dict)
    cleanup_cfg: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.coef = {k: float(self.cluster_cfg.get(k, v)) for k, v in DEFAULT_COEFFICIENTS.items()}
        self.noise = NoiseFilter(self.cleanup_cfg)

    # ─────────────────────────────────────────────────────────────────────
    # Entry point
    # ─────────────────────────────────────────────────────────────────────

    def cluster(
        self,
        fragments: Iterable[Fragment | Block],
        page_width: float,
        page_height: float,
    ) -> list[Block]:
        mode = layout_mode(page_width, page_height)
        scale = page_scale(
            page_width,
            page_height,
            min_scale=self.coef["min_page_scale"],
            max_scale=self.coef["max_page_scale"],
        )

        blocks = [self.to_block(f) for f in fragments if f.text.strip()]
        blocks = self.sort_reading_order(blocks, mode)
        total_in = len(blocks)

        passes = 0
        while True:
            blocks, merges = self._merge_pass(blocks, mode, scale)
            passes += 1
            if merges == 0:
                break

        out = self.sort_reading_order(blocks, mode)
        logger.debug(
            "clustered %d fragments into %d blocks (%s, %d passes)",
            total_in,
            len(out),
            mode.value,
            passes,
        )
        return out

    def to_block(self, f: Fragment | Block) -> Block:
        sym_w = getattr(f, "sym_width", None)
        sym_h = getattr(f, "sym_height", None)
        if not sym_w or not sym_h or not is_finite(sym_w, sym_h):
            est_w, est_h = estimate_symbol_metrics(f.width, f.height, f.angle, f.text)
            sym_w = sym_w if sym_w and is_finite(sym_w) else est_w
            sym_h = sym_h if sym_h and is_finite(sym_h) else est_h
        return Block(
            x=float(f.x),
            y=float(f.y),
            width=float(f.width),
            height=float(f.height),
            angle=float(f.angle),
            text=f.text.strip(),
            sym_width=float(sym_w),
            sym_height=float(sym_h),
            translation=getattr(f, "translation", None),
            # merged blocks already carry their combined flag
            noise=f.noise if isinstance(f, Block) else self.noise.is_noise(f.text, f.width, f.height),
        )

    # ─────────────────────────────────────────────────────────────────────
    # Merge passes
    # ─────────────────────────────────────────────────────────────────────

    def _merge_pass(
        self,
        blocks: list[Block],
        mode: LayoutMode,
        scale: tuple[float, float],
    ) -> tuple[list[Block], int]:
        n = len(blocks)
        parent = list(range(n))

        def find(i: int) -> int:
            while parent[i] != i:
                parent[i] = parent[parent[i]]
                i = parent[i]
            return i

        for i in range(n):
            for j in range(i + 1, n):
                ri, rj = find(i), find(j)
                if ri == rj:
                    continue
                if self.should_merge(blocks[i], blocks[j], scale):
                    # smaller root wins so components keep reading-order anchors
                    parent[max(ri, rj)] = min(ri, rj)

        components: dict[int, list[int]] = {}
        for i in range(n):
            components.setdefault(find(i), []).append(i)

        out = [self.merge_group([blocks[k] for k in members], mode) for members in components.values()]
        return out, n - len(out)

    def should_merge(self, a: Block, b: Block, scale: tuple[float, float] = (1.0, 1.0)) -> bool:
        """Symmetric proximity test. Ambiguous geometry never merges."""
        if not (is_valid_box(a) and is_valid_box(b)):
            return False
        if not is_finite(a.angle, b.angle, a.sym_width, a.sym_height, b.sym_width, b.sym_height):
            return False
        c = self.coef
        if angle_difference(a.angle, b.angle) >= c["angle_tolerance"]:
            return False

        sx, sy = scale
        sw = max(a.sym_width, b.sym_width, c["min_symbol_size"])
        sh = max(a.sym_height, b.sym_height, c["min_symbol_size"])
        h_gap = horizontal_gap(a, b)
        v_gap = vertical_gap(a, b)

        if is_vertical(a.angle) and is_vertical(b.angle):
            # Columns are often split into short adjacent pieces: be permissive.
            dx = abs(a.x - b.x)
            dy = abs(a.y - b.y)
            origins_close = dy < sh * c["vertical_origin_dy"] * sy and dx < sw * c["vertical_origin_dx"] * sx
            side_by_side = h_gap < sw * c["vertical_side_gap"] * sx and dy < sh * c["vertical_origin_dy"] * sy
            aligned = (
                vertical_overlap(a, b) > sh * c["vertical_aligned_overlap"]
                and h_gap < sw * c["vertical_aligned_gap"] * sx
            )
            return origins_close or side_by_side or aligned

        overlapping = (
            v_gap < sh * c["horizontal_overlap_vgap"] * sy
            and horizontal_overlap(a, b) > min(a.width, b.width) * c["horizontal_overlap_ratio"]
        )
        center_diff = abs((a.x + a.width / 2) - (b.x + b.width / 2))
        stacked = (
            v_gap < sh * c["horizontal_stack_vgap"] * sy
            and center_diff < max(a.width, b.width) * c["horizontal_stack_center"]
        )
        inline = (
            h_gap < sw * c["horizontal_inline_gap"] * sx
            and vertical_overlap(a, b) > sh * c["horizontal_inline_line_overlap"]
        )
        return overlapping or stacked or inline

    def merge(self, a: Block, b: Block, mode: LayoutMode) -> Block:
        return self.merge_group([a, b], mode)

    def merge_group(self, members: list[Block], mode: LayoutMode) -> Block:
        """Fold a connected component into one block.

        Members are ordered once as a whole, so later pieces are never compared
        against a partially grown union box.
        """
        if len(members) == 1:
            return members[0]
        ordered = self.order_members(members, mode)

        lengths = [max(1, len(b.text)) for b in members]
        total = sum(lengths)
        longest = max(lengths)
        # longer text wins; ties go to the angle closest to zero
        angle = min(
            (b.angle for b, n in zip(members, lengths) if n == longest),
            key=lambda v: (abs(v), v),
        )
        x, y, w, h = union_box(*members)

        return Block(
            x=x,
            y=y,
            width=w,
            height=h,
            angle=angle,
            text=" ".join(t for t in (b.text.strip() for b in ordered) if t),
            sym_width=sum(b.sym_width * n for b, n in zip(members, lengths)) / total,
            sym_height=sum(b.sym_height * n for b, n in zip(members, lengths)) / total,
            translation=_join_translations([b.translation for b in ordered]),
            noise=all(b.noise for b in members),
        )

    def order_members(self, members: list[Block], mode: LayoutMode) -> list[Block]:
        """Reading order inside one block.

        Vertical runs: columns right-to-left, each read top-to-bottom. Otherwise
        lines top-to-bottom, each read in the page's direction. A new column or
        line starts when origins are more than ``order_split`` glyphs apart.
        """
        split = self.coef["order_split"]
        if all(is_vertical(b.angle) for b in members):
            ranked = sorted(members, key=lambda blk: (-blk.x, blk.y, blk.text))
            lanes = _split_lanes(ranked, lambda blk: -blk.x, lambda blk: blk.sym_width * split)
            inner = lambda blk: (blk.y, -blk.x, blk.text)
        else:
            sign = 1.0 if mode is LayoutMode.SCROLLING else -1.0
            ranked = sorted(members, key=lambda blk: (blk.y, sign * blk.x, blk.text))
            lanes = _split_lanes(ranked, lambda blk: blk.y, lambda blk: blk.sym_height * split)
            inner = lambda blk: (sign * blk.x, blk.y, blk.text)
        return [blk for lane in lanes for blk in sorted(lane, key=inner)]

    # ─────────────────────────────────────────────────────────────────────
    # Ordering
    # ─────────────────────────────────────────────────────────────────────

    def sort_reading_order(self, blocks: list[Block], mode: LayoutMode) -> list[Block]:
        """Rows within one glyph height of their top block, then x.

        Rows made only of vertical columns read right-to-left; other rows follow
        the page's direction.
        """
        if not blocks:
            return []
        heights = [b.sym_height for b in blocks if is_finite(b.sym_height) and b.sym_height > 0]
        band = max(self.coef["min_symbol_size"], statistics.median(heights) if heights else 0.0)
        sign = 1.0 if mode is LayoutMode.SCROLLING else -1.0

        placed = sorted((b for b in blocks if is_finite(b.x, b.y)), key=lambda blk: (blk.y, sign * blk.x, blk.text))
        broken = sorted((b for b in blocks if not is_finite(b.x, b.y)), key=lambda blk: blk.text)

        rows: list[list[Block]] = []
        for blk in placed:
            if rows and blk.y - rows[-1][0].y <= band:
                rows[-1].append(blk)
            else:
                rows.append([blk])

        out: list[Block] = []
        for row in rows:
            direction = -1.0 if all(is_vertical(b.angle) for b in row) else sign
            out.extend(sorted(row, key=lambda blk: (direction * blk.x, blk.y, blk.text)))
        return out + broken


def _split_lanes(
    ranked: list[Block],
    position: Callable[[Block], float],
    tolerance: Callable[[Block], float],
) -> list[list[Block]]:
    """Cut an already sorted run into columns or lines."""
    lanes: list[list[Block]] = []
    for blk in ranked:
        if lanes:
            prev = lanes[-1][-1]
            if position(blk) - position(prev) <= max(tolerance(prev), tolerance(blk)):
                lanes[-1].append(blk)
                continue
        lanes.append([blk])
    return lanes


def _join_translations(translations: list[str | None]) -> str | None:
    if all(t is None for t in translations):
        return None
    return " ".join(t for t in ((t or "").strip() for t in translations) if t)


def cluster_page(
    fragments: Iterable[Fragment | Block],
    page_width: float,
    page_height: float,
    cluster_cfg: dict[str, Any] | None = None,
) -> list[Block]:
    """Convenience wrapper with default configuration."""
    return BlockClusterer(cluster_cfg=cluster_cfg or {}).cluster(fragments, page_width, page_height)
