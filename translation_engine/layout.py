from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any

from .geometry import boxes_overlap, horizontal_overlap, vertical_overlap
from .types import Block
from .utils import clamp

logger = logging.getLogger(__name__)

DEFAULT_MAX_SCALE = 1.25
DEFAULT_MAX_TEXT_RATIO = 1.25
DEFAULT_MIN_LEGIBLE_HEIGHT = 25.0  # px glyph height below which text is enlarged
DEFAULT_MIN_SYMBOL_HEIGHT = 10.0
DEFAULT_GROW_THRESHOLD = 1.02  # smaller growth is not worth moving the box
DEFAULT_MIN_BLOCK_SIZE = 10.0
DEFAULT_COLLISION_GAP = 1.0  # px left free on each side of a cut


@dataclass
class LayoutAdjuster:
    """Grow blocks to fit translated text, then pull colliding blocks apart."""
    layout_cfg: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        cfg = self.layout_cfg
        self.max_scale = float(cfg.get("max_scale", DEFAULT_MAX_SCALE))
        self.max_text_ratio = float(cfg.get("max_text_ratio", DEFAULT_MAX_TEXT_RATIO))
        self.min_legible_height = float(cfg.get("min_legible_height", DEFAULT_MIN_LEGIBLE_HEIGHT))
        self.min_symbol_height = float(cfg.get("min_symbol_height", DEFAULT_MIN_SYMBOL_HEIGHT))
        self.grow_threshold = float(cfg.get("grow_threshold", DEFAULT_GROW_THRESHOLD))
        self.min_block_size = float(cfg.get("min_block_size", DEFAULT_MIN_BLOCK_SIZE))
        self.collision_gap = float(cfg.get("collision_gap", DEFAULT_COLLISION_GAP))

    def adjust(self, blocks: list[Block], page_width: float, page_height: float) -> list[Block]:
        grown = [self.grow(b, page_width, page_height) for b in blocks]
        return self.resolve_collisions(grown)

    # ─────────────────────────────────────────────────────────────────────
    # Growth
    # ─────────────────────────────────────────────────────────────────────

    def growth_factor(self, block: Block) -> float:
        text = " ".join(block.text.split())
        translation = " ".join((block.translation or "").split())
        text_ratio = clamp(len(translation) / max(1, len(text)), 1.0, self.max_text_ratio)
        font_ratio = max(1.0, self.min_legible_height / max(block.sym_height, self.min_symbol_height))
        return min(self.max_scale, math.sqrt(text_ratio * font_ratio))

    def grow(self, block: Block, page_width: float, page_height: float) -> Block:
        scale = self.growth_factor(block)
        if scale <= self.grow_threshold:
            return replace(block)

        new_w = min(block.width * scale, page_width)
        new_h = min(block.height * scale, page_height)
        new_x = block.x - (new_w - block.width) / 2
        new_y = block.y - (new_h - block.height) / 2

        new_x = clamp(new_x, 0.0, max(0.0, page_width - new_w))
        new_y = clamp(new_y, 0.0, max(0.0, page_height - new_h))
        return replace(block, x=new_x, y=new_y, width=new_w, height=new_h)

    # ─────────────────────────────────────────────────────────────────────
    # Collisions
    # ─────────────────────────────────────────────────────────────────────

    def resolve_collisions(self, blocks: list[Block]) -> list[Block]:
        """Cut every overlapping pair apart along its thinner overlap.

        Cuts only ever shrink boxes, so a pair resolved earlier in the pass
        cannot collide again later.
        """
        out = list(blocks)
        for i in range(len(out)):
            for j in range(i + 1, len(out)):
                a, b = out[i], out[j]
                if not boxes_overlap(a, b):
                    continue
                ox = horizontal_overlap(a, b)
                oy = vertical_overlap(a, b)
                axes = ("x", "y") if ox < oy else ("y", "x")
                for axis in axes:
                    cut = self._cut(a, b, axis)
                    if cut is not None:
                        out[i], out[j] = cut
                        break
                else:
                    logger.debug("blocks %d/%d overlap but cannot shrink above %.0fpx", i, j, self.min_block_size)
        return out

    def _cut(self, a: Block, b: Block, axis: str) -> tuple[Block, Block] | None:
        """Split both blocks at one cut line; None when a floor would be violated."""
        pos = "x" if axis == "x" else "y"
        size = "width" if axis == "x" else "height"

        def lo(blk: Block) -> float:
            return getattr(blk, pos)

        def hi(blk: Block) -> float:
            return getattr(blk, pos) + getattr(blk, size)

        # The block whose center comes first keeps the low side.
        a_first = (lo(a) + hi(a), 0) <= (lo(b) + hi(b), 1)
        low, high = (a, b) if a_first else (b, a)

        g = self.collision_gap
        cut = (max(lo(low), lo(high)) + min(hi(low), hi(high))) / 2
        min_cut = lo(low) + self.min_block_size + g
        max_cut = hi(high) - self.min_block_size - g
        if min_cut > max_cut:
            return None
        cut = clamp(cut, min_cut, max_cut)

        low_hi = min(hi(low), cut - g)
        high_lo = max(lo(high), cut + g)
        new_low = replace(low, **{size: low_hi - lo(low)})
        new_high = replace(high, **{pos: high_lo, size: hi(high) - high_lo})
        return (new_low, new_high) if a_first else (new_high, new_low)
