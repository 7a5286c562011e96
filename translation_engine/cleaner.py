from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .types import Fragment
from .utils import compile_patterns

DEFAULT_NOISE_PATTERNS = [
    r"https?://\S+",
    r"\bwww\.\S+",
    r"\bdiscord\.gg\b",
    r"\b[a-z0-9-]+\.(com|net|org|co|me|io|cc|tv|link|info)\b",
    r"\b(scan(s|lat(ed|ion|ions))?|translat(ed|ion|ions)|tl|clean(ed|ing)?|typeset(ting)?|proofread(ing)?|raws?)\s*(by|:)",
]
DEFAULT_MIN_BOX_SIZE = 2.0  # px; boxes this thin are OCR artifacts
DEFAULT_MIN_TEXT_LENGTH = 2  # single glyphs are mostly misreads


@dataclass
class NoiseFilter:
    cleanup_cfg: dict[str, Any]

    def __post_init__(self):
        """Compile patterns once on initialization."""
        patterns = list(self.cleanup_cfg.get("noise_patterns", DEFAULT_NOISE_PATTERNS))
        patterns += list(self.cleanup_cfg.get("extra_noise_patterns", []))
        self._noise_patterns = compile_patterns(patterns)
        self.min_box_size = float(self.cleanup_cfg.get("min_box_size", DEFAULT_MIN_BOX_SIZE))
        self.min_text_length = int(self.cleanup_cfg.get("min_text_length", DEFAULT_MIN_TEXT_LENGTH))

    def is_noise(self, text: str, width: float, height: float) -> bool:
        """URL/credit text or a degenerate box: keep the geometry, skip translation."""
        if width <= self.min_box_size or height <= self.min_box_size:
            return True
        clean = " ".join(text.split())
        return any(p.search(clean) for p in self._noise_patterns)

    def keep(self, fragment: Fragment) -> bool:
        text = fragment.text.strip()
        return bool(text) and len(text) >= self.min_text_length

    def filter_fragments(self, fragments: list[Fragment]) -> list[Fragment]:
        return [f for f in fragments if self.keep(f)]
