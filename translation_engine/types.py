from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Fragment:
    """One raw OCR detection (top-left origin, pixels)."""
    x: float
    y: float
    width: float
    height: float
    angle: float  # baseline angle, degrees
    text: str
    sym_width: float | None = None  # glyph size reported by OCR, if any
    sym_height: float | None = None

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Fragment":
        sw, sh = d.get("sym_width"), d.get("sym_height")
        return cls(
            x=float(d["x"]),
            y=float(d["y"]),
            width=float(d["width"]),
            height=float(d["height"]),
            angle=float(d.get("angle", 0.0)),
            text=str(d.get("text", "")),
            sym_width=float(sw) if sw is not None else None,
            sym_height=float(sh) if sh is not None else None,
        )


@dataclass
class Block:
    """Merged text region: one bubble, caption or sound effect."""
    x: float
    y: float
    width: float
    height: float
    angle: float
    text: str
    sym_width: float
    sym_height: float
    translation: str | None = None
    noise: bool = False  # URL/credit or degenerate box: kept, never translated

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    def to_dict(self) -> dict[str, Any]:
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "angle": self.angle,
            "text": self.text,
            "translation": self.translation,
            "sym_width": self.sym_width,
            "sym_height": self.sym_height,
            "noise": self.noise,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Block":
        return cls(
            x=float(d["x"]),
            y=float(d["y"]),
            width=float(d["width"]),
            height=float(d["height"]),
            angle=float(d.get("angle", 0.0)),
            text=str(d.get("text", "")),
            sym_width=float(d["sym_width"]),
            sym_height=float(d["sym_height"]),
            translation=d.get("translation"),
            noise=bool(d.get("noise", False)),
        )


@dataclass
class PageResult:
    img_width: float
    img_height: float
    blocks: list[Block] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "img_width": self.img_width,
            "img_height": self.img_height,
            "blocks": [b.to_dict() for b in self.blocks],
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "PageResult":
        return cls(
            img_width=float(d["img_width"]),
            img_height=float(d["img_height"]),
            blocks=[Block.from_dict(b) for b in d.get("blocks", [])],
        )


def dump_pages(pages: dict[str, PageResult]) -> dict[str, Any]:
    """Ordered page-filename -> page mapping, JSON-ready."""
    return {name: page.to_dict() for name, page in pages.items()}


def load_pages(data: dict[str, Any]) -> dict[str, PageResult]:
    return {str(name): PageResult.from_dict(page) for name, page in data.items()}
