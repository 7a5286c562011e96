"""
Translation backend interface and response alignment.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from ..geometry import normalize_angle
from ..types import Block, PageResult

logger = logging.getLogger(__name__)


class TranslationError(RuntimeError):
    """Backend could not produce any usable response (network, HTTP, auth)."""


class TextTranslator(ABC):
    """
    A translation backend for one source -> target language pair.

    translate() receives page filename -> source strings and returns the same
    keys with equally long string lists. Partial or malformed answers are
    tolerated by apply_translations; raising TranslationError fails the job.
    """

    def __init__(self, from_lang: str, to_lang: str):
        self.from_lang = from_lang
        self.to_lang = to_lang

    @abstractmethod
    def translate(self, pages: dict[str, list[str]]) -> dict[str, list[str]]:
        pass

    def close(self) -> None:
        pass


# degrees a block may lean off horizontal or vertical and still be translated
DEFAULT_ANGLE_TOLERANCE = 15.0


def is_upright(angle: float, tolerance: float = DEFAULT_ANGLE_TOLERANCE) -> bool:
    a = abs(normalize_angle(angle))
    return a <= tolerance or abs(a - 90.0) <= tolerance


def translatable_blocks(page: PageResult, angle_tolerance: float = DEFAULT_ANGLE_TOLERANCE) -> list[Block]:
    """Blocks sent for translation: not noise, and not skewed sound effects."""
    return [b for b in page.blocks if not b.noise and is_upright(b.angle, angle_tolerance)]


def collect_texts(
    pages: dict[str, PageResult],
    angle_tolerance: float = DEFAULT_ANGLE_TOLERANCE,
) -> dict[str, list[str]]:
    """Request payload: every page key, noise and skewed blocks left out."""
    return {
        name: [" ".join(b.text.split()) for b in translatable_blocks(page, angle_tolerance)]
        for name, page in pages.items()
    }


def apply_translations(
    pages: dict[str, PageResult],
    translated: Any,
    angle_tolerance: float = DEFAULT_ANGLE_TOLERANCE,
) -> int:
    """Attach translations to blocks in place; returns the number of fallbacks.

    Any block without a usable string in the response keeps its source text.
    Blocks that were not sent get an empty translation.
    """
    response = translated if isinstance(translated, dict) else {}
    fallbacks = 0
    for name, page in pages.items():
        arr = response.get(name)
        if not isinstance(arr, (list, tuple)):
            arr = []
        blocks = translatable_blocks(page, angle_tolerance)
        if arr and len(arr) != len(blocks):
            logger.warning("page %s: got %d translations for %d blocks", name, len(arr), len(blocks))
        for idx, block in enumerate(blocks):
            value = arr[idx] if idx < len(arr) else None
            if isinstance(value, str):
                block.translation = value.strip()
            else:
                block.translation = block.text
                fallbacks += 1
        sent = {id(b) for b in blocks}
        for block in page.blocks:
            if id(block) not in sent:
                block.translation = ""
    if fallbacks:
        logger.info("%d blocks kept their source text", fallbacks)
    return fallbacks
