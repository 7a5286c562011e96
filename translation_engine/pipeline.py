from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Generator, Protocol

from PIL import Image

from .cleaner import NoiseFilter
from .clustering import BlockClusterer
from .config import EngineConfig
from .engines import EngineHandle
from .job import ChapterJob
from .layout import LayoutAdjuster
from .page_provider import ChapterPageSource
from .store import TranslationStore
from .translators import apply_translations, collect_texts
from .translators.base import DEFAULT_ANGLE_TOLERANCE
from .types import PageResult

logger = logging.getLogger(__name__)


class PageSource(Protocol):
    def iter_pages(self) -> Generator[tuple[str, Image.Image], None, None]: ...


@dataclass
class ChapterStats:
    pages_total: int = 0
    pages_with_text: int = 0
    fragments_total: int = 0
    blocks_total: int = 0
    fallback_blocks: int = 0


@dataclass
class ChapterPipeline:
    """OCR -> cluster -> translate -> adjust -> persist for one chapter."""
    engines: EngineHandle
    store: TranslationStore
    cfg: EngineConfig = field(default_factory=EngineConfig)
    page_source_factory: Callable[[Path], PageSource] = ChapterPageSource

    def __post_init__(self):
        self.noise = NoiseFilter(cleanup_cfg=self.cfg.cleanup)
        self.clusterer = BlockClusterer(cluster_cfg=self.cfg.cluster, cleanup_cfg=self.cfg.cleanup)
        self.adjuster = LayoutAdjuster(layout_cfg=self.cfg.layout)
        self.angle_tolerance = float(self.cfg.translator.get("angle_tolerance", DEFAULT_ANGLE_TOLERANCE))

    async def translate_chapter(self, job: ChapterJob) -> Path:
        stats = ChapterStats()
        pages: dict[str, PageResult] = {}
        pair = job.language_pair

        pages_iter = self.page_source_factory(job.chapter.path).iter_pages()
        with contextlib.closing(pages_iter):
            while True:
                # pages are decoded in a worker thread, one at a time
                page = await _next_page(pages_iter)
                if page is None:
                    break
                name, image = page
                stats.pages_total += 1
                width, height = image.size
                async with self.engines.acquire(pair) as engines:
                    fragments = await asyncio.to_thread(engines.recognizer.recognize, image)
                fragments = self.noise.filter_fragments(fragments)
                stats.fragments_total += len(fragments)

                blocks = self.clusterer.cluster(fragments, width, height)
                if blocks:
                    pages[name] = PageResult(img_width=float(width), img_height=float(height), blocks=blocks)
                    stats.pages_with_text += 1
                    stats.blocks_total += len(blocks)

        if pages:
            async with self.engines.acquire(pair) as engines:
                payload = collect_texts(pages, self.angle_tolerance)
                translated = await asyncio.to_thread(engines.translator.translate, payload)
            stats.fallback_blocks = apply_translations(pages, translated, self.angle_tolerance)

        for page in pages.values():
            page.blocks = self.adjuster.adjust(page.blocks, page.img_width, page.img_height)

        path = self.store.save(job, pages)
        logger.info(
            "translated %s/%s: %d pages, %d with text, %d blocks (%d untranslated) -> %s",
            job.manga.title,
            job.chapter.name,
            stats.pages_total,
            stats.pages_with_text,
            stats.blocks_total,
            stats.fallback_blocks,
            path,
        )
        return path


async def _next_page(pages: Generator[tuple[str, Image.Image], None, None]) -> tuple[str, Image.Image] | None:
    """Advance the page generator in a worker thread; None when exhausted."""
    step = asyncio.ensure_future(asyncio.to_thread(next, pages, None))
    try:
        return await asyncio.shield(step)
    except asyncio.CancelledError:
        # a generator cannot be closed while the decoder thread is still inside it
        await asyncio.wait({step})
        raise


def default_engine_handle(cfg: EngineConfig, translator_name: str) -> EngineHandle:
    """Production engines: OCR model per source language, configured backend."""
    from .ocr import OCRRecognizer
    from .translators import build_translator

    def make_recognizer(lang: str) -> Any:
        return OCRRecognizer(language=lang, ocr_cfg=cfg.ocr)

    def make_translator(from_lang: str, to_lang: str) -> Any:
        return build_translator(translator_name, cfg.translator, from_lang, to_lang)

    return EngineHandle(make_recognizer, make_translator)
