"""Shared recognizer/translator instances with swap-on-demand.

Engines are expensive to build (model downloads, client setup) so every
worker shares one pair. A worker asks for the language pair it needs:
- same pair as loaded: shared access, any number of concurrent users
- different pair: waits until no call is in flight, rebuilds, then shares
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Protocol

from PIL import Image

from .translators.base import TextTranslator
from .types import Fragment

logger = logging.getLogger(__name__)


class TextRecognizer(Protocol):
    def recognize(self, image: Image.Image) -> list[Fragment]: ...

    def close(self) -> None: ...


RecognizerFactory = Callable[[str], TextRecognizer]
TranslatorFactory = Callable[[str, str], TextTranslator]


@dataclass(frozen=True)
class EngineSet:
    recognizer: TextRecognizer
    translator: TextTranslator


class EngineHandle:
    def __init__(self, recognizer_factory: RecognizerFactory, translator_factory: TranslatorFactory):
        self._recognizer_factory = recognizer_factory
        self._translator_factory = translator_factory
        self._recognizer: TextRecognizer | None = None
        self._translator: TextTranslator | None = None
        self._recognizer_lang: str | None = None
        self._pair: tuple[str, str] | None = None
        self._readers = 0
        self._no_readers = asyncio.Event()
        self._no_readers.set()
        self._swap_lock = asyncio.Lock()
        self.swaps = 0

    @property
    def loaded_pair(self) -> tuple[str, str] | None:
        return self._pair

    @property
    def in_flight(self) -> int:
        return self._readers

    @asynccontextmanager
    async def acquire(self, pair: tuple[str, str]) -> AsyncIterator[EngineSet]:
        await self._enter(pair)
        try:
            assert self._recognizer is not None and self._translator is not None
            yield EngineSet(self._recognizer, self._translator)
        finally:
            self._leave()

    async def _enter(self, pair: tuple[str, str]) -> None:
        if self._pair == pair and not self._swap_lock.locked():
            self._add_reader()
            return
        async with self._swap_lock:
            if self._pair != pair:
                await self._no_readers.wait()
                await self._swap(pair)
            self._add_reader()

    def _add_reader(self) -> None:
        self._readers += 1
        self._no_readers.clear()

    def _leave(self) -> None:
        # Synchronous so a cancelled caller can never leak a reader.
        self._readers -= 1
        if self._readers == 0:
            self._no_readers.set()

    async def _swap(self, pair: tuple[str, str]) -> None:
        from_lang, to_lang = pair
        logger.info("loading engines for %s -> %s (was %s)", from_lang, to_lang, self._pair)
        self._pair = None
        try:
            if self._recognizer is None or self._recognizer_lang != from_lang:
                self._close_quietly(self._recognizer)
                self._recognizer = None
                self._recognizer = await asyncio.to_thread(self._recognizer_factory, from_lang)
                self._recognizer_lang = from_lang
            self._close_quietly(self._translator)
            self._translator = None
            self._translator = await asyncio.to_thread(self._translator_factory, from_lang, to_lang)
        except BaseException:
            if self._recognizer is None:
                self._recognizer_lang = None
            raise
        self._pair = pair
        self.swaps += 1

    @staticmethod
    def _close_quietly(engine: Any) -> None:
        if engine is None:
            return
        try:
            engine.close()
        except Exception as e:  # noqa: BLE001
            logger.warning("engine close failed: %s", e)

    def close(self) -> None:
        self._close_quietly(self._recognizer)
        self._close_quietly(self._translator)
        self._recognizer = None
        self._translator = None
        self._recognizer_lang = None
        self._pair = None
