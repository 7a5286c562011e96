from __future__ import annotations

import logging
from typing import Any

import httpx

from .base import TextTranslator, TranslationError

logger = logging.getLogger(__name__)

GOOGLE_TRANSLATE_URL = "https://translate.googleapis.com/translate_a/single"
DEFAULT_BATCH_CHAR_LIMIT = 2000


class GoogleTranslator(TextTranslator):
    """Free Google Translate endpoint; blocks are sent one per line in batches."""

    def __init__(
        self,
        from_lang: str,
        to_lang: str,
        *,
        batch_char_limit: int = DEFAULT_BATCH_CHAR_LIMIT,
        detect_source: bool = True,
        timeout_sec: float = 30.0,
        client: httpx.Client | None = None,
    ):
        super().__init__(from_lang, to_lang)
        self.batch_char_limit = int(batch_char_limit)
        self.detect_source = detect_source
        self._client = client or httpx.Client(timeout=timeout_sec)
        self._owns_client = client is None

    def translate(self, pages: dict[str, list[str]]) -> dict[str, list[str | None]]:
        out: dict[str, list[str | None]] = {name: [None] * len(texts) for name, texts in pages.items()}
        items = [(name, idx, text) for name, texts in pages.items() for idx, text in enumerate(texts)]
        if not items:
            return out

        batches = self._batches(items)
        failures = 0
        for batch in batches:
            merged = "\n".join(text for _, _, text in batch)
            try:
                translated = self._translate_text(merged)
            except (httpx.HTTPError, ValueError) as e:
                failures += 1
                logger.warning("google batch of %d lines failed: %s", len(batch), e)
                continue

            lines = [ln.strip() for ln in translated.split("\n") if ln.strip()]
            if len(lines) != len(batch):
                logger.warning("google returned %d lines for %d blocks; keeping source text", len(lines), len(batch))
                continue
            for (name, idx, _), line in zip(batch, lines):
                out[name][idx] = line

        if failures == len(batches):
            raise TranslationError(f"all {failures} google translate requests failed")
        return out

    def _batches(self, items: list[tuple[str, int, str]]) -> list[list[tuple[str, int, str]]]:
        batches: list[list[tuple[str, int, str]]] = []
        current: list[tuple[str, int, str]] = []
        length = 0
        for item in items:
            text = " ".join(item[2].split())
            if current and length + len(text) + 1 > self.batch_char_limit:
                batches.append(current)
                current, length = [], 0
            current.append((item[0], item[1], text))
            length += len(text) + 1
        if current:
            batches.append(current)
        return batches

    def _translate_text(self, text: str) -> str:
        params = {
            "client": "gtx",
            "sl": "auto" if self.detect_source else self.from_lang,
            "tl": self.to_lang,
            "dt": "t",
            "q": text,
        }
        resp = self._client.get(GOOGLE_TRANSLATE_URL, params=params)
        resp.raise_for_status()
        return _join_sentences(resp.json())

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


def _join_sentences(payload: Any) -> str:
    """[[["translated", "source", ...], ...], ...] -> translated text."""
    if not isinstance(payload, list) or not payload or not isinstance(payload[0], list):
        raise ValueError("unexpected google translate payload")
    parts = []
    for sentence in payload[0]:
        if isinstance(sentence, list) and sentence and isinstance(sentence[0], str):
            parts.append(sentence[0])
    return "".join(parts)
