from __future__ import annotations

import os
from typing import Any

from .base import TextTranslator, TranslationError, apply_translations, collect_texts
from .gemini import GeminiTranslator
from .google import GoogleTranslator

__all__ = [
    "TextTranslator",
    "TranslationError",
    "GoogleTranslator",
    "GeminiTranslator",
    "apply_translations",
    "collect_texts",
    "build_translator",
]


def build_translator(name: str, translator_cfg: dict[str, Any], from_lang: str, to_lang: str) -> TextTranslator:
    """Backend by config name. Gemini reads its key from config or GEMINI_API_KEY."""
    if name == "google":
        return GoogleTranslator(
            from_lang,
            to_lang,
            batch_char_limit=int(translator_cfg.get("batch_char_limit", 2000)),
            detect_source=bool(translator_cfg.get("detect_source", True)),
            timeout_sec=float(translator_cfg.get("timeout_sec", 30.0)),
        )
    if name == "gemini":
        return GeminiTranslator(
            from_lang,
            to_lang,
            api_key=str(translator_cfg.get("api_key") or os.environ.get("GEMINI_API_KEY", "")),
            model=str(translator_cfg.get("model", "gemini-1.5-flash")),
            temperature=float(translator_cfg.get("temperature", 0.5)),
            max_output_tokens=int(translator_cfg.get("max_output_tokens", 8192)),
            target_label=translator_cfg.get("target_label"),
            timeout_sec=float(translator_cfg.get("timeout_sec", 120.0)),
        )
    raise ValueError(f"Unknown translator: {name}")
