from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from .base import TextTranslator, TranslationError

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-1.5-flash"
SKIP_MARKER = "RTMTH"  # model's answer for watermarks, URLs and scan credits

SYSTEM_PROMPT = (
    "System Instruction - Comic Translation (Strict JSON Mode)\n"
    "You are an AI translator specialized in manhwa, manga, and manhua OCR text.\n"
    "Input is a JSON object: keys are image filenames, values are arrays of strings.\n"
    "Translate each string independently into {target}.\n"
    f'If a string is a watermark, URL, or scan credit, replace it with "{SKIP_MARKER}".\n'
    "Do not merge, split, reorder, infer, or expand text.\n"
    "Output MUST be valid JSON only, same structure, same lengths.\n"
    "No explanations. No comments. No extra text."
)

SAFETY_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)


class GeminiTranslator(TextTranslator):
    """Gemini generateContent in JSON mode; one request per chapter."""

    def __init__(
        self,
        from_lang: str,
        to_lang: str,
        *,
        api_key: str,
        model: str = DEFAULT_MODEL,
        temperature: float = 0.5,
        max_output_tokens: int = 8192,
        target_label: str | None = None,
        base_url: str = GEMINI_BASE_URL,
        timeout_sec: float = 120.0,
        client: httpx.Client | None = None,
    ):
        super().__init__(from_lang, to_lang)
        if not api_key:
            raise TranslationError("gemini translator requires an api_key")
        self.api_key = api_key
        self.model = model
        self.temperature = float(temperature)
        self.max_output_tokens = int(max_output_tokens)
        self.target_label = target_label or to_lang
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout_sec)
        self._owns_client = client is None

    def translate(self, pages: dict[str, list[str]]) -> dict[str, list[str | None]]:
        if not any(pages.values()):
            return {name: [] for name in pages}

        try:
            resp = self._client.post(
                f"{self.base_url}/models/{self.model}:generateContent",
                headers={"x-goog-api-key": self.api_key},
                json=self._request_body(pages),
            )
            resp.raise_for_status()
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TranslationError(f"gemini request failed: {e}") from e

        parsed = extract_json_object(_response_text(payload))
        if parsed is None:
            logger.warning("gemini returned no parseable JSON; keeping source text")
            return {name: [None] * len(texts) for name, texts in pages.items()}

        out: dict[str, list[str | None]] = {}
        for name, texts in pages.items():
            arr = parsed.get(name)
            if not isinstance(arr, list):
                arr = []
            row: list[str | None] = []
            for idx in range(len(texts)):
                value = arr[idx] if idx < len(arr) else None
                if not isinstance(value, str):
                    row.append(None)
                elif value.strip() == SKIP_MARKER:
                    row.append("")
                else:
                    row.append(value)
            out[name] = row
        return out

    def _request_body(self, pages: dict[str, list[str]]) -> dict[str, Any]:
        return {
            "system_instruction": {"parts": [{"text": SYSTEM_PROMPT.format(target=self.target_label)}]},
            "contents": [{"role": "user", "parts": [{"text": json.dumps(pages, ensure_ascii=False)}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "topK": 30,
                "topP": 0.5,
                "maxOutputTokens": self.max_output_tokens,
                "responseMimeType": "application/json",
            },
            "safetySettings": [{"category": c, "threshold": "BLOCK_NONE"} for c in SAFETY_CATEGORIES],
        }

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


def _response_text(payload: Any) -> str:
    try:
        parts = payload["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError):
        return ""
    return "".join(p.get("text", "") for p in parts if isinstance(p, dict))


def extract_json_object(raw: str) -> dict[str, Any] | None:
    """Outermost {...} of a model answer, tolerating prose or code fences around it."""
    start = raw.find("{")
    end = raw.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        obj = json.loads(raw[start : end + 1])
    except json.JSONDecodeError as e:
        logger.debug("gemini JSON parse error: %s", e)
        return None
    return obj if isinstance(obj, dict) else None
