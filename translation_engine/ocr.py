from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any

import cv2
import numpy as np
from PIL import Image, ImageEnhance

from .types import Fragment

logger = logging.getLogger(__name__)

# Generic language code -> (easyocr, paddleocr) codes
OCR_LANG_MAP: dict[str, tuple[str, str]] = {
    "en": ("en", "en"),
    "ja": ("ja", "japan"),
    "ko": ("ko", "korean"),
    "zh": ("ch_sim", "ch"),
    "zh-hant": ("ch_tra", "chinese_cht"),
    "fr": ("fr", "french"),
    "de": ("de", "german"),
    "es": ("es", "es"),
    "ru": ("ru", "ru"),
}
VERTICAL_SCRIPT_LANGS = {"ja", "zh", "zh-hant"}


def _poly_to_fragment(poly: Any, text: str, *, vertical_hint: bool, vertical_aspect: float) -> Fragment:
    pts = [(float(p[0]), float(p[1])) for p in poly]
    xs = [p[0] for p in pts]
    ys = [p[1] for p in pts]
    x0, y0, x1, y1 = min(xs), min(ys), max(xs), max(ys)

    # Baseline angle from the top edge (top-left -> top-right).
    (tlx, tly), (trx, try_) = pts[0], pts[1]
    angle = math.degrees(math.atan2(try_ - tly, trx - tlx))

    w, h = x1 - x0, y1 - y0
    if vertical_hint and abs(angle) < 1.0 and h > vertical_aspect * w and len(text.strip()) > 1:
        # Axis-aligned detectors report vertical columns as tall boxes.
        angle = 90.0
    return Fragment(x=x0, y=y0, width=w, height=h, angle=angle, text=text)


@dataclass
class OCRRecognizer:
    """Page image -> text fragments, backed by EasyOCR or PaddleOCR.

    An empty first pass is retried once on a preprocessed image. Engine
    errors propagate so a broken install never yields silently empty pages.
    """
    language: str
    ocr_cfg: dict[str, Any] = field(default_factory=dict)
    _ocr: Any | None = None

    def __post_init__(self):
        self.engine = str(self.ocr_cfg.get("engine", "auto"))  # auto, easyocr, paddleocr
        self.use_preprocessing = bool(self.ocr_cfg.get("preprocess_retry", True))
        self.gpu = bool(self.ocr_cfg.get("gpu", False))
        self.vertical_aspect = float(self.ocr_cfg.get("vertical_aspect", 1.5))
        easy, paddle = OCR_LANG_MAP.get(self.language, (self.language, self.language))
        self._easy_lang = easy
        self._paddle_lang = paddle

    def recognize(self, image: Image.Image) -> list[Fragment]:
        fragments = self._recognize_once(image)
        if not fragments and self.use_preprocessing:
            logger.debug("no text found, retrying with preprocessing")
            fragments = self._recognize_once(self._preprocess_image(image))
        return fragments

    def close(self) -> None:
        self._ocr = None

    def _recognize_once(self, image: Image.Image) -> list[Fragment]:
        raw = self._extract_with_engine(image)
        vertical_hint = self.language in VERTICAL_SCRIPT_LANGS
        return [
            _poly_to_fragment(poly, text, vertical_hint=vertical_hint, vertical_aspect=self.vertical_aspect)
            for poly, text in raw
            if text and text.strip()
        ]

    def _preprocess_image(self, image: Image.Image) -> Image.Image:
        """Binarize, denoise and sharpen for hard pages."""
        img_array = np.array(image.convert("RGB"))
        gray = cv2.cvtColor(img_array, cv2.COLOR_RGB2GRAY)
        binary = cv2.adaptiveThreshold(gray, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C, cv2.THRESH_BINARY, 11, 2)
        denoised = cv2.fastNlMeansDenoising(binary, None, 10, 7, 21)
        kernel = np.array([[-1, -1, -1], [-1, 9, -1], [-1, -1, -1]])
        sharpened = cv2.filter2D(denoised, -1, kernel)
        processed = ImageEnhance.Contrast(Image.fromarray(sharpened)).enhance(1.5)
        return processed.convert("RGB")

    def _extract_with_engine(self, image: Image.Image) -> list[tuple[Any, str]]:
        if self.engine == "easyocr":
            return self._extract_easyocr(image)
        if self.engine == "paddleocr":
            return self._extract_paddleocr(image)
        try:
            return self._extract_easyocr(image)
        except ImportError:
            logger.info("easyocr unavailable, falling back to paddleocr")
            self.engine = "paddleocr"
            return self._extract_paddleocr(image)

    def _extract_easyocr(self, image: Image.Image) -> list[tuple[Any, str]]:
        import easyocr

        if self._ocr is None or not isinstance(self._ocr, easyocr.Reader):
            langs = [self._easy_lang] if self._easy_lang == "en" else [self._easy_lang, "en"]
            self._ocr = easyocr.Reader(langs, gpu=self.gpu)

        results = self._ocr.readtext(np.array(image.convert("RGB")))
        # bbox: [[x1,y1], [x2,y2], [x3,y3], [x4,y4]] clockwise from top-left
        return [(bbox, str(text)) for (bbox, text, _confidence) in results]

    def _extract_paddleocr(self, image: Image.Image) -> list[tuple[Any, str]]:
        from paddleocr import PaddleOCR

        if self._ocr is None or not hasattr(self._ocr, "ocr"):
            self._ocr = PaddleOCR(use_angle_cls=True, lang=self._paddle_lang, show_log=False)

        arr = np.array(image.convert("RGB"))
        try:
            result = self._ocr.ocr(arr, cls=True)
        except TypeError:
            result = self._ocr.ocr(arr)

        out: list[tuple[Any, str]] = []
        for line in result or []:
            for item in line or []:
                poly, (text, _score) = item
                out.append((poly, str(text)))
        return out
