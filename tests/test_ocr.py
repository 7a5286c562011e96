"""OCR adapter tests (engine calls stubbed; no models are loaded)."""
from __future__ import annotations

import pytest
from PIL import Image

from translation_engine.ocr import OCRRecognizer, _poly_to_fragment

BOX = [[10, 20], [110, 20], [110, 40], [10, 40]]
TALL = [[0, 0], [20, 0], [20, 100], [0, 100]]


class TestPolygonConversion:
    def test_axis_aligned_box(self):
        f = _poly_to_fragment(BOX, "hello", vertical_hint=False, vertical_aspect=1.5)
        assert (f.x, f.y, f.width, f.height, f.angle) == (10, 20, 100, 20, 0)
        assert f.sym_width is None

    def test_rotated_box_angle(self):
        poly = [[0, 0], [10, 10], [0, 20], [-10, 10]]
        f = _poly_to_fragment(poly, "tilted", vertical_hint=False, vertical_aspect=1.5)
        assert f.angle == pytest.approx(45.0)

    def test_tall_box_in_vertical_script(self):
        f = _poly_to_fragment(TALL, "こんにちは", vertical_hint=True, vertical_aspect=1.5)
        assert f.angle == 90.0

    def test_tall_box_without_hint_stays_horizontal(self):
        f = _poly_to_fragment(TALL, "hello", vertical_hint=False, vertical_aspect=1.5)
        assert f.angle == 0.0

    def test_single_glyph_is_not_a_column(self):
        f = _poly_to_fragment(TALL, "あ", vertical_hint=True, vertical_aspect=1.5)
        assert f.angle == 0.0


class TestRecognizer:
    def test_language_codes(self):
        rec = OCRRecognizer(language="ja")
        assert (rec._easy_lang, rec._paddle_lang) == ("ja", "japan")
        assert OCRRecognizer(language="xx")._easy_lang == "xx"

    def test_blank_text_dropped(self, monkeypatch):
        rec = OCRRecognizer(language="en")
        monkeypatch.setattr(rec, "_extract_with_engine", lambda image: [(BOX, "  "), (BOX, "word")])
        assert [f.text for f in rec.recognize(Image.new("RGB", (200, 100), "white"))] == ["word"]

    def test_empty_page_is_retried_with_preprocessing(self, monkeypatch):
        rec = OCRRecognizer(language="en")
        seen: list[Image.Image] = []

        def fake_extract(image):
            seen.append(image)
            return [] if len(seen) == 1 else [(BOX, "found")]

        monkeypatch.setattr(rec, "_extract_with_engine", fake_extract)
        original = Image.new("RGB", (200, 100), "white")
        fragments = rec.recognize(original)

        assert [f.text for f in fragments] == ["found"]
        assert len(seen) == 2
        assert seen[1] is not original
        assert seen[1].mode == "RGB" and seen[1].size == original.size

    def test_retry_can_be_disabled(self, monkeypatch):
        rec = OCRRecognizer(language="en", ocr_cfg={"preprocess_retry": False})
        calls: list[int] = []
        monkeypatch.setattr(rec, "_extract_with_engine", lambda image: calls.append(1) or [])
        assert rec.recognize(Image.new("RGB", (50, 50), "white")) == []
        assert calls == [1]

    def test_engine_errors_propagate(self, monkeypatch):
        rec = OCRRecognizer(language="en")

        def broken(image):
            raise RuntimeError("model failed")

        monkeypatch.setattr(rec, "_extract_with_engine", broken)
        with pytest.raises(RuntimeError):
            rec.recognize(Image.new("RGB", (50, 50), "white"))
