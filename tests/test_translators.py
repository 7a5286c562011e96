"""Translation backend tests (network replaced by httpx.MockTransport)."""
from __future__ import annotations

import json

import httpx
import pytest

from translation_engine.translators import (
    GeminiTranslator,
    GoogleTranslator,
    TranslationError,
    apply_translations,
    build_translator,
    collect_texts,
)
from translation_engine.translators.gemini import SKIP_MARKER, extract_json_object
from translation_engine.types import Block, PageResult


def _block(text: str, noise: bool = False, angle: float = 0.0) -> Block:
    return Block(x=0, y=0, width=10, height=10, angle=angle, text=text, sym_width=5, sym_height=5, noise=noise)


def google_payload(text: str) -> list:
    return [[[text, "source", None, None]], None, "ja"]


def upper_google(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json=google_payload(request.url.params["q"].upper()))


def gemini_response(text: str) -> httpx.Response:
    return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}], "role": "model"}}]})


# ═══════════════════════════════════════════════════════════════════════════════
# RESPONSE ALIGNMENT TESTS
# ═══════════════════════════════════════════════════════════════════════════════

class TestApplyTranslations:
    """Aligning backend output with page blocks."""

    def test_collect_skips_noise(self):
        pages = {"p1.png": PageResult(100, 100, [_block("hello  there"), _block("site.com", noise=True)])}
        assert collect_texts(pages) == {"p1.png": ["hello there"]}

    def test_skewed_blocks_are_not_sent(self):
        tilted = [_block("flat"), _block("sfx", angle=40), _block("column", angle=-92), _block("lean", angle=12)]
        pages = {"p1.png": PageResult(100, 100, tilted)}
        assert collect_texts(pages) == {"p1.png": ["flat", "column", "lean"]}
        assert apply_translations(pages, {"p1.png": ["F", "C", "L"]}) == 0
        assert [b.translation for b in tilted] == ["F", "", "C", "L"]

    def test_angle_window_is_configurable(self):
        pages = {"p1.png": PageResult(100, 100, [_block("lean", angle=12)])}
        assert collect_texts(pages, angle_tolerance=5.0) == {"p1.png": []}
        assert collect_texts(pages, angle_tolerance=45.0) == {"p1.png": ["lean"]}

    def test_aligned_response(self):
        pages = {"p1.png": PageResult(100, 100, [_block("a"), _block("x.com", noise=True), _block("b")])}
        fallbacks = apply_translations(pages, {"p1.png": [" A ", "B"]})
        assert fallbacks == 0
        assert [b.translation for b in pages["p1.png"].blocks] == ["A", "", "B"]

    def test_short_array_falls_back(self):
        pages = {"p1.png": PageResult(100, 100, [_block("a"), _block("b")])}
        assert apply_translations(pages, {"p1.png": ["A"]}) == 1
        assert [b.translation for b in pages["p1.png"].blocks] == ["A", "b"]

    def test_non_string_entries_fall_back(self):
        pages = {"p1.png": PageResult(100, 100, [_block("a"), _block("b")])}
        assert apply_translations(pages, {"p1.png": [None, 42]}) == 2
        assert [b.translation for b in pages["p1.png"].blocks] == ["a", "b"]

    def test_malformed_response_falls_back(self):
        pages = {"p1.png": PageResult(100, 100, [_block("a")]), "p2.png": PageResult(100, 100, [_block("b")])}
        assert apply_translations(pages, ["not", "a", "dict"]) == 2
        assert apply_translations(pages, {"p1.png": "oops"}) == 2
        assert pages["p2.png"].blocks[0].translation == "b"


# ═══════════════════════════════════════════════════════════════════════════════
# GOOGLE TESTS
# ═══════════════════════════════════════════════════════════════════════════════

class TestGoogleTranslator:
    """translate_a/single backend."""

    def test_translates_every_page(self):
        client = httpx.Client(transport=httpx.MockTransport(upper_google))
        tr = GoogleTranslator("ja", "en", client=client)
        out = tr.translate({"p1.png": ["one", "two"], "p2.png": ["three"], "p3.png": []})
        assert out == {"p1.png": ["ONE", "TWO"], "p2.png": ["THREE"], "p3.png": []}

    def test_batches_by_character_limit(self):
        queries: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            queries.append(request.url.params["q"])
            return upper_google(request)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        tr = GoogleTranslator("ja", "en", batch_char_limit=10, client=client)
        out = tr.translate({"p1.png": ["hello", "world", "again"]})
        assert queries == ["hello", "world", "again"]
        assert out["p1.png"] == ["HELLO", "WORLD", "AGAIN"]

    def test_request_parameters(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return upper_google(request)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        GoogleTranslator("ja", "en", detect_source=False, client=client).translate({"p": ["a", "b"]})
        params = seen[0].url.params
        assert (params["client"], params["sl"], params["tl"], params["dt"]) == ("gtx", "ja", "en", "t")
        assert params["q"] == "a\nb"

    def test_line_count_mismatch_keeps_source(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=google_payload("ONLY ONE LINE"))

        client = httpx.Client(transport=httpx.MockTransport(handler))
        out = GoogleTranslator("ja", "en", client=client).translate({"p": ["a", "b"]})
        assert out == {"p": [None, None]}

    def test_partial_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params["q"] == "bad":
                return httpx.Response(500)
            return upper_google(request)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        out = GoogleTranslator("ja", "en", batch_char_limit=4, client=client).translate({"p": ["ok", "bad"]})
        assert out == {"p": ["OK", None]}

    def test_total_failure_raises(self):
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
        with pytest.raises(TranslationError):
            GoogleTranslator("ja", "en", client=client).translate({"p": ["a"]})

    def test_unexpected_payload_counts_as_failure(self):
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"x": 1})))
        with pytest.raises(TranslationError):
            GoogleTranslator("ja", "en", client=client).translate({"p": ["a"]})

    def test_close_leaves_injected_client_open(self):
        client = httpx.Client(transport=httpx.MockTransport(upper_google))
        GoogleTranslator("ja", "en", client=client).close()
        assert not client.is_closed


# ═══════════════════════════════════════════════════════════════════════════════
# GEMINI TESTS
# ═══════════════════════════════════════════════════════════════════════════════

class TestGeminiTranslator:
    """generateContent backend in JSON mode."""

    def _translator(self, handler, **kwargs) -> GeminiTranslator:
        client = httpx.Client(transport=httpx.MockTransport(handler))
        return GeminiTranslator("ja", "en", api_key="test-key", client=client, **kwargs)

    def test_request_and_response(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            body = json.loads(request.content)
            pages = json.loads(body["contents"][0]["parts"][0]["text"])
            answer = {name: [t.upper() for t in texts] for name, texts in pages.items()}
            return gemini_response(json.dumps(answer))

        out = self._translator(handler, model="gemini-test").translate({"p1.png": ["hi", "there"]})
        assert out == {"p1.png": ["HI", "THERE"]}

        request = seen[0]
        assert request.url.path.endswith("/models/gemini-test:generateContent")
        assert request.headers["x-goog-api-key"] == "test-key"
        body = json.loads(request.content)
        assert body["generationConfig"]["responseMimeType"] == "application/json"
        assert "en" in body["system_instruction"]["parts"][0]["text"]

    def test_skip_marker_becomes_empty(self):
        answer = json.dumps({"p1.png": ["Hello", SKIP_MARKER]})
        out = self._translator(lambda r: gemini_response(answer)).translate({"p1.png": ["a", "b"]})
        assert out == {"p1.png": ["Hello", ""]}

    def test_fenced_json_is_extracted(self):
        answer = '```json\n{"p1.png": ["Hello"]}\n```'
        out = self._translator(lambda r: gemini_response(answer)).translate({"p1.png": ["a"]})
        assert out == {"p1.png": ["Hello"]}

    def test_unparseable_answer_keeps_source(self):
        out = self._translator(lambda r: gemini_response("I cannot help with that")).translate({"p": ["a", "b"]})
        assert out == {"p": [None, None]}

    def test_misaligned_answer_is_padded(self):
        answer = json.dumps({"p1.png": ["only one", 7], "other.png": ["x"]})
        out = self._translator(lambda r: gemini_response(answer)).translate({"p1.png": ["a", "b", "c"]})
        assert out == {"p1.png": ["only one", None, None]}

    def test_http_error_raises(self):
        with pytest.raises(TranslationError):
            self._translator(lambda r: httpx.Response(403, json={"error": "denied"})).translate({"p": ["a"]})

    def test_empty_input_skips_request(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        assert self._translator(handler).translate({"p": []}) == {"p": []}

    def test_api_key_required(self):
        with pytest.raises(TranslationError):
            GeminiTranslator("ja", "en", api_key="")

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ('{"a": ["x"]}', {"a": ["x"]}),
            ('Sure! {"a": []} Hope this helps.', {"a": []}),
            ("no json here", None),
            ("{broken", None),
            ("[1, 2]", None),
        ],
    )
    def test_extract_json_object(self, raw, expected):
        assert extract_json_object(raw) == expected


# ═══════════════════════════════════════════════════════════════════════════════
# REGISTRY TESTS
# ═══════════════════════════════════════════════════════════════════════════════

class TestBuildTranslator:
    def test_google(self):
        tr = build_translator("google", {"batch_char_limit": 500}, "ja", "en")
        try:
            assert isinstance(tr, GoogleTranslator)
            assert tr.batch_char_limit == 500
        finally:
            tr.close()

    def test_gemini_key_from_env(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "env-key")
        tr = build_translator("gemini", {}, "ja", "en")
        try:
            assert isinstance(tr, GeminiTranslator)
            assert tr.api_key == "env-key"
        finally:
            tr.close()

    def test_gemini_without_key(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        with pytest.raises(TranslationError):
            build_translator("gemini", {}, "ja", "en")

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            build_translator("deepl", {}, "ja", "en")
