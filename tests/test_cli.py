"""CLI tests: cluster, validate and run (with fake engines)."""
from __future__ import annotations

import json
import shutil
import tempfile
from pathlib import Path

import pytest
from PIL import Image

from translation_engine import cli
from translation_engine.engines import EngineHandle
from translation_engine.translators.base import TextTranslator
from translation_engine.types import Fragment
from translation_engine.utils import write_json


class FakeRecognizer:
    def recognize(self, image):
        return [
            Fragment(100, 100, 100, 30, 0, "first", 20, 30),
            Fragment(215, 100, 120, 30, 0, "second", 20, 30),
        ]

    def close(self) -> None:
        pass


class EchoTranslator(TextTranslator):
    def translate(self, pages):
        return {name: [f"<{t}>" for t in texts] for name, texts in pages.items()}


@pytest.fixture
def workspace_dir() -> Path:
    tmp = tempfile.mkdtemp()
    yield Path(tmp)
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def fake_engines(monkeypatch):
    def factory(cfg, translator_name):
        return EngineHandle(lambda lang: FakeRecognizer(), lambda src, dst: EchoTranslator(src, dst))

    monkeypatch.setattr(cli, "default_engine_handle", factory)


def _chapter(root: Path, name: str, pages: int = 2) -> Path:
    d = root / name
    d.mkdir(parents=True)
    for i in range(1, pages + 1):
        Image.new("RGB", (1000, 1500), "white").save(d / f"{i:03d}.png")
    return d


class TestClusterCommand:
    def test_cluster_to_file(self, workspace_dir: Path, capsys):
        src = workspace_dir / "fragments.json"
        write_json(src, {
            "img_width": 800,
            "img_height": 2400,
            "fragments": [
                {"x": 100, "y": 100, "width": 100, "height": 30, "text": "first", "sym_width": 20, "sym_height": 30},
                {"x": 215, "y": 100, "width": 120, "height": 30, "text": "second", "sym_width": 20, "sym_height": 30},
            ],
        })
        out = workspace_dir / "page.json"
        assert cli.main(["cluster", "--fragments", str(src), "--out", str(out)]) == 0
        page = json.loads(out.read_text(encoding="utf-8"))
        assert [b["text"] for b in page["blocks"]] == ["first second"]
        assert "blocks=1" in capsys.readouterr().out

    def test_cluster_to_stdout(self, workspace_dir: Path, capsys):
        src = workspace_dir / "fragments.json"
        write_json(src, {"img_width": 1000, "img_height": 1500, "fragments": []})
        assert cli.main(["cluster", "--fragments", str(src)]) == 0
        assert json.loads(capsys.readouterr().out)["blocks"] == []


class TestValidateCommand:
    def _artifact(self, workspace_dir: Path, blocks: list[dict]) -> Path:
        path = workspace_dir / "chapter.json"
        write_json(path, {"001.png": {"img_width": 1000, "img_height": 1500, "blocks": blocks}})
        return path

    def _block(self, **overrides) -> dict:
        block = {"x": 10, "y": 10, "width": 100, "height": 40, "angle": 0, "text": "hi",
                 "translation": "yo", "sym_width": 10, "sym_height": 20, "noise": False}
        block.update(overrides)
        return block

    def test_valid_artifact(self, workspace_dir: Path, capsys):
        path = self._artifact(workspace_dir, [self._block()])
        assert cli.main(["validate", "--artifact", str(path)]) == 0
        assert "OK" in capsys.readouterr().out

    def test_block_outside_page(self, workspace_dir: Path, capsys):
        path = self._artifact(workspace_dir, [self._block(x=990)])
        assert cli.main(["validate", "--artifact", str(path)]) == 1
        assert "invalid_blocks=1" in capsys.readouterr().out

    def test_missing_field(self, workspace_dir: Path, capsys):
        bad = self._block()
        del bad["sym_width"]
        path = self._artifact(workspace_dir, [bad])
        assert cli.main(["validate", "--artifact", str(path)]) == 1
        assert "invalid_pages=1" in capsys.readouterr().out

    def test_unreadable_file(self, workspace_dir: Path):
        path = workspace_dir / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        assert cli.main(["validate", "--artifact", str(path)]) == 1


class TestRunCommand:
    def test_run_translates_and_skips_existing(self, workspace_dir: Path, fake_engines, capsys):
        ch1 = _chapter(workspace_dir / "in", "ch1")
        ch2 = _chapter(workspace_dir / "in", "ch2")
        out_root = workspace_dir / "out"
        args = ["run", str(ch1), str(ch2), "--source", "local", "--manga", "Demo", "--from", "ja",
                "--out", str(out_root), "--config", str(workspace_dir / "missing.json")]

        assert cli.main(args) == 0
        assert "done=2 failed=0" in capsys.readouterr().out

        artifacts = sorted((out_root / "local" / "Demo").glob("*.json"))
        assert [p.name for p in artifacts] == ["ch1.json", "ch2.json"]
        data = json.loads(artifacts[0].read_text(encoding="utf-8"))
        assert list(data) == ["001.png", "002.png"]
        assert data["001.png"]["blocks"][0]["translation"] == "<second first>"
        assert cli.main(["validate", "--artifact", str(artifacts[0])]) == 0

        assert cli.main(args) == 0
        assert "queued=0 skipped_existing=2" in capsys.readouterr().out
