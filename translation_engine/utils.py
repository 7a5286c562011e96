from __future__ import annotations

import json
import math
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


_UNSAFE_NAME_RE = re.compile(r'[\\/:*?"<>|\x00-\x1f]+')


def safe_path_token(text: str, max_len: int = 120) -> str:
    """Filesystem-safe name that keeps non-ASCII titles readable.

    Notes:
    - Only characters that are invalid on common filesystems are replaced.
    - Leading/trailing dots and spaces are stripped (Windows quirk).
    """
    text = _UNSAFE_NAME_RE.sub("_", text.strip())
    text = re.sub(r"_+", "_", text).strip(" ._")
    return text[:max_len] or "untitled"


_NATURAL_SPLIT_RE = re.compile(r"(\d+)")


def natural_sort_key(name: str) -> tuple:
    """Case-insensitive natural order: page2 < page10."""
    parts = _NATURAL_SPLIT_RE.split(name.lower())
    return tuple((0, int(p), "") if p.isdigit() else (1, 0, p) for p in parts if p != "")


def clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))


def is_finite(*values: float) -> bool:
    try:
        return all(math.isfinite(float(v)) for v in values)
    except (TypeError, ValueError):
        return False


def compile_patterns(patterns: list[str]) -> list[re.Pattern[str]]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


def write_json(path: str | Path, data: Any) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


def write_json_atomic(path: str | Path, data: Any) -> None:
    """Write JSON next to the target and rename it into place.

    Readers never observe a partially written file.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def append_jsonl(path: str | Path, obj: dict[str, Any]) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        f.write(json.dumps(obj, ensure_ascii=False) + "\n")


def load_json(path: str | Path) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)
