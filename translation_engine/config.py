from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .utils import load_json


@dataclass(frozen=True)
class EngineConfig:
    cleanup: dict[str, Any] = field(default_factory=dict)
    cluster: dict[str, Any] = field(default_factory=dict)
    layout: dict[str, Any] = field(default_factory=dict)
    ocr: dict[str, Any] = field(default_factory=dict)
    translator: dict[str, Any] = field(default_factory=dict)
    scheduler: dict[str, Any] = field(default_factory=dict)


def load_config(config_path: str | Path | None) -> EngineConfig:
    """Load a JSON config; a missing path means all defaults."""
    if config_path is None:
        return EngineConfig()
    data = load_json(config_path)
    return EngineConfig(
        cleanup=data.get("cleanup", {}),
        cluster=data.get("cluster", {}),
        layout=data.get("layout", {}),
        ocr=data.get("ocr", {}),
        translator=data.get("translator", {}),
        scheduler=data.get("scheduler", {}),
    )
