from __future__ import annotations

import zipfile
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Iterator

from PIL import Image

from .utils import natural_sort_key

IMAGE_EXTS = {".png", ".jpg", ".jpeg", ".webp", ".bmp", ".gif", ".tif", ".tiff"}
ARCHIVE_EXTS = {".zip", ".cbz"}


class PageSourceError(ValueError):
    pass


def _is_image_name(name: str) -> bool:
    return Path(name).suffix.lower() in IMAGE_EXTS and not Path(name).name.startswith(".")


@dataclass(frozen=True)
class ChapterPageSource:
    """Ordered page images of one chapter, from an archive or a folder."""
    chapter_path: Path

    def page_names(self) -> list[str]:
        path = Path(self.chapter_path)
        if path.is_file():
            if path.suffix.lower() not in ARCHIVE_EXTS:
                raise PageSourceError(f"Unsupported chapter archive: {path}")
            with zipfile.ZipFile(path) as zf:
                names = [i.filename for i in zf.infolist() if not i.is_dir() and _is_image_name(i.filename)]
        elif path.is_dir():
            names = [p.name for p in path.iterdir() if p.is_file() and _is_image_name(p.name)]
        else:
            raise PageSourceError(f"Chapter not found: {path}")
        return sorted(names, key=natural_sort_key)

    def iter_pages(self) -> Iterator[tuple[str, Image.Image]]:
        """Yield (filename, RGB image); images are decoded one at a time."""
        path = Path(self.chapter_path)
        names = self.page_names()
        if path.is_file():
            with zipfile.ZipFile(path) as zf:
                for name in names:
                    data = zf.read(name)
                    yield name, Image.open(BytesIO(data)).convert("RGB")
        else:
            for name in names:
                with Image.open(path / name) as img:
                    yield name, img.convert("RGB")
