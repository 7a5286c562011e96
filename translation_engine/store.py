from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .job import Chapter, ChapterJob
from .types import PageResult, dump_pages, load_pages
from .utils import append_jsonl, load_json, safe_path_token, utc_now_iso, write_json_atomic


@dataclass(frozen=True)
class TranslationStore:
    """Per-chapter translation artifacts under <root>/<source>/<manga>/."""
    root: Path

    @property
    def errors_jsonl(self) -> Path:
        return Path(self.root) / "errors.jsonl"

    def manga_dir(self, source: str, manga_title: str) -> Path:
        return Path(self.root) / safe_path_token(source) / safe_path_token(manga_title)

    @staticmethod
    def file_name(chapter: Chapter) -> str:
        name = safe_path_token(chapter.name)
        if chapter.scanlator:
            name = f"{safe_path_token(chapter.scanlator)}_{name}"
        return f"{name}.json"

    def path_for(self, job: ChapterJob) -> Path:
        return self.manga_dir(job.source, job.manga.title) / self.file_name(job.chapter)

    def find(self, job: ChapterJob) -> Path | None:
        p = self.path_for(job)
        return p if p.is_file() else None

    def save(self, job: ChapterJob, pages: dict[str, PageResult]) -> Path:
        path = self.path_for(job)
        write_json_atomic(path, dump_pages(pages))
        return path

    @staticmethod
    def load(path: str | Path) -> dict[str, PageResult]:
        return load_pages(load_json(path))

    def record_error(self, job: ChapterJob, stage: str, message: str) -> None:
        append_jsonl(
            self.errors_jsonl,
            {
                "at": utc_now_iso(),
                "chapter_id": job.chapter.id,
                "chapter": job.chapter.name,
                "source": job.source,
                "stage": stage,
                "message": message,
            },
        )
