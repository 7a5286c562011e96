from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from .clustering import BlockClusterer
from .config import load_config
from .job import Chapter, ChapterJob, JobState, Manga
from .orchestrator import ChapterTranslator
from .pipeline import ChapterPipeline, default_engine_handle
from .store import TranslationStore
from .types import Fragment, PageResult, dump_pages, load_pages
from .utils import is_finite, load_json, write_json

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="translation_engine")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Translate chapters (archives or image folders)")
    run.add_argument("chapters", nargs="+", help="Chapter paths (.zip/.cbz or image directory)")
    run.add_argument("--source", required=True, help="Source name (concurrency group)")
    run.add_argument("--manga", required=True, help="Manga title")
    run.add_argument("--scanlator", default=None)
    run.add_argument("--from", dest="from_lang", required=True, help="Source language (e.g. ja)")
    run.add_argument("--to", dest="to_lang", default="en", help="Target language")
    run.add_argument("--translator", default="google", choices=["google", "gemini"])
    run.add_argument("--out", default="./translations", help="Artifact root")
    run.add_argument("--config", default=str(Path("config") / "default.json"), help="Config path")

    cl = sub.add_parser("cluster", help="Cluster an OCR fragments JSON into blocks")
    cl.add_argument("--fragments", required=True, help="JSON: {img_width, img_height, fragments: [...]}")
    cl.add_argument("--out", default=None, help="Write the page JSON here instead of stdout")
    cl.add_argument("--config", default=None, help="Config path")

    validate = sub.add_parser("validate", help="Validate a chapter translation artifact")
    validate.add_argument("--artifact", required=True, help="Chapter JSON written by `run`")

    return p


def _chapter_jobs(args: argparse.Namespace) -> list[ChapterJob]:
    manga = Manga(id=f"{args.source}:{args.manga}", title=args.manga)
    jobs: list[ChapterJob] = []
    for raw in args.chapters:
        path = Path(raw)
        jobs.append(
            ChapterJob(
                source=args.source,
                manga=manga,
                chapter=Chapter(id=str(path.resolve()), name=path.stem, path=path, scanlator=args.scanlator),
                from_lang=args.from_lang,
                to_lang=args.to_lang,
            )
        )
    return jobs


async def _run_jobs(jobs: list[ChapterJob], store: TranslationStore, cfg: Any, translator_name: str) -> int:
    engines = default_engine_handle(cfg, translator_name)
    pipeline = ChapterPipeline(engines=engines, store=store, cfg=cfg)
    orchestrator = ChapterTranslator(pipeline, store, cfg.scheduler)

    queued = sum(1 for job in jobs if orchestrator.enqueue(job))
    try:
        if orchestrator.start():
            await orchestrator.join()
    finally:
        engines.close()

    done = sum(1 for j in jobs if j.state is JobState.DONE)
    failed = [j for j in jobs if j.state is JobState.FAILED]
    pending = sum(1 for j in jobs if j.state is JobState.QUEUED)
    print(f"queued={queued} skipped_existing={len(jobs) - queued} done={done} failed={len(failed)} pending={pending}")
    for j in failed:
        print(f"failed: {j.chapter.name}: {j.error}")
    return 1 if failed or pending else 0


def cmd_run(args: argparse.Namespace) -> int:
    cfg = load_config(args.config if Path(args.config).exists() else None)
    store = TranslationStore(Path(args.out))
    return asyncio.run(_run_jobs(_chapter_jobs(args), store, cfg, args.translator))


def cmd_cluster(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    data = load_json(args.fragments)
    width = float(data["img_width"])
    height = float(data["img_height"])
    fragments = [Fragment.from_dict(f) for f in data.get("fragments", [])]

    blocks = BlockClusterer(cluster_cfg=cfg.cluster, cleanup_cfg=cfg.cleanup).cluster(fragments, width, height)
    page = PageResult(img_width=width, img_height=height, blocks=blocks)
    if args.out:
        write_json(args.out, page.to_dict())
        print(f"fragments={len(fragments)} blocks={len(blocks)}")
    else:
        print(json.dumps(page.to_dict(), ensure_ascii=False, indent=2))
    return 0


def _validate_page(name: str, page: PageResult, errors: list[str]) -> int:
    invalid = 0
    tol = 1.0
    for idx, b in enumerate(page.blocks):
        where = f"{name}[{idx}]"
        if not is_finite(b.x, b.y, b.width, b.height, b.sym_width, b.sym_height) or b.width <= 0 or b.height <= 0:
            errors.append(f"invalid block {where}: bad geometry")
            invalid += 1
            continue
        if b.x < -tol or b.y < -tol or b.right > page.img_width + tol or b.bottom > page.img_height + tol:
            errors.append(f"invalid block {where}: outside page")
            invalid += 1
        if b.translation is not None and not isinstance(b.translation, str):
            errors.append(f"invalid block {where}: translation must be a string or null")
            invalid += 1
    return invalid


def cmd_validate(args: argparse.Namespace) -> int:
    errors: list[str] = []
    invalid_pages = 0
    invalid_blocks = 0
    blocks_total = 0

    try:
        data = load_json(args.artifact)
    except Exception as e:
        print(f"failed to read artifact: {e}")
        return 1
    if not isinstance(data, dict):
        print("invalid artifact: expected an object of pages")
        return 1

    for name, raw in data.items():
        try:
            page = PageResult.from_dict(raw)
        except (KeyError, TypeError, ValueError) as e:
            errors.append(f"invalid page {name}: {e}")
            invalid_pages += 1
            continue
        blocks_total += len(page.blocks)
        invalid_blocks += _validate_page(str(name), page, errors)

    if not invalid_pages:
        once = dump_pages(load_pages(data))
        if dump_pages(load_pages(once)) != once:
            errors.append("artifact does not round-trip")

    print(f"pages={len(data)}")
    print(f"blocks={blocks_total}")
    print(f"invalid_pages={invalid_pages}")
    print(f"invalid_blocks={invalid_blocks}")

    if errors:
        for m in errors:
            print(m)
        return 1

    print("OK")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "run":
        return cmd_run(args)

    if args.command == "cluster":
        return cmd_cluster(args)

    if args.command == "validate":
        return cmd_validate(args)

    raise SystemExit(2)


if __name__ == "__main__":
    raise SystemExit(main())
