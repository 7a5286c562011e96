"""Chapter job orchestrator.

Architecture:
1. Queue: ordered chapter jobs, at most one per chapter id
2. Control task: on every queue/state change, compute the active set
   (queue order, at most `per_source` jobs per source, at most
   `max_sources` sources) and diff it against the running workers
3. Worker task per active job: ChapterPipeline.translate_chapter

Key invariants:
- Only the orchestrator and a job's own worker change the job's state
- A cancelled worker never touches its job's state
- A failed job stops the whole run; nothing half-done is reported as done
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Protocol

from .job import ChapterJob, JobState
from .store import TranslationStore

logger = logging.getLogger(__name__)

HARD_RESET = "reset"
DEFAULT_MAX_SOURCES = 5
DEFAULT_PER_SOURCE = 1

QueueListener = Callable[[tuple[ChapterJob, ...]], None]


class ChapterRunner(Protocol):
    async def translate_chapter(self, job: ChapterJob) -> Any: ...


class ChapterTranslator:
    def __init__(
        self,
        pipeline: ChapterRunner,
        store: TranslationStore,
        scheduler_cfg: dict[str, Any] | None = None,
    ):
        cfg = scheduler_cfg or {}
        self.pipeline = pipeline
        self.store = store
        self.max_sources = int(cfg.get("max_sources", DEFAULT_MAX_SOURCES))
        self.per_source = int(cfg.get("per_source", DEFAULT_PER_SOURCE))
        self.is_paused = False
        self._queue: list[ChapterJob] = []
        self._listeners: list[QueueListener] = []
        self._control: asyncio.Task | None = None
        self._running = False
        self._changed = asyncio.Event()
        self._workers: dict[ChapterJob, asyncio.Task] = {}

    # ─────────────────────────────────────────────────────────────────────
    # Queue state
    # ─────────────────────────────────────────────────────────────────────

    @property
    def queue_state(self) -> tuple[ChapterJob, ...]:
        return tuple(self._queue)

    @property
    def is_running(self) -> bool:
        return self._running

    def subscribe(self, listener: QueueListener) -> Callable[[], None]:
        """Call listener with a queue snapshot on every change; returns an unsubscribe."""
        self._listeners.append(listener)
        listener(self.queue_state)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self) -> None:
        self._changed.set()
        snapshot = self.queue_state
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:  # noqa: BLE001
                logger.exception("queue listener failed")

    def _on_job_state(self, job: ChapterJob, old: JobState, new: JobState) -> None:
        self._publish()

    def active_jobs(self) -> list[ChapterJob]:
        """Jobs that should be running now, in queue order."""
        groups: dict[str, list[ChapterJob]] = {}
        for job in self._queue:
            if job.state.is_active:
                groups.setdefault(job.source, []).append(job)

        active: list[ChapterJob] = []
        for jobs in list(groups.values())[: self.max_sources]:
            # Keep an already running job in its slot.
            jobs = sorted(jobs, key=lambda j: j.state is not JobState.RUNNING)
            active.extend(jobs[: self.per_source])
        return active

    # ─────────────────────────────────────────────────────────────────────
    # Commands
    # ─────────────────────────────────────────────────────────────────────

    def enqueue(self, job: ChapterJob) -> bool:
        if any(j.key == job.key for j in self._queue):
            return False
        if self.store.find(job) is not None:
            logger.debug("%s already translated, not queued", job.chapter.name)
            return False
        job.add_listener(self._on_job_state)
        self._queue.append(job)
        job.state = JobState.QUEUED
        self._publish()
        return True

    def start(self) -> bool:
        """Resume every unfinished job. False when already running or empty."""
        if self._running or not self._queue:
            return False
        pending = [j for j in self._queue if j.state is not JobState.DONE]
        for job in pending:
            if job.state is not JobState.QUEUED:
                job.state = JobState.QUEUED
        self.is_paused = False
        self._launch()
        return bool(pending)

    def pause(self) -> None:
        self._cancel_control()
        for job in self._queue:
            if job.state is JobState.RUNNING:
                job.state = JobState.QUEUED
        self.is_paused = True

    def stop(self, reason: str | None = None) -> None:
        """Halt the run; running jobs become FAILED (their partial work is dropped)."""
        self._cancel_control()
        for job in self._queue:
            if job.state is JobState.RUNNING:
                job.state = JobState.FAILED
        if reason is not None:
            logger.info("translator stopped: %s", reason)
        if reason == HARD_RESET:
            self._clear()
            return
        if reason is None:
            self.is_paused = False

    def clear_queue(self) -> None:
        self.stop(reason=HARD_RESET)

    def remove_job(self, predicate: Callable[[ChapterJob], bool]) -> list[ChapterJob]:
        removed = [j for j in self._queue if predicate(j)]
        if not removed:
            return []
        for job in removed:
            self._cancel_worker(job)
            if job.state in (JobState.QUEUED, JobState.RUNNING):
                job.state = JobState.NOT_STARTED
            job.remove_listener(self._on_job_state)
        self._queue = [j for j in self._queue if j not in removed]
        self._publish()
        return removed

    def remove_chapter(self, chapter_id: str) -> list[ChapterJob]:
        return self.remove_job(lambda j: j.chapter.id == chapter_id)

    def remove_manga(self, manga_id: str) -> list[ChapterJob]:
        return self.remove_job(lambda j: j.manga.id == manga_id)

    async def join(self) -> None:
        """Wait until the current control task (if any) has fully unwound."""
        while self._control is not None and not self._control.done():
            await asyncio.gather(self._control, return_exceptions=True)

    # ─────────────────────────────────────────────────────────────────────
    # Control loop
    # ─────────────────────────────────────────────────────────────────────

    def _launch(self) -> None:
        workers: dict[ChapterJob, asyncio.Task] = {}
        self._workers = workers
        self._running = True
        self._changed.set()
        self._control = asyncio.get_running_loop().create_task(self._control_loop(workers))

    def _cancel_control(self) -> None:
        # Workers are cancelled synchronously so none can resume and write a
        # state after the caller has re-assigned it.
        for task in self._workers.values():
            task.cancel()
        self._workers = {}
        if self._control is not None and not self._control.done():
            self._control.cancel()
        self._running = False

    def _cancel_worker(self, job: ChapterJob) -> None:
        task = self._workers.pop(job, None)
        if task is not None:
            task.cancel()

    async def _control_loop(self, workers: dict[ChapterJob, asyncio.Task]) -> None:
        try:
            while True:
                self._changed.clear()
                active = self.active_jobs()

                for job in [j for j in workers if j not in active]:
                    workers.pop(job).cancel()
                if not active:
                    break
                for job in active:
                    if job not in workers:
                        workers[job] = asyncio.create_task(self._run_worker(job))

                await self._changed.wait()
        finally:
            pending = list(workers.values())
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        if self._control is asyncio.current_task():
            self._running = False
            self.is_paused = False
            logger.info("translation queue drained")

    async def _run_worker(self, job: ChapterJob) -> None:
        job.state = JobState.RUNNING
        job.error = None
        try:
            await self.pipeline.translate_chapter(job)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("translation failed: %s/%s", job.manga.title, job.chapter.name)
            job.error = f"{type(e).__name__}: {e}"
            self.store.record_error(job, stage="pipeline", message=job.error)
            if job.state is JobState.RUNNING:
                job.state = JobState.FAILED
            self.stop()
            return

        if job.state is JobState.RUNNING:
            job.state = JobState.DONE
            self._remove_done(job)

    def _remove_done(self, job: ChapterJob) -> None:
        self._workers.pop(job, None)
        job.remove_listener(self._on_job_state)
        self._queue = [j for j in self._queue if j is not job]
        self._publish()

    def _clear(self) -> None:
        for job in self._queue:
            job.reset()
            job.remove_listener(self._on_job_state)
        self._queue = []
        self._publish()
