from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Callable

logger = logging.getLogger(__name__)


class JobState(IntEnum):
    NOT_STARTED = 0
    QUEUED = 1
    RUNNING = 2
    DONE = 3
    FAILED = 4

    @property
    def is_active(self) -> bool:
        return self in (JobState.QUEUED, JobState.RUNNING)


ALLOWED_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.NOT_STARTED: frozenset({JobState.QUEUED}),
    JobState.QUEUED: frozenset({JobState.RUNNING, JobState.NOT_STARTED}),
    JobState.RUNNING: frozenset({JobState.DONE, JobState.FAILED, JobState.QUEUED, JobState.NOT_STARTED}),
    JobState.FAILED: frozenset({JobState.QUEUED, JobState.NOT_STARTED}),
    JobState.DONE: frozenset(),
}


class InvalidTransition(ValueError):
    pass


@dataclass(frozen=True)
class Manga:
    id: str
    title: str


@dataclass(frozen=True)
class Chapter:
    id: str
    name: str
    path: Path  # archive file or image directory
    scanlator: str | None = None


StateListener = Callable[["ChapterJob", JobState, JobState], None]


@dataclass(eq=False)
class ChapterJob:
    """One chapter to translate. Identity is the chapter id."""
    source: str  # content provider: the concurrency group
    manga: Manga
    chapter: Chapter
    from_lang: str
    to_lang: str
    _state: JobState = JobState.NOT_STARTED
    _listeners: list[StateListener] = field(default_factory=list, repr=False)
    error: str | None = None

    @property
    def key(self) -> str:
        return self.chapter.id

    @property
    def language_pair(self) -> tuple[str, str]:
        return (self.from_lang, self.to_lang)

    @property
    def state(self) -> JobState:
        return self._state

    @state.setter
    def state(self, new: JobState) -> None:
        old = self._state
        if new == old:
            return
        if new not in ALLOWED_TRANSITIONS[old]:
            raise InvalidTransition(f"{self.key}: {old.name} -> {new.name}")
        self._state = new
        logger.debug("job %s: %s -> %s", self.key, old.name, new.name)
        for listener in list(self._listeners):
            listener(self, old, new)

    def add_listener(self, listener: StateListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def reset(self) -> None:
        """Back to NOT_STARTED from any unfinished state."""
        if self._state in (JobState.QUEUED, JobState.RUNNING, JobState.FAILED):
            self.state = JobState.NOT_STARTED

    def __repr__(self) -> str:
        return f"ChapterJob({self.source!r}, {self.chapter.name!r}, {self._state.name})"
