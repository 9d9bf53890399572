"""Per-session owner of graph state, lesson progress and persistence."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime

from . import engine
from .content_loader import load_lessons
from .engine import Clock, GitOperation, IdFactory, Outcome
from .lessons import LessonEngine
from .models import OPERATION_KINDS, GraphState, Lesson, LessonProgress, LessonStep, initial_state
from .persistence import DEFAULT_DEBOUNCE_SECONDS, DebouncedWriter, PersistenceAdapter, TimerFactory
from .storage import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Issue:
    """Acknowledgement of an issue report; issues never touch the graph."""

    title: str
    description: str
    created_at: datetime


class GitSession:
    """Coordinates graph transitions, lesson progression and saving."""

    def __init__(
        self,
        store: KeyValueStore,
        catalog: Mapping[str, Lesson] | None = None,
        *,
        autosave: bool = True,
        autosave_delay: float = DEFAULT_DEBOUNCE_SECONDS,
        timer_factory: TimerFactory | None = None,
        id_factory: IdFactory = engine.new_commit_id,
        clock: Clock = engine.utc_now,
        load_saved: bool = True,
    ) -> None:
        """Initialize session, restoring saved state when present."""
        self.persistence = PersistenceAdapter(store)
        self.lessons = LessonEngine(catalog if catalog is not None else load_lessons())
        self.autosave = autosave
        self._writer = DebouncedWriter(autosave_delay, timer_factory)
        self._id_factory = id_factory
        self._clock = clock
        self._state = initial_state()
        if load_saved:
            self.load()

    @property
    def state(self) -> GraphState:
        return self._state

    @property
    def progress(self) -> dict[str, LessonProgress]:
        return self.lessons.progress

    def apply(self, operation: GitOperation) -> Outcome:
        """Apply one graph operation and re-evaluate the active lesson step."""
        outcome = engine.apply(self._state, operation, id_factory=self._id_factory, clock=self._clock)
        if not outcome.ok:
            return outcome
        self._state = outcome.state
        if operation.kind in OPERATION_KINDS:
            self.lessons.record_operation(operation.kind, self._state)
        self._changed()
        return outcome

    def commit(self, message: str) -> Outcome:
        return self.apply(engine.CreateCommit(message=message))

    def create_branch(self, name: str) -> Outcome:
        return self.apply(engine.CreateBranch(name=name))

    def merge(self, source: str) -> Outcome:
        return self.apply(engine.MergeBranch(source=source))

    def checkout(self, target: str) -> Outcome:
        return self.apply(engine.Checkout(target=target))

    def revert(self, commit_id: str) -> Outcome:
        return self.apply(engine.RevertCommit(commit_id=commit_id))

    def load_state(self, state: GraphState) -> Outcome:
        return self.apply(engine.LoadState(state=state))

    def reset(self) -> Outcome:
        """Return the graph to its initial state; lesson progress is kept."""
        logger.info("Resetting graph state")
        return self.apply(engine.ResetState())

    def create_issue(self, title: str, description: str = "") -> Issue:
        """Acknowledge an issue report without changing the graph."""
        issue = Issue(title=title.strip(), description=description.strip(), created_at=self._clock())
        logger.info("Issue created: %s", issue.title)
        if self.lessons.record_operation("issue", self._state) is not None:
            self._changed()
        return issue

    def select_lesson(self, lesson_id: str) -> Lesson:
        return self.lessons.select_lesson(lesson_id)

    def current_step(self) -> LessonStep | None:
        return self.lessons.current_step()

    def is_current_step_satisfied(self) -> bool:
        return self.lessons.is_current_step_satisfied(self._state)

    def next_step(self) -> LessonProgress | None:
        """Advance the active lesson against the current graph."""
        progress = self.lessons.advance(self._state)
        self._changed()
        return progress

    def previous_step(self) -> LessonProgress | None:
        progress = self.lessons.retreat()
        self._changed()
        return progress

    def reset_progress(self) -> None:
        """Reset all lesson progress and clear the active lesson."""
        self.lessons.reset_all()
        self._changed()

    def save(self) -> None:
        """Write the current snapshot now, superseding any pending autosave."""
        self._writer.cancel()
        self.persistence.save(self._state, self.lessons.progress)

    def load(self) -> None:
        """Replace state and progress with the saved snapshot (best effort)."""
        self._writer.cancel()
        snapshot = self.persistence.load(self.lessons.catalog)
        self._state = snapshot.state
        self.lessons.restore(snapshot.progress)

    def close(self) -> None:
        """Flush pending writes and close resources."""
        self._writer.flush()
        close = getattr(self.persistence.store, "close", None)
        if callable(close):
            close()

    def _changed(self) -> None:
        if not self.autosave:
            return
        state = self._state
        progress = self.lessons.progress
        self._writer.schedule(lambda: self.persistence.save(state, progress))
