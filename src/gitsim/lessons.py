"""Per-lesson step cursor gated by completion predicates."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace

from .models import GraphState, Lesson, LessonProgress, LessonStep, fresh_progress


class LessonEngine:
    """Tracks the active lesson and one progress record per catalog lesson.

    Completion rule: reaching the last step is not completion. A lesson is
    completed only by an `advance` made while the last step is satisfied.
    """

    def __init__(self, catalog: Mapping[str, Lesson]) -> None:
        self.catalog = dict(catalog)
        self._progress = {lesson_id: fresh_progress(lesson) for lesson_id, lesson in self.catalog.items()}
        self._active_id: str | None = None

    @property
    def active_lesson(self) -> Lesson | None:
        if self._active_id is None:
            return None
        return self.catalog[self._active_id]

    @property
    def progress(self) -> dict[str, LessonProgress]:
        """Return a copy of all progress records."""
        return dict(self._progress)

    def progress_for(self, lesson_id: str) -> LessonProgress:
        return self._progress[lesson_id]

    def current_step(self) -> LessonStep | None:
        """Return the active lesson's current step."""
        lesson = self.active_lesson
        if lesson is None:
            return None
        return lesson.steps[self._progress[lesson.id].current_step - 1]

    def select_lesson(self, lesson_id: str) -> Lesson:
        """Activate a lesson without resetting its progress."""
        if lesson_id not in self.catalog:
            raise KeyError(lesson_id)
        self._active_id = lesson_id
        return self.catalog[lesson_id]

    def is_current_step_satisfied(self, graph_state: GraphState) -> bool:
        """Evaluate the current step; steps without a predicate are always satisfied."""
        step = self.current_step()
        if step is None:
            return False
        if step.completion_predicate is None:
            return True
        return step.completion_predicate(graph_state)

    def advance(self, graph_state: GraphState | None = None) -> LessonProgress | None:
        """Move to the next step, or complete the lesson from a satisfied last step."""
        lesson = self.active_lesson
        if lesson is None:
            return None
        current = self._progress[lesson.id]
        total = len(lesson.steps)

        if current.current_step < total:
            step_index = current.current_step + 1
            updated = replace(current, current_step=step_index, progress_fraction=step_index / total)
        else:
            if current.completed or not self._final_step_satisfied(lesson, graph_state):
                return current
            updated = replace(current, completed=True, progress_fraction=1.0)

        self._progress[lesson.id] = updated
        return updated

    def retreat(self) -> LessonProgress | None:
        """Move back one step (floor 1) and clear completion."""
        lesson = self.active_lesson
        if lesson is None:
            return None
        current = self._progress[lesson.id]
        step_index = max(1, current.current_step - 1)
        updated = replace(
            current,
            current_step=step_index,
            completed=False,
            progress_fraction=step_index / len(lesson.steps),
        )
        self._progress[lesson.id] = updated
        return updated

    def record_operation(self, kind: str, graph_state: GraphState) -> LessonProgress | None:
        """Advance once when a successful operation satisfies the current step."""
        lesson = self.active_lesson
        step = self.current_step()
        if lesson is None or step is None or step.expected_operation != kind:
            return None
        if self._progress[lesson.id].completed:
            return None
        if not self.is_current_step_satisfied(graph_state):
            return None
        return self.advance(graph_state)

    def reset_all(self) -> None:
        """Reset every lesson to its first step and clear the active lesson."""
        self._progress = {lesson_id: fresh_progress(lesson) for lesson_id, lesson in self.catalog.items()}
        self._active_id = None

    def restore(self, progress: Mapping[str, LessonProgress]) -> None:
        """Replace progress records for known lessons."""
        for lesson_id, record in progress.items():
            if lesson_id in self._progress:
                self._progress[lesson_id] = record

    def _final_step_satisfied(self, lesson: Lesson, graph_state: GraphState | None) -> bool:
        step = lesson.steps[-1]
        if step.completion_predicate is None:
            return True
        if graph_state is None:
            return False
        return step.completion_predicate(graph_state)
