"""Load the declarative lesson catalog from bundled JSON resources."""

from __future__ import annotations

import json
from importlib import resources
from pathlib import Path
from typing import Any

from .models import OPERATION_KINDS, Lesson, LessonStep
from .predicates import build_predicate

CONTENT_PACKAGE = "gitsim.content.lessons"


def _step_from_dict(lesson_id: str, raw: dict[str, Any]) -> LessonStep:
    """Build a step from raw JSON content."""
    expected = str(raw.get("action", "")).strip()
    if expected not in OPERATION_KINDS:
        title = raw.get("title", "<untitled>")
        raise ValueError(f"Lesson '{lesson_id}' step '{title}' has unknown action '{expected}'.")

    raw_check = raw.get("check")
    predicate = None
    if raw_check is not None:
        if not isinstance(raw_check, dict):
            raise ValueError(f"Lesson '{lesson_id}' has a non-object step check.")
        predicate = build_predicate(raw_check)

    hint = str(raw.get("action_hint", "")).strip()
    return LessonStep(
        title=str(raw["title"]),
        description=str(raw.get("description", "")),
        expected_operation=expected,
        action_hint=hint or None,
        completion_predicate=predicate,
    )


def _lesson_from_dict(raw: dict[str, Any]) -> Lesson:
    """Build a lesson from raw JSON content."""
    lesson_id = str(raw["id"])
    steps = tuple(_step_from_dict(lesson_id, item) for item in raw.get("steps", []))
    if not steps:
        raise ValueError(f"Lesson '{lesson_id}' has no steps.")
    return Lesson(
        id=lesson_id,
        title=str(raw["title"]),
        description=str(raw.get("description", "")),
        order=int(raw.get("order", 0)),
        steps=steps,
        requirements=tuple(str(item) for item in raw.get("requirements", [])),
    )


def load_lessons() -> dict[str, Lesson]:
    """Load bundled lessons."""
    raws = []
    for entry in sorted(resources.files(CONTENT_PACKAGE).iterdir(), key=lambda item: item.name):
        if entry.name.endswith(".json"):
            raws.append(json.loads(entry.read_text(encoding="utf-8-sig")))
    return _build_catalog(raws)


def load_lessons_from_dir(path: Path) -> dict[str, Lesson]:
    """Load lessons from directory for tests/tools."""
    raws = [json.loads(file_path.read_text(encoding="utf-8-sig")) for file_path in sorted(path.glob("*.json"))]
    return _build_catalog(raws)


def _build_catalog(raws: list[Any]) -> dict[str, Lesson]:
    """Build an order-sorted catalog, rejecting duplicate ids."""
    lessons: dict[str, Lesson] = {}
    for raw in raws:
        lesson = _lesson_from_dict(raw)
        if lesson.id in lessons:
            raise ValueError(f"Duplicate lesson id: {lesson.id}")
        lessons[lesson.id] = lesson
    return {lesson.id: lesson for lesson in sorted(lessons.values(), key=lambda item: (item.order, item.id))}
