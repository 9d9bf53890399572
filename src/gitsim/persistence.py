"""Serialize graph and lesson state to a key/value store, with debounced saves."""

from __future__ import annotations

import json
import logging
import math
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol, cast

from .engine import GraphError, load
from .models import Branch, Commit, GraphState, Lesson, LessonProgress, fresh_progress, initial_state
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1
GIT_STATE_KEY = "git_state"
LESSON_PROGRESS_KEY = "lesson_progress"
DEFAULT_DEBOUNCE_SECONDS = 0.5


@dataclass(frozen=True)
class Snapshot:
    """Everything persisted for one session."""

    state: GraphState
    progress: dict[str, LessonProgress]


class PersistenceAdapter:
    """Reads and writes session snapshots through a key/value store."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    def save(self, state: GraphState, progress: Mapping[str, LessonProgress]) -> None:
        """Write both documents."""
        self.store.set(GIT_STATE_KEY, dump_state(state))
        self.store.set(LESSON_PROGRESS_KEY, dump_progress(progress))

    def load(self, catalog: Mapping[str, Lesson]) -> Snapshot:
        """Best-effort load; anything unreadable falls back to fresh state."""
        return Snapshot(state=self.load_state(), progress=self.load_progress(catalog))

    def load_state(self) -> GraphState:
        raw = self.store.get(GIT_STATE_KEY)
        if raw is None:
            return initial_state()
        try:
            return parse_state(raw)
        except (ValueError, KeyError, TypeError, OverflowError) as exc:
            logger.warning("Discarding unreadable saved graph state: %s", exc)
        except GraphError as exc:
            logger.warning("Discarding inconsistent saved graph state: %s", exc.message)
        return initial_state()

    def load_progress(self, catalog: Mapping[str, Lesson]) -> dict[str, LessonProgress]:
        fresh = {lesson_id: fresh_progress(lesson) for lesson_id, lesson in catalog.items()}
        raw = self.store.get(LESSON_PROGRESS_KEY)
        if raw is None:
            return fresh
        try:
            loaded = parse_progress(raw, catalog)
        except (ValueError, KeyError, TypeError, OverflowError) as exc:
            logger.warning("Discarding unreadable saved lesson progress: %s", exc)
            return fresh
        fresh.update(loaded)
        return fresh

    def clear(self) -> None:
        """Remove both documents."""
        self.store.remove(GIT_STATE_KEY)
        self.store.remove(LESSON_PROGRESS_KEY)


def dump_state(state: GraphState) -> str:
    """Serialize a graph snapshot to JSON."""
    payload = {
        "format_version": FORMAT_VERSION,
        "saved_at": datetime.now(UTC).isoformat(),
        "commits": [
            {
                "id": commit.id,
                "message": commit.message,
                "timestamp": commit.timestamp.isoformat(),
                "parent_id": commit.parent_id,
                "branch": commit.branch,
                "color": commit.color,
            }
            for commit in state.commits
        ],
        "branches": [
            {
                "name": branch.name,
                "head_commit_id": branch.head_commit_id,
                "color": branch.color,
                "is_active": branch.is_active,
            }
            for branch in state.branches
        ],
        "current_branch": state.current_branch,
        "current_commit_id": state.current_commit_id,
    }
    return json.dumps(payload)


def parse_state(raw_text: str) -> GraphState:
    """Parse and validate a serialized graph snapshot.

    Raises `ValueError` for structural problems and `GraphError` for broken references.
    """
    raw = _load_object(raw_text)
    _check_format_version(raw)

    raw_commits = raw.get("commits")
    raw_branches = raw.get("branches")
    if not isinstance(raw_commits, list) or not isinstance(raw_branches, list):
        raise ValueError("Saved graph state must contain 'commits' and 'branches' lists.")

    commits = tuple(_commit_from_dict(cast(dict[str, object], item)) for item in _objects(raw_commits, "commit"))
    branches = tuple(_branch_from_dict(cast(dict[str, object], item)) for item in _objects(raw_branches, "branch"))
    current_branch = raw.get("current_branch")
    if not isinstance(current_branch, str):
        raise ValueError("Saved graph state has no current branch.")

    state = GraphState(
        commits=commits,
        branches=branches,
        current_branch=current_branch,
        current_commit_id=_optional_str(raw.get("current_commit_id")),
    )
    return load(state)


def dump_progress(progress: Mapping[str, LessonProgress]) -> str:
    """Serialize lesson progress records to JSON."""
    payload = {
        "format_version": FORMAT_VERSION,
        "lessons": {
            lesson_id: {
                "current_step": record.current_step,
                "completed": record.completed,
                "total_steps": record.total_steps,
                "progress_fraction": record.progress_fraction,
            }
            for lesson_id, record in progress.items()
        },
    }
    return json.dumps(payload)


def parse_progress(raw_text: str, catalog: Mapping[str, Lesson]) -> dict[str, LessonProgress]:
    """Parse progress records, normalizing them against the lesson catalog."""
    raw = _load_object(raw_text)
    _check_format_version(raw)
    lessons_obj = raw.get("lessons")
    if not isinstance(lessons_obj, dict):
        raise ValueError("Saved lesson progress must contain a 'lessons' object.")

    records: dict[str, LessonProgress] = {}
    for lesson_id, item in cast(dict[str, object], lessons_obj).items():
        lesson = catalog.get(lesson_id)
        if lesson is None or not isinstance(item, dict):
            continue
        row = cast(dict[str, object], item)
        total = len(lesson.steps)
        step = _coerce_int(row.get("current_step", 1), default=1) or 1
        step = min(max(step, 1), total)
        completed = row.get("completed") is True and step == total
        fraction = _coerce_float(row.get("progress_fraction", 0.0), default=0.0) or 0.0
        if completed:
            fraction = 1.0
        else:
            fraction = min(max(fraction, 0.0), step / total)
        records[lesson_id] = LessonProgress(
            lesson_id=lesson_id,
            current_step=step,
            completed=completed,
            total_steps=total,
            progress_fraction=fraction,
        )
    return records


def parse_timestamp(value: object) -> datetime:
    """Re-type a serialized instant as an aware datetime (naive values are UTC)."""
    if not isinstance(value, str) or not value:
        raise ValueError(f"Invalid commit timestamp: {value!r}")
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _commit_from_dict(raw: dict[str, object]) -> Commit:
    commit_id = raw.get("id")
    message = raw.get("message")
    branch = raw.get("branch")
    if not isinstance(commit_id, str) or not commit_id:
        raise ValueError("Saved commit has no id.")
    if not isinstance(message, str) or not isinstance(branch, str):
        raise ValueError(f"Saved commit '{commit_id}' is missing message or branch.")
    return Commit(
        id=commit_id,
        message=message,
        timestamp=parse_timestamp(raw.get("timestamp")),
        parent_id=_optional_str(raw.get("parent_id")),
        branch=branch,
        color=_optional_str(raw.get("color")),
    )


def _branch_from_dict(raw: dict[str, object]) -> Branch:
    name = raw.get("name")
    color = raw.get("color")
    if not isinstance(name, str) or not name:
        raise ValueError("Saved branch has no name.")
    if not isinstance(color, str):
        raise ValueError(f"Saved branch '{name}' has no color.")
    return Branch(
        name=name,
        head_commit_id=_optional_str(raw.get("head_commit_id")),
        color=color,
        is_active=raw.get("is_active") is True,
    )


def _load_object(raw_text: str) -> dict[str, object]:
    raw_obj: object = json.loads(raw_text)
    if not isinstance(raw_obj, dict):
        raise ValueError("Saved document root must be a JSON object.")
    return cast(dict[str, object], raw_obj)


def _check_format_version(raw: dict[str, object]) -> None:
    format_version = _coerce_int(raw.get("format_version", 0))
    if format_version is None:
        raise ValueError("Saved document has invalid format_version.")
    if format_version > FORMAT_VERSION:
        raise ValueError(f"Saved format version {format_version} is newer than supported {FORMAT_VERSION}.")


def _objects(items: list[object], label: str) -> list[object]:
    for item in items:
        if not isinstance(item, dict):
            raise ValueError(f"Saved {label} entry must be an object.")
    return items


def _optional_str(value: object) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def _coerce_int(value: object, default: int | None = None) -> int | None:
    """Coerce value to int for load normalization."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return default
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return default
    return default


def _coerce_float(value: object, default: float | None = None) -> float | None:
    """Coerce value to float for load normalization."""
    if isinstance(value, bool):
        return float(int(value))
    if isinstance(value, int | float):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            return default
    else:
        return default
    # Saved documents may carry NaN or Infinity literals.
    return number if math.isfinite(number) else default


class TimerHandle(Protocol):
    daemon: bool

    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


class DebouncedWriter:
    """Collapses bursts of save requests into one write after a quiet period.

    Each `schedule` cancels the pending timer and starts a new one, so only
    the most recently scheduled callback runs.
    """

    def __init__(self, delay: float = DEFAULT_DEBOUNCE_SECONDS, timer_factory: TimerFactory | None = None) -> None:
        self.delay = delay
        self._timer_factory: TimerFactory = timer_factory or threading.Timer
        self._timer: TimerHandle | None = None
        self._pending: Callable[[], None] | None = None
        self._lock = threading.Lock()

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def schedule(self, callback: Callable[[], None]) -> None:
        """Restart the quiet period with `callback` as the write to perform."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            timer = self._timer_factory(self.delay, self._fire)
            timer.daemon = True
            self._pending = callback
            self._timer = timer
            timer.start()

    def flush(self) -> None:
        """Run the pending write now."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
        self._fire()

    def cancel(self) -> None:
        """Drop the pending write."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._pending = None

    def _fire(self) -> None:
        with self._lock:
            callback = self._pending
            self._pending = None
            self._timer = None
        if callback is None:
            return
        try:
            callback()
        except Exception:
            logger.exception("Debounced save failed")
