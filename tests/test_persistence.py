import json
import logging
from datetime import UTC, datetime

import pytest

from gitsim.engine import Checkout, CreateBranch, CreateCommit, MergeBranch, apply
from gitsim.lessons import LessonEngine
from gitsim.models import GraphState, initial_state
from gitsim.content_loader import load_lessons
from gitsim.persistence import (
    GIT_STATE_KEY,
    LESSON_PROGRESS_KEY,
    DebouncedWriter,
    PersistenceAdapter,
    dump_state,
    parse_state,
    parse_timestamp,
)
from gitsim.session import GitSession
from gitsim.storage import MemoryStore


def _rich_state(ids, clock) -> GraphState:
    state = initial_state()
    for operation in (
        CreateCommit("Initial commit"),
        CreateBranch("feature"),
        CreateCommit("Add login functionality"),
        Checkout("main"),
        CreateCommit("Hotfix"),
        MergeBranch("feature"),
    ):
        outcome = apply(state, operation, id_factory=ids, clock=clock)
        assert outcome.ok
        state = outcome.state
    return state


def test_round_trip_preserves_state_and_timestamps(ids, clock) -> None:
    state = _rich_state(ids, clock)
    assert len(state.branches) >= 2 and len(state.commits) >= 3
    adapter = PersistenceAdapter(MemoryStore())
    catalog = load_lessons()

    adapter.save(state, LessonEngine(catalog).progress)
    loaded = adapter.load(catalog)

    assert loaded.state == state
    for commit in loaded.state.commits:
        assert isinstance(commit.timestamp, datetime)
        assert commit.timestamp.tzinfo is not None


def test_saved_timestamps_are_iso_strings(ids, clock) -> None:
    payload = json.loads(dump_state(_rich_state(ids, clock)))
    assert payload["format_version"] == 1
    assert payload["commits"][0]["timestamp"] == "2026-01-01T09:01:00+00:00"


def test_progress_round_trip() -> None:
    catalog = load_lessons()
    lessons = LessonEngine(catalog)
    lessons.select_lesson("branching-merging")
    lessons.advance()
    lessons.advance()
    adapter = PersistenceAdapter(MemoryStore())

    adapter.save(initial_state(), lessons.progress)
    restored = adapter.load(catalog).progress

    assert restored == lessons.progress


def test_missing_data_loads_initial_state() -> None:
    catalog = load_lessons()
    snapshot = PersistenceAdapter(MemoryStore()).load(catalog)
    assert snapshot.state == initial_state()
    assert all(record.current_step == 1 for record in snapshot.progress.values())
    assert set(snapshot.progress) == set(catalog)


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[]",
        json.dumps({"format_version": 99, "commits": [], "branches": []}),
        json.dumps({"commits": "x", "branches": []}),
        json.dumps(
            {"commits": [{"id": "a", "message": "m", "branch": "main", "timestamp": "yesterday"}], "branches": []}
        ),
        json.dumps(
            {
                "commits": [],
                "branches": [{"name": "main", "head_commit_id": "ghost", "color": "#fff", "is_active": True}],
                "current_branch": "main",
            }
        ),
    ],
)
def test_malformed_graph_state_falls_back(raw: str, caplog: pytest.LogCaptureFixture) -> None:
    adapter = PersistenceAdapter(MemoryStore({GIT_STATE_KEY: raw}))
    with caplog.at_level(logging.WARNING, logger="gitsim.persistence"):
        state = adapter.load_state()
    assert state == initial_state()
    assert "Discarding" in caplog.text


def test_malformed_progress_falls_back() -> None:
    catalog = load_lessons()
    adapter = PersistenceAdapter(MemoryStore({LESSON_PROGRESS_KEY: "{broken"}))
    progress = adapter.load_progress(catalog)
    assert all(record.current_step == 1 for record in progress.values())


def test_progress_rows_are_normalized_against_catalog() -> None:
    catalog = load_lessons()
    raw = json.dumps(
        {
            "format_version": 1,
            "lessons": {
                "git-basics": {"current_step": 99, "completed": True, "total_steps": 1, "progress_fraction": 7},
                "branching-merging": {"current_step": "2", "completed": True, "progress_fraction": 0.4},
                "retired-lesson": {"current_step": 2},
                "advanced-git": "nonsense",
            },
        }
    )
    progress = PersistenceAdapter(MemoryStore({LESSON_PROGRESS_KEY: raw})).load_progress(catalog)

    basics = progress["git-basics"]
    assert basics.current_step == 3
    assert basics.total_steps == 3
    assert basics.completed is True
    assert basics.progress_fraction == 1.0

    branching = progress["branching-merging"]
    assert branching.current_step == 2
    assert branching.completed is False
    assert branching.progress_fraction == pytest.approx(0.4)

    assert "retired-lesson" not in progress
    assert progress["advanced-git"].current_step == 1


def test_infinite_format_version_falls_back(timers) -> None:
    raw = '{"format_version": 1e999, "commits": [], "branches": []}'
    session = GitSession(MemoryStore({GIT_STATE_KEY: raw}), autosave=False, timer_factory=timers)
    assert session.state == initial_state()


def test_non_finite_progress_numbers_are_normalized() -> None:
    catalog = load_lessons()
    raw = (
        '{"format_version": 1, "lessons": {'
        '"git-basics": {"current_step": 1e999, "progress_fraction": Infinity}, '
        '"branching-merging": {"current_step": 2, "progress_fraction": NaN}}}'
    )
    progress = PersistenceAdapter(MemoryStore({LESSON_PROGRESS_KEY: raw})).load_progress(catalog)

    basics = progress["git-basics"]
    assert basics.current_step == 1
    assert basics.progress_fraction == 0.0

    branching = progress["branching-merging"]
    assert branching.current_step == 2
    assert branching.progress_fraction == 0.0


def test_infinite_progress_format_version_falls_back() -> None:
    catalog = load_lessons()
    raw = '{"format_version": -1e999, "lessons": {"git-basics": {"current_step": 2}}}'
    progress = PersistenceAdapter(MemoryStore({LESSON_PROGRESS_KEY: raw})).load_progress(catalog)
    assert progress["git-basics"].current_step == 1


def test_naive_timestamps_are_read_as_utc() -> None:
    assert parse_timestamp("2024-05-01T12:00:00") == datetime(2024, 5, 1, 12, tzinfo=UTC)
    assert parse_timestamp("2024-05-01T12:00:00.000Z") == datetime(2024, 5, 1, 12, tzinfo=UTC)


def test_parse_state_accepts_missing_optional_fields() -> None:
    raw = json.dumps(
        {
            "commits": [{"id": "a1", "message": "m", "branch": "main", "timestamp": "2024-01-01T00:00:00+00:00"}],
            "branches": [{"name": "main", "head_commit_id": "a1", "color": "#2196F3", "is_active": True}],
            "current_branch": "main",
        }
    )
    state = parse_state(raw)
    assert state.commits[0].parent_id is None
    assert state.commits[0].color is None
    assert state.current_commit_id is None


def test_clear_removes_documents() -> None:
    store = MemoryStore()
    adapter = PersistenceAdapter(store)
    adapter.save(initial_state(), {})
    assert store.get(GIT_STATE_KEY) is not None
    adapter.clear()
    assert store.data == {}


def test_debounce_collapses_burst_into_final_write(timers) -> None:
    writes: list[int] = []
    writer = DebouncedWriter(0.5, timer_factory=timers)

    for value in range(5):
        writer.schedule(lambda value=value: writes.append(value))

    assert len(timers.timers) == 5
    assert len(timers.live) == 1
    assert all(timer.daemon for timer in timers.timers)
    assert timers.live[0].interval == 0.5
    timers.live[0].fire()
    assert writes == [4]
    assert writer.pending is False


def test_stale_timer_does_not_write_twice(timers) -> None:
    writes: list[str] = []
    writer = DebouncedWriter(0.5, timer_factory=timers)
    writer.schedule(lambda: writes.append("first"))
    stale = timers.timers[0]
    writer.schedule(lambda: writes.append("second"))

    # A cancelled timer that already started still calls back into the writer.
    stale.function()
    timers.timers[1].fire()
    assert writes == ["second"]


def test_flush_and_cancel(timers) -> None:
    writes: list[str] = []
    writer = DebouncedWriter(0.5, timer_factory=timers)
    writer.schedule(lambda: writes.append("flushed"))
    writer.flush()
    assert writes == ["flushed"]

    writer.schedule(lambda: writes.append("dropped"))
    writer.cancel()
    assert writer.pending is False
    timers.timers[-1].function()
    assert writes == ["flushed"]


def test_failing_callback_is_logged(timers, caplog: pytest.LogCaptureFixture) -> None:
    writer = DebouncedWriter(0.5, timer_factory=timers)

    def boom() -> None:
        raise OSError("disk full")

    writer.schedule(boom)
    with caplog.at_level(logging.ERROR, logger="gitsim.persistence"):
        timers.live[0].fire()
    assert "Debounced save failed" in caplog.text


def test_debounce_with_real_timer() -> None:
    writes: list[str] = []
    writer = DebouncedWriter(10.0)
    writer.schedule(lambda: writes.append("a"))
    writer.schedule(lambda: writes.append("b"))
    writer.flush()
    assert writes == ["b"]
