"""Core domain models for the simulated commit graph and lesson catalog."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

OPERATION_KINDS: frozenset[str] = frozenset({"commit", "branch", "merge", "checkout", "revert", "issue"})

DEFAULT_BRANCH = "main"
DEFAULT_BRANCH_COLOR = "#2196F3"


@dataclass(frozen=True)
class Commit:
    """One immutable commit record."""

    id: str
    message: str
    timestamp: datetime
    parent_id: str | None
    branch: str
    color: str | None = None


@dataclass(frozen=True)
class Branch:
    """Named pointer to a head commit."""

    name: str
    head_commit_id: str | None
    color: str
    is_active: bool


@dataclass(frozen=True)
class GraphState:
    """Snapshot of the whole simulated repository.

    Snapshots are never modified; every engine transition returns a new one.
    """

    commits: tuple[Commit, ...]
    branches: tuple[Branch, ...]
    current_branch: str
    current_commit_id: str | None

    def get_branch(self, name: str) -> Branch | None:
        """Return branch by exact name."""
        for branch in self.branches:
            if branch.name == name:
                return branch
        return None

    def get_commit(self, commit_id: str) -> Commit | None:
        """Return commit by exact id."""
        for commit in self.commits:
            if commit.id == commit_id:
                return commit
        return None

    @property
    def active_branch(self) -> Branch:
        """Return the branch new commits are appended to."""
        branch = self.get_branch(self.current_branch)
        if branch is None:
            raise LookupError(f"Current branch '{self.current_branch}' does not exist.")
        return branch


def initial_state() -> GraphState:
    """Return the canonical empty repository."""
    return GraphState(
        commits=(),
        branches=(Branch(name=DEFAULT_BRANCH, head_commit_id=None, color=DEFAULT_BRANCH_COLOR, is_active=True),),
        current_branch=DEFAULT_BRANCH,
        current_commit_id=None,
    )


Predicate = Callable[[GraphState], bool]


@dataclass(frozen=True)
class LessonStep:
    """One unit of guided instruction."""

    title: str
    description: str
    expected_operation: str
    action_hint: str | None = None
    completion_predicate: Predicate | None = field(default=None, compare=False)


@dataclass(frozen=True)
class Lesson:
    """Ordered lesson containing steps."""

    id: str
    title: str
    description: str
    order: int
    steps: tuple[LessonStep, ...]
    requirements: tuple[str, ...] = ()


@dataclass(frozen=True)
class LessonProgress:
    """Cursor and completion state for one lesson."""

    lesson_id: str
    current_step: int
    completed: bool
    total_steps: int
    progress_fraction: float


def fresh_progress(lesson: Lesson) -> LessonProgress:
    """Return initial progress for a lesson."""
    return LessonProgress(
        lesson_id=lesson.id,
        current_step=1,
        completed=False,
        total_steps=len(lesson.steps),
        progress_fraction=0.0,
    )
