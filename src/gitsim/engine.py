"""Pure state transitions for the simulated commit graph."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import ClassVar
from uuid import uuid4

from .models import Branch, Commit, GraphState, initial_state

IdFactory = Callable[[], str]
Clock = Callable[[], datetime]

BRANCH_PALETTE = (
    "#2196F3",
    "#4CAF50",
    "#FF9800",
    "#9C27B0",
    "#F44336",
    "#009688",
    "#795548",
    "#E91E63",
    "#3F51B5",
    "#CDDC39",
)


class ErrorKind(StrEnum):
    """Recoverable failure kinds for graph operations."""

    DUPLICATE_BRANCH = "DuplicateBranch"
    UNKNOWN_BRANCH = "UnknownBranch"
    EMPTY_BRANCH = "EmptyBranch"
    UNKNOWN_TARGET = "UnknownTarget"
    UNKNOWN_COMMIT = "UnknownCommit"
    INVALID_ARGUMENT = "InvalidArgument"
    MALFORMED_STATE = "MalformedState"


class GraphError(Exception):
    """Domain failure raised inside the engine and returned from `apply`."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message


@dataclass(frozen=True)
class CreateCommit:
    kind: ClassVar[str] = "commit"
    message: str


@dataclass(frozen=True)
class CreateBranch:
    kind: ClassVar[str] = "branch"
    name: str


@dataclass(frozen=True)
class MergeBranch:
    kind: ClassVar[str] = "merge"
    source: str


@dataclass(frozen=True)
class Checkout:
    kind: ClassVar[str] = "checkout"
    target: str


@dataclass(frozen=True)
class RevertCommit:
    kind: ClassVar[str] = "revert"
    commit_id: str


@dataclass(frozen=True)
class ResetState:
    kind: ClassVar[str] = "reset"


@dataclass(frozen=True)
class LoadState:
    kind: ClassVar[str] = "load"
    state: GraphState


GitOperation = CreateCommit | CreateBranch | MergeBranch | Checkout | RevertCommit | ResetState | LoadState


@dataclass(frozen=True)
class Outcome:
    """Result of applying one operation.

    On failure `state` is the unchanged input state.
    """

    state: GraphState
    error: GraphError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def new_commit_id() -> str:
    """Return an opaque unique commit token."""
    return uuid4().hex


def utc_now() -> datetime:
    return datetime.now(UTC)


def apply(
    state: GraphState,
    operation: GitOperation,
    *,
    id_factory: IdFactory = new_commit_id,
    clock: Clock = utc_now,
) -> Outcome:
    """Apply one operation and return the resulting state or a domain error."""
    try:
        return Outcome(state=_dispatch(state, operation, id_factory, clock))
    except GraphError as exc:
        return Outcome(state=state, error=exc)


def _dispatch(state: GraphState, operation: GitOperation, id_factory: IdFactory, clock: Clock) -> GraphState:
    if isinstance(operation, CreateCommit):
        return commit(state, operation.message, id_factory=id_factory, clock=clock)
    if isinstance(operation, CreateBranch):
        return branch(state, operation.name)
    if isinstance(operation, MergeBranch):
        return merge(state, operation.source, id_factory=id_factory, clock=clock)
    if isinstance(operation, Checkout):
        return checkout(state, operation.target)
    if isinstance(operation, RevertCommit):
        return revert(state, operation.commit_id, id_factory=id_factory, clock=clock)
    if isinstance(operation, ResetState):
        return initial_state()
    if isinstance(operation, LoadState):
        return load(operation.state)
    raise TypeError(f"Unsupported operation: {operation!r}")


def commit(
    state: GraphState, message: str, *, id_factory: IdFactory = new_commit_id, clock: Clock = utc_now
) -> GraphState:
    """Append a commit on the active branch."""
    if not message.strip():
        raise GraphError(ErrorKind.INVALID_ARGUMENT, "Commit message is required.")
    return _append_on_active(state, message, id_factory, clock)


def branch(state: GraphState, name: str) -> GraphState:
    """Create a branch at the current fork point and make it active."""
    name = name.strip()
    if not name:
        raise GraphError(ErrorKind.INVALID_ARGUMENT, "Branch name is required.")
    if state.get_branch(name) is not None:
        raise GraphError(ErrorKind.DUPLICATE_BRANCH, f'Branch "{name}" already exists')

    fork_point = state.active_branch.head_commit_id
    created = Branch(
        name=name,
        head_commit_id=fork_point,
        color=pick_branch_color({item.color for item in state.branches}),
        is_active=True,
    )
    branches = tuple(replace(item, is_active=False) for item in state.branches) + (created,)
    return replace(state, branches=branches, current_branch=name, current_commit_id=fork_point)


def merge(
    state: GraphState, source: str, *, id_factory: IdFactory = new_commit_id, clock: Clock = utc_now
) -> GraphState:
    """Record a single-parent merge commit of `source` on the current branch.

    The source branch is not woven into the target ancestry.
    """
    source_branch = state.get_branch(source)
    if source_branch is None:
        raise GraphError(ErrorKind.UNKNOWN_BRANCH, f'Branch "{source}" does not exist')
    if source_branch.head_commit_id is None:
        raise GraphError(ErrorKind.EMPTY_BRANCH, f'Branch "{source}" has no commits')
    message = merge_message(source, state.current_branch)
    return _append_on_active(state, message, id_factory, clock)


def checkout(state: GraphState, target: str) -> GraphState:
    """Switch to a branch, or detach onto a commit id."""
    target_branch = state.get_branch(target)
    if target_branch is not None:
        branches = tuple(replace(item, is_active=item.name == target) for item in state.branches)
        return replace(
            state,
            branches=branches,
            current_branch=target,
            current_commit_id=target_branch.head_commit_id,
        )
    if state.get_commit(target) is not None:
        return replace(state, current_commit_id=target)
    raise GraphError(ErrorKind.UNKNOWN_TARGET, f'"{target}" is neither a branch nor a commit')


def revert(
    state: GraphState, commit_id: str, *, id_factory: IdFactory = new_commit_id, clock: Clock = utc_now
) -> GraphState:
    """Append a revert marker commit for `commit_id` on the active branch."""
    reverted = state.get_commit(commit_id)
    if reverted is None:
        raise GraphError(ErrorKind.UNKNOWN_COMMIT, f'Commit "{commit_id}" does not exist')
    return _append_on_active(state, revert_message(reverted.message), id_factory, clock)


def load(state: GraphState) -> GraphState:
    """Validate a whole replacement state."""
    problems = validate_state(state)
    if problems:
        raise GraphError(ErrorKind.MALFORMED_STATE, "; ".join(problems))
    return state


def validate_state(state: GraphState) -> list[str]:
    """Return invariant violations for a state (empty when valid)."""
    problems: list[str] = []
    commit_ids: set[str] = set()
    for item in state.commits:
        if item.id in commit_ids:
            problems.append(f"duplicate commit id '{item.id}'")
        commit_ids.add(item.id)
    for item in state.commits:
        if item.parent_id is not None and item.parent_id not in commit_ids:
            problems.append(f"commit '{item.id}' has unknown parent '{item.parent_id}'")

    names: set[str] = set()
    for item in state.branches:
        if item.name in names:
            problems.append(f"duplicate branch '{item.name}'")
        names.add(item.name)
        if item.head_commit_id is not None and item.head_commit_id not in commit_ids:
            problems.append(f"branch '{item.name}' points to unknown commit '{item.head_commit_id}'")

    if state.current_branch not in names:
        problems.append(f"current branch '{state.current_branch}' does not exist")
    if state.current_commit_id is not None and state.current_commit_id not in commit_ids:
        problems.append(f"current commit '{state.current_commit_id}' does not exist")

    active = [item.name for item in state.branches if item.is_active]
    if len(active) != 1:
        problems.append(f"expected exactly one active branch, found {len(active)}")
    elif active[0] != state.current_branch:
        problems.append(f"active branch '{active[0]}' is not the current branch '{state.current_branch}'")
    return problems


def merge_message(source: str, target: str) -> str:
    return f"Merge branch '{source}' into {target}"


def revert_message(original: str) -> str:
    return f'Revert "{original}"'


def pick_branch_color(used: set[str]) -> str:
    """Return a colour not in `used`, palette first, then a bounded fallback sequence."""
    lowered = {color.lower() for color in used}
    for color in BRANCH_PALETTE:
        if color.lower() not in lowered:
            return color
    # Only len(used) fallback values can collide, so this terminates.
    for step in range(len(lowered) + 1):
        candidate = f"#{(0x336699 + step * 0x0F0F0F) % 0x1000000:06X}"
        if candidate.lower() not in lowered:
            return candidate
    raise RuntimeError("Could not allocate a branch colour.")  # pragma: no cover


def _append_on_active(state: GraphState, message: str, id_factory: IdFactory, clock: Clock) -> GraphState:
    """Append a commit on the active branch and move its head."""
    active = state.active_branch
    created = Commit(
        id=id_factory(),
        message=message,
        timestamp=clock(),
        parent_id=active.head_commit_id,
        branch=active.name,
        color=active.color,
    )
    branches = tuple(
        replace(item, head_commit_id=created.id) if item.name == active.name else item for item in state.branches
    )
    return replace(state, commits=state.commits + (created,), branches=branches, current_commit_id=created.id)
