"""Step completion predicates over graph snapshots."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from .engine import merge_message
from .models import GraphState, Predicate


def has_commit_with_message(state: GraphState, text: str) -> bool:
    """Return whether any commit message contains `text`, ignoring case."""
    needle = text.lower()
    return any(needle in commit.message.lower() for commit in state.commits)


def has_commit_starting_with(state: GraphState, prefix: str) -> bool:
    return any(commit.message.startswith(prefix) for commit in state.commits)


def has_branch(state: GraphState, name: str) -> bool:
    return state.get_branch(name) is not None


def is_on_branch(state: GraphState, name: str) -> bool:
    return state.current_branch == name


def has_merged(state: GraphState, source: str, target: str) -> bool:
    """Return whether a merge commit of `source` into `target` exists."""
    expected = merge_message(source, target)
    return any(commit.message == expected for commit in state.commits)


def commit_message_contains(text: str) -> Predicate:
    return lambda state: has_commit_with_message(state, text)


def commit_message_startswith(prefix: str) -> Predicate:
    return lambda state: has_commit_starting_with(state, prefix)


def branch_exists(name: str) -> Predicate:
    return lambda state: has_branch(state, name)


def current_branch_is(name: str) -> Predicate:
    return lambda state: is_on_branch(state, name)


def merged(source: str, target: str) -> Predicate:
    return lambda state: has_merged(state, source, target)


# kind -> (builder, required argument names)
_BUILDERS: dict[str, tuple[Callable[..., Predicate], tuple[str, ...]]] = {
    "commit_message_contains": (commit_message_contains, ("text",)),
    "commit_message_startswith": (commit_message_startswith, ("prefix",)),
    "branch_exists": (branch_exists, ("name",)),
    "current_branch_is": (current_branch_is, ("name",)),
    "merged": (merged, ("source", "target")),
}

PREDICATE_KINDS = frozenset(_BUILDERS)


def build_predicate(raw: Mapping[str, Any]) -> Predicate:
    """Build a predicate from a declarative `{"kind": ..., <args>}` mapping."""
    kind = str(raw.get("kind", "")).strip()
    entry = _BUILDERS.get(kind)
    if entry is None:
        raise ValueError(f"Unknown predicate kind '{kind}'.")
    builder, arg_names = entry
    args: list[str] = []
    for name in arg_names:
        value = str(raw.get(name, "")).strip()
        if not value:
            raise ValueError(f"Predicate '{kind}' requires a non-empty '{name}'.")
        args.append(value)
    return builder(*args)
