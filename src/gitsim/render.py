"""Text rendering of graph snapshots for terminal display."""

from __future__ import annotations

from dataclasses import dataclass

from .models import Commit, GraphState

SHORT_ID_LENGTH = 7
EMPTY_GRAPH_TEXT = "No commits yet."


@dataclass(frozen=True)
class CommitPosition:
    """Lane (branch column) and row (ancestry depth) for one commit."""

    commit: Commit
    lane: int
    row: int


def short_id(commit_id: str) -> str:
    return commit_id[:SHORT_ID_LENGTH]


def layout(state: GraphState) -> list[CommitPosition]:
    """Place commits in branch lanes by ancestry depth, in log order."""
    lanes = {branch.name: index for index, branch in enumerate(state.branches)}
    depths: dict[str, int] = {}
    positions: list[CommitPosition] = []
    # Parents always precede children in the append-only log.
    for commit in state.commits:
        depth = 0 if commit.parent_id is None else depths.get(commit.parent_id, -1) + 1
        depths[commit.id] = depth
        positions.append(CommitPosition(commit=commit, lane=lanes.get(commit.branch, 0), row=depth))
    return positions


def commit_labels(state: GraphState, commit: Commit) -> list[str]:
    """Return decorations such as `HEAD -> main` for a commit."""
    labels: list[str] = []
    for branch in state.branches:
        if branch.head_commit_id != commit.id:
            continue
        if branch.name == state.current_branch and state.current_commit_id == commit.id:
            labels.insert(0, f"HEAD -> {branch.name}")
        else:
            labels.append(branch.name)
    if state.current_commit_id == commit.id and not any(label.startswith("HEAD") for label in labels):
        labels.insert(0, "HEAD")
    return labels


def render_text(state: GraphState) -> list[str]:
    """Render the graph newest-first, one line per commit."""
    if not state.commits:
        return [EMPTY_GRAPH_TEXT]

    positions = list(reversed(layout(state)))
    lane_count = max(len(state.branches), max(item.lane for item in positions) + 1)
    first_seen: dict[int, int] = {}
    last_seen: dict[int, int] = {}
    for index, item in enumerate(positions):
        first_seen.setdefault(item.lane, index)
        last_seen[item.lane] = index

    lines: list[str] = []
    for index, item in enumerate(positions):
        columns = []
        for lane in range(lane_count):
            if lane == item.lane:
                columns.append("*")
            elif first_seen.get(lane, index) < index < last_seen.get(lane, index):
                columns.append("|")
            else:
                columns.append(" ")
        labels = commit_labels(state, item.commit)
        decoration = f" ({', '.join(labels)})" if labels else ""
        message = item.commit.message.splitlines()[0] if item.commit.message else ""
        lines.append(f"{' '.join(columns).rstrip()} {short_id(item.commit.id)} {message}{decoration}")
    return lines


def render_branches(state: GraphState) -> list[str]:
    """Render branch list with the active marker."""
    lines: list[str] = []
    for branch in state.branches:
        marker = "*" if branch.is_active else " "
        head = short_id(branch.head_commit_id) if branch.head_commit_id else "(no commits)"
        lines.append(f"{marker} {branch.name} {head}")
    return lines
