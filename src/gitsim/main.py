"""CLI entrypoint for the Git simulator and lesson shell."""

from __future__ import annotations

import argparse
import logging
from collections.abc import Callable
from pathlib import Path

from .engine import Outcome
from .models import GraphState, Lesson
from .render import render_branches, render_text, short_id
from .session import GitSession
from .storage import SqliteStore

InputFn = Callable[[str], str]
PrintFn = Callable[[str], None]
MENU_QUIT_COMMANDS = {"q"}
MENU_BACK_COMMANDS = {"b"}
DEFAULT_DB_PATH = Path(".gitsim") / "state.db"

# kind -> (label, required field prompts, optional field prompts)
OPERATION_FORMS: dict[str, tuple[str, tuple[str, ...], tuple[str, ...]]] = {
    "commit": ("Commit", ("Commit message",), ()),
    "branch": ("Branch", ("Branch name",), ()),
    "merge": ("Merge", ("Source branch name",), ()),
    "checkout": ("Checkout", ("Branch name or commit ID",), ()),
    "revert": ("Revert", ("Commit ID to revert",), ()),
    "issue": ("Issue", ("Issue title",), ("Issue description",)),
}

HELP_TEXT = (
    ("commit", "Record a snapshot on the current branch with a message."),
    ("branch", "Create a branch at the current commit and switch to it."),
    ("merge", "Record a merge of another branch into the current branch."),
    ("checkout", "Switch to a branch, or look at an older commit by its ID."),
    ("revert", "Record a commit that undoes an earlier commit."),
    ("issue", "Report a problem. Issues are tracked outside the commit graph."),
)


class QuitApp(Exception):
    """Signal immediate app exit from nested menu flows."""


def _session(db_path: Path) -> GitSession:
    """Create a session backed by a local database."""
    return GitSession(SqliteStore(db_path))


def run(argv: list[str] | None = None) -> int:
    """Run the CLI application."""
    parser = argparse.ArgumentParser(prog="gitsim", description="Learn Git on a simulated commit graph")
    parser.add_argument("command", nargs="?", default="play", choices=["play", "log"])
    parser.add_argument("--db", type=Path, default=DEFAULT_DB_PATH, help="state database path")
    parser.add_argument("--verbose", action="store_true", help="enable debug logging")
    args = parser.parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)
    if args.command == "log":
        return print_log(args.db)
    return play_shell(db_path=args.db)


def print_log(db_path: Path, print_fn: PrintFn = print) -> int:
    """Print the saved graph and exit."""
    session = _session(db_path)
    try:
        for line in render_text(session.state):
            print_fn(line)
    finally:
        session.close()
    return 0


def play_shell(input_fn: InputFn = input, print_fn: PrintFn = print, db_path: Path = DEFAULT_DB_PATH) -> int:
    """Run persistent menu-driven shell."""
    session = _session(db_path)
    try:
        while True:
            print_fn("\n=== Git Simulator ===")
            _print_status(session, print_fn)
            print_fn("1) Lessons")
            print_fn("2) Git operation")
            print_fn("3) Show graph")
            print_fn("4) Help")
            print_fn("5) Save")
            print_fn("6) Reset")
            print_fn("q) Quit")
            choice = input_fn("Choose: ").strip().lower()

            try:
                if choice == "1":
                    _lessons_flow(session, input_fn, print_fn)
                elif choice == "2":
                    _operation_flow(session, input_fn, print_fn)
                elif choice == "3":
                    _graph_flow(session, print_fn)
                elif choice == "4":
                    _help_flow(print_fn)
                elif choice == "5":
                    session.save()
                    print_fn("Saved.")
                elif choice == "6":
                    _reset_flow(session, input_fn, print_fn)
                elif choice in MENU_QUIT_COMMANDS:
                    return 0
                else:
                    print_fn("Invalid choice.")
            except QuitApp:
                return 0
    finally:
        session.close()


def _print_status(session: GitSession, print_fn: PrintFn) -> None:
    """Print current branch, commit and active lesson."""
    state = session.state
    commit_text = short_id(state.current_commit_id) if state.current_commit_id else "(no commits)"
    detached = state.current_commit_id != state.active_branch.head_commit_id
    print_fn(f"Branch: {state.current_branch}{' (detached)' if detached else ''}  Commit: {commit_text}")
    lesson = session.lessons.active_lesson
    if lesson is not None:
        progress = session.lessons.progress_for(lesson.id)
        status = "completed" if progress.completed else f"step {progress.current_step}/{progress.total_steps}"
        print_fn(f"Lesson: {lesson.title} ({status})")


def _lessons_flow(session: GitSession, input_fn: InputFn, print_fn: PrintFn) -> None:
    """List lessons and enter the selected one."""
    lessons = list(session.lessons.catalog.values())
    print_fn("\n=== Lessons ===")
    id_width = max(len("Lesson"), max(len(lesson.id) for lesson in lessons))
    header = f"{'#':>2} {'Lesson':<{id_width}} {'Progress':>8} Title"
    print_fn(header)
    print_fn("-" * len(header))
    for idx, lesson in enumerate(lessons, start=1):
        progress = session.lessons.progress_for(lesson.id)
        percent = f"{100.0 * progress.progress_fraction:.0f}%"
        marker = " (done)" if progress.completed else ""
        print_fn(f"{idx:>2} {lesson.id:<{id_width}} {percent:>8} {lesson.title}{marker}")
    print_fn("r) Reset all progress")
    print_fn("b) Back")
    print_fn("q) Quit")
    choice = input_fn("Choose lesson: ").strip().lower()
    if choice in MENU_BACK_COMMANDS:
        return
    if choice in MENU_QUIT_COMMANDS:
        raise QuitApp()
    if choice == "r":
        session.reset_progress()
        print_fn("Lesson progress reset.")
        return
    if not choice.isdigit():
        print_fn("Invalid choice.")
        return
    index = int(choice) - 1
    if not (0 <= index < len(lessons)):
        print_fn("Invalid choice.")
        return
    lesson = session.select_lesson(lessons[index].id)
    _run_lesson(session, lesson, input_fn, print_fn)


def _run_lesson(session: GitSession, lesson: Lesson, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Show the current step and handle step navigation."""
    print_fn(f"\nLesson: {lesson.title}")
    print_fn(lesson.description)
    if lesson.requirements:
        print_fn(f"Recommended first: {', '.join(lesson.requirements)}")

    while True:
        progress = session.lessons.progress_for(lesson.id)
        step = session.current_step()
        if step is None:
            return
        print_fn(f"\nStep {progress.current_step}/{progress.total_steps}: {step.title}")
        print_fn(step.description)
        if step.action_hint:
            print_fn(f"Action: {step.action_hint}")
        if progress.completed:
            print_fn("Lesson completed.")
        elif session.is_current_step_satisfied():
            print_fn("Step complete. Choose n to continue.")
        print_fn("o) Git operation")
        print_fn("g) Show graph")
        print_fn("n) Next step")
        print_fn("p) Previous step")
        print_fn("b) Back")
        print_fn("q) Quit")
        choice = input_fn("Choose: ").strip().lower()
        if choice in MENU_BACK_COMMANDS:
            return
        if choice in MENU_QUIT_COMMANDS:
            raise QuitApp()
        if choice == "o":
            _operation_flow(session, input_fn, print_fn)
        elif choice == "g":
            _graph_flow(session, print_fn)
        elif choice == "n":
            before = session.lessons.progress_for(lesson.id)
            if before.completed:
                print_fn("Lesson already completed.")
            elif not session.is_current_step_satisfied():
                print_fn("Complete this step before moving on.")
            else:
                session.next_step()
        elif choice == "p":
            session.previous_step()
        else:
            print_fn("Invalid choice.")


def _operation_flow(session: GitSession, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Collect operation fields, run the operation and report the result."""
    kinds = list(OPERATION_FORMS)
    print_fn("\n=== Git Operation ===")
    for idx, kind in enumerate(kinds, start=1):
        print_fn(f"{idx}) {OPERATION_FORMS[kind][0]}")
    print_fn("b) Back")
    choice = input_fn("Choose operation: ").strip().lower()
    if choice in MENU_BACK_COMMANDS:
        return
    if not choice.isdigit() or not (0 <= int(choice) - 1 < len(kinds)):
        print_fn("Invalid choice.")
        return

    kind = kinds[int(choice) - 1]
    label, required, optional = OPERATION_FORMS[kind]
    values: list[str] = []
    for prompt in required:
        value = input_fn(f"{prompt}: ").strip()
        if not value:
            print_fn("Please fill in all required fields.")
            return
        values.append(value)
    for prompt in optional:
        values.append(input_fn(f"{prompt}: ").strip())

    if kind == "issue":
        issue = session.create_issue(values[0], values[1])
        print_fn(f"Created issue: {issue.title}")
        return

    outcome = _execute(session, kind, values[0])
    if outcome.error is not None:
        print_fn(f"Error: {outcome.error.message}")
        return
    print_fn(f"{label} done.")
    for line in render_text(outcome.state)[:1]:
        print_fn(line)


def _execute(session: GitSession, kind: str, value: str) -> Outcome:
    """Dispatch a validated form to the session."""
    state = session.state
    if kind == "commit":
        return session.commit(value)
    if kind == "branch":
        return session.create_branch(value)
    if kind == "merge":
        return session.merge(value)
    if kind == "checkout":
        target = value if state.get_branch(value) is not None else resolve_commit_ref(state, value)
        return session.checkout(target)
    if kind == "revert":
        return session.revert(resolve_commit_ref(state, value))
    raise ValueError(f"Unknown operation kind: {kind}")


def resolve_commit_ref(state: GraphState, ref: str) -> str:
    """Expand a unique commit id prefix; other input is returned unchanged."""
    if state.get_commit(ref) is not None:
        return ref
    matches = [commit.id for commit in state.commits if commit.id.startswith(ref)]
    if len(matches) == 1:
        return matches[0]
    return ref


def _graph_flow(session: GitSession, print_fn: PrintFn) -> None:
    """Print the commit graph and branch list."""
    print_fn("\n=== Graph ===")
    for line in render_text(session.state):
        print_fn(line)
    print_fn("\nBranches:")
    for line in render_branches(session.state):
        print_fn(line)


def _help_flow(print_fn: PrintFn) -> None:
    """Describe the available operations."""
    print_fn("\n=== Help ===")
    width = max(len(kind) for kind, _ in HELP_TEXT)
    for kind, text in HELP_TEXT:
        print_fn(f"{kind:<{width}}  {text}")
    print_fn("Commit IDs may be shortened to any unique prefix.")


def _reset_flow(session: GitSession, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Reset the graph with explicit confirmation safeguard."""
    print_fn("WARNING: This discards every commit and branch. Lesson progress is kept.")
    confirm = input_fn("Type YES to confirm reset: ").strip()
    if confirm != "YES":
        print_fn("Reset cancelled.")
        return
    session.reset()
    print_fn("Graph reset.")


def main_entry() -> None:
    """Console script entrypoint."""
    raise SystemExit(run())


if __name__ == "__main__":  # pragma: no cover
    main_entry()
