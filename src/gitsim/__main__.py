"""Support `python -m gitsim`."""

from __future__ import annotations

from .main import main_entry


def main() -> None:
    """Start the interactive shell."""
    main_entry()


if __name__ == "__main__":  # pragma: no cover
    main()
