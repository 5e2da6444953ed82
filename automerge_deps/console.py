"""Console output helpers.

Messages go to stdout. Debug, warning and error lines are written as
GitHub workflow commands so the Actions UI annotates them.
"""

from __future__ import annotations

import os


def _escape(msg: str) -> str:
    # Workflow commands are line based; encode characters that would end them
    return msg.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


def is_debug() -> bool:
    """True when the workflow run has step debug logging enabled."""
    return os.environ.get("RUNNER_DEBUG") == "1"


def step(msg: str) -> None:
    """Print a visually distinct step header.

    Used to separate the phases of a run (evaluation, approval, merging).
    """
    print(f"\n{'─' * 60}\n{msg}\n{'─' * 60}")


def info(msg: str) -> None:
    print(msg)


def debug(msg: str) -> None:
    if is_debug():
        print(f"::debug::{_escape(msg)}")


def warning(msg: str) -> None:
    print(f"::warning::{_escape(msg)}")


def error(msg: str) -> None:
    print(f"::error::{_escape(msg)}")
