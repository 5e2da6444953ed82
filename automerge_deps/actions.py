"""GitHub Actions runtime glue: event context and step outputs."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from . import console
from .errors import UnexpectedResponseError
from .models import PullRequestRef

SUPPORTED_EVENTS = frozenset(
    {"pull_request", "pull_request_target", "pull_request_review"}
)


class EventContext(BaseModel):
    """The parts of the workflow run environment a run depends on.

    Attributes:
        event_name: Name of the triggering event.
        actor: Login of the user that triggered the workflow.
        repository: Repository in "owner/repo" form.
        payload: Parsed webhook payload, empty if unavailable.
    """

    event_name: str
    actor: str
    repository: str
    payload: dict[str, Any] = Field(default_factory=dict)

    @property
    def owner(self) -> str:
        return self.repository.partition("/")[0]

    @property
    def repo(self) -> str:
        return self.repository.partition("/")[2]

    def pull_request(self) -> PullRequestRef:
        """Extract the pull request identifiers from the payload.

        Raises:
            UnexpectedResponseError: If the payload carries no usable
                pull_request object.
        """
        pr = self.payload.get("pull_request")
        if not isinstance(pr, dict):
            raise UnexpectedResponseError("Event payload has no pull_request")
        try:
            return PullRequestRef(
                number=pr["number"],
                base_sha=pr["base"]["sha"],
                head_sha=pr["head"]["sha"],
            )
        except (KeyError, TypeError, ValidationError) as exc:
            raise UnexpectedResponseError(
                f"Malformed pull_request in event payload: {exc}"
            ) from exc


def load_event_context(env: dict[str, str] | None = None) -> EventContext:
    """Build an EventContext from the standard GITHUB_* variables."""
    env = dict(os.environ) if env is None else env
    payload: dict[str, Any] = {}
    event_path = env.get("GITHUB_EVENT_PATH")
    if event_path and Path(event_path).exists():
        try:
            payload = json.loads(Path(event_path).read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise UnexpectedResponseError(
                f"Failed to parse event payload: {exc}"
            ) from exc
    return EventContext(
        event_name=env.get("GITHUB_EVENT_NAME", ""),
        actor=env.get("GITHUB_ACTOR", ""),
        repository=env.get("GITHUB_REPOSITORY", ""),
        payload=payload,
    )


def write_output(name: str, value: str, output_path: str | None = None) -> None:
    """Append a step output, or just log it when not running in Actions."""
    output_path = output_path or os.environ.get("GITHUB_OUTPUT")
    if not output_path:
        console.info(f"Output {name}={value}")
        return
    with open(output_path, "a") as fh:
        fh.write(f"{name}={value}\n")
