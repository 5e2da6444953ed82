"""Data models for automerge-deps.

These Pydantic models and enums represent the values passed between the
policy engine, the merge orchestrator and the review gateway.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class BumpType(str, Enum):
    """Semantic-version distance between two versions.

    Declared in order of magnitude. ``IMPOSSIBLE`` covers every change that
    cannot be expressed as a forward bump (bad format, prefix change,
    downgrade).
    """

    NONE = "none"
    PRERELEASE = "prerelease"
    PATCH = "patch"
    PREPATCH = "prepatch"
    MINOR = "minor"
    PREMINOR = "preminor"
    MAJOR = "major"
    PREMAJOR = "premajor"
    IMPOSSIBLE = "impossible"


# Bump types that may appear in `allowed-update-types`.
CONFIGURABLE_BUMP_TYPES = frozenset(
    {
        BumpType.MAJOR,
        BumpType.PREMAJOR,
        BumpType.MINOR,
        BumpType.PREMINOR,
        BumpType.PATCH,
        BumpType.PREPATCH,
        BumpType.PRERELEASE,
    }
)


class MergeMethod(str, Enum):
    MERGE = "merge"
    SQUASH = "squash"
    REBASE = "rebase"


class Decision(str, Enum):
    """Outcome of the eligibility policy for a whole pull request."""

    ACCEPTED = "accepted"
    FILE_NOT_ALLOWED = "file_not_allowed"
    UNEXPECTED_CHANGES = "unexpected_changes"
    UNEXPECTED_PROPERTY_CHANGE = "unexpected_property_change"
    VERSION_CHANGE_NOT_ALLOWED = "version_change_not_allowed"


class Result(str, Enum):
    """Final result code of a run.

    Reject values are shared with ``Decision`` so a rejection converts with
    ``Result(decision.value)``.
    """

    UNKNOWN_EVENT = "unknown_event"
    ACTOR_NOT_ALLOWED = "actor_not_allowed"
    FILE_NOT_ALLOWED = "file_not_allowed"
    UNEXPECTED_CHANGES = "unexpected_changes"
    UNEXPECTED_PROPERTY_CHANGE = "unexpected_property_change"
    VERSION_CHANGE_NOT_ALLOWED = "version_change_not_allowed"
    PR_NOT_OPEN = "pr_not_open"
    PR_HEAD_CHANGED = "pr_head_changed"
    PR_MERGED = "pr_merged"
    PR_MERGE_SKIPPED = "pr_merge_skipped"
    PR_MERGE_FAILED = "pr_merge_failed"
    AUTO_MERGE_ENABLED = "auto_merge_enabled"


class ChangedFile(BaseModel):
    """A file touched between the base and head revisions.

    Attributes:
        filename: Path relative to the repository root.
        status: Change kind as reported by the platform ("modified",
                "added", "removed", "renamed", ...).
    """

    model_config = ConfigDict(frozen=True)

    filename: str
    status: str


class PullRequestRef(BaseModel):
    """Stable identifiers of the pull request under evaluation.

    Taken from the triggering event. The head sha here is the revision the
    policy was evaluated against; merges are only ever conditioned on it.
    """

    model_config = ConfigDict(frozen=True)

    number: int
    base_sha: str
    head_sha: str


class PullRequestState(BaseModel):
    """Live view of a pull request. Fetched fresh on every use.

    Attributes:
        state: "open" or "closed".
        mergeable: None while the platform is still computing it.
        head_sha: Current head revision.
    """

    model_config = ConfigDict(frozen=True)

    state: str
    mergeable: bool | None = None
    head_sha: str


class User(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    login: str


class Review(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: int | None = None
    state: str


class AutoMergeRequest(BaseModel):
    """An auto-merge registration currently attached to a pull request."""

    model_config = ConfigDict(frozen=True)

    enabled_by: str | None = None
    merge_method: str | None = None
