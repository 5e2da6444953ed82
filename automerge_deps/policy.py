"""Eligibility policy: decide whether a pull request only bumps dependencies.

Evaluation runs these checks in order and stops at the first failure:
1. Only allowed manifest/lock files changed, and only as modifications
2. No keys were added or removed anywhere in the manifest
3. Only dependency categories changed, and each as a map of dependencies
4. Every changed dependency passes the name filters and its bump type is
   allowed for its category

The whole pull request is the unit of decision: one bad dependency
rejects all of them.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .diff import Change, diff_manifests
from .errors import ConfigError
from .models import CONFIGURABLE_BUMP_TYPES, BumpType, ChangedFile, Decision
from .versions import classify

ALLOWED_FILE_CHANGES = frozenset(
    {"package.json", "package-lock.json", "yarn.lock", ".pnp.cjs"}
)
DEPENDENCY_CATEGORIES = frozenset({"dependencies", "devDependencies"})

ManifestSnapshot = Mapping[str, Any]


class UpdatePolicy(BaseModel):
    """Which dependency changes are eligible.

    Attributes:
        allowed_update_types: Category name → bump types permitted in it.
            A category with no entry permits no changes.
        block_list: Dependency names that are never eligible.
        allow_list: If set, only these dependency names are eligible.
    """

    model_config = ConfigDict(frozen=True)

    allowed_update_types: dict[str, frozenset[BumpType]] = Field(default_factory=dict)
    block_list: frozenset[str] = frozenset()
    allow_list: frozenset[str] | None = None

    def allows_package(self, name: str) -> bool:
        if name in self.block_list:
            return False
        return self.allow_list is None or name in self.allow_list

    def allows_bump(self, category: str, bump: BumpType) -> bool:
        return bump in self.allowed_update_types.get(category, frozenset())


def parse_allowed_update_types(raw: str) -> dict[str, frozenset[BumpType]]:
    """Parse ``category:bumpType`` entries separated by commas.

    Examples:
        "devDependencies:minor, devDependencies:patch"
            → {"devDependencies": {minor, patch}}

    Raises:
        ConfigError: If an entry is malformed or names an unknown bump type.
    """
    allowed: dict[str, set[BumpType]] = {}
    for group in (g.strip() for g in raw.split(",")):
        if not group:
            continue
        parts = [p.strip() for p in group.split(":")]
        if len(parts) != 2 or not all(parts):
            raise ConfigError(f"allowed-update-types invalid: {group!r}")
        category, bump_name = parts
        try:
            bump = BumpType(bump_name)
        except ValueError:
            bump = None
        if bump not in CONFIGURABLE_BUMP_TYPES:
            supported = ", ".join(sorted(b.value for b in CONFIGURABLE_BUMP_TYPES))
            raise ConfigError(
                f"allowed-update-types invalid: unknown bump type {bump_name!r} "
                f"(supported: {supported})"
            )
        allowed.setdefault(category, set()).add(bump)
    return {category: frozenset(bumps) for category, bumps in allowed.items()}


def parse_name_list(raw: str | None) -> frozenset[str] | None:
    """Parse a comma separated list of names; None if the input is empty."""
    if not raw or not raw.strip():
        return None
    return frozenset(name for name in (n.strip() for n in raw.split(",")) if name)


def check_changed_files(changed_files: Iterable[ChangedFile]) -> bool:
    """True if every changed file is an allowed manifest, modified in place."""
    return all(
        f.filename in ALLOWED_FILE_CHANGES and f.status == "modified"
        for f in changed_files
    )


def _dependency_allowed(
    category: str, name: str, change: Any, policy: UpdatePolicy
) -> bool:
    # Nested objects under a dependency name show up as dicts, not Changes
    if not isinstance(change, Change):
        return False
    if not isinstance(change.old, str) or not isinstance(change.new, str):
        return False
    if not policy.allows_package(name):
        return False
    return policy.allows_bump(category, classify(change.old, change.new))


def evaluate(
    changed_files: Iterable[ChangedFile],
    base: ManifestSnapshot,
    head: ManifestSnapshot,
    policy: UpdatePolicy,
) -> Decision:
    """Decide whether a pull request is eligible for auto-merge.

    Pure: the same inputs always give the same decision.

    Args:
        changed_files: Files changed between base and head.
        base: Manifest document at the base revision.
        head: Manifest document at the head revision.
        policy: Allowed bump types and package filters.

    Returns:
        ``Decision.ACCEPTED`` or the reason for the first failed check.
    """
    if not check_changed_files(changed_files):
        return Decision.FILE_NOT_ALLOWED

    diff = diff_manifests(base, head)
    if diff.has_structural_changes:
        return Decision.UNEXPECTED_CHANGES

    for category, changes in diff.updated.items():
        if category not in DEPENDENCY_CATEGORIES or not isinstance(changes, dict):
            return Decision.UNEXPECTED_PROPERTY_CHANGE
        # Arrays diff element-wise too, so check the documents themselves
        if not isinstance(base[category], Mapping) or not isinstance(
            head[category], Mapping
        ):
            return Decision.UNEXPECTED_PROPERTY_CHANGE

    for category, changes in diff.updated.items():
        for name, change in changes.items():
            if not _dependency_allowed(category, name, change, policy):
                return Decision.VERSION_CHANGE_NOT_ALLOWED

    return Decision.ACCEPTED
