"""Version parsing and bump classification.

Handles conversion between manifest version strings (an exact semver
version with an optional ``^`` or ``~`` range prefix) and semver objects,
and classifies how far a dependency moved between two of them.
"""

from __future__ import annotations

import re

import semver
from pydantic import BaseModel, ConfigDict

from .models import BumpType

VERSION_SPEC_RE = re.compile(r"^([~^]?)\d+\.\d+\.\d+(-.+)?$")

# Canonical ordering of bump magnitudes, smallest first.
BUMP_ORDER: tuple[BumpType, ...] = tuple(BumpType)


class VersionSpec(BaseModel):
    """A manifest version entry split into range prefix and exact version.

    Attributes:
        prefix: "", "^" or "~".
        version: The exact version with the prefix stripped.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    prefix: str
    version: semver.Version


def parse_version_spec(raw: str) -> VersionSpec | None:
    """Parse a manifest version string, returning None if it is not valid.

    Examples:
        "1.2.3" → VersionSpec(prefix="", version=1.2.3)
        "^1.2.3-beta.1" → VersionSpec(prefix="^", version=1.2.3-beta.1)
        ">=1.2.3" → None
    """
    match = VERSION_SPEC_RE.match(raw)
    if not match:
        return None
    prefix = match.group(1)
    try:
        version = semver.Version.parse(raw[len(prefix) :])
    except ValueError:
        # Matches the pattern but is not strict semver (e.g. "01.0.0")
        return None
    return VersionSpec(prefix=prefix, version=version)


def diff_versions(low: semver.Version, high: semver.Version) -> BumpType:
    """Classify the bump from ``low`` to ``high``.

    Follows npm semver's ``diff``: the most significant component that
    changed, prefixed with "pre" when the higher version is a pre-release.
    Leaving a pre-release for its own release is reported as the component
    that release finalises.

    Examples:
        1.0.0 → 1.0.1 → patch
        1.0.0 → 2.0.0-rc.1 → premajor
        1.0.0-rc.1 → 1.0.0-rc.2 → prerelease
        1.1.0-rc.1 → 1.1.0 → minor
    """
    comparison = low.compare(high)
    if comparison == 0:
        return BumpType.NONE
    if comparison > 0:
        low, high = high, low

    if low.prerelease and not high.prerelease:
        if not low.patch and not low.minor:
            return BumpType.MAJOR
        if low.finalize_version() == high:
            if low.minor and not low.patch:
                return BumpType.MINOR
            return BumpType.PATCH

    pre = bool(high.prerelease)
    if low.major != high.major:
        return BumpType.PREMAJOR if pre else BumpType.MAJOR
    if low.minor != high.minor:
        return BumpType.PREMINOR if pre else BumpType.MINOR
    if low.patch != high.patch:
        return BumpType.PREPATCH if pre else BumpType.PATCH
    return BumpType.PRERELEASE


def classify(old_version: str, new_version: str) -> BumpType:
    """Classify the change between two manifest version strings.

    The result is ``IMPOSSIBLE`` when either string is not a valid version
    spec, when the range prefix differs (``~1.0.0`` → ``1.0.1``), or when the
    new version is not strictly greater than the old one.

    Examples:
        classify("0.0.1", "0.0.2") → patch
        classify("^0.0.1", "^0.1.0") → minor
        classify("~0.0.1", "0.0.2") → impossible
        classify("0.0.2", "0.0.1") → impossible
    """
    old = parse_version_spec(old_version)
    new = parse_version_spec(new_version)
    if old is None or new is None:
        return BumpType.IMPOSSIBLE
    if old.prefix != new.prefix:
        return BumpType.IMPOSSIBLE
    if old.version.compare(new.version) >= 0:
        return BumpType.IMPOSSIBLE
    return diff_versions(old.version, new.version)
