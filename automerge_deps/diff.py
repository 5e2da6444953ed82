"""Structural diff of two manifest documents.

The diff is generic: it knows nothing about dependencies. It walks both
documents and sorts every difference into one of three trees that mirror
the shape of the input:

- ``added``: keys only present in the head document
- ``deleted``: keys only present in the base document
- ``updated``: keys present in both whose value differs; leaves are
  ``Change`` records holding the old and new value

Interpreting the result is the policy engine's job.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Change(BaseModel):
    """A leaf value that differs between base and head."""

    model_config = ConfigDict(frozen=True)

    old: Any
    new: Any


class ManifestDiff(BaseModel):
    added: dict[str, Any] = Field(default_factory=dict)
    deleted: dict[str, Any] = Field(default_factory=dict)
    updated: dict[str, Any] = Field(default_factory=dict)

    @property
    def has_structural_changes(self) -> bool:
        """True if any key was added or removed at any depth."""
        return bool(self.added or self.deleted)


def _as_mapping(value: Any) -> Mapping[str, Any] | None:
    """Return containers as string-keyed mappings, or None for scalars.

    Lists are compared element-wise by index.
    """
    if isinstance(value, Mapping):
        return value
    if isinstance(value, list):
        return {str(i): item for i, item in enumerate(value)}
    return None


def _same_kind(a: Any, b: Any) -> bool:
    return isinstance(a, Mapping) == isinstance(b, Mapping) and isinstance(
        a, list
    ) == isinstance(b, list)


def _walk(base: Mapping[str, Any], head: Mapping[str, Any], out: ManifestDiff) -> None:
    for key, value in head.items():
        if key not in base:
            out.added[key] = value

    for key, value in base.items():
        if key not in head:
            out.deleted[key] = value

    for key, old in base.items():
        if key not in head:
            continue
        new = head[key]
        old_map, new_map = _as_mapping(old), _as_mapping(new)
        if old_map is not None and new_map is not None and _same_kind(old, new):
            nested = ManifestDiff()
            _walk(old_map, new_map, nested)
            if nested.added:
                out.added[key] = nested.added
            if nested.deleted:
                out.deleted[key] = nested.deleted
            if nested.updated:
                out.updated[key] = nested.updated
        elif old != new or type(old) is not type(new):
            out.updated[key] = Change(old=old, new=new)


def diff_manifests(base: Mapping[str, Any], head: Mapping[str, Any]) -> ManifestDiff:
    """Compute the structural diff between two manifest documents.

    Example:
        base = {"devDependencies": {"a": "1.0.0"}, "name": "x"}
        head = {"devDependencies": {"a": "1.1.0"}, "version": "2"}
        → added   = {"version": "2"}
          deleted = {"name": "x"}
          updated = {"devDependencies": {"a": Change(old="1.0.0", new="1.1.0")}}
    """
    out = ManifestDiff()
    _walk(base, head, out)
    return out
