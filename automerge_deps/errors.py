"""Error types for automerge-deps.

Policy rejections are reported as ``Result`` values, not exceptions. The
classes here are for conditions where the system itself is broken or
misconfigured, and the caller must be able to tell them apart from
"the policy said no".
"""

from __future__ import annotations


class AutomergeError(Exception):
    """Base class for unrecoverable automerge-deps failures."""


class ConfigError(AutomergeError):
    """An input option is malformed or not supported."""


class UnexpectedResponseError(AutomergeError):
    """The platform returned data in a shape we do not understand."""


class MergeTimeoutError(AutomergeError):
    """The merge deadline passed without reaching a terminal outcome."""


class GatewayError(AutomergeError):
    """A request to the review platform failed.

    Attributes:
        status: HTTP status code, or None for GraphQL-level errors.
    """

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class MergeConflictError(GatewayError):
    """The merge was refused because the head revision no longer matches."""
