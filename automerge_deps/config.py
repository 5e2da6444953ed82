"""Run configuration, parsed from the action inputs."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, ValidationError

from .errors import ConfigError
from .models import MergeMethod
from .policy import UpdatePolicy, parse_allowed_update_types, parse_name_list

DEFAULT_ALLOWED_UPDATE_TYPES = "devDependencies:minor, devDependencies:patch"


class Settings(BaseModel):
    """Validated options for a single run.

    Attributes:
        allowed_actors: Logins allowed to trigger an evaluation.
        policy: Allowed bump types per category and package filters.
        approve: Submit an approving review when the policy accepts.
        merge: Merge (or enable auto-merge) when the policy accepts.
        merge_method: How the pull request is merged.
        use_auto_merge: Register the platform's auto-merge instead of
            polling and merging ourselves.
    """

    model_config = ConfigDict(frozen=True)

    allowed_actors: frozenset[str]
    policy: UpdatePolicy
    approve: bool = True
    merge: bool = True
    merge_method: MergeMethod = MergeMethod.MERGE
    use_auto_merge: bool = False

    @classmethod
    def from_inputs(
        cls,
        *,
        allowed_actors: str,
        allowed_update_types: str = DEFAULT_ALLOWED_UPDATE_TYPES,
        approve: str = "true",
        merge: str = "true",
        merge_method: str = "merge",
        use_auto_merge: str = "false",
        package_block_list: str | None = None,
        package_allow_list: str | None = None,
    ) -> Settings:
        """Build settings from raw string inputs.

        Boolean inputs are true only for the literal "true", as with any
        other action input.

        Raises:
            ConfigError: If any input is malformed.
        """
        try:
            method = MergeMethod(merge_method.strip())
        except ValueError:
            raise ConfigError(f"merge-method invalid: {merge_method}") from None

        actors = parse_name_list(allowed_actors)
        if not actors:
            raise ConfigError("allowed-actors is required")

        try:
            return cls(
                allowed_actors=actors,
                policy=UpdatePolicy(
                    allowed_update_types=parse_allowed_update_types(
                        allowed_update_types
                    ),
                    block_list=parse_name_list(package_block_list) or frozenset(),
                    allow_list=parse_name_list(package_allow_list),
                ),
                approve=_as_bool(approve),
                merge=_as_bool(merge),
                merge_method=method,
                use_auto_merge=_as_bool(use_auto_merge),
            )
        except ValidationError as exc:
            raise ConfigError(str(exc)) from exc


def _as_bool(value: str) -> bool:
    return value.strip().lower() == "true"
