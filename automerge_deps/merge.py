"""Merge orchestration: approve → enable auto-merge or poll → merge.

Takes the policy decision for a pull request and drives it to a terminal
result against a platform whose state changes out of band:

- Rejected: withdraw any auto-merge we registered earlier, then stop
- Accepted: optionally approve, then either register the platform's
  auto-merge (falling back to a single direct merge), or poll until the
  pull request is mergeable and merge it

Every merge is conditioned on the head revision the policy evaluated. The
live pull request is re-read before each attempt, because mergeability is
computed asynchronously and a push can land at any time.
"""

from __future__ import annotations

from pydantic import BaseModel

from . import console
from .clock import Clock, SystemClock
from .config import Settings
from .errors import ConfigError, GatewayError, MergeConflictError, MergeTimeoutError
from .gateway import ReviewGateway
from .models import Decision, PullRequestRef, Result, User

# Seconds to wait after each failed attempt; the last entry repeats.
RETRY_DELAYS: tuple[float, ...] = (1, 1, 1, 2, 3, 4, 5, 10, 20, 40, 60)
TIMEOUT = 6 * 60 * 60


class MergeAttemptState(BaseModel):
    """Progress of one polling run. Never persisted.

    Attributes:
        attempt: Zero-based index of the current attempt.
        started_at: Clock reading when orchestration started.
        outcome: Terminal result, once reached.
    """

    attempt: int = 0
    started_at: float
    outcome: Result | None = None


class MergeOrchestrator:
    """Drive one pull request from a policy decision to a final result.

    Args:
        gateway: Review platform access.
        pr: The pull request, with the head revision that was evaluated.
        settings: Approval and merge options.
        clock: Time source for retry delays and the deadline.
        retry_delays: Delay schedule between polling attempts.
        timeout: Seconds after which polling gives up.
    """

    def __init__(
        self,
        gateway: ReviewGateway,
        pr: PullRequestRef,
        settings: Settings,
        *,
        clock: Clock | None = None,
        retry_delays: tuple[float, ...] = RETRY_DELAYS,
        timeout: float = TIMEOUT,
    ) -> None:
        self.gateway = gateway
        self.pr = pr
        self.settings = settings
        self.clock = clock or SystemClock()
        self.retry_delays = retry_delays
        self.timeout = timeout
        self._viewer: User | None = None

    def viewer(self) -> User:
        """The identity the gateway acts as, looked up once per run."""
        if self._viewer is None:
            self._viewer = self.gateway.get_authenticated_user()
            console.debug(f"Authenticated user: {self._viewer.login}")
        return self._viewer

    def run(self, decision: Decision) -> Result:
        """Act on a policy decision and return the final result.

        Raises:
            ConfigError: Auto-merge was requested but the repository does
                not allow it.
            MergeTimeoutError: Polling hit the deadline.
        """
        started_at = self.clock.now()

        if decision is not Decision.ACCEPTED:
            self.disable_stale_auto_merge()
            return Result(decision.value)

        if self.settings.approve:
            console.step("Approving PR")
            self.approve()

        if not self.settings.merge:
            return Result.PR_MERGE_SKIPPED

        if self.settings.use_auto_merge:
            console.step("Enabling auto-merge")
            return self.enable_auto_merge()

        console.step("Merging when possible")
        return self.merge_when_possible(started_at)

    def disable_stale_auto_merge(self) -> None:
        """Withdraw an auto-merge we registered before the PR fell out of policy.

        Auto-merge registered by anyone else is left alone. Failures here are
        logged and do not change the rejection result.
        """
        try:
            request = self.gateway.get_auto_merge(self.pr.number)
            if request is None:
                return
            if request.enabled_by != self.viewer().login:
                method = request.merge_method or "unknown method"
                console.info(
                    f"Auto-merge ({method}) was enabled by {request.enabled_by}; "
                    "leaving it in place"
                )
                return
            console.warning("Disabling auto-merge as the PR no longer qualifies")
            self.gateway.disable_auto_merge(self.pr.number)
        except GatewayError as exc:
            console.warning(f"Could not check or disable auto-merge: {exc}")

    def approve(self) -> None:
        """Submit an approving review, replacing our own pending review."""
        user = self.viewer()
        try:
            reviews = self.gateway.list_reviews(self.pr.number)
        except GatewayError as exc:
            console.warning("Error checking for existing reviews. Assuming none")
            console.debug(str(exc))
            reviews = []

        existing = next(
            (r for r in reviews if r.user_id == user.id and r.state == "PENDING"),
            None,
        )
        if existing is not None:
            console.info("Found an existing pending review. Deleting it")
            self.gateway.delete_pending_review(self.pr.number, existing.id)

        review_id = self.gateway.create_review(self.pr.number, self.pr.head_sha)
        self.gateway.submit_review(self.pr.number, review_id, "APPROVE")
        console.info("Approved")

    def enable_auto_merge(self) -> Result:
        """Register the platform's auto-merge, or merge right away if refused."""
        if not self.gateway.is_auto_merge_allowed():
            raise ConfigError(
                "use-auto-merge is enabled but the repository does not allow auto-merge"
            )
        try:
            self.gateway.enable_auto_merge(
                self.pr.number, self.pr.head_sha, self.settings.merge_method
            )
        except GatewayError as exc:
            # Refused e.g. when the PR is already mergeable
            console.warning(f"Failed to enable auto-merge: {exc}. Merging directly")
            return self.merge_once()
        console.info("Auto-merge enabled")
        return Result.AUTO_MERGE_ENABLED

    def merge_once(self) -> Result:
        """Make a single merge attempt at the evaluated head revision."""
        try:
            self._merge()
        except MergeConflictError:
            console.error("Failed to merge. PR head changed")
            return Result.PR_HEAD_CHANGED
        except GatewayError as exc:
            console.error(f"Merge failed: {exc}")
            return Result.PR_MERGE_FAILED
        console.info("Merged")
        return Result.PR_MERGED

    def merge_when_possible(self, started_at: float | None = None) -> Result:
        """Poll the pull request until it can be merged, then merge it.

        Raises:
            MergeTimeoutError: No terminal result before the deadline.
        """
        state = MergeAttemptState(
            started_at=self.clock.now() if started_at is None else started_at
        )
        while True:
            console.info(f"Attempt: {state.attempt}")
            state.outcome = self._attempt()
            if state.outcome is not None:
                return state.outcome

            if self.clock.now() - state.started_at >= self.timeout:
                break

            delay = self.retry_delays[min(state.attempt, len(self.retry_delays) - 1)]
            console.info(f"Retry in {delay:g} seconds")
            self.clock.sleep(delay)
            state.attempt += 1

        console.error("Timed out")
        raise MergeTimeoutError(
            f"PR #{self.pr.number} was not merged within {self.timeout:g} seconds"
        )

    def _attempt(self) -> Result | None:
        """One polling attempt. None means try again later."""
        live = self.gateway.get_pull_request(self.pr.number)
        if live.state != "open":
            console.error("PR is not open")
            return Result.PR_NOT_OPEN
        if live.head_sha != self.pr.head_sha:
            console.error("PR head changed since it was evaluated")
            return Result.PR_HEAD_CHANGED
        if not live.mergeable:
            console.error("Not mergeable yet")
            return None

        try:
            console.info("Attempting merge")
            self._merge()
        except MergeConflictError:
            console.error("Failed to merge. PR head changed")
            return Result.PR_HEAD_CHANGED
        except GatewayError as exc:
            if exc.status is None:
                console.warning(f"Merge request got no response: {exc}")
            else:
                console.error(f"Merge failed: {exc}")
            return None
        console.info("Merged")
        return Result.PR_MERGED

    def _merge(self) -> None:
        self.gateway.merge(self.pr.number, self.pr.head_sha, self.settings.merge_method)
