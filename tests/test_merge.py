"""Tests for automerge_deps.merge."""

from __future__ import annotations

import httpx
import pytest
from fakes import HEAD_SHA, FakeClock, FakeGateway

from automerge_deps.config import Settings
from automerge_deps.errors import (
    ConfigError,
    GatewayError,
    MergeConflictError,
    MergeTimeoutError,
)
from automerge_deps.gateway import GitHubGateway
from automerge_deps.merge import RETRY_DELAYS, TIMEOUT, MergeOrchestrator
from automerge_deps.models import (
    AutoMergeRequest,
    Decision,
    MergeMethod,
    PullRequestRef,
    PullRequestState,
    Result,
    Review,
)

OPEN_MERGEABLE = PullRequestState(state="open", mergeable=True, head_sha=HEAD_SHA)
OPEN_PENDING = PullRequestState(state="open", mergeable=None, head_sha=HEAD_SHA)
OPEN_BLOCKED = PullRequestState(state="open", mergeable=False, head_sha=HEAD_SHA)


def _settings(**inputs: str) -> Settings:
    return Settings.from_inputs(allowed_actors="dependabot[bot]", **inputs)


def _orchestrator(
    gateway: FakeGateway, pr: PullRequestRef, clock: FakeClock, **inputs: str
) -> MergeOrchestrator:
    return MergeOrchestrator(gateway, pr, _settings(**inputs), clock=clock)


class TestMergeWhenPossible:
    """Polling and merging with an expected head revision."""

    def test_merges_immediately_when_mergeable(
        self, pr: PullRequestRef, clock: FakeClock
    ) -> None:
        gateway = FakeGateway()
        result = _orchestrator(gateway, pr, clock, approve="false").run(
            Decision.ACCEPTED
        )

        assert result is Result.PR_MERGED
        assert ("merge", 7, HEAD_SHA, MergeMethod.MERGE) in gateway.calls
        assert clock.sleeps == []

    def test_waits_for_mergeability(self, pr: PullRequestRef, clock: FakeClock) -> None:
        """Three not-mergeable polls cost the first three backoff delays."""
        gateway = FakeGateway(
            pr_states=[OPEN_PENDING, OPEN_BLOCKED, OPEN_PENDING, OPEN_MERGEABLE]
        )
        result = _orchestrator(gateway, pr, clock, approve="false").run(
            Decision.ACCEPTED
        )

        assert result is Result.PR_MERGED
        assert clock.sleeps == [1, 1, 1]
        assert sum(clock.sleeps) == 3
        assert gateway.names().count("get_pull_request") == 4
        assert gateway.names().count("merge") == 1

    def test_refetches_pr_on_every_attempt(
        self, pr: PullRequestRef, clock: FakeClock
    ) -> None:
        gateway = FakeGateway(pr_states=[OPEN_PENDING, OPEN_MERGEABLE])
        _orchestrator(gateway, pr, clock, approve="false").run(Decision.ACCEPTED)

        assert gateway.names() == [
            "get_pull_request",
            "get_pull_request",
            "merge",
        ]

    def test_conflict_stops_without_retry(
        self, pr: PullRequestRef, clock: FakeClock
    ) -> None:
        gateway = FakeGateway(
            merge_errors=[MergeConflictError("Head branch was modified", status=409)]
        )
        result = _orchestrator(gateway, pr, clock, approve="false").run(
            Decision.ACCEPTED
        )

        assert result is Result.PR_HEAD_CHANGED
        assert gateway.names().count("merge") == 1
        assert clock.sleeps == []

    def test_other_merge_failures_are_retried(
        self, pr: PullRequestRef, clock: FakeClock, gateway_error: GatewayError
    ) -> None:
        gateway = FakeGateway(merge_errors=[gateway_error, gateway_error, None])
        result = _orchestrator(gateway, pr, clock, approve="false").run(
            Decision.ACCEPTED
        )

        assert result is Result.PR_MERGED
        assert gateway.names().count("merge") == 3
        assert clock.sleeps == [1, 1]

    def test_network_failure_on_merge_is_retried(
        self,
        pr: PullRequestRef,
        clock: FakeClock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """A merge request that times out is retried on the next attempt."""
        merges: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "PUT":
                merges.append(request)
                if len(merges) == 1:
                    raise httpx.ReadTimeout("timed out", request=request)
                return httpx.Response(200, json={"merged": True})
            return httpx.Response(
                200,
                json={
                    "node_id": "PR_node",
                    "state": "open",
                    "mergeable": True,
                    "head": {"sha": HEAD_SHA},
                },
            )

        gateway = GitHubGateway(
            "token",
            "owner",
            "repo",
            clock=clock,
            transport=httpx.MockTransport(handler),
        )
        result = MergeOrchestrator(
            gateway, pr, _settings(approve="false"), clock=clock
        ).run(Decision.ACCEPTED)

        assert result is Result.PR_MERGED
        assert len(merges) == 2
        assert clock.sleeps == [1]
        assert "::warning::Merge request got no response" in capsys.readouterr().out

    def test_closed_pr(self, pr: PullRequestRef, clock: FakeClock) -> None:
        gateway = FakeGateway(
            pr_states=[PullRequestState(state="closed", mergeable=True, head_sha=HEAD_SHA)]
        )
        result = _orchestrator(gateway, pr, clock, approve="false").run(
            Decision.ACCEPTED
        )

        assert result is Result.PR_NOT_OPEN
        assert "merge" not in gateway.names()

    def test_new_push_since_evaluation(
        self, pr: PullRequestRef, clock: FakeClock
    ) -> None:
        gateway = FakeGateway(
            pr_states=[
                OPEN_PENDING,
                PullRequestState(state="open", mergeable=True, head_sha="newer-sha"),
            ]
        )
        result = _orchestrator(gateway, pr, clock, approve="false").run(
            Decision.ACCEPTED
        )

        assert result is Result.PR_HEAD_CHANGED
        assert "merge" not in gateway.names()

    def test_times_out(self, pr: PullRequestRef, clock: FakeClock) -> None:
        gateway = FakeGateway(pr_states=[OPEN_PENDING])
        orchestrator = _orchestrator(gateway, pr, clock, approve="false")

        with pytest.raises(MergeTimeoutError):
            orchestrator.run(Decision.ACCEPTED)

        assert clock.time >= TIMEOUT
        assert "merge" not in gateway.names()
        # The schedule is followed, then holds at its last delay
        assert tuple(clock.sleeps[: len(RETRY_DELAYS)]) == RETRY_DELAYS
        assert set(clock.sleeps[len(RETRY_DELAYS) :]) == {RETRY_DELAYS[-1]}

    def test_custom_deadline(self, pr: PullRequestRef, clock: FakeClock) -> None:
        gateway = FakeGateway(pr_states=[OPEN_PENDING])
        orchestrator = MergeOrchestrator(
            gateway,
            pr,
            _settings(approve="false"),
            clock=clock,
            retry_delays=(5,),
            timeout=12,
        )

        with pytest.raises(MergeTimeoutError):
            orchestrator.run(Decision.ACCEPTED)

        assert clock.sleeps == [5, 5, 5]

    def test_merge_method_is_used(self, pr: PullRequestRef, clock: FakeClock) -> None:
        gateway = FakeGateway()
        _orchestrator(
            gateway, pr, clock, approve="false", merge_method="rebase"
        ).run(Decision.ACCEPTED)

        assert ("merge", 7, HEAD_SHA, MergeMethod.REBASE) in gateway.calls


class TestAutoMerge:
    def test_enables_auto_merge(self, pr: PullRequestRef, clock: FakeClock) -> None:
        gateway = FakeGateway()
        result = _orchestrator(
            gateway, pr, clock, approve="false", use_auto_merge="true"
        ).run(Decision.ACCEPTED)

        assert result is Result.AUTO_MERGE_ENABLED
        assert ("enable_auto_merge", 7, HEAD_SHA, MergeMethod.MERGE) in gateway.calls
        assert "merge" not in gateway.names()

    def test_not_allowed_in_repository(
        self, pr: PullRequestRef, clock: FakeClock
    ) -> None:
        gateway = FakeGateway(auto_merge_allowed=False)
        orchestrator = _orchestrator(
            gateway, pr, clock, approve="false", use_auto_merge="true"
        )

        with pytest.raises(ConfigError, match="does not allow auto-merge"):
            orchestrator.run(Decision.ACCEPTED)
        assert "enable_auto_merge" not in gateway.names()

    def test_falls_back_to_direct_merge(
        self, pr: PullRequestRef, clock: FakeClock
    ) -> None:
        gateway = FakeGateway(
            enable_error=GatewayError("Pull request is in clean status")
        )
        result = _orchestrator(
            gateway, pr, clock, approve="false", use_auto_merge="true"
        ).run(Decision.ACCEPTED)

        assert result is Result.PR_MERGED
        assert ("merge", 7, HEAD_SHA, MergeMethod.MERGE) in gateway.calls
        assert clock.sleeps == []

    def test_fallback_merge_conflict(
        self, pr: PullRequestRef, clock: FakeClock
    ) -> None:
        gateway = FakeGateway(
            enable_error=GatewayError("expected head oid did not match"),
            merge_errors=[MergeConflictError("Head branch was modified", status=409)],
        )
        result = _orchestrator(
            gateway, pr, clock, approve="false", use_auto_merge="true"
        ).run(Decision.ACCEPTED)

        assert result is Result.PR_HEAD_CHANGED

    def test_fallback_merge_failure(
        self, pr: PullRequestRef, clock: FakeClock, gateway_error: GatewayError
    ) -> None:
        gateway = FakeGateway(
            enable_error=GatewayError("Pull request is in unstable status"),
            merge_errors=[gateway_error],
        )
        result = _orchestrator(
            gateway, pr, clock, approve="false", use_auto_merge="true"
        ).run(Decision.ACCEPTED)

        assert result is Result.PR_MERGE_FAILED
        assert gateway.names().count("merge") == 1


class TestRejected:
    """A rejected PR must not keep an auto-merge we registered earlier."""

    def test_disables_our_auto_merge(
        self, pr: PullRequestRef, clock: FakeClock
    ) -> None:
        gateway = FakeGateway(auto_merge=AutoMergeRequest(enabled_by="automerge-bot"))
        result = _orchestrator(gateway, pr, clock).run(
            Decision.VERSION_CHANGE_NOT_ALLOWED
        )

        assert result is Result.VERSION_CHANGE_NOT_ALLOWED
        assert ("disable_auto_merge", 7) in gateway.calls

    def test_leaves_other_users_auto_merge(
        self,
        pr: PullRequestRef,
        clock: FakeClock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        gateway = FakeGateway(
            auto_merge=AutoMergeRequest(enabled_by="octocat", merge_method="SQUASH")
        )
        result = _orchestrator(gateway, pr, clock).run(Decision.UNEXPECTED_CHANGES)

        assert result is Result.UNEXPECTED_CHANGES
        assert "disable_auto_merge" not in gateway.names()
        assert "Auto-merge (SQUASH) was enabled by octocat" in capsys.readouterr().out

    def test_no_auto_merge(self, pr: PullRequestRef, clock: FakeClock) -> None:
        gateway = FakeGateway()
        result = _orchestrator(gateway, pr, clock).run(Decision.FILE_NOT_ALLOWED)

        assert result is Result.FILE_NOT_ALLOWED
        assert gateway.names() == ["get_auto_merge"]

    def test_auto_merge_lookup_failure_keeps_rejection(
        self, pr: PullRequestRef, clock: FakeClock
    ) -> None:
        gateway = FakeGateway()
        gateway.auto_merge_error = GatewayError(
            "GraphQL request failed: Resource not accessible", status=403
        )
        result = _orchestrator(gateway, pr, clock).run(
            Decision.VERSION_CHANGE_NOT_ALLOWED
        )

        assert result is Result.VERSION_CHANGE_NOT_ALLOWED
        assert "disable_auto_merge" not in gateway.names()

    def test_disable_failure_keeps_rejection(
        self, pr: PullRequestRef, clock: FakeClock
    ) -> None:
        gateway = FakeGateway(auto_merge=AutoMergeRequest(enabled_by="automerge-bot"))
        gateway.disable_error = GatewayError("GraphQL request failed: boom")
        result = _orchestrator(gateway, pr, clock).run(Decision.UNEXPECTED_CHANGES)

        assert result is Result.UNEXPECTED_CHANGES
        assert ("disable_auto_merge", 7) in gateway.calls

    def test_no_approval_or_merge(self, pr: PullRequestRef, clock: FakeClock) -> None:
        gateway = FakeGateway()
        _orchestrator(gateway, pr, clock).run(Decision.UNEXPECTED_PROPERTY_CHANGE)

        assert "submit_review" not in gateway.names()
        assert "merge" not in gateway.names()


class TestApprove:
    def test_approves_head_revision(self, pr: PullRequestRef, clock: FakeClock) -> None:
        gateway = FakeGateway()
        result = _orchestrator(gateway, pr, clock, merge="false").run(
            Decision.ACCEPTED
        )

        assert result is Result.PR_MERGE_SKIPPED
        assert ("create_review", 7, HEAD_SHA) in gateway.calls
        assert ("submit_review", 7, 99, "APPROVE") in gateway.calls
        assert "delete_pending_review" not in gateway.names()

    def test_replaces_own_pending_review(
        self, pr: PullRequestRef, clock: FakeClock
    ) -> None:
        gateway = FakeGateway(
            reviews=[
                Review(id=10, user_id=2, state="PENDING"),
                Review(id=11, user_id=1, state="APPROVED"),
                Review(id=12, user_id=1, state="PENDING"),
            ]
        )
        _orchestrator(gateway, pr, clock, merge="false").run(Decision.ACCEPTED)

        assert ("delete_pending_review", 7, 12) in gateway.calls
        assert gateway.names().index("delete_pending_review") < gateway.names().index(
            "create_review"
        )

    def test_review_listing_failure_is_tolerated(
        self, pr: PullRequestRef, clock: FakeClock
    ) -> None:
        gateway = FakeGateway()
        gateway.review_error = GatewayError("Not Found", status=404)
        _orchestrator(gateway, pr, clock, merge="false").run(Decision.ACCEPTED)

        assert ("submit_review", 7, 99, "APPROVE") in gateway.calls

    def test_approval_disabled(self, pr: PullRequestRef, clock: FakeClock) -> None:
        gateway = FakeGateway()
        result = _orchestrator(gateway, pr, clock, approve="false", merge="false").run(
            Decision.ACCEPTED
        )

        assert result is Result.PR_MERGE_SKIPPED
        assert gateway.calls == []

    def test_approves_before_merging(
        self, pr: PullRequestRef, clock: FakeClock
    ) -> None:
        gateway = FakeGateway()
        _orchestrator(gateway, pr, clock).run(Decision.ACCEPTED)

        names = gateway.names()
        assert names.index("submit_review") < names.index("merge")
