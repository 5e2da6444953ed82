"""Shared test fixtures."""

from __future__ import annotations

import pytest
from fakes import BASE_SHA, HEAD_SHA, FakeClock

from automerge_deps.config import Settings
from automerge_deps.errors import GatewayError
from automerge_deps.models import PullRequestRef


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def pr() -> PullRequestRef:
    return PullRequestRef(number=7, base_sha=BASE_SHA, head_sha=HEAD_SHA)


@pytest.fixture
def settings() -> Settings:
    """Settings allowing minor/patch devDependencies updates by dependabot."""
    return Settings.from_inputs(allowed_actors="dependabot[bot], actor2")


@pytest.fixture
def gateway_error() -> GatewayError:
    return GatewayError("Base branch was modified", status=405)


@pytest.fixture(autouse=True)
def _no_step_output(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep tests from writing to a real GITHUB_OUTPUT file."""
    monkeypatch.delenv("GITHUB_OUTPUT", raising=False)
    monkeypatch.delenv("RUNNER_DEBUG", raising=False)
