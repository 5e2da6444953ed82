"""Run pipeline: gate → compare → read manifests → evaluate → approve/merge.

This module ties one workflow run together:
1. Ignore events that are not about a pull request
2. Ignore actors that are not allowed to trigger auto-merge
3. Check which files changed between base and head
4. Read package.json at both revisions and evaluate the policy
5. Report the decision as the `success` step output
6. Hand the decision to the merge orchestrator
"""

from __future__ import annotations

import json
from typing import Any

from . import console
from .actions import SUPPORTED_EVENTS, EventContext, write_output
from .clock import Clock
from .config import Settings
from .errors import UnexpectedResponseError
from .gateway import ReviewGateway
from .merge import MergeOrchestrator
from .models import Decision, PullRequestRef, Result
from .policy import ALLOWED_FILE_CHANGES, UpdatePolicy, check_changed_files, evaluate

MANIFEST_PATH = "package.json"

REJECTION_MESSAGES = {
    Decision.FILE_NOT_ALLOWED: "More changed than "
    + ", ".join(f'"{name}"' for name in sorted(ALLOWED_FILE_CHANGES)),
    Decision.UNEXPECTED_CHANGES: "Unexpected changes",
    Decision.UNEXPECTED_PROPERTY_CHANGE: "Unexpected property change",
    Decision.VERSION_CHANGE_NOT_ALLOWED: "One or more version changes are not allowed",
}


def read_manifest(gateway: ReviewGateway, ref: str) -> dict[str, Any]:
    """Read and parse package.json at a revision.

    Raises:
        UnexpectedResponseError: If the file is not a JSON object.
    """
    text = gateway.read_file(MANIFEST_PATH, ref)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise UnexpectedResponseError(f"{MANIFEST_PATH} at {ref} is not JSON") from exc
    if not isinstance(data, dict):
        raise UnexpectedResponseError(f"{MANIFEST_PATH} at {ref} is not an object")
    return data


def evaluate_pull_request(
    gateway: ReviewGateway, pr: PullRequestRef, policy: UpdatePolicy
) -> Decision:
    """Fetch what the pull request changes and run the eligibility policy.

    Manifests are only read once the changed-file check has passed.
    """
    console.step("Getting PR files")
    files = gateway.compare_commits(pr.base_sha, pr.head_sha)
    for f in files:
        console.debug(f"  {f.status}: {f.filename}")
    if not check_changed_files(files):
        console.error(REJECTION_MESSAGES[Decision.FILE_NOT_ALLOWED])
        return Decision.FILE_NOT_ALLOWED

    console.step(f"Retrieving {MANIFEST_PATH}")
    base = read_manifest(gateway, pr.base_sha)
    head = read_manifest(gateway, pr.head_sha)

    console.step("Checking diff")
    decision = evaluate(files, base, head, policy)
    if decision is not Decision.ACCEPTED:
        console.error(REJECTION_MESSAGES[decision])
    return decision


def run_automerge(
    settings: Settings,
    context: EventContext,
    gateway: ReviewGateway,
    *,
    clock: Clock | None = None,
) -> Result:
    """Execute one evaluation for the pull request in ``context``.

    Args:
        settings: Validated configuration.
        context: Triggering event, actor and payload.
        gateway: Review platform access. No calls are made through it
            for unsupported events or actors.
        clock: Time source for the merge orchestrator.

    Returns:
        The final result code.
    """
    console.step("Starting")

    if context.event_name not in SUPPORTED_EVENTS:
        console.error(f"Unsupported event name: {context.event_name}")
        write_output("success", "false")
        return Result.UNKNOWN_EVENT

    if context.actor not in settings.allowed_actors:
        console.error(f"Actor not allowed: {context.actor}")
        write_output("success", "false")
        return Result.ACTOR_NOT_ALLOWED

    pr = context.pull_request()
    decision = evaluate_pull_request(gateway, pr, settings.policy)
    write_output("success", "true" if decision is Decision.ACCEPTED else "false")

    result = MergeOrchestrator(gateway, pr, settings, clock=clock).run(decision)
    console.info(f"Finished: {result.value}")
    return result
