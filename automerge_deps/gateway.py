"""Access to the review platform.

``ReviewGateway`` lists the operations the runner and the merge
orchestrator need. ``GitHubGateway`` implements them against the GitHub
REST and GraphQL APIs with httpx. Rate-limit responses are retried here,
underneath the orchestrator's own retry loop, so callers never see them.
"""

from __future__ import annotations

import base64
import time
from collections.abc import Callable
from typing import Any, Protocol

import httpx

from . import console
from .clock import Clock, SystemClock
from .errors import GatewayError, MergeConflictError, UnexpectedResponseError
from .models import (
    AutoMergeRequest,
    ChangedFile,
    MergeMethod,
    PullRequestState,
    Review,
    User,
)

DEFAULT_API_URL = "https://api.github.com"
MAX_RATE_LIMIT_RETRIES = 5
DEFAULT_RATE_LIMIT_WAIT = 60.0

AUTO_MERGE_ALLOWED_QUERY = """
query AutoMergeAllowed($owner: String!, $name: String!) {
  repository(owner: $owner, name: $name) {
    autoMergeAllowed
  }
}
"""

AUTO_MERGE_REQUEST_QUERY = """
query AutoMergeRequest($owner: String!, $name: String!, $number: Int!) {
  repository(owner: $owner, name: $name) {
    pullRequest(number: $number) {
      id
      autoMergeRequest {
        mergeMethod
        enabledBy {
          login
        }
      }
    }
  }
}
"""

ENABLE_AUTO_MERGE_MUTATION = """
mutation EnableAutoMerge(
  $pullRequestId: ID!
  $mergeMethod: PullRequestMergeMethod!
  $expectedHeadOid: GitObjectID!
) {
  enablePullRequestAutoMerge(
    input: {
      pullRequestId: $pullRequestId
      mergeMethod: $mergeMethod
      expectedHeadOid: $expectedHeadOid
    }
  ) {
    clientMutationId
  }
}
"""

DISABLE_AUTO_MERGE_MUTATION = """
mutation DisableAutoMerge($pullRequestId: ID!) {
  disablePullRequestAutoMerge(input: {pullRequestId: $pullRequestId}) {
    clientMutationId
  }
}
"""


class ReviewGateway(Protocol):
    """Operations on one repository's pull requests."""

    def get_pull_request(self, number: int) -> PullRequestState: ...

    def compare_commits(self, base: str, head: str) -> list[ChangedFile]: ...

    def read_file(self, path: str, ref: str) -> str: ...

    def get_authenticated_user(self) -> User: ...

    def list_reviews(self, number: int) -> list[Review]: ...

    def delete_pending_review(self, number: int, review_id: int) -> None: ...

    def create_review(self, number: int, commit_id: str) -> int: ...

    def submit_review(self, number: int, review_id: int, event: str) -> None: ...

    def merge(self, number: int, sha: str, method: MergeMethod) -> None:
        """Merge only if the head is still ``sha``.

        Raises:
            MergeConflictError: The head moved on.
            GatewayError: Any other refusal.
        """
        ...

    def is_auto_merge_allowed(self) -> bool: ...

    def get_auto_merge(self, number: int) -> AutoMergeRequest | None: ...

    def enable_auto_merge(
        self, number: int, head_sha: str, method: MergeMethod
    ) -> None: ...

    def disable_auto_merge(self, number: int) -> None: ...


def _get(data: Any, *path: str | int) -> Any:
    """Walk nested response data, failing loudly on a missing key."""
    for key in path:
        try:
            data = data[key]
        except (KeyError, IndexError, TypeError):
            raise UnexpectedResponseError(
                f"Unexpected response shape: missing {'.'.join(map(str, path))}"
            ) from None
    return data


def _rate_limit_wait(response: httpx.Response, now: float) -> float | None:
    """Seconds to wait before retrying, or None if not rate limited."""
    headers = response.headers
    limited = response.status_code == 429 or (
        response.status_code == 403
        and (
            headers.get("x-ratelimit-remaining") == "0"
            or "rate limit" in response.text.lower()
        )
    )
    if not limited:
        return None

    if "retry-after" in headers:
        try:
            return max(float(headers["retry-after"]), 0.0)
        except ValueError:
            pass
    if "x-ratelimit-reset" in headers:
        try:
            return max(float(headers["x-ratelimit-reset"]) - now, 1.0)
        except ValueError:
            pass
    return DEFAULT_RATE_LIMIT_WAIT


class GitHubGateway:
    """ReviewGateway backed by the GitHub API.

    Args:
        token: Token sent as a bearer credential.
        owner: Repository owner.
        repo: Repository name.
        api_url: REST API root.
        graphql_url: GraphQL endpoint; derived from api_url if omitted.
        clock: Time source for rate-limit waits.
        epoch: Callable returning Unix time, for x-ratelimit-reset.
        transport: Optional httpx transport (used by tests).
    """

    def __init__(
        self,
        token: str,
        owner: str,
        repo: str,
        *,
        api_url: str = DEFAULT_API_URL,
        graphql_url: str | None = None,
        clock: Clock | None = None,
        epoch: Callable[[], float] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.owner = owner
        self.repo = repo
        self.graphql_url = graphql_url or f"{api_url.rstrip('/')}/graphql"
        self.clock = clock or SystemClock()
        self.epoch = epoch or time.time
        self.client = httpx.Client(
            base_url=api_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=30,
            transport=transport,
        )
        self._pr_node_ids: dict[int, str] = {}

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> GitHubGateway:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # Transport

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, waiting out rate limits, raising on other errors.

        Raises:
            MergeConflictError: HTTP 409.
            GatewayError: Any other non-2xx response, or no response at all
                (status None).
        """
        for attempt in range(MAX_RATE_LIMIT_RETRIES + 1):
            try:
                response = self.client.request(method, url, **kwargs)
            except httpx.TransportError as exc:
                raise GatewayError(f"{method} {url} failed: {exc}") from exc
            wait = _rate_limit_wait(response, self.epoch())
            if wait is None or attempt == MAX_RATE_LIMIT_RETRIES:
                break
            console.warning(f"Hit rate limit. Retrying in {wait:g} seconds")
            self.clock.sleep(wait)

        if response.is_success:
            return response
        try:
            message = response.json().get("message", response.text)
        except (ValueError, AttributeError):
            message = response.text
        error = MergeConflictError if response.status_code == 409 else GatewayError
        raise error(
            f"{method} {url} failed with {response.status_code}: {message}",
            status=response.status_code,
        )

    def _json(self, method: str, url: str, **kwargs: Any) -> Any:
        response = self._request(method, url, **kwargs)
        try:
            return response.json()
        except ValueError as exc:
            raise UnexpectedResponseError(f"{url} returned invalid JSON") from exc

    def _graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        payload = self._json(
            "POST", self.graphql_url, json={"query": query, "variables": variables}
        )
        if payload.get("errors"):
            messages = "; ".join(e.get("message", str(e)) for e in payload["errors"])
            raise GatewayError(f"GraphQL request failed: {messages}")
        return _get(payload, "data")

    def _repo_path(self, suffix: str) -> str:
        return f"/repos/{self.owner}/{self.repo}/{suffix}"

    # Pull requests

    def get_pull_request(self, number: int) -> PullRequestState:
        data = self._json("GET", self._repo_path(f"pulls/{number}"))
        console.debug(f"Pull request #{number}: {data}")
        self._pr_node_ids[number] = _get(data, "node_id")
        return PullRequestState(
            state=_get(data, "state"),
            mergeable=data.get("mergeable"),
            head_sha=_get(data, "head", "sha"),
        )

    def compare_commits(self, base: str, head: str) -> list[ChangedFile]:
        data = self._json("GET", self._repo_path(f"compare/{base}...{head}"))
        files = data.get("files")
        if files is None:
            raise UnexpectedResponseError("`files` missing in commit comparison")
        return [
            ChangedFile(filename=_get(f, "filename"), status=_get(f, "status"))
            for f in files
        ]

    def read_file(self, path: str, ref: str) -> str:
        data = self._json(
            "GET", self._repo_path(f"contents/{path}"), params={"ref": ref}
        )
        if (
            not isinstance(data, dict)
            or data.get("type") != "file"
            or data.get("encoding") != "base64"
        ):
            raise UnexpectedResponseError("Unexpected repo content response")
        return base64.b64decode(_get(data, "content")).decode("utf-8")

    # Reviews

    def get_authenticated_user(self) -> User:
        data = self._json("GET", "/user")
        return User(id=_get(data, "id"), login=_get(data, "login"))

    def list_reviews(self, number: int) -> list[Review]:
        data = self._json(
            "GET", self._repo_path(f"pulls/{number}/reviews"), params={"per_page": 100}
        )
        return [
            Review(
                id=_get(r, "id"),
                user_id=(r.get("user") or {}).get("id"),
                state=_get(r, "state"),
            )
            for r in data
        ]

    def delete_pending_review(self, number: int, review_id: int) -> None:
        self._request("DELETE", self._repo_path(f"pulls/{number}/reviews/{review_id}"))

    def create_review(self, number: int, commit_id: str) -> int:
        data = self._json(
            "POST",
            self._repo_path(f"pulls/{number}/reviews"),
            json={"commit_id": commit_id},
        )
        return _get(data, "id")

    def submit_review(self, number: int, review_id: int, event: str) -> None:
        self._request(
            "POST",
            self._repo_path(f"pulls/{number}/reviews/{review_id}/events"),
            json={"event": event},
        )

    # Merging

    def merge(self, number: int, sha: str, method: MergeMethod) -> None:
        self._request(
            "PUT",
            self._repo_path(f"pulls/{number}/merge"),
            json={"merge_method": method.value, "sha": sha},
        )

    def is_auto_merge_allowed(self) -> bool:
        data = self._graphql(
            AUTO_MERGE_ALLOWED_QUERY, {"owner": self.owner, "name": self.repo}
        )
        return bool(_get(data, "repository", "autoMergeAllowed"))

    def _auto_merge_state(self, number: int) -> dict[str, Any]:
        data = self._graphql(
            AUTO_MERGE_REQUEST_QUERY,
            {"owner": self.owner, "name": self.repo, "number": number},
        )
        pr = _get(data, "repository", "pullRequest")
        self._pr_node_ids[number] = _get(pr, "id")
        return pr

    def _node_id(self, number: int) -> str:
        if number not in self._pr_node_ids:
            self._auto_merge_state(number)
        return self._pr_node_ids[number]

    def get_auto_merge(self, number: int) -> AutoMergeRequest | None:
        request = self._auto_merge_state(number).get("autoMergeRequest")
        if not request:
            return None
        return AutoMergeRequest(
            enabled_by=(request.get("enabledBy") or {}).get("login"),
            merge_method=request.get("mergeMethod"),
        )

    def enable_auto_merge(self, number: int, head_sha: str, method: MergeMethod) -> None:
        self._graphql(
            ENABLE_AUTO_MERGE_MUTATION,
            {
                "pullRequestId": self._node_id(number),
                "mergeMethod": method.value.upper(),
                "expectedHeadOid": head_sha,
            },
        )

    def disable_auto_merge(self, number: int) -> None:
        self._graphql(
            DISABLE_AUTO_MERGE_MUTATION, {"pullRequestId": self._node_id(number)}
        )
