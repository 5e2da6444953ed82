"""CLI entry point for automerge-deps."""

from __future__ import annotations

import os

import click

from automerge_deps.actions import load_event_context
from automerge_deps.config import DEFAULT_ALLOWED_UPDATE_TYPES, Settings
from automerge_deps.errors import AutomergeError
from automerge_deps.gateway import DEFAULT_API_URL, GitHubGateway
from automerge_deps.runner import run_automerge


@click.group()
@click.version_option(package_name="automerge-deps")
def cli() -> None:
    """Auto-approve and auto-merge PRs that only update dependencies."""


@cli.command()
@click.option(
    "--repo-token",
    envvar=["INPUT_REPO_TOKEN", "GITHUB_TOKEN"],
    required=True,
    help="GitHub API token.",
)
@click.option(
    "--allowed-actors",
    envvar="INPUT_ALLOWED_ACTORS",
    required=True,
    help="Comma separated logins auto-merge is allowed for.",
)
@click.option(
    "--allowed-update-types",
    envvar="INPUT_ALLOWED_UPDATE_TYPES",
    default=DEFAULT_ALLOWED_UPDATE_TYPES,
    show_default=True,
    help="Comma separated category:bumpType entries, e.g. dependencies:patch.",
)
@click.option(
    "--approve",
    envvar="INPUT_APPROVE",
    default="true",
    show_default=True,
    help="Approve the PR if it qualifies.",
)
@click.option(
    "--merge",
    envvar="INPUT_MERGE",
    default="true",
    show_default=True,
    help="Merge the PR if it qualifies.",
)
@click.option(
    "--merge-method",
    envvar="INPUT_MERGE_METHOD",
    default="merge",
    show_default=True,
    help='One of "merge", "squash", "rebase".',
)
@click.option(
    "--use-auto-merge",
    envvar="INPUT_USE_AUTO_MERGE",
    default="false",
    show_default=True,
    help="Enable the platform's auto-merge instead of waiting to merge.",
)
@click.option(
    "--package-block-list",
    envvar="INPUT_PACKAGE_BLOCK_LIST",
    default="",
    help="Comma separated packages that are never auto-merged.",
)
@click.option(
    "--package-allow-list",
    envvar="INPUT_PACKAGE_ALLOW_LIST",
    default="",
    help="Comma separated packages that are the only ones auto-merged.",
)
def run(
    repo_token: str,
    allowed_actors: str,
    allowed_update_types: str,
    approve: str,
    merge: str,
    merge_method: str,
    use_auto_merge: str,
    package_block_list: str,
    package_allow_list: str,
) -> None:
    """Evaluate the triggering PR and approve/merge it if it qualifies."""
    try:
        settings = Settings.from_inputs(
            allowed_actors=allowed_actors,
            allowed_update_types=allowed_update_types,
            approve=approve,
            merge=merge,
            merge_method=merge_method,
            use_auto_merge=use_auto_merge,
            package_block_list=package_block_list,
            package_allow_list=package_allow_list,
        )
        context = load_event_context()
        with GitHubGateway(
            repo_token,
            context.owner,
            context.repo,
            api_url=os.environ.get("GITHUB_API_URL", DEFAULT_API_URL),
            graphql_url=os.environ.get("GITHUB_GRAPHQL_URL"),
        ) as gateway:
            result = run_automerge(settings, context, gateway)
    except AutomergeError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(f"Result: {result.value}")
