"""Typer CLI for JIRA ticket and pull request review lookups."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from enum import StrEnum
from typing import Annotated

import httpx
import typer
from pydantic import TypeAdapter

from jiralink.enrich import (
    build_review_queue,
    enrich_pull_request,
    enrich_pull_requests,
    hit_for_pull_request,
)
from jiralink.github_client import (
    GitHubApiError,
    GitHubAuthError,
    GitHubInputError,
    authored_pull_request_query,
    build_github_client,
    fetch_authenticated_user_login,
    fetch_pull_request_details,
    get_github_token_with_source,
    involved_pull_request_query,
    parse_repo_full_name,
    search_pull_requests,
    validate_pr_number,
)
from jiralink.jira_client import (
    JiraApiError,
    JiraAuthError,
    JiraInputError,
    build_jira_client,
    fetch_myself,
    get_jira_key_prefixes,
    get_jira_token_with_source,
    search_sprint_issues,
)
from jiralink.lookup import lookup_issue, lookup_pull_request_issues, to_issue_report
from jiralink.observability import EnrichmentTelemetry, configure_logging
from jiralink.output import (
    render_authored_pull_requests,
    render_lookup_report,
    render_pull_request,
    render_pull_request_issues,
    render_review_queue,
    render_sprint_issues,
)
from jiralink.reconcile import InvalidTimestamp
from jiralink.schema import JiraIssueReport, PullRequestReport, ReviewQueueEntry

GITHUB_USERNAME_ENV_VAR = "GITHUB_USERNAME"

app = typer.Typer(help="Look up JIRA tickets and the review state of related GitHub PRs.")
logger = logging.getLogger(__name__)


class OutputFormat(StrEnum):
    MD = "md"
    JSON = "json"


class AuthoredState(StrEnum):
    OPEN = "open"
    CLOSED = "closed"


@contextmanager
def _fail_on_errors(action: str) -> Iterator[None]:
    """Turn client errors into a one-line message and exit code 1."""
    try:
        yield
    except (GitHubApiError, JiraApiError) as error:
        typer.echo(
            f"{action} failed: status={error.status_code} endpoint={error.endpoint}.", err=True
        )
        raise typer.Exit(code=1) from error
    except (
        GitHubAuthError,
        GitHubInputError,
        JiraAuthError,
        JiraInputError,
        InvalidTimestamp,
    ) as error:
        typer.echo(f"{action} failed: {error}", err=True)
        raise typer.Exit(code=1) from error
    except httpx.HTTPError as error:
        typer.echo(f"{action} failed: network error ({error}).", err=True)
        raise typer.Exit(code=1) from error


def _log_telemetry(reports: Sequence[PullRequestReport]) -> None:
    telemetry = EnrichmentTelemetry.from_reports(reports)
    logger.info("Enrichment finished: %s", telemetry.describe())
    for warning in telemetry.warnings:
        logger.debug("Enrichment warning: %s", warning)


@app.command("lookup")
def lookup_command(
    issue_key: Annotated[str, typer.Argument(help="JIRA key, e.g. OCMUI-123.")],
    github_only: Annotated[
        bool, typer.Option(help="Skip the JIRA ticket and only list related PRs.")
    ] = False,
    user: Annotated[
        str | None, typer.Option(help="GitHub login to highlight among reviewers.")
    ] = None,
    output_format: Annotated[
        OutputFormat, typer.Option("--format", help="Output format: md|json.")
    ] = OutputFormat.MD,
    timeout_seconds: Annotated[int, typer.Option(help="HTTP timeout in seconds.")] = 20,
    verbose: Annotated[bool, typer.Option(help="Print progress and warnings.")] = False,
) -> None:
    """Show a JIRA ticket and the reviewer/check state of PRs that mention it."""
    configure_logging(verbose=verbose)

    jira_token: str | None = None
    if not github_only:
        try:
            jira_token, _source = get_jira_token_with_source()
        except JiraAuthError as error:
            typer.echo(f"Skipping JIRA ticket: {error}", err=True)

    with _fail_on_errors("Lookup"), build_github_client(timeout_seconds=timeout_seconds) as github:
        if jira_token is None:
            report = lookup_issue(github_client=github, issue_key=issue_key)
        else:
            with build_jira_client(timeout_seconds=timeout_seconds) as jira:
                report = lookup_issue(
                    github_client=github,
                    issue_key=issue_key,
                    jira_client=jira,
                    jira_token=jira_token,
                )

    _log_telemetry(report.pull_requests)
    if output_format == OutputFormat.JSON:
        typer.echo(report.model_dump_json(indent=2))
    else:
        typer.echo(render_lookup_report(report, current_user=user))


@app.command("pr")
def pr_command(
    repo: Annotated[str, typer.Option(help="Repository in owner/repo format.")],
    pr: Annotated[int, typer.Option(help="Pull request number.")],
    jira: Annotated[
        bool,
        typer.Option("--jira/--no-jira", help="Also list JIRA tickets referenced by the PR."),
    ] = False,
    user: Annotated[
        str | None, typer.Option(help="GitHub login to highlight among reviewers.")
    ] = None,
    output_format: Annotated[
        OutputFormat, typer.Option("--format", help="Output format: md|json.")
    ] = OutputFormat.MD,
    timeout_seconds: Annotated[int, typer.Option(help="HTTP timeout in seconds.")] = 20,
    verbose: Annotated[bool, typer.Option(help="Print progress and warnings.")] = False,
) -> None:
    """Show reconciled reviewer status, checks and rebase need for one PR."""
    configure_logging(verbose=verbose)

    with _fail_on_errors("PR lookup"):
        owner, repo_name = parse_repo_full_name(repo)
        repo_full_name = f"{owner}/{repo_name}"
        validate_pr_number(pr)
        if jira:
            _pr_with_issues_command(
                repo_full_name,
                pr,
                user=user,
                output_format=output_format,
                timeout_seconds=timeout_seconds,
            )
            return
        with build_github_client(timeout_seconds=timeout_seconds) as client:
            report = enrich_pull_request(
                client=client,
                hit=hit_for_pull_request(repo_full_name, pr),
            )

    if output_format == OutputFormat.JSON:
        typer.echo(report.model_dump_json(indent=2))
    else:
        typer.echo("\n".join(render_pull_request(report, current_user=user)))


def _pr_with_issues_command(
    repo_full_name: str,
    pr: int,
    *,
    user: str | None,
    output_format: OutputFormat,
    timeout_seconds: int,
) -> None:
    jira_token: str | None = None
    try:
        jira_token, _source = get_jira_token_with_source()
    except JiraAuthError as error:
        typer.echo(f"Skipping JIRA tickets: {error}", err=True)

    with build_github_client(timeout_seconds=timeout_seconds) as github:
        if jira_token is None:
            report = lookup_pull_request_issues(
                github_client=github,
                repo_full_name=repo_full_name,
                pr_number=pr,
                prefixes=get_jira_key_prefixes(),
            )
        else:
            with build_jira_client(timeout_seconds=timeout_seconds) as jira:
                report = lookup_pull_request_issues(
                    github_client=github,
                    repo_full_name=repo_full_name,
                    pr_number=pr,
                    jira_client=jira,
                    jira_token=jira_token,
                    prefixes=get_jira_key_prefixes(),
                )

    if output_format == OutputFormat.JSON:
        typer.echo(report.model_dump_json(indent=2))
    else:
        typer.echo(render_pull_request_issues(report, current_user=user))


def _resolve_login(client: httpx.Client, user: str | None) -> str:
    """Explicit --user, then GITHUB_USERNAME, then the token's owner."""
    return user or os.getenv(GITHUB_USERNAME_ENV_VAR) or fetch_authenticated_user_login(
        client=client
    )


@app.command("mine")
def mine_command(
    user: Annotated[
        str | None,
        typer.Option(help="GitHub login; defaults to GITHUB_USERNAME or the token's owner."),
    ] = None,
    state: Annotated[
        AuthoredState, typer.Option(help="Pull request state: open|closed.")
    ] = AuthoredState.OPEN,
    limit: Annotated[int, typer.Option(min=1, max=100, help="Maximum PRs to list.")] = 50,
    output_format: Annotated[
        OutputFormat, typer.Option("--format", help="Output format: md|json.")
    ] = OutputFormat.MD,
    timeout_seconds: Annotated[int, typer.Option(help="HTTP timeout in seconds.")] = 20,
    verbose: Annotated[bool, typer.Option(help="Print progress and warnings.")] = False,
) -> None:
    """List your own PRs with reviewer status, checks and rebase need."""
    configure_logging(verbose=verbose)

    with _fail_on_errors("My PRs"), build_github_client(timeout_seconds=timeout_seconds) as client:
        login = _resolve_login(client, user)
        hits = search_pull_requests(
            client=client,
            query=authored_pull_request_query(login, state.value),
            per_page=limit,
        )
        reports = enrich_pull_requests(client=client, hits=hits)

    _log_telemetry(reports)
    if output_format == OutputFormat.JSON:
        typer.echo(TypeAdapter(list[PullRequestReport]).dump_json(reports, indent=2).decode())
    else:
        typer.echo(render_authored_pull_requests(reports, login, state.value))


@app.command("reviews")
def reviews_command(
    user: Annotated[
        str | None,
        typer.Option(help="GitHub login; defaults to GITHUB_USERNAME or the token's owner."),
    ] = None,
    output_format: Annotated[
        OutputFormat, typer.Option("--format", help="Output format: md|json.")
    ] = OutputFormat.MD,
    timeout_seconds: Annotated[int, typer.Option(help="HTTP timeout in seconds.")] = 20,
    verbose: Annotated[bool, typer.Option(help="Print progress and warnings.")] = False,
) -> None:
    """List open PRs where you are a reviewer, most urgent first."""
    configure_logging(verbose=verbose)

    with _fail_on_errors("Reviews"), build_github_client(timeout_seconds=timeout_seconds) as client:
        login = _resolve_login(client, user)
        hits = search_pull_requests(
            client=client,
            query=involved_pull_request_query(login),
            per_page=100,
        )
        candidates = [hit for hit in hits if hit.author_login.casefold() != login.casefold()]
        reports = enrich_pull_requests(client=client, hits=candidates)

    _log_telemetry(reports)
    queue = build_review_queue(reports, login)
    if output_format == OutputFormat.JSON:
        typer.echo(TypeAdapter(list[ReviewQueueEntry]).dump_json(queue, indent=2).decode())
    else:
        typer.echo(render_review_queue(queue, login))


@app.command("sprint")
def sprint_command(
    username: Annotated[str, typer.Option(help="JIRA username of the assignee.")],
    output_format: Annotated[
        OutputFormat, typer.Option("--format", help="Output format: md|json.")
    ] = OutputFormat.MD,
    timeout_seconds: Annotated[int, typer.Option(help="HTTP timeout in seconds.")] = 20,
    verbose: Annotated[bool, typer.Option(help="Print progress and warnings.")] = False,
) -> None:
    """List a user's JIRA issues in open sprints."""
    configure_logging(verbose=verbose)

    with _fail_on_errors("Sprint lookup"):
        token, _source = get_jira_token_with_source()
        with build_jira_client(timeout_seconds=timeout_seconds) as client:
            issues = search_sprint_issues(client=client, token=token, username=username)
            base_url = str(client.base_url)

    reports = [to_issue_report(issue, base_url=base_url) for issue in issues]
    if output_format == OutputFormat.JSON:
        typer.echo(TypeAdapter(list[JiraIssueReport]).dump_json(reports, indent=2).decode())
    else:
        typer.echo(render_sprint_issues(reports, username))


@app.command("auth-check")
def auth_check_command(
    repo: Annotated[
        str | None,
        typer.Option(help="Optional repository in owner/repo format for permission check."),
    ] = None,
    pr: Annotated[
        int | None,
        typer.Option(help="Optional pull request number used with --repo for permission check."),
    ] = None,
    jira: Annotated[
        bool,
        typer.Option("--jira/--no-jira", help="Also validate the JIRA token."),
    ] = True,
    timeout_seconds: Annotated[
        int, typer.Option(help="API timeout in seconds for the validation calls.")
    ] = 20,
    trust_env: Annotated[
        bool,
        typer.Option(
            "--trust-env/--no-trust-env",
            help="Use proxy/SSL environment variables from the current shell.",
        ),
    ] = True,
) -> None:
    """Validate GitHub (and JIRA) token setup and optional PR read access."""
    if (repo is None) != (pr is None):
        raise typer.BadParameter("Provide both --repo and --pr together, or neither.")

    try:
        _token, token_source = get_github_token_with_source()
    except GitHubAuthError as error:
        typer.echo(f"GitHub auth check failed: {error}")
        raise typer.Exit(code=1) from error

    typer.echo(f"Token detected in {token_source}.")

    try:
        with build_github_client(timeout_seconds=timeout_seconds, trust_env=trust_env) as client:
            login = fetch_authenticated_user_login(client=client)
            typer.echo(f"Authenticated as GitHub user '{login}'.")

            if repo is not None and pr is not None:
                fetch_pull_request_details(
                    client=client,
                    repo_full_name=repo,
                    pr_number=pr,
                )
                typer.echo(f"Repository/PR access check passed for {repo}#{pr}.")
    except GitHubApiError as error:
        typer.echo(
            "GitHub auth check failed: "
            f"status={error.status_code} endpoint={error.endpoint}."
        )
        raise typer.Exit(code=1) from error
    except httpx.HTTPError as error:
        typer.echo(f"GitHub auth check failed: network error ({error}).")
        raise typer.Exit(code=1) from error

    typer.echo("GitHub token setup is valid.")

    if not jira:
        return

    try:
        jira_token, jira_source = get_jira_token_with_source()
        typer.echo(f"JIRA token detected in {jira_source}.")
        with build_jira_client(timeout_seconds=timeout_seconds, trust_env=trust_env) as client:
            name = fetch_myself(client=client, token=jira_token)
    except (JiraAuthError, JiraApiError) as error:
        typer.echo(f"JIRA auth check failed: {error}")
        raise typer.Exit(code=1) from error
    except httpx.HTTPError as error:
        typer.echo(f"JIRA auth check failed: network error ({error}).")
        raise typer.Exit(code=1) from error

    typer.echo(f"Authenticated as JIRA user '{name}'.")
    typer.echo("JIRA token setup is valid.")
