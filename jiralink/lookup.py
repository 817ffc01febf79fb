"""JIRA tickets correlated with GitHub pull requests, in both directions."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

import httpx

from jiralink.enrich import (
    DEFAULT_MAX_WORKERS,
    enrich_pull_request,
    enrich_pull_requests,
    hit_for_pull_request,
)
from jiralink.github_client import (
    fetch_issue_comment_bodies,
    fetch_pull_request_details,
    jira_pull_request_query,
    parse_repo_full_name,
    search_pull_requests,
)
from jiralink.jira_client import (
    DEFAULT_JIRA_KEY_PREFIXES,
    JiraApiError,
    JiraInputError,
    JiraIssue,
    extract_issue_keys,
    fetch_issue,
    issue_browse_url,
    validate_issue_key,
)
from jiralink.schema import JiraIssueReport, LookupReport, PullRequestIssuesReport

logger = logging.getLogger(__name__)


def to_issue_report(issue: JiraIssue, *, base_url: str) -> JiraIssueReport:
    return JiraIssueReport(
        key=issue.key,
        url=issue_browse_url(base_url, issue.key),
        summary=issue.summary,
        description=issue.description,
        issue_type=issue.issue_type,
        status=issue.status,
        priority=issue.priority,
        assignee=issue.assignee,
        reporter=issue.reporter,
        created=issue.created,
        labels=list(issue.labels),
        latest_comment=issue.latest_comment,
        is_blocked=issue.is_blocked,
        blocked_reason=issue.blocked_reason,
    )


def lookup_issue(
    *,
    github_client: httpx.Client,
    issue_key: str,
    jira_client: httpx.Client | None = None,
    jira_token: str | None = None,
    now: datetime | None = None,
) -> LookupReport:
    """Fetch a JIRA ticket (when JIRA credentials are given) and its related PRs.

    A JIRA failure is reported as a warning and does not stop the PR search;
    GitHub search failures propagate.
    """
    normalized_key = validate_issue_key(issue_key)
    warnings: list[str] = []

    issue_report = None
    if jira_client is not None and jira_token is not None:
        try:
            issue = fetch_issue(client=jira_client, token=jira_token, issue_key=normalized_key)
        except (JiraApiError, httpx.HTTPError) as error:
            logger.warning("JIRA lookup failed for %s: %s", normalized_key, error)
            warnings.append(f"JIRA ticket unavailable: {error}")
        else:
            issue_report = to_issue_report(issue, base_url=str(jira_client.base_url))

    hits = search_pull_requests(client=github_client, query=jira_pull_request_query(normalized_key))
    logger.info("Found %d pull request(s) mentioning %s", len(hits), normalized_key)
    pull_requests = enrich_pull_requests(client=github_client, hits=hits, now=now)

    return LookupReport(issue=issue_report, pull_requests=pull_requests, warnings=warnings)


def pull_request_issue_keys(
    *,
    client: httpx.Client,
    repo_full_name: str,
    pr_number: int,
    prefixes: Sequence[str] = DEFAULT_JIRA_KEY_PREFIXES,
) -> list[str]:
    """JIRA keys referenced in a PR's title, description and conversation comments."""
    target = {"client": client, "repo_full_name": repo_full_name, "pr_number": pr_number}
    with ThreadPoolExecutor(max_workers=2) as executor:
        details_future = executor.submit(fetch_pull_request_details, **target)
        comments_future = executor.submit(fetch_issue_comment_bodies, **target)
        details = details_future.result()
        comments = comments_future.result()
    return extract_issue_keys([details.title, details.body, *comments], prefixes)


def fetch_issue_reports(
    *,
    jira_client: httpx.Client,
    jira_token: str,
    issue_keys: Sequence[str],
    max_workers: int = DEFAULT_MAX_WORKERS,
) -> tuple[list[JiraIssueReport], list[str]]:
    """Fetch several tickets in parallel; a ticket that fails becomes a warning."""
    base_url = str(jira_client.base_url)

    def fetch_one(issue_key: str) -> JiraIssueReport | str:
        try:
            issue = fetch_issue(client=jira_client, token=jira_token, issue_key=issue_key)
        except (JiraApiError, JiraInputError, httpx.HTTPError) as error:
            logger.warning("JIRA lookup failed for %s: %s", issue_key, error)
            return f"JIRA ticket {issue_key} unavailable: {error}"
        return to_issue_report(issue, base_url=base_url)

    if not issue_keys:
        return [], []
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(issue_keys)))) as executor:
        results = list(executor.map(fetch_one, issue_keys))

    issues = [result for result in results if isinstance(result, JiraIssueReport)]
    warnings = [result for result in results if isinstance(result, str)]
    return issues, warnings


def lookup_pull_request_issues(
    *,
    github_client: httpx.Client,
    repo_full_name: str,
    pr_number: int,
    jira_client: httpx.Client | None = None,
    jira_token: str | None = None,
    prefixes: Sequence[str] = DEFAULT_JIRA_KEY_PREFIXES,
    now: datetime | None = None,
) -> PullRequestIssuesReport:
    """Enrich one PR and fetch the JIRA tickets it references.

    Without JIRA credentials only the referenced keys are reported.
    """
    owner, repo = parse_repo_full_name(repo_full_name)
    normalized_repo = f"{owner}/{repo}"
    pull_request = enrich_pull_request(
        client=github_client,
        hit=hit_for_pull_request(normalized_repo, pr_number),
        now=now,
    )
    issue_keys = pull_request_issue_keys(
        client=github_client,
        repo_full_name=normalized_repo,
        pr_number=pr_number,
        prefixes=prefixes,
    )
    logger.info("Found %d JIRA reference(s) in %s", len(issue_keys), pull_request.key)

    issues: list[JiraIssueReport] = []
    warnings: list[str] = []
    if jira_client is not None and jira_token is not None:
        issues, warnings = fetch_issue_reports(
            jira_client=jira_client, jira_token=jira_token, issue_keys=issue_keys
        )

    return PullRequestIssuesReport(
        pull_request=pull_request,
        issue_keys=issue_keys,
        issues=issues,
        warnings=warnings,
    )
