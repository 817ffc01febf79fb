"""Per-pull-request enrichment: reviewers, checks and rebase state."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime

import httpx
from pydantic import ValidationError

from jiralink.checks import summarize_check_runs
from jiralink.github_client import (
    GitHubApiError,
    GitHubInputError,
    PullRequestDetails,
    PullRequestSearchHit,
    build_review_events,
    build_review_submissions,
    fetch_check_runs,
    fetch_pull_request_details,
    fetch_pull_request_reviews,
    fetch_review_timeline_rows,
)
from jiralink.reconcile import InvalidTimestamp, reconcile
from jiralink.schema import (
    CheckSummary,
    PullRequestReport,
    PullRequestState,
    ReviewQueueEntry,
    ReviewState,
)

DEFAULT_MAX_WORKERS = 8
REVIEW_QUEUE_PRIORITIES: dict[ReviewState, int] = {
    ReviewState.REQUESTED: 1,
    ReviewState.CHANGES_REQUESTED: 2,
    ReviewState.COMMENTED: 3,
    ReviewState.DISMISSED: 3,
    ReviewState.APPROVED: 4,
}
_OLDEST = datetime.min.replace(tzinfo=UTC)

logger = logging.getLogger(__name__)


def pull_request_state(state: str, *, merged: bool) -> PullRequestState:
    if state == "closed":
        return PullRequestState.MERGED if merged else PullRequestState.CLOSED
    return PullRequestState.OPEN


def needs_rebase(details: PullRequestDetails) -> bool:
    """Whether GitHub reports merge conflicts with the base branch."""
    return details.mergeable_state == "dirty" or details.mergeable is False


def hit_for_pull_request(repo_full_name: str, pr_number: int) -> PullRequestSearchHit:
    """Search-hit stand-in for a PR addressed directly by repository and number."""
    return PullRequestSearchHit(
        repository=repo_full_name,
        number=pr_number,
        title="",
        html_url=f"https://github.com/{repo_full_name}/pull/{pr_number}",
        state="open",
        author_login="",
        updated_at=None,
        merged_at=None,
    )


def unenriched_report(hit: PullRequestSearchHit, warning: str) -> PullRequestReport:
    """Report built from search data alone, used when enrichment fails."""
    return PullRequestReport(
        repository=hit.repository,
        number=hit.number,
        title=hit.title,
        html_url=hit.html_url,
        author=hit.author_login,
        state=pull_request_state(hit.state, merged=hit.merged_at is not None),
        updated_at=hit.updated_at,
        enriched=False,
        warnings=[warning],
    )


def enrich_pull_request(
    *,
    client: httpx.Client,
    hit: PullRequestSearchHit,
    now: datetime | None = None,
) -> PullRequestReport:
    """Fetch details, reviews, timeline and checks for one PR and reconcile reviewers.

    Details, reviews and timeline are independent reads and run concurrently;
    check runs need the head sha from the details. A check-run failure only
    drops the checks; any other failure propagates.
    """
    target = {"client": client, "repo_full_name": hit.repository, "pr_number": hit.number}
    with ThreadPoolExecutor(max_workers=3) as executor:
        details_future = executor.submit(fetch_pull_request_details, **target)
        reviews_future = executor.submit(fetch_pull_request_reviews, **target)
        timeline_future = executor.submit(fetch_review_timeline_rows, **target)
        details = details_future.result()
        reviews = reviews_future.result()
        timeline_rows = timeline_future.result()

    warnings: list[str] = []
    try:
        checks = summarize_check_runs(
            fetch_check_runs(
                client=client,
                repo_full_name=hit.repository,
                commit_sha=details.head_sha,
            )
        )
    except (GitHubApiError, GitHubInputError, httpx.HTTPError) as error:
        logger.warning("Check runs unavailable for %s#%d: %s", hit.repository, hit.number, error)
        checks = CheckSummary()
        warnings.append(f"Check runs unavailable: {error}")

    reviewers = reconcile(
        build_review_events(timeline_rows, reviews),
        build_review_submissions(reviews),
        details.requested_reviewers,
        details.requested_teams,
        now,
    )

    return PullRequestReport(
        repository=hit.repository,
        number=details.number,
        title=details.title,
        html_url=details.html_url,
        author=details.author_login,
        state=pull_request_state(details.state, merged=details.merged),
        draft=details.draft,
        updated_at=hit.updated_at,
        needs_rebase=needs_rebase(details),
        mergeable_state=details.mergeable_state,
        reviewers=reviewers,
        checks=checks,
        warnings=warnings,
    )


def enrich_pull_requests(
    *,
    client: httpx.Client,
    hits: Sequence[PullRequestSearchHit],
    now: datetime | None = None,
    max_workers: int = DEFAULT_MAX_WORKERS,
) -> list[PullRequestReport]:
    """Enrich every search hit in parallel, keeping search order.

    A PR that fails to enrich is returned unenriched instead of failing the
    whole listing.
    """
    reconciled_at = now or datetime.now(tz=UTC)

    def enrich_one(hit: PullRequestSearchHit) -> PullRequestReport:
        try:
            return enrich_pull_request(client=client, hit=hit, now=reconciled_at)
        except (
            GitHubApiError,
            GitHubInputError,
            httpx.HTTPError,
            InvalidTimestamp,
            ValidationError,
        ) as error:
            logger.warning("Enrichment failed for %s#%d: %s", hit.repository, hit.number, error)
            return unenriched_report(hit, f"Reviewer and check details unavailable: {error}")

    if not hits:
        return []
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(hits)))) as executor:
        return list(executor.map(enrich_one, hits))


def build_review_queue(
    reports: Iterable[PullRequestReport],
    login: str,
) -> list[ReviewQueueEntry]:
    """PRs where ``login`` is a reviewer, most urgent first.

    Authored PRs are excluded. Ties on priority go to the most recently
    updated PR.
    """
    normalized_login = login.casefold()
    entries: list[ReviewQueueEntry] = []
    for report in reports:
        if report.author.casefold() == normalized_login:
            continue
        my_status = next(
            (
                reviewer.status
                for reviewer in report.reviewers
                if not reviewer.is_team and reviewer.reviewer_id.casefold() == normalized_login
            ),
            None,
        )
        if my_status is None:
            continue
        entries.append(
            ReviewQueueEntry(
                pull_request=report,
                my_status=my_status,
                priority=REVIEW_QUEUE_PRIORITIES[my_status],
            )
        )

    entries.sort(key=lambda entry: entry.pull_request.updated_at or _OLDEST, reverse=True)
    entries.sort(key=lambda entry: entry.priority)
    return entries
