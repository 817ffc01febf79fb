"""Integration tests for GitHub enrichment against live GitHub API."""

from __future__ import annotations

import os

import pytest
from jiralink.enrich import enrich_pull_request, hit_for_pull_request
from jiralink.github_client import (
    build_github_client,
    fetch_pull_request_details,
    fetch_pull_request_reviews,
    fetch_review_timeline_rows,
)


def _integration_target() -> tuple[str, int]:
    """Return repo/pr target configured for integration tests."""
    repo = os.getenv("GITHUB_TEST_REPO")
    pr_value = os.getenv("GITHUB_TEST_PR")
    if not repo or not pr_value:
        pytest.skip("Set GITHUB_TEST_REPO and GITHUB_TEST_PR to run GitHub integration tests.")
    try:
        pr_number = int(pr_value)
    except ValueError as error:
        raise pytest.SkipTest("GITHUB_TEST_PR must be an integer.") from error
    return repo, pr_number


def _has_github_token() -> bool:
    """Return whether a GitHub token is configured."""
    return bool(os.getenv("GITHUB_TOKEN") or os.getenv("GH_TOKEN"))


@pytest.mark.integration
def test_live_fetch_pull_request_review_inputs() -> None:
    if not _has_github_token():
        pytest.skip("Set GITHUB_TOKEN or GH_TOKEN for integration tests.")
    repo, pr_number = _integration_target()

    with build_github_client(timeout_seconds=20) as client:
        details = fetch_pull_request_details(
            client=client, repo_full_name=repo, pr_number=pr_number
        )
        reviews = fetch_pull_request_reviews(
            client=client, repo_full_name=repo, pr_number=pr_number
        )
        rows = fetch_review_timeline_rows(client=client, repo_full_name=repo, pr_number=pr_number)

    assert details.number == pr_number
    assert details.head_sha
    assert all(review.submitted_at for review in reviews)
    assert all(row["event"].startswith("review_") for row in rows)


@pytest.mark.integration
def test_live_enrich_pull_request_has_one_entry_per_reviewer() -> None:
    if not _has_github_token():
        pytest.skip("Set GITHUB_TOKEN or GH_TOKEN for integration tests.")
    repo, pr_number = _integration_target()

    with build_github_client(timeout_seconds=20) as client:
        report = enrich_pull_request(client=client, hit=hit_for_pull_request(repo, pr_number))

    identities = [(reviewer.is_team, reviewer.reviewer_id) for reviewer in report.reviewers]
    assert report.repository == repo
    assert report.enriched is True
    assert len(identities) == len(set(identities))
