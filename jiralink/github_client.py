"""GitHub API wrapper and auth helpers."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import quote, urlencode

import httpx
from dotenv import load_dotenv

from jiralink.reconcile import ReviewerRef, ReviewEvent, ReviewEventKind, ReviewSubmission

GITHUB_API_BASE_URL = "https://api.github.com"
GITHUB_API_VERSION = "2022-11-28"
GITHUB_JSON_ACCEPT = "application/vnd.github+json"
DEFAULT_PAGE_SIZE = 100
DEFAULT_SEARCH_PAGE_SIZE = 30
AUTHORED_PULL_REQUEST_STATES = ("open", "closed")
TIMELINE_EVENT_KINDS: dict[str, ReviewEventKind] = {
    "review_requested": ReviewEventKind.REQUESTED,
    "review_request_removed": ReviewEventKind.REQUEST_REMOVED,
    "review_dismissed": ReviewEventKind.DISMISSED,
}

logger = logging.getLogger(__name__)


class GitHubAuthError(RuntimeError):
    """Raised when required GitHub authentication is missing."""


class GitHubInputError(ValueError):
    """Raised when repository or PR input values are invalid."""


class GitHubApiError(RuntimeError):
    """Raised when a GitHub API request fails."""

    def __init__(self, message: str, *, status_code: int, endpoint: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint


class GitHubRateLimitError(GitHubApiError):
    """Raised when GitHub API rate limiting prevents request completion."""


@dataclass(frozen=True, slots=True)
class PullRequestSearchHit:
    """Pull request as returned by the issue search API."""

    repository: str
    number: int
    title: str
    html_url: str
    state: str
    author_login: str
    updated_at: str | None
    merged_at: str | None


@dataclass(frozen=True, slots=True)
class PullRequestDetails:
    """Pull request fields needed for reviewer and mergeability display."""

    number: int
    title: str
    state: str
    merged: bool
    draft: bool
    author_login: str
    html_url: str
    head_sha: str
    mergeable: bool | None
    mergeable_state: str | None
    requested_reviewers: tuple[ReviewerRef, ...] = ()
    requested_teams: tuple[ReviewerRef, ...] = ()
    body: str = ""


@dataclass(frozen=True, slots=True)
class PullRequestReview:
    """A submitted pull request review."""

    review_id: int
    author_login: str
    state: str
    submitted_at: str
    body: str = ""


@dataclass(frozen=True, slots=True)
class CheckRun:
    """One check run on a commit."""

    name: str
    status: str
    conclusion: str | None


def _ensure_mapping(value: object, *, context: str) -> dict[str, Any]:
    """Ensure a response fragment is a JSON object."""
    if not isinstance(value, dict):
        raise GitHubApiError(
            f"Expected JSON object for {context}.",
            status_code=500,
            endpoint=context,
        )
    return value


def _require_str(payload: dict[str, Any], *, key: str, endpoint: str) -> str:
    """Read a required string field from payload."""
    value = payload.get(key)
    if not isinstance(value, str):
        raise GitHubApiError(
            f"Expected string field '{key}' in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def _optional_str(payload: dict[str, Any], *, key: str, endpoint: str) -> str | None:
    """Read a string-or-null field from payload."""
    value = payload.get(key)
    if value is not None and not isinstance(value, str):
        raise GitHubApiError(
            f"Expected '{key}' to be a string or null in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def _require_bool(payload: dict[str, Any], *, key: str, endpoint: str) -> bool:
    """Read a required boolean field from payload."""
    value = payload.get(key)
    if not isinstance(value, bool):
        raise GitHubApiError(
            f"Expected boolean field '{key}' in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def _require_int(payload: dict[str, Any], *, key: str, endpoint: str) -> int:
    """Read a required integer field from payload."""
    value = payload.get(key)
    if not isinstance(value, int) or isinstance(value, bool):
        raise GitHubApiError(
            f"Expected integer field '{key}' in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def _require_object(payload: dict[str, Any], *, key: str, endpoint: str) -> dict[str, Any]:
    """Read a required object field from payload."""
    value = payload.get(key)
    if not isinstance(value, dict):
        raise GitHubApiError(
            f"Expected object field '{key}' in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def _require_object_list(
    payload: dict[str, Any], *, key: str, endpoint: str
) -> list[dict[str, Any]]:
    """Read a required array-of-objects field from payload."""
    value = payload.get(key)
    if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
        raise GitHubApiError(
            f"Expected array of objects in field '{key}' in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def _raise_http_error(response: httpx.Response, endpoint: str) -> None:
    """Raise a typed error for a non-success GitHub API response."""
    message = f"GitHub API request failed with status {response.status_code} for '{endpoint}'."
    rate_limited = response.status_code == 429 or (
        response.status_code == 403 and response.headers.get("X-RateLimit-Remaining") == "0"
    )
    if rate_limited:
        raise GitHubRateLimitError(
            message,
            status_code=response.status_code,
            endpoint=endpoint,
        )
    raise GitHubApiError(
        message,
        status_code=response.status_code,
        endpoint=endpoint,
    )


def _request(client: httpx.Client, endpoint: str) -> httpx.Response:
    """Perform a single GET request and raise typed errors on failure."""
    logger.debug("GET %s", endpoint)
    response = client.get(endpoint, headers={"Accept": GITHUB_JSON_ACCEPT})
    if response.status_code >= 400:
        _raise_http_error(response, endpoint)
    return response


def _request_json(client: httpx.Client, endpoint: str) -> dict[str, Any]:
    """Perform a JSON request against GitHub API."""
    response = _request(client, endpoint)
    return _ensure_mapping(response.json(), context=endpoint)


def _request_json_list(client: httpx.Client, endpoint: str) -> list[dict[str, Any]]:
    """Perform a JSON request that returns an array of objects."""
    response = _request(client, endpoint)
    payload = response.json()
    if not isinstance(payload, list):
        raise GitHubApiError(
            "Expected JSON array in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    rows: list[dict[str, Any]] = []
    for item in payload:
        if not isinstance(item, dict):
            raise GitHubApiError(
                "Expected all array items to be JSON objects in GitHub response.",
                status_code=500,
                endpoint=endpoint,
            )
        rows.append(item)
    return rows


def _request_paginated(
    client: httpx.Client,
    base_endpoint: str,
    *,
    per_page: int = DEFAULT_PAGE_SIZE,
) -> list[dict[str, Any]]:
    """Collect every page of an array endpoint."""
    rows: list[dict[str, Any]] = []
    page = 1
    while True:
        endpoint = f"{base_endpoint}?per_page={per_page}&page={page}"
        page_rows = _request_json_list(client, endpoint)
        rows.extend(page_rows)
        if len(page_rows) < per_page:
            break
        page += 1
    return rows


def jira_pull_request_query(jira_key: str) -> str:
    """Search query for pull requests mentioning a JIRA key."""
    return f"{jira_key} type:pr"


def involved_pull_request_query(login: str) -> str:
    """Search query for open pull requests a user is involved in."""
    return f"type:pr state:open involves:{login}"


def authored_pull_request_query(login: str, state: str = "open") -> str:
    """Search query for a user's own pull requests in one state."""
    if state not in AUTHORED_PULL_REQUEST_STATES:
        raise GitHubInputError(f"Invalid PR state '{state}'. Expected open or closed.")
    return f"author:{login} type:pr state:{state}"


def _repository_from_api_url(repository_url: str, *, endpoint: str) -> str:
    """Turn ``https://api.github.com/repos/owner/repo`` into ``owner/repo``."""
    parts = repository_url.rstrip("/").split("/")
    if len(parts) < 2 or not parts[-2] or not parts[-1]:
        raise GitHubApiError(
            f"Unexpected repository_url '{repository_url}' in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    return f"{parts[-2]}/{parts[-1]}"


def search_pull_requests(
    *,
    client: httpx.Client,
    query: str,
    per_page: int = DEFAULT_SEARCH_PAGE_SIZE,
) -> tuple[PullRequestSearchHit, ...]:
    """Search issues and keep pull requests, most recently updated first."""
    if not query.strip():
        raise GitHubInputError("Invalid search query ''. Expected a non-empty query.")
    params = urlencode(
        {"q": query, "sort": "updated", "order": "desc", "per_page": per_page}
    )
    endpoint = f"/search/issues?{params}"
    payload = _request_json(client, endpoint)
    items = _require_object_list(payload, key="items", endpoint=endpoint)

    hits: list[PullRequestSearchHit] = []
    for item in items:
        pull_request_payload = item.get("pull_request")
        if not isinstance(pull_request_payload, dict):
            continue
        user_payload = _require_object(item, key="user", endpoint=endpoint)
        hits.append(
            PullRequestSearchHit(
                repository=_repository_from_api_url(
                    _require_str(item, key="repository_url", endpoint=endpoint),
                    endpoint=endpoint,
                ),
                number=_require_int(item, key="number", endpoint=endpoint),
                title=_require_str(item, key="title", endpoint=endpoint),
                html_url=_require_str(item, key="html_url", endpoint=endpoint),
                state=_require_str(item, key="state", endpoint=endpoint),
                author_login=_require_str(user_payload, key="login", endpoint=endpoint),
                updated_at=_optional_str(item, key="updated_at", endpoint=endpoint),
                merged_at=_optional_str(pull_request_payload, key="merged_at", endpoint=endpoint),
            )
        )
    return tuple(hits)


def _parse_requested_reviewers(
    payload: dict[str, Any], *, endpoint: str
) -> tuple[tuple[ReviewerRef, ...], tuple[ReviewerRef, ...]]:
    """Read the live requested reviewer and team lists."""
    reviewers: list[ReviewerRef] = []
    for row in payload.get("requested_reviewers") or []:
        if isinstance(row, dict) and isinstance(row.get("login"), str):
            reviewers.append(ReviewerRef.user(row["login"]))
    teams: list[ReviewerRef] = []
    for row in payload.get("requested_teams") or []:
        if not isinstance(row, dict):
            continue
        slug = row.get("slug") or row.get("name")
        if isinstance(slug, str) and slug:
            teams.append(ReviewerRef.team(slug, _optional_str(row, key="name", endpoint=endpoint)))
    return tuple(reviewers), tuple(teams)


def fetch_pull_request_details(
    *,
    client: httpx.Client,
    repo_full_name: str,
    pr_number: int,
) -> PullRequestDetails:
    """Fetch pull request details including mergeability and live review requests."""
    owner, repo = parse_repo_full_name(repo_full_name)
    normalized_pr_number = validate_pr_number(pr_number)
    endpoint = f"/repos/{owner}/{repo}/pulls/{normalized_pr_number}"

    payload = _request_json(client, endpoint)
    user_payload = _require_object(payload, key="user", endpoint=endpoint)
    head_payload = _require_object(payload, key="head", endpoint=endpoint)

    mergeable = payload.get("mergeable")
    if mergeable is not None and not isinstance(mergeable, bool):
        raise GitHubApiError(
            "Expected 'mergeable' to be a boolean or null in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    requested_reviewers, requested_teams = _parse_requested_reviewers(payload, endpoint=endpoint)

    return PullRequestDetails(
        number=_require_int(payload, key="number", endpoint=endpoint),
        title=_require_str(payload, key="title", endpoint=endpoint),
        state=_require_str(payload, key="state", endpoint=endpoint),
        merged=bool(payload.get("merged")) or payload.get("merged_at") is not None,
        draft=_require_bool(payload, key="draft", endpoint=endpoint),
        author_login=_require_str(user_payload, key="login", endpoint=endpoint),
        html_url=_require_str(payload, key="html_url", endpoint=endpoint),
        head_sha=_require_str(head_payload, key="sha", endpoint=endpoint),
        mergeable=mergeable,
        mergeable_state=_optional_str(payload, key="mergeable_state", endpoint=endpoint),
        requested_reviewers=requested_reviewers,
        requested_teams=requested_teams,
        body=_optional_str(payload, key="body", endpoint=endpoint) or "",
    )


def fetch_pull_request_reviews(
    *,
    client: httpx.Client,
    repo_full_name: str,
    pr_number: int,
) -> tuple[PullRequestReview, ...]:
    """Fetch submitted reviews in API order; pending drafts are dropped."""
    owner, repo = parse_repo_full_name(repo_full_name)
    normalized_pr_number = validate_pr_number(pr_number)
    endpoint = f"/repos/{owner}/{repo}/pulls/{normalized_pr_number}/reviews"

    reviews: list[PullRequestReview] = []
    for row in _request_paginated(client, endpoint):
        submitted_at = _optional_str(row, key="submitted_at", endpoint=endpoint)
        user_payload = row.get("user")
        login = user_payload.get("login") if isinstance(user_payload, dict) else None
        if submitted_at is None or not isinstance(login, str):
            logger.debug("Dropping unsubmitted or authorless review %s", row.get("id"))
            continue
        reviews.append(
            PullRequestReview(
                review_id=_require_int(row, key="id", endpoint=endpoint),
                author_login=login,
                state=_require_str(row, key="state", endpoint=endpoint),
                submitted_at=submitted_at,
                body=_optional_str(row, key="body", endpoint=endpoint) or "",
            )
        )
    return tuple(reviews)


def build_review_submissions(
    reviews: Iterable[PullRequestReview],
) -> tuple[ReviewSubmission, ...]:
    """Convert reviews into reconciler submissions."""
    return tuple(
        ReviewSubmission(
            reviewer_login=review.author_login,
            timestamp=review.submitted_at,
            verdict=review.state,
        )
        for review in reviews
    )


def fetch_review_timeline_rows(
    *,
    client: httpx.Client,
    repo_full_name: str,
    pr_number: int,
) -> tuple[dict[str, Any], ...]:
    """Fetch issue timeline rows for review request, removal and dismissal events."""
    owner, repo = parse_repo_full_name(repo_full_name)
    normalized_pr_number = validate_pr_number(pr_number)
    endpoint = f"/repos/{owner}/{repo}/issues/{normalized_pr_number}/timeline"
    rows = _request_paginated(client, endpoint)
    return tuple(row for row in rows if row.get("event") in TIMELINE_EVENT_KINDS)


def fetch_issue_comment_bodies(
    *,
    client: httpx.Client,
    repo_full_name: str,
    pr_number: int,
) -> tuple[str, ...]:
    """Fetch the bodies of a pull request's conversation comments."""
    owner, repo = parse_repo_full_name(repo_full_name)
    normalized_pr_number = validate_pr_number(pr_number)
    endpoint = f"/repos/{owner}/{repo}/issues/{normalized_pr_number}/comments"
    bodies: list[str] = []
    for row in _request_paginated(client, endpoint):
        body = _optional_str(row, key="body", endpoint=endpoint)
        if body:
            bodies.append(body)
    return tuple(bodies)


def _timeline_actor(
    row: dict[str, Any],
    kind: ReviewEventKind,
    review_authors: dict[int, str],
) -> ReviewerRef | None:
    """Resolve the reviewer a timeline row refers to."""
    if kind == ReviewEventKind.DISMISSED:
        dismissed_review = row.get("dismissed_review")
        if not isinstance(dismissed_review, dict):
            return None
        author = review_authors.get(dismissed_review.get("review_id"))
        return ReviewerRef.user(author) if author else None

    reviewer = row.get("requested_reviewer")
    if isinstance(reviewer, dict) and isinstance(reviewer.get("login"), str):
        return ReviewerRef.user(reviewer["login"])
    team = row.get("requested_team")
    if isinstance(team, dict):
        slug = team.get("slug") or team.get("name")
        if isinstance(slug, str) and slug:
            name = team.get("name")
            return ReviewerRef.team(slug, name if isinstance(name, str) else None)
    return None


def build_review_events(
    rows: Iterable[dict[str, Any]],
    reviews: Iterable[PullRequestReview],
) -> tuple[ReviewEvent, ...]:
    """Convert timeline rows into reconciler events.

    Dismissal rows only carry the dismissed review's id, so the author is looked
    up among ``reviews``. Rows whose reviewer cannot be resolved keep
    ``actor=None`` and are skipped by the reconciler.
    """
    review_authors = {review.review_id: review.author_login for review in reviews}
    events: list[ReviewEvent] = []
    for row in rows:
        kind = TIMELINE_EVENT_KINDS.get(row.get("event", ""))
        if kind is None:
            continue
        events.append(
            ReviewEvent(
                kind=kind,
                timestamp=row.get("created_at") or "",
                actor=_timeline_actor(row, kind, review_authors),
            )
        )
    return tuple(events)


def fetch_check_runs(
    *,
    client: httpx.Client,
    repo_full_name: str,
    commit_sha: str,
) -> tuple[CheckRun, ...]:
    """Fetch check runs for one commit."""
    owner, repo = parse_repo_full_name(repo_full_name)
    if not commit_sha:
        raise GitHubInputError("Invalid commit sha ''. Expected a non-empty sha.")
    endpoint = (
        f"/repos/{owner}/{repo}/commits/{quote(commit_sha, safe='')}/check-runs"
        f"?per_page={DEFAULT_PAGE_SIZE}"
    )
    payload = _request_json(client, endpoint)
    rows = _require_object_list(payload, key="check_runs", endpoint=endpoint)
    return tuple(
        CheckRun(
            name=_require_str(row, key="name", endpoint=endpoint),
            status=_require_str(row, key="status", endpoint=endpoint),
            conclusion=_optional_str(row, key="conclusion", endpoint=endpoint),
        )
        for row in rows
    )


def parse_repo_full_name(repo_full_name: str) -> tuple[str, str]:
    """Parse and validate repository input in owner/repo format."""
    owner, separator, repo = repo_full_name.strip().partition("/")
    if not separator or not owner or not repo or "/" in repo:
        raise GitHubInputError(
            f"Invalid repo '{repo_full_name}'. Expected format is owner/repo."
        )
    return owner, repo


def validate_pr_number(pr_number: int) -> int:
    """Validate and normalize pull request number input."""
    if pr_number <= 0:
        raise GitHubInputError(f"Invalid PR number '{pr_number}'. Expected a positive integer.")
    return pr_number


def get_github_token() -> str:
    """Read GitHub token from environment and fail fast if missing."""
    token, _source = get_github_token_with_source()
    return token


def get_github_token_with_source() -> tuple[str, str]:
    """Read GitHub token and return token value with environment source key."""
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    github_token = os.getenv("GITHUB_TOKEN")
    if github_token:
        return github_token, "GITHUB_TOKEN"

    gh_token = os.getenv("GH_TOKEN")
    if gh_token:
        return gh_token, "GH_TOKEN"

    message = "Missing GitHub token. Set GITHUB_TOKEN (preferred) or GH_TOKEN."
    raise GitHubAuthError(message)


def fetch_authenticated_user_login(*, client: httpx.Client) -> str:
    """Fetch authenticated GitHub user login for token validation."""
    endpoint = "/user"
    payload = _request_json(client, endpoint)
    return _require_str(payload, key="login", endpoint=endpoint)


def build_github_client(
    timeout_seconds: int = 20,
    *,
    trust_env: bool = True,
) -> httpx.Client:
    """Build an authenticated GitHub HTTP client."""
    token = get_github_token()
    headers = {
        "Accept": GITHUB_JSON_ACCEPT,
        "Authorization": f"Bearer {token}",
        "X-GitHub-Api-Version": GITHUB_API_VERSION,
    }
    return httpx.Client(
        base_url=GITHUB_API_BASE_URL,
        headers=headers,
        timeout=timeout_seconds,
        trust_env=trust_env,
    )
