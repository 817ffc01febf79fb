"""Schema contract for lookup and review-status outputs."""

from __future__ import annotations

import re
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

REPOSITORY_PATTERN = re.compile(r"^[^/\s]+/[^/\s]+$")
JIRA_KEY_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]*-\d+$")


class ReviewState(StrEnum):
    """Reconciled reviewer status."""

    REQUESTED = "requested"
    APPROVED = "approved"
    CHANGES_REQUESTED = "changes_requested"
    COMMENTED = "commented"
    DISMISSED = "dismissed"


class CheckStatus(StrEnum):
    """Rolled-up check-run status for a pull request head commit."""

    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"
    NO_CHECKS = "no_checks"


class PullRequestState(StrEnum):
    """Display state of a pull request."""

    OPEN = "open"
    CLOSED = "closed"
    MERGED = "merged"


class ReviewerStatus(BaseModel):
    """One reviewer's (or review team's) current status on a pull request."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    reviewer_id: str = Field(min_length=1)
    display_name: str = Field(min_length=1)
    is_team: bool = False
    status: ReviewState
    last_updated: datetime


class CheckSummary(BaseModel):
    """Counts of check runs by outcome."""

    model_config = ConfigDict(extra="forbid")

    status: CheckStatus = CheckStatus.NO_CHECKS
    passed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    pending: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)


class PullRequestReport(BaseModel):
    """Pull request with reconciled reviewers and check status."""

    model_config = ConfigDict(extra="forbid")

    repository: str
    number: int = Field(ge=1)
    title: str
    html_url: str
    author: str
    state: PullRequestState
    draft: bool = False
    updated_at: datetime | None = None
    needs_rebase: bool = False
    mergeable_state: str | None = None
    reviewers: list[ReviewerStatus] = Field(default_factory=list)
    checks: CheckSummary = Field(default_factory=CheckSummary)
    enriched: bool = True
    warnings: list[str] = Field(default_factory=list)

    @field_validator("repository")
    @classmethod
    def validate_repository(cls, value: str) -> str:
        """Validate owner/repo format."""
        if not REPOSITORY_PATTERN.fullmatch(value):
            raise ValueError("repository must be in owner/repo format.")
        return value

    @property
    def key(self) -> str:
        """Stable identifier for this pull request across listings."""
        return f"{self.repository}#{self.number}"


class JiraIssueReport(BaseModel):
    """Normalized JIRA ticket fields shown next to related pull requests."""

    model_config = ConfigDict(extra="forbid")

    key: str
    url: str
    summary: str
    description: str = ""
    issue_type: str = "Unknown"
    status: str = "Unknown"
    priority: str = "Undefined"
    assignee: str = "Unassigned"
    reporter: str = "Unknown"
    created: str | None = None
    labels: list[str] = Field(default_factory=list)
    latest_comment: str | None = None
    is_blocked: bool = False
    blocked_reason: str | None = None

    @field_validator("key")
    @classmethod
    def validate_key(cls, value: str) -> str:
        """Validate JIRA key format (PROJECT-123)."""
        if not JIRA_KEY_PATTERN.fullmatch(value):
            raise ValueError("key must match PROJECT-123 format.")
        return value


class LookupReport(BaseModel):
    """A JIRA ticket together with the pull requests that mention it."""

    model_config = ConfigDict(extra="forbid")

    schema_version: str = Field(default="v1", pattern=r"^v\d+$")
    issue: JiraIssueReport | None = None
    pull_requests: list[PullRequestReport] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class ReviewQueueEntry(BaseModel):
    """A pull request awaiting (or already given) the user's review."""

    model_config = ConfigDict(extra="forbid")

    pull_request: PullRequestReport
    my_status: ReviewState
    priority: int = Field(ge=1, le=4)


class PullRequestIssuesReport(BaseModel):
    """A pull request together with the JIRA tickets its text references."""

    model_config = ConfigDict(extra="forbid")

    schema_version: str = Field(default="v1", pattern=r"^v\d+$")
    pull_request: PullRequestReport
    issue_keys: list[str] = Field(default_factory=list)
    issues: list[JiraIssueReport] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
