"""Markdown rendering for lookup reports, PR listings and review queues."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from jiralink.schema import (
    CheckStatus,
    CheckSummary,
    JiraIssueReport,
    LookupReport,
    PullRequestIssuesReport,
    PullRequestReport,
    ReviewerStatus,
    ReviewQueueEntry,
    ReviewState,
)

REVIEW_STATE_LABELS: dict[ReviewState, str] = {
    ReviewState.REQUESTED: "Review Requested",
    ReviewState.APPROVED: "Approved",
    ReviewState.CHANGES_REQUESTED: "Requested Changes",
    ReviewState.COMMENTED: "Commented",
    ReviewState.DISMISSED: "Dismissed",
}
REVIEW_STATE_ICONS: dict[ReviewState, str] = {
    ReviewState.REQUESTED: "⏳",
    ReviewState.APPROVED: "✅",
    ReviewState.CHANGES_REQUESTED: "❌",
    ReviewState.COMMENTED: "💬",
    ReviewState.DISMISSED: "🚫",
}


def sort_reviewers(
    reviewers: Iterable[ReviewerStatus],
    current_user: str | None = None,
) -> list[ReviewerStatus]:
    """Order reviewers for display: current user, other users A-Z, then teams A-Z."""
    normalized_user = current_user.casefold() if current_user else None

    def sort_key(reviewer: ReviewerStatus) -> tuple[int, str]:
        if (
            normalized_user is not None
            and not reviewer.is_team
            and reviewer.reviewer_id.casefold() == normalized_user
        ):
            return (0, "")
        return (2 if reviewer.is_team else 1, reviewer.display_name.casefold())

    return sorted(reviewers, key=sort_key)


def render_reviewer(reviewer: ReviewerStatus, current_user: str | None = None) -> str:
    name = f"@{reviewer.display_name}" if reviewer.is_team else reviewer.display_name
    if (
        current_user
        and not reviewer.is_team
        and reviewer.reviewer_id.casefold() == current_user.casefold()
    ):
        name = f"{name} (You)"
    return (
        f"{REVIEW_STATE_ICONS[reviewer.status]} {name}: "
        f"{REVIEW_STATE_LABELS[reviewer.status]}"
    )


def render_checks(summary: CheckSummary) -> str | None:
    """Render the check badge text, or None when there is nothing to show."""
    if summary.status == CheckStatus.FAILURE:
        return f"✗ {summary.failed} failed"
    if summary.status == CheckStatus.PENDING:
        return f"⏳ {summary.pending} pending"
    if summary.status == CheckStatus.SUCCESS:
        return f"✓ {summary.passed} passed"
    return None


def render_pull_request(report: PullRequestReport, current_user: str | None = None) -> list[str]:
    """Render one pull request as a markdown list item with nested details."""
    lines = [
        f"- [{report.title}]({report.html_url}) `{report.key}` "
        f"({report.state.value.capitalize()}{', draft' if report.draft else ''}) "
        f"by {report.author}"
    ]

    badges = [badge for badge in (render_checks(report.checks),) if badge]
    if report.needs_rebase:
        badges.append("Needs Rebase")
    if badges:
        lines.append(f"  - {' | '.join(badges)}")

    reviewers = sort_reviewers(report.reviewers, current_user)
    if reviewers:
        lines.append("  - Reviewers:")
        lines.extend(f"    - {render_reviewer(reviewer, current_user)}" for reviewer in reviewers)

    lines.extend(f"  - ⚠️ {warning}" for warning in report.warnings)
    return lines


def render_issue(issue: JiraIssueReport) -> list[str]:
    lines = [
        f"# [{issue.key}]({issue.url}): {issue.summary}",
        "",
        f"- Type: {issue.issue_type}",
        f"- Status: {issue.status}",
        f"- Priority: {issue.priority}",
        f"- Assignee: {issue.assignee}",
        f"- Reporter: {issue.reporter}",
    ]
    if issue.created:
        # JIRA timestamps look like 2024-05-01T10:00:00.000+0000.
        lines.append(f"- Created: {issue.created[:10]}")
    if issue.labels:
        lines.append(f"- Labels: {', '.join(issue.labels)}")
    if issue.is_blocked:
        lines.append(f"- **Blocked**: {issue.blocked_reason or 'Reason not specified'}")
    lines.append("")
    lines.append("## Description")
    lines.append(issue.description or "No description provided")
    if issue.latest_comment:
        lines.append("")
        lines.append("## Latest comment")
        lines.append(issue.latest_comment)
    return lines


def render_lookup_report(report: LookupReport, current_user: str | None = None) -> str:
    """Render a ticket and its related pull requests."""
    lines: list[str] = []
    if report.issue is not None:
        lines.extend(render_issue(report.issue))
        lines.append("")
    for warning in report.warnings:
        lines.append(f"> ⚠️ {warning}")
    if report.warnings:
        lines.append("")

    lines.append("## Pull requests")
    if not report.pull_requests:
        lines.append("- No related PRs found.")
        return "\n".join(lines)
    for pull_request in report.pull_requests:
        lines.extend(render_pull_request(pull_request, current_user))
    return "\n".join(lines)


def render_review_queue(entries: Sequence[ReviewQueueEntry], current_user: str) -> str:
    lines = [f"# Reviews for {current_user}", ""]
    if not entries:
        lines.append("- No pull requests awaiting your review.")
        return "\n".join(lines)
    for entry in entries:
        lines.append(f"## {REVIEW_STATE_LABELS[entry.my_status]}: {entry.pull_request.key}")
        lines.extend(render_pull_request(entry.pull_request, current_user))
        lines.append("")
    return "\n".join(lines).rstrip()


def render_sprint_issues(issues: Sequence[JiraIssueReport], username: str) -> str:
    lines = [f"# Open sprint issues for {username}", ""]
    if not issues:
        lines.append("- No issues in open sprints.")
        return "\n".join(lines)
    lines.extend(render_issue_summary(issue) for issue in issues)
    return "\n".join(lines)


def render_issue_summary(issue: JiraIssueReport) -> str:
    blocked = " 🚧 Blocked" if issue.is_blocked else ""
    return (
        f"- [{issue.key}]({issue.url}) {issue.summary} "
        f"({issue.status}, {issue.priority}){blocked}"
    )


def render_pull_request_issues(
    report: PullRequestIssuesReport, current_user: str | None = None
) -> str:
    """Render a pull request followed by the JIRA tickets it references."""
    lines = render_pull_request(report.pull_request, current_user)
    lines.extend(["", "## Associated JIRA tickets"])
    fetched = {issue.key for issue in report.issues}
    lines.extend(render_issue_summary(issue) for issue in report.issues)
    lines.extend(f"- {key}" for key in report.issue_keys if key not in fetched)
    if not report.issue_keys:
        lines.append("- No JIRA references found.")
    lines.extend(f"> ⚠️ {warning}" for warning in report.warnings)
    return "\n".join(lines)


def render_authored_pull_requests(
    reports: Sequence[PullRequestReport], login: str, state: str
) -> str:
    lines = [f"# {state.capitalize()} pull requests by {login}", ""]
    if not reports:
        lines.append(f"- No {state} pull requests.")
        return "\n".join(lines)
    for report in reports:
        lines.extend(render_pull_request(report, login))
    return "\n".join(lines)
