"""Review-state reconciliation for a single pull request.

Three sources describe who reviews a pull request and where each reviewer
stands:

* timeline events (review requested, request removed, review dismissed),
* review submissions (approve, request changes, comment, dismissed),
* the live ``requested_reviewers``/``requested_teams`` lists.

``reconcile`` layers them in that order. Each layer may overwrite the entry a
previous layer produced for the same reviewer, so the result holds exactly
one status per reviewer identity.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from jiralink.schema import ReviewerStatus, ReviewState

logger = logging.getLogger(__name__)

VERDICT_STATES: dict[str, ReviewState] = {
    "approved": ReviewState.APPROVED,
    "changes_requested": ReviewState.CHANGES_REQUESTED,
    "commented": ReviewState.COMMENTED,
    "dismissed": ReviewState.DISMISSED,
}


class InvalidTimestamp(ValueError):
    """Raised when an event or submission timestamp cannot be parsed."""


class MissingActor(ValueError):
    """Raised when an event or submission names no reviewer."""


class ReviewerKind(StrEnum):
    """Kind of review identity."""

    USER = "user"
    TEAM = "team"


class ReviewEventKind(StrEnum):
    """Review-request lifecycle events read from the issue timeline."""

    REQUESTED = "requested"
    REQUEST_REMOVED = "request_removed"
    DISMISSED = "dismissed"


@dataclass(frozen=True, slots=True)
class ReviewerRef:
    """A user login or team slug; identity is ``(kind, name)``."""

    kind: ReviewerKind
    name: str
    display_name: str | None = field(default=None, compare=False)

    @classmethod
    def user(cls, login: str) -> ReviewerRef:
        return cls(kind=ReviewerKind.USER, name=login)

    @classmethod
    def team(cls, slug: str, display_name: str | None = None) -> ReviewerRef:
        return cls(kind=ReviewerKind.TEAM, name=slug, display_name=display_name)

    @property
    def key(self) -> tuple[ReviewerKind, str]:
        return (self.kind, self.name)

    @property
    def label(self) -> str:
        return self.display_name or self.name


@dataclass(frozen=True, slots=True)
class ReviewEvent:
    """Timeline event; for dismissals ``actor`` is the dismissed review's author."""

    kind: ReviewEventKind
    timestamp: datetime | str
    actor: ReviewerRef | None


@dataclass(frozen=True, slots=True)
class ReviewSubmission:
    """A submitted review verdict."""

    reviewer_login: str | None
    timestamp: datetime | str
    verdict: str


@dataclass(slots=True)
class _Entry:
    ref: ReviewerRef
    status: ReviewState
    last_updated: datetime


def parse_timestamp(value: datetime | str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = f"{text[:-1]}+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as error:
            raise InvalidTimestamp(f"Invalid timestamp '{value}'.") from error
    else:
        raise InvalidTimestamp(f"Invalid timestamp {value!r}.")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def verdict_to_state(verdict: str) -> ReviewState:
    """Map a GitHub review state (any case) to a reconciled status."""
    return VERDICT_STATES.get(verdict.strip().lower(), ReviewState.COMMENTED)


def _require_actor(event: ReviewEvent) -> ReviewerRef:
    if event.actor is None or not event.actor.name:
        raise MissingActor(f"Timeline event '{event.kind}' names no reviewer.")
    return event.actor


def _require_login(submission: ReviewSubmission) -> str:
    if not submission.reviewer_login:
        raise MissingActor("Review submission names no reviewer.")
    return submission.reviewer_login


def _apply_timeline(
    entries: dict[tuple[ReviewerKind, str], _Entry],
    events: list[tuple[datetime, ReviewEvent]],
) -> dict[tuple[ReviewerKind, str], datetime]:
    """Fold timeline events into ``entries``; return the last removal time per identity."""
    removals: dict[tuple[ReviewerKind, str], datetime] = {}
    for timestamp, event in events:
        try:
            actor = _require_actor(event)
        except MissingActor as error:
            logger.debug("Skipping timeline event: %s", error)
            continue

        if event.kind == ReviewEventKind.REQUEST_REMOVED:
            entries.pop(actor.key, None)
            removals[actor.key] = timestamp
        elif event.kind == ReviewEventKind.REQUESTED:
            entries[actor.key] = _Entry(actor, ReviewState.REQUESTED, timestamp)
        elif event.kind == ReviewEventKind.DISMISSED:
            entries[actor.key] = _Entry(actor, ReviewState.DISMISSED, timestamp)
    return removals


def _apply_submissions(
    entries: dict[tuple[ReviewerKind, str], _Entry],
    submissions: list[tuple[datetime, ReviewSubmission]],
    removals: dict[tuple[ReviewerKind, str], datetime],
) -> None:
    for timestamp, submission in submissions:
        try:
            login = _require_login(submission)
        except MissingActor as error:
            logger.debug("Skipping review submission: %s", error)
            continue

        ref = ReviewerRef.user(login)
        removed_at = removals.get(ref.key)
        # A verdict given before the request was removed does not bring the reviewer back.
        if removed_at is not None and timestamp <= removed_at:
            continue
        existing = entries.get(ref.key)
        # Strictly newer only: an equal timestamp leaves the timeline entry in place.
        if existing is not None and timestamp <= existing.last_updated:
            continue
        entries[ref.key] = _Entry(ref, verdict_to_state(submission.verdict), timestamp)


def reconcile(
    events: Iterable[ReviewEvent],
    submissions: Iterable[ReviewSubmission],
    currently_requested: Iterable[ReviewerRef],
    currently_requested_teams: Iterable[ReviewerRef],
    now: datetime | str | None = None,
) -> list[ReviewerStatus]:
    """Compute one authoritative status per reviewer and review team.

    Raises:
        InvalidTimestamp: if any event or submission timestamp (or ``now``)
            cannot be parsed. Nothing is returned for the pull request.
    """
    reconciled_at = parse_timestamp(now) if now is not None else datetime.now(tz=UTC)

    timed_events = [(parse_timestamp(event.timestamp), event) for event in events]
    timed_submissions = [
        (parse_timestamp(submission.timestamp), submission) for submission in submissions
    ]
    # sort() is stable, so same-instant items keep their input order.
    timed_events.sort(key=lambda item: item[0])
    timed_submissions.sort(key=lambda item: item[0])

    entries: dict[tuple[ReviewerKind, str], _Entry] = {}
    removals = _apply_timeline(entries, timed_events)
    _apply_submissions(entries, timed_submissions, removals)

    for login_ref in currently_requested:
        ref = ReviewerRef(ReviewerKind.USER, login_ref.name, login_ref.display_name)
        entries[ref.key] = _Entry(ref, ReviewState.REQUESTED, reconciled_at)
    for team_ref in currently_requested_teams:
        ref = ReviewerRef(ReviewerKind.TEAM, team_ref.name, team_ref.display_name)
        entries[ref.key] = _Entry(ref, ReviewState.REQUESTED, reconciled_at)

    return [
        ReviewerStatus(
            reviewer_id=entry.ref.name,
            display_name=entry.ref.label,
            is_team=entry.ref.kind == ReviewerKind.TEAM,
            status=entry.status,
            last_updated=entry.last_updated,
        )
        for entry in entries.values()
    ]
