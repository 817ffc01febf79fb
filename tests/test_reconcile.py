"""Unit tests for review-state reconciliation."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from jiralink.reconcile import (
    InvalidTimestamp,
    ReviewerKind,
    ReviewerRef,
    ReviewEvent,
    ReviewEventKind,
    ReviewSubmission,
    parse_timestamp,
    reconcile,
    verdict_to_state,
)
from jiralink.schema import ReviewerStatus, ReviewState

T0 = "2024-05-01T09:00:00Z"
T1 = "2024-05-01T10:00:00Z"
T2 = "2024-05-01T11:00:00Z"
T3 = "2024-05-01T12:00:00Z"
NOW = datetime(2024, 5, 2, 8, 0, tzinfo=UTC)


def requested(actor: ReviewerRef, timestamp: str) -> ReviewEvent:
    return ReviewEvent(kind=ReviewEventKind.REQUESTED, timestamp=timestamp, actor=actor)


def removed(actor: ReviewerRef, timestamp: str) -> ReviewEvent:
    return ReviewEvent(kind=ReviewEventKind.REQUEST_REMOVED, timestamp=timestamp, actor=actor)


def dismissed(author: ReviewerRef, timestamp: str) -> ReviewEvent:
    return ReviewEvent(kind=ReviewEventKind.DISMISSED, timestamp=timestamp, actor=author)


def submitted(login: str, timestamp: str, verdict: str) -> ReviewSubmission:
    return ReviewSubmission(reviewer_login=login, timestamp=timestamp, verdict=verdict)


def by_identity(statuses: list[ReviewerStatus]) -> dict[tuple[bool, str], ReviewerStatus]:
    return {(status.is_team, status.reviewer_id): status for status in statuses}


@pytest.mark.unit
def test_requested_event_yields_requested_entry() -> None:
    result = reconcile([requested(ReviewerRef.user("carol"), T0)], [], [], [], NOW)

    assert len(result) == 1
    assert result[0].reviewer_id == "carol"
    assert result[0].status == ReviewState.REQUESTED
    assert result[0].last_updated == parse_timestamp(T0)


@pytest.mark.unit
def test_latest_submission_wins() -> None:
    result = reconcile(
        [],
        [submitted("alice", T2, "CHANGES_REQUESTED"), submitted("alice", T1, "APPROVED")],
        [],
        [],
        NOW,
    )

    assert len(result) == 1
    assert result[0].status == ReviewState.CHANGES_REQUESTED
    assert result[0].last_updated == parse_timestamp(T2)


@pytest.mark.unit
def test_dismissal_targets_review_author_and_outranks_older_approval() -> None:
    result = reconcile(
        [dismissed(ReviewerRef.user("bob"), T3)],
        [submitted("bob", T1, "APPROVED")],
        [],
        [],
        NOW,
    )

    statuses = by_identity(result)
    assert statuses[(False, "bob")].status == ReviewState.DISMISSED
    assert statuses[(False, "bob")].last_updated == parse_timestamp(T3)


@pytest.mark.unit
def test_request_removed_drops_reviewer_entirely() -> None:
    bob = ReviewerRef.user("bob")
    result = reconcile(
        [requested(bob, T0), removed(bob, T2)],
        [submitted("bob", T1, "APPROVED")],
        [],
        [],
        NOW,
    )

    assert result == []


@pytest.mark.unit
def test_verdict_before_removal_does_not_readd_reviewer() -> None:
    bob = ReviewerRef.user("bob")
    result = reconcile(
        [requested(bob, T0), removed(bob, T2)],
        [submitted("bob", T1, "APPROVED"), submitted("bob", T2, "COMMENTED")],
        [],
        [],
        NOW,
    )

    assert result == []


@pytest.mark.unit
def test_rerequest_after_removal_keeps_newer_verdicts() -> None:
    bob = ReviewerRef.user("bob")
    result = reconcile(
        [requested(bob, T0), removed(bob, T1), requested(bob, T2)],
        [submitted("bob", T3, "APPROVED")],
        [],
        [],
        NOW,
    )

    assert [(status.reviewer_id, status.status) for status in result] == [
        ("bob", ReviewState.APPROVED)
    ]


@pytest.mark.unit
def test_submission_after_removal_readds_reviewer() -> None:
    carol = ReviewerRef.user("carol")
    result = reconcile(
        [requested(carol, T0), removed(carol, T1)],
        [submitted("carol", T2, "COMMENTED")],
        [],
        [],
        NOW,
    )

    assert len(result) == 1
    assert result[0].status == ReviewState.COMMENTED


@pytest.mark.unit
def test_current_request_overrides_any_history() -> None:
    dave = ReviewerRef.user("dave")
    result = reconcile(
        [requested(dave, T0), dismissed(dave, T3)],
        [submitted("dave", T2, "APPROVED")],
        [dave],
        [],
        NOW,
    )

    assert len(result) == 1
    assert result[0].status == ReviewState.REQUESTED
    assert result[0].last_updated == NOW


@pytest.mark.unit
def test_current_request_without_history_yields_single_entry() -> None:
    result = reconcile([], [], [ReviewerRef.user("erin")], [], NOW)

    assert [(status.reviewer_id, status.status) for status in result] == [
        ("erin", ReviewState.REQUESTED)
    ]


@pytest.mark.unit
def test_team_and_user_with_same_name_never_merge() -> None:
    result = reconcile(
        [requested(ReviewerRef.team("frontend", "Frontend"), T0)],
        [submitted("frontend", T1, "APPROVED")],
        [],
        [ReviewerRef.team("frontend", "Frontend")],
        NOW,
    )

    statuses = by_identity(result)
    assert len(result) == 2
    assert statuses[(True, "frontend")].status == ReviewState.REQUESTED
    assert statuses[(True, "frontend")].display_name == "Frontend"
    assert statuses[(False, "frontend")].status == ReviewState.APPROVED


@pytest.mark.unit
def test_out_of_order_inputs_are_processed_chronologically() -> None:
    gina = ReviewerRef.user("gina")
    result = reconcile(
        [removed(gina, T2), requested(gina, T0)],
        [],
        [],
        [],
        NOW,
    )

    assert result == []


@pytest.mark.unit
def test_older_submission_does_not_clobber_newer_timeline_entry() -> None:
    hank = ReviewerRef.user("hank")
    result = reconcile(
        [requested(hank, T3)],
        [submitted("hank", T1, "APPROVED")],
        [],
        [],
        NOW,
    )

    assert result[0].status == ReviewState.REQUESTED


@pytest.mark.unit
def test_submission_with_equal_timestamp_keeps_timeline_entry() -> None:
    result = reconcile(
        [requested(ReviewerRef.user("ivy"), T1)],
        [submitted("ivy", T1, "APPROVED")],
        [],
        [],
        NOW,
    )

    assert result[0].status == ReviewState.REQUESTED


@pytest.mark.unit
def test_output_has_one_entry_per_identity() -> None:
    jo = ReviewerRef.user("jo")
    team = ReviewerRef.team("core")
    result = reconcile(
        [requested(jo, T0), requested(jo, T1), requested(team, T0), dismissed(jo, T2)],
        [submitted("jo", T3, "COMMENTED"), submitted("jo", T3, "APPROVED")],
        [jo],
        [team],
        NOW,
    )

    identities = [(status.is_team, status.reviewer_id) for status in result]
    assert len(identities) == len(set(identities)) == 2


@pytest.mark.unit
def test_event_without_actor_is_skipped() -> None:
    result = reconcile(
        [
            ReviewEvent(kind=ReviewEventKind.REQUESTED, timestamp=T0, actor=None),
            requested(ReviewerRef.user("kim"), T1),
        ],
        [ReviewSubmission(reviewer_login=None, timestamp=T2, verdict="APPROVED")],
        [],
        [],
        NOW,
    )

    assert [status.reviewer_id for status in result] == ["kim"]


@pytest.mark.unit
def test_unparseable_timestamp_rejects_reconciliation() -> None:
    with pytest.raises(InvalidTimestamp):
        reconcile([requested(ReviewerRef.user("lee"), "yesterday")], [], [], [], NOW)


@pytest.mark.unit
def test_empty_submission_timestamp_rejects_reconciliation() -> None:
    with pytest.raises(InvalidTimestamp):
        reconcile([], [submitted("lee", "", "APPROVED")], [], [], NOW)


@pytest.mark.unit
def test_unknown_verdict_defaults_to_commented() -> None:
    assert verdict_to_state("PENDING") == ReviewState.COMMENTED
    assert verdict_to_state("approved") == ReviewState.APPROVED
    assert verdict_to_state("DISMISSED") == ReviewState.DISMISSED


@pytest.mark.unit
def test_parse_timestamp_normalizes_to_utc() -> None:
    assert parse_timestamp("2024-05-01T12:00:00+02:00") == datetime(
        2024, 5, 1, 10, 0, tzinfo=UTC
    )
    assert parse_timestamp(datetime(2024, 5, 1, 10, 0)) == datetime(2024, 5, 1, 10, 0, tzinfo=UTC)


@pytest.mark.unit
def test_reviewer_ref_identity_ignores_display_name() -> None:
    assert ReviewerRef.team("core", "Core Team") == ReviewerRef.team("core")
    assert ReviewerRef.team("core").key == (ReviewerKind.TEAM, "core")
    assert ReviewerRef.user("core") != ReviewerRef.team("core")
