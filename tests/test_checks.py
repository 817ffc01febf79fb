"""Unit tests for check-run rollup."""

from __future__ import annotations

import pytest
from jiralink.checks import summarize_check_runs
from jiralink.github_client import CheckRun
from jiralink.schema import CheckStatus


def run(status: str = "completed", conclusion: str | None = "success") -> CheckRun:
    return CheckRun(name="build", status=status, conclusion=conclusion)


@pytest.mark.unit
def test_no_runs_reports_no_checks() -> None:
    summary = summarize_check_runs([])

    assert summary.status == CheckStatus.NO_CHECKS
    assert (summary.passed, summary.failed, summary.pending) == (0, 0, 0)


@pytest.mark.unit
def test_failure_outranks_pending_and_success() -> None:
    summary = summarize_check_runs(
        [run(), run(status="in_progress", conclusion=None), run(conclusion="timed_out")]
    )

    assert summary.status == CheckStatus.FAILURE
    assert (summary.passed, summary.failed, summary.pending) == (1, 1, 1)


@pytest.mark.unit
def test_pending_outranks_success() -> None:
    summary = summarize_check_runs([run(), run(status="queued", conclusion=None)])

    assert summary.status == CheckStatus.PENDING


@pytest.mark.unit
def test_skipped_runs_do_not_count_as_passed() -> None:
    summary = summarize_check_runs([run(conclusion="skipped"), run(conclusion="neutral")])

    assert summary.status == CheckStatus.NO_CHECKS
    assert summary.skipped == 2


@pytest.mark.unit
def test_cancelled_counts_as_failure() -> None:
    summary = summarize_check_runs([run(), run(conclusion="cancelled")])

    assert summary.status == CheckStatus.FAILURE
    assert summary.failed == 1
