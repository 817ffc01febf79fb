"""Check-run rollup for a pull request head commit."""

from __future__ import annotations

from collections.abc import Iterable

from jiralink.github_client import CheckRun
from jiralink.schema import CheckStatus, CheckSummary

FAILED_CONCLUSIONS = frozenset({"failure", "cancelled", "timed_out"})
SKIPPED_CONCLUSIONS = frozenset({"skipped", "neutral"})


def summarize_check_runs(check_runs: Iterable[CheckRun]) -> CheckSummary:
    """Count check runs by outcome; any failure outranks pending, pending outranks success."""
    passed = failed = pending = skipped = 0
    for check_run in check_runs:
        if check_run.status != "completed":
            pending += 1
        elif check_run.conclusion == "success":
            passed += 1
        elif check_run.conclusion in FAILED_CONCLUSIONS:
            failed += 1
        elif check_run.conclusion in SKIPPED_CONCLUSIONS:
            skipped += 1

    if failed:
        status = CheckStatus.FAILURE
    elif pending:
        status = CheckStatus.PENDING
    elif passed:
        status = CheckStatus.SUCCESS
    else:
        status = CheckStatus.NO_CHECKS

    return CheckSummary(
        status=status,
        passed=passed,
        failed=failed,
        pending=pending,
        skipped=skipped,
    )
