"""Logging setup and run telemetry helpers."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from jiralink.schema import PullRequestReport

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(*, verbose: bool = False) -> None:
    """Route library logs to stderr; DEBUG when verbose, otherwise WARNING."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
        force=True,
    )
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.INFO if verbose else logging.WARNING)


@dataclass(slots=True)
class EnrichmentTelemetry:
    """Summary of one enrichment run."""

    pull_requests: int = 0
    enriched: int = 0
    degraded: int = 0
    reviewers: int = 0
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def from_reports(cls, reports: Iterable[PullRequestReport]) -> EnrichmentTelemetry:
        telemetry = cls()
        for report in reports:
            telemetry.pull_requests += 1
            if report.enriched:
                telemetry.enriched += 1
            else:
                telemetry.degraded += 1
            telemetry.reviewers += len(report.reviewers)
            telemetry.warnings.extend(f"{report.key}: {warning}" for warning in report.warnings)
        return telemetry

    def describe(self) -> str:
        return (
            f"pull_requests={self.pull_requests} enriched={self.enriched} "
            f"degraded={self.degraded} reviewers={self.reviewers}"
        )
