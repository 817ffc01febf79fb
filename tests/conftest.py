"""Pytest configuration for jiralink.

Tests marked ``unit`` run against ``httpx.MockTransport`` and need no credentials.
Tests marked ``integration`` call the live GitHub and JIRA APIs and are skipped
unless ``--run-integration`` is passed or ``RUN_INTEGRATION_TESTS=1`` is set.
"""

from __future__ import annotations

import os

import pytest

RUN_INTEGRATION_ENV_VAR = "RUN_INTEGRATION_TESTS"


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run jiralink tests that call the live GitHub/JIRA APIs (needs tokens).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip live GitHub/JIRA tests unless they were asked for."""
    if config.getoption("--run-integration") or os.getenv(RUN_INTEGRATION_ENV_VAR) == "1":
        return

    skip_live = pytest.mark.skip(
        reason=(
            "Live GitHub/JIRA tests are off by default. "
            f"Use --run-integration or set {RUN_INTEGRATION_ENV_VAR}=1."
        )
    )
    for item in items:
        if item.get_closest_marker("integration") is not None:
            item.add_marker(skip_live)
