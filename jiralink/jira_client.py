"""JIRA REST API wrapper with Bearer/Basic auth fallback."""

from __future__ import annotations

import base64
import logging
import os
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import quote, urlencode

import httpx
from dotenv import load_dotenv

DEFAULT_JIRA_BASE_URL = "https://issues.redhat.com"
JIRA_BASE_URL_ENV_VAR = "JIRA_BASE_URL"
JIRA_KEY_PREFIXES_ENV_VAR = "JIRA_KEY_PREFIXES"
DEFAULT_JIRA_KEY_PREFIXES = ("OCMUI", "OCM", "XCMSTRAT")
JIRA_ISSUE_KEY_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]*-\d+$")
JIRA_SPRINT_SEARCH_FIELDS = (
    "key,summary,description,status,priority,assignee,reporter,created,updated,issuetype,sprint"
)
JIRA_SPRINT_MAX_RESULTS = 100
BLOCKED_FIELD_ID = "customfield_12316543"
BLOCKED_REASON_FIELD_IDS = (
    "customfield_12316544",
    "customfield_12316542",
    "customfield_12316545",
    "customfield_12315950",
    "customfield_12310243",
    "customfield_12315951",
    "customfield_12310940",
    "customfield_12315942",
)
BLOCKED_STATUS_KEYWORDS = ("blocked", "impediment", "waiting")
TRUTHY_FIELD_VALUES = (True, "True", "true", "TRUE")

logger = logging.getLogger(__name__)


class JiraAuthError(RuntimeError):
    """Raised when required JIRA authentication is missing."""


class JiraInputError(ValueError):
    """Raised when a JIRA issue key or username is invalid."""


class JiraApiError(RuntimeError):
    """Raised when a JIRA API request fails."""

    def __init__(self, message: str, *, status_code: int, endpoint: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint


@dataclass(frozen=True, slots=True)
class JiraIssue:
    """Normalized JIRA issue fields."""

    key: str
    summary: str
    description: str
    issue_type: str
    status: str
    priority: str
    assignee: str
    reporter: str
    created: str | None
    labels: tuple[str, ...] = ()
    latest_comment: str | None = None
    is_blocked: bool = False
    blocked_reason: str | None = None


def validate_issue_key(issue_key: str) -> str:
    """Validate and upper-case a JIRA key such as ``OCMUI-123``."""
    normalized = issue_key.strip().upper()
    if not JIRA_ISSUE_KEY_PATTERN.fullmatch(normalized):
        raise JiraInputError(f"Invalid JIRA key '{issue_key}'. Expected format is PROJECT-123.")
    return normalized


def extract_issue_keys(
    texts: Iterable[str | None],
    prefixes: Sequence[str] = DEFAULT_JIRA_KEY_PREFIXES,
) -> list[str]:
    """Find ``PREFIX-123`` references in free text, upper-cased, first occurrence order."""
    if not prefixes:
        return []
    alternatives = "|".join(re.escape(prefix) for prefix in prefixes)
    pattern = re.compile(rf"\b(?:{alternatives})-\d+\b", re.IGNORECASE)

    keys: list[str] = []
    for text in texts:
        if not text:
            continue
        for match in pattern.finditer(text):
            key = match.group(0).upper()
            if key not in keys:
                keys.append(key)
    return keys


def get_jira_key_prefixes() -> tuple[str, ...]:
    """Project prefixes to look for in PR text, from ``JIRA_KEY_PREFIXES`` if set."""
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configured = os.getenv(JIRA_KEY_PREFIXES_ENV_VAR)
    if not configured:
        return DEFAULT_JIRA_KEY_PREFIXES
    return tuple(
        prefix.strip().rstrip("-").upper() for prefix in configured.split(",") if prefix.strip()
    )


def get_jira_base_url() -> str:
    """Return the configured JIRA base URL."""
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    return (os.getenv(JIRA_BASE_URL_ENV_VAR) or DEFAULT_JIRA_BASE_URL).rstrip("/")


def get_jira_token_with_source() -> tuple[str, str]:
    """Read JIRA token and return token value with environment source key."""
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    for env_var in ("JIRA_TOKEN", "JIRA_API_TOKEN"):
        token = os.getenv(env_var)
        if token:
            return token, env_var

    raise JiraAuthError("Missing JIRA token. Set JIRA_TOKEN (preferred) or JIRA_API_TOKEN.")


def issue_browse_url(base_url: str, issue_key: str) -> str:
    """Return the human-facing browse URL for an issue."""
    return f"{base_url.rstrip('/')}/browse/{issue_key}"


def _basic_authorization(token: str) -> str:
    encoded = base64.b64encode(f":{token}".encode()).decode("ascii")
    return f"Basic {encoded}"


def _error_message(response: httpx.Response, endpoint: str) -> str:
    """Prefer JIRA's own errorMessages/message text over the bare status."""
    message = f"JIRA API request failed with status {response.status_code} for '{endpoint}'."
    try:
        payload = response.json()
    except ValueError:
        return message
    if isinstance(payload, dict):
        error_messages = payload.get("errorMessages")
        if isinstance(error_messages, list) and error_messages:
            return f"{message} {error_messages[0]}"
        if isinstance(payload.get("message"), str):
            return f"{message} {payload['message']}"
    return message


def _request_json(client: httpx.Client, endpoint: str, *, token: str) -> dict[str, Any]:
    """GET a JIRA endpoint with Bearer auth, retrying once with Basic auth on 401."""
    logger.debug("GET %s", endpoint)
    response = client.get(endpoint, headers={"Authorization": f"Bearer {token}"})
    if response.status_code == 401:
        logger.debug("Bearer auth rejected for %s, retrying with Basic auth", endpoint)
        response = client.get(endpoint, headers={"Authorization": _basic_authorization(token)})

    # Redirects are not followed; JIRA sends them for SSO logins and moved hosts.
    if response.status_code >= 300:
        raise JiraApiError(
            _error_message(response, endpoint),
            status_code=response.status_code,
            endpoint=endpoint,
        )
    try:
        payload = response.json()
    except ValueError as error:
        raise JiraApiError(
            "Expected JSON in JIRA response.",
            status_code=response.status_code,
            endpoint=endpoint,
        ) from error
    if not isinstance(payload, dict):
        raise JiraApiError(
            "Expected JSON object in JIRA response.",
            status_code=500,
            endpoint=endpoint,
        )
    return payload


def _named(value: object, *, attribute: str, default: str) -> str:
    if isinstance(value, dict) and isinstance(value.get(attribute), str):
        return value[attribute]
    return default


def is_blocked_field_set(value: object) -> bool:
    """Interpret the Blocked custom field, which may be an option object or a scalar."""
    if isinstance(value, dict):
        return (
            value.get("value") in TRUTHY_FIELD_VALUES
            or value.get("id") == "true"
            or value.get("key") == "true"
            or value.get("name") == "True"
            or value.get("displayValue") == "True"
        )
    return value in TRUTHY_FIELD_VALUES


def is_blocked_status(status_name: str) -> bool:
    normalized = status_name.lower()
    return normalized == "on hold" or any(
        keyword in normalized for keyword in BLOCKED_STATUS_KEYWORDS
    )


def find_blocked_reason(fields: dict[str, Any]) -> str:
    """Find the most likely blocked reason among an issue's custom fields."""
    for field_id, value in fields.items():
        if field_id.startswith("customfield_") and isinstance(value, str) and "http" in value:
            return value
    for field_id in BLOCKED_REASON_FIELD_IDS:
        value = fields.get(field_id)
        if isinstance(value, str) and value.strip():
            return value
        if isinstance(value, dict) and isinstance(value.get("value"), str):
            return value["value"]
    return "Reason not specified"


def parse_issue(payload: dict[str, Any]) -> JiraIssue:
    """Normalize an issue payload from the JIRA REST API."""
    key = payload.get("key")
    fields = payload.get("fields")
    if not isinstance(key, str) or not isinstance(fields, dict):
        raise JiraApiError(
            "Expected 'key' and 'fields' in JIRA issue response.",
            status_code=500,
            endpoint="issue",
        )

    status = _named(fields.get("status"), attribute="name", default="Unknown")
    is_blocked = is_blocked_field_set(fields.get(BLOCKED_FIELD_ID)) or is_blocked_status(status)

    latest_comment = None
    comment_payload = fields.get("comment")
    if isinstance(comment_payload, dict):
        comments = comment_payload.get("comments") or []
        if comments and isinstance(comments[-1], dict):
            latest_comment = comments[-1].get("body")

    labels = fields.get("labels") or []
    return JiraIssue(
        key=key,
        summary=fields.get("summary") or "",
        description=fields.get("description") or "",
        issue_type=_named(fields.get("issuetype"), attribute="name", default="Unknown"),
        status=status,
        priority=_named(fields.get("priority"), attribute="name", default="Undefined"),
        assignee=_named(fields.get("assignee"), attribute="displayName", default="Unassigned"),
        reporter=_named(fields.get("reporter"), attribute="displayName", default="Unknown"),
        created=fields.get("created"),
        labels=tuple(label for label in labels if isinstance(label, str)),
        latest_comment=latest_comment,
        is_blocked=is_blocked,
        blocked_reason=find_blocked_reason(fields) if is_blocked else None,
    )


def fetch_issue(*, client: httpx.Client, token: str, issue_key: str) -> JiraIssue:
    """Fetch one issue with its changelog and comments."""
    normalized_key = validate_issue_key(issue_key)
    endpoint = f"/rest/api/2/issue/{quote(normalized_key)}?expand=changelog,comment"
    return parse_issue(_request_json(client, endpoint, token=token))


def fetch_myself(*, client: httpx.Client, token: str) -> str:
    """Return the display name of the token's owner."""
    payload = _request_json(client, "/rest/api/2/myself", token=token)
    name = payload.get("displayName") or payload.get("name")
    if not isinstance(name, str):
        raise JiraApiError(
            "Expected 'displayName' or 'name' in JIRA myself response.",
            status_code=500,
            endpoint="/rest/api/2/myself",
        )
    return name


def sprint_jql(username: str) -> str:
    """JQL selecting a user's issues in currently open sprints."""
    if not username.strip() or '"' in username:
        raise JiraInputError(f"Invalid JIRA username '{username}'.")
    return f'assignee = "{username.strip()}" AND Sprint in openSprints()'


def search_sprint_issues(
    *, client: httpx.Client, token: str, username: str
) -> tuple[JiraIssue, ...]:
    """Fetch issues assigned to ``username`` in open sprints."""
    params = urlencode(
        {
            "jql": sprint_jql(username),
            "maxResults": JIRA_SPRINT_MAX_RESULTS,
            "fields": JIRA_SPRINT_SEARCH_FIELDS,
            "expand": "changelog",
        }
    )
    endpoint = f"/rest/api/2/search?{params}"
    payload = _request_json(client, endpoint, token=token)
    issues = payload.get("issues")
    if not isinstance(issues, list):
        raise JiraApiError(
            "Expected 'issues' array in JIRA search response.",
            status_code=500,
            endpoint=endpoint,
        )
    return tuple(parse_issue(issue) for issue in issues if isinstance(issue, dict))


def build_jira_client(
    base_url: str | None = None,
    timeout_seconds: int = 20,
    *,
    trust_env: bool = True,
) -> httpx.Client:
    """Build a JIRA HTTP client; credentials are attached per request."""
    return httpx.Client(
        base_url=base_url or get_jira_base_url(),
        headers={"Accept": "application/json", "Content-Type": "application/json"},
        timeout=timeout_seconds,
        trust_env=trust_env,
    )
