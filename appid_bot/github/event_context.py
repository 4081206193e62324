"""Pull request context from the workflow's event payload, plus run gating."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from appid_bot.github.pull_requests import PullRequest

logger = logging.getLogger(__name__)

PREVIEW_URL_RE = re.compile(r"https://[^\s)\]>\"'`]+")


@dataclass(frozen=True)
class EventContext:
    pull_request: PullRequest | None
    comment_author: str = ""
    comment_body: str = ""


@dataclass(frozen=True)
class GateDecision:
    proceed: bool
    reason: str
    preview_url: str = ""


def parse_event_payload(payload: dict[str, Any]) -> EventContext:
    """Read the PR from an ``issue_comment`` or ``pull_request`` payload."""
    comment = payload.get("comment") if isinstance(payload.get("comment"), dict) else {}
    user = comment.get("user") if isinstance(comment.get("user"), dict) else {}
    comment_author = str(user.get("login") or "")
    comment_body = str(comment.get("body") or "")

    pull_request: PullRequest | None = None
    issue = payload.get("issue")
    if isinstance(issue, dict) and isinstance(issue.get("pull_request"), dict):
        pull_request = PullRequest(
            url=str(issue["pull_request"].get("html_url") or ""),
            number=int(issue.get("number") or 0),
            title=str(issue.get("title") or ""),
            state=str(issue.get("state") or "open"),
        )
    elif isinstance(payload.get("pull_request"), dict):
        pull_request = PullRequest.from_api(payload["pull_request"])

    if pull_request is not None and not pull_request.url:
        pull_request = None
    return EventContext(
        pull_request=pull_request,
        comment_author=comment_author,
        comment_body=comment_body,
    )


def load_event_context(event_path: Path | None) -> EventContext:
    if event_path is None or not event_path.exists():
        logger.warning("No event payload found at %s", event_path)
        return EventContext(pull_request=None)
    try:
        payload = json.loads(event_path.read_text())
    except ValueError as exc:
        logger.warning("Unreadable event payload at %s: %s", event_path, exc)
        return EventContext(pull_request=None)
    if not isinstance(payload, dict):
        return EventContext(pull_request=None)
    try:
        return parse_event_payload(payload)
    except (TypeError, ValueError) as exc:
        logger.warning("Malformed event payload at %s: %s", event_path, exc)
        return EventContext(pull_request=None)


def extract_preview_url(text: str) -> str:
    match = PREVIEW_URL_RE.search(text or "")
    if not match:
        return ""
    return match.group(0).rstrip(".,;:")


def gate_event(
    event: EventContext,
    configured_preview_url: str = "",
    expected_comment_author: str = "",
) -> GateDecision:
    """Decide whether this event should be acted on.

    A skipped event is not a failure: the run ends successfully without
    touching any App.
    """
    if event.pull_request is None:
        return GateDecision(proceed=False, reason="not_a_pull_request")

    expected = expected_comment_author.strip()
    if expected and event.comment_author != expected:
        return GateDecision(proceed=False, reason="unexpected_comment_author")

    preview_url = configured_preview_url.strip() or extract_preview_url(event.comment_body)
    if not preview_url:
        return GateDecision(proceed=False, reason="missing_preview_url")
    return GateDecision(proceed=True, reason="allowed", preview_url=preview_url)
