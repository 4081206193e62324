"""Matching and recycling rules for preview App IDs.

Given the current pull request, its preview URL, the open pull requests and the
registry's apps, exactly one action is chosen, checked in this order:

1. ``NOOP``     an app already tags this PR and redirects to the preview URL.
2. ``RELABEL``  an app tags this PR but redirects elsewhere; reuse its app_id.
3. ``RECYCLE``  the first app tagging a PR that is no longer open; reuse it.
4. ``CREATE``   nothing reusable; register a new app.

Where several apps qualify, the first in registry order wins.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

from appid_bot.github.pull_requests import PullRequest
from appid_bot.registry.contracts import DEFAULT_SCOPES, App, AppOptions

NAME_TITLE_LIMIT = 35
_NAME_DISALLOWED_RE = re.compile(r"[^A-Za-z0-9 ]")


class PolicyAction(str, Enum):
    NOOP = "noop"
    RELABEL = "relabel"
    RECYCLE = "recycle"
    CREATE = "create"


@dataclass(frozen=True)
class PolicyDecision:
    action: PolicyAction
    app_id: int | None = None

    @property
    def should_post_comment(self) -> bool:
        return self.action is not PolicyAction.NOOP

    @property
    def needs_update(self) -> bool:
        return self.action in {PolicyAction.RELABEL, PolicyAction.RECYCLE}


def find_recyclable_app(apps: Sequence[App], open_pr_urls: Iterable[str]) -> App | None:
    """First app whose ``github`` tag points at a PR outside ``open_pr_urls``."""
    open_urls = set(open_pr_urls)
    return next((app for app in apps if app.github and app.github not in open_urls), None)


def decide_action(
    current_pr_url: str,
    preview_url: str,
    open_pr_urls: Iterable[str],
    existing_apps: Sequence[App],
) -> PolicyDecision:
    owned = [app for app in existing_apps if app.github == current_pr_url]

    current = next((app for app in owned if app.redirect_uri == preview_url), None)
    if current is not None:
        return PolicyDecision(PolicyAction.NOOP, current.app_id)

    if owned:
        return PolicyDecision(PolicyAction.RELABEL, owned[0].app_id)

    recyclable = find_recyclable_app(existing_apps, open_pr_urls)
    if recyclable is not None:
        return PolicyDecision(PolicyAction.RECYCLE, recyclable.app_id)
    return PolicyDecision(PolicyAction.CREATE)


def derive_app_name(title: str, number: int) -> str:
    stripped = _NAME_DISALLOWED_RE.sub("", title or "")[:NAME_TITLE_LIMIT]
    return f"{stripped} PR{number}"


def build_app_options(
    pull_request: PullRequest,
    preview_url: str,
    scopes: Sequence[str] = DEFAULT_SCOPES,
) -> AppOptions:
    return AppOptions(
        name=derive_app_name(pull_request.title, pull_request.number),
        redirect_uri=preview_url,
        github=pull_request.url,
        scopes=list(scopes),
    )
