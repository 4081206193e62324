"""Paginated listing of a repository's open pull requests."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import requests

from appid_bot.shared.errors import GitHubAPIError

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100


@dataclass(frozen=True)
class PullRequest:
    url: str
    number: int
    title: str = ""
    state: str = "open"

    @classmethod
    def from_api(cls, row: dict[str, Any]) -> "PullRequest":
        return cls(
            url=str(row.get("html_url", "")),
            number=int(row.get("number") or 0),
            title=str(row.get("title") or ""),
            state=str(row.get("state") or "open"),
        )


class GitHubPullRequestLister:
    def __init__(
        self,
        token: str | None = None,
        base_url: str = "https://api.github.com",
        session: requests.Session | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        timeout_s: float = 15,
    ) -> None:
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.page_size = max(1, int(page_size))
        self.timeout_s = timeout_s

    def list_open_pull_requests(self, repo: str) -> list[PullRequest]:
        """Fetch every open pull request of ``repo``.

        Pages are requested from 1 upwards until a page comes back empty or
        shorter than the page size. Any failure raises ``GitHubAPIError``
        rather than returning the pages fetched so far.
        """
        logger.info("Retrieving open pull requests...")
        pull_requests: list[PullRequest] = []
        page = 1
        while True:
            rows = self._fetch_page(repo, page)
            pull_requests.extend(PullRequest.from_api(row) for row in rows)
            if len(rows) < self.page_size:
                break
            page += 1

        for pull_request in pull_requests:
            logger.info("- %s", pull_request.url)
        logger.info("Done retrieving %d open pull requests.", len(pull_requests))
        return pull_requests

    def _fetch_page(self, repo: str, page: int) -> list[dict[str, Any]]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "App ID Generator",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            response = self.session.request(
                method="GET",
                url=f"{self.base_url}/repos/{repo}/pulls",
                headers=headers,
                params={"state": "open", "per_page": str(self.page_size), "page": str(page)},
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            logger.warning("Listing pull requests failed: %s", exc)
            raise GitHubAPIError(f"GitHub request failed: {exc}") from exc

        if not 200 <= response.status_code < 300:
            message = _error_message(response)
            logger.warning("%s (%s)", message, response.status_code)
            raise GitHubAPIError(message, status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError as exc:
            logger.warning("Malformed pull request listing (%s)", response.status_code)
            raise GitHubAPIError(
                "Malformed pull request listing", status_code=response.status_code
            ) from exc
        if not isinstance(payload, list):
            raise GitHubAPIError(
                "Unexpected pull request listing payload", status_code=response.status_code
            )
        return [row for row in payload if isinstance(row, dict)]


def _error_message(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return f"GitHub API returned HTTP {response.status_code}"
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return f"GitHub API returned HTTP {response.status_code}"
