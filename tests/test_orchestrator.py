from __future__ import annotations

from pathlib import Path

import pytest

from appid_bot.github.action_outputs import ActionOutputs
from appid_bot.github.event_context import EventContext
from appid_bot.github.pull_requests import GitHubPullRequestLister, PullRequest
from appid_bot.orchestrator import (
    EXHAUSTED_MESSAGE,
    AttemptContext,
    build_context_factory,
    build_registry_factory,
    run_action,
    run_attempt,
    run_with_retries,
)
from appid_bot.registry.client_ws import DerivAppRegistryClient
from appid_bot.registry.contracts import App
from appid_bot.registry.inmemory import InMemoryAppRegistry, InMemoryRegistrySession
from appid_bot.shared.errors import GitHubAPIError
from appid_bot.shared.settings import ActionSettings

PR = PullRequest(url="https://github.com/org/repo/pull/12", number=12, title="Add login page")
PREVIEW = "https://repo-git-login-org.vercel.app"
CLOSED_PR = "https://github.com/org/repo/pull/3"


class FakeLister:
    def __init__(self, pull_requests: list[PullRequest], failures: int = 0) -> None:
        self.pull_requests = pull_requests
        self.failures = failures
        self.calls: list[str] = []

    def list_open_pull_requests(self, repo: str) -> list[PullRequest]:
        self.calls.append(repo)
        if self.failures > 0:
            self.failures -= 1
            raise GitHubAPIError("Bad gateway", status_code=502)
        return list(self.pull_requests)


def _factory(registry: InMemoryAppRegistry, lister: FakeLister, seen: list[int] | None = None):
    def factory(attempt: int) -> AttemptContext:
        if seen is not None:
            seen.append(attempt)
        return AttemptContext(
            repository="org/repo",
            api_token="secret-token",
            pull_request=PR,
            preview_url=PREVIEW,
            lister=lister,
            registry=registry.session(),
        )

    return factory


def _settings(**overrides) -> ActionSettings:
    values = dict(
        api_token="secret-token",
        app_id=1234,
        preview_url=PREVIEW,
        max_retries=3,
        expected_comment_author="",
        github_token=None,
        repository="org/repo",
        event_path=None,
        output_path=None,
        github_api_url="https://api.github.com",
        registry_endpoint="frontend.binaryws.com",
        registry_brand="deriv",
        request_timeout_s=30.0,
    )
    values.update(overrides)
    return ActionSettings(**values)


def test_attempt_registers_new_app_when_nothing_reusable() -> None:
    registry = InMemoryAppRegistry(apps=[App(app_id=1, name="prod", redirect_uri="https://app")])
    lister = FakeLister([PR])

    outputs = run_attempt(_factory(registry, lister)(1))

    assert outputs.app_id == 1000
    assert outputs.should_post_comment is True
    assert registry.find(1000).github == PR.url
    assert registry.find(1000).name == "Add login page PR12"
    assert [call[0] for call in registry.calls] == ["authorize", "app_list", "app_register"]


def test_attempt_recycles_app_of_closed_pr() -> None:
    registry = InMemoryAppRegistry(
        apps=[
            App(app_id=40, github=CLOSED_PR, redirect_uri="https://old.vercel.app", name="Old PR3"),
            App(app_id=41, github="https://github.com/org/repo/pull/2", redirect_uri="https://x"),
        ]
    )
    outputs = run_attempt(_factory(registry, FakeLister([PR]))(1))

    assert outputs.app_id == 40
    assert registry.find(40).github == PR.url
    assert registry.find(40).redirect_uri == PREVIEW
    assert registry.find(41).redirect_uri == "https://x"
    assert len(registry.apps) == 2


def test_attempt_relabels_app_when_preview_changed() -> None:
    registry = InMemoryAppRegistry(
        apps=[
            App(app_id=40, github=CLOSED_PR, redirect_uri="https://old.vercel.app"),
            App(app_id=50, github=PR.url, redirect_uri="https://previous.vercel.app"),
        ]
    )
    outputs = run_attempt(_factory(registry, FakeLister([PR]))(1))

    assert outputs.app_id == 50
    assert outputs.should_post_comment is True
    assert registry.find(50).redirect_uri == PREVIEW
    assert registry.find(40).github == CLOSED_PR


def test_attempt_noop_leaves_registry_untouched() -> None:
    registry = InMemoryAppRegistry(apps=[App(app_id=50, github=PR.url, redirect_uri=PREVIEW)])
    outputs = run_attempt(_factory(registry, FakeLister([PR]))(1))

    assert outputs.app_id == 50
    assert outputs.should_post_comment is False
    assert [call[0] for call in registry.calls] == ["authorize", "app_list"]


def test_second_run_is_idempotent() -> None:
    registry = InMemoryAppRegistry()
    first = run_attempt(_factory(registry, FakeLister([PR]))(1))
    second = run_attempt(_factory(registry, FakeLister([PR]))(2))

    assert first.app_id == second.app_id
    assert second.should_post_comment is False
    assert len(registry.apps) == 1


def test_retry_succeeds_on_third_attempt() -> None:
    registry = InMemoryAppRegistry()
    registry.fail_next("authorize")
    lister = FakeLister([PR], failures=1)
    seen: list[int] = []

    result = run_with_retries(3, _factory(registry, lister, seen))

    assert result.succeeded is True
    assert result.exit_code == 0
    assert result.attempts == 3
    assert seen == [1, 2, 3]
    assert result.outputs is not None
    assert result.outputs.app_id == 1000
    assert registry.sessions_opened == registry.sessions_closed == 3


def test_retry_exhaustion_fails() -> None:
    registry = InMemoryAppRegistry()
    registry.fail_next("authorize")
    lister = FakeLister([PR], failures=1)

    result = run_with_retries(2, _factory(registry, lister))

    assert result.succeeded is False
    assert result.exit_code == 1
    assert result.outputs is None
    assert registry.apps == []


def test_retry_failure_in_update_aborts_attempt() -> None:
    registry = InMemoryAppRegistry(apps=[App(app_id=40, github=CLOSED_PR, redirect_uri="https://a")])
    registry.fail_next("app_update")

    result = run_with_retries(2, _factory(registry, FakeLister([PR])))

    assert result.attempts == 2
    assert result.outputs.app_id == 40


def test_unexpected_errors_propagate() -> None:
    registry = InMemoryAppRegistry()

    class BrokenLister:
        def list_open_pull_requests(self, repo: str) -> list[PullRequest]:
            raise KeyError("boom")

    def factory(attempt: int) -> AttemptContext:
        return AttemptContext("org/repo", "t", PR, PREVIEW, BrokenLister(), registry.session())

    with pytest.raises(KeyError):
        run_with_retries(3, factory)
    assert registry.sessions_closed == 1


def test_run_action_publishes_outputs(tmp_path: Path) -> None:
    output_file = tmp_path / "output.txt"
    registry = InMemoryAppRegistry(apps=[App(app_id=50, github=PR.url, redirect_uri=PREVIEW)])
    event = EventContext(pull_request=PR)

    result = run_action(
        _settings(),
        ActionOutputs(output_file),
        event=event,
        context_factory=_factory(registry, FakeLister([PR])),
    )

    assert result.succeeded is True
    assert output_file.read_text().splitlines() == [
        f"pr_url={PR.url}",
        "pr_number=12",
        "app_id=50",
        f"preview_url={PREVIEW}",
        "should_post_comment=false",
    ]


def test_run_action_reports_exhaustion() -> None:
    registry = InMemoryAppRegistry()
    registry.fail_next("app_list", times=3)
    lines: list[str] = []

    result = run_action(
        _settings(max_retries=3),
        ActionOutputs(None, echo=lines.append),
        event=EventContext(pull_request=PR),
        context_factory=_factory(registry, FakeLister([PR])),
    )

    assert result.exit_code == 1
    assert lines == [f"::error::{EXHAUSTED_MESSAGE}"]


def test_run_action_skips_gated_event_without_remote_calls() -> None:
    lines: list[str] = []

    def factory(attempt: int) -> AttemptContext:
        raise AssertionError("no attempt expected")

    result = run_action(
        _settings(preview_url="", expected_comment_author="vercel[bot]"),
        ActionOutputs(None, echo=lines.append),
        event=EventContext(pull_request=PR, comment_author="someone", comment_body=PREVIEW),
        context_factory=factory,
    )

    assert result.succeeded is True
    assert result.attempts == 0
    assert result.skipped_reason == "unexpected_comment_author"
    assert lines == []


def test_build_context_factory_creates_fresh_sessions() -> None:
    factory = build_context_factory(_settings(github_token="gh"), PR, PREVIEW)

    first = factory(1)
    second = factory(2)

    assert isinstance(first.registry, DerivAppRegistryClient)
    assert first.registry is not second.registry
    assert first.registry.url == (
        "wss://frontend.binaryws.com/websockets/v3?app_id=1234&brand=deriv&lang=EN"
    )
    assert first.lister.token == "gh"
    assert first.preview_url == PREVIEW
    first.close()
    second.close()


def test_authorization_failure_is_retried_then_fails() -> None:
    registry = InMemoryAppRegistry(valid_tokens={"another-token"})

    result = run_with_retries(2, _factory(registry, FakeLister([PR])))

    assert result.succeeded is False
    assert [call[0] for call in registry.calls] == ["authorize", "authorize"]


class PageResponse:
    def __init__(self, status_code: int, payload) -> None:
        self.status_code = status_code
        self.payload = payload

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class ScriptedSession:
    def __init__(self, responses: list[PageResponse]) -> None:
        self.responses = responses

    def request(self, **kwargs) -> PageResponse:
        return self.responses.pop(0)


@pytest.mark.parametrize(
    "bad_response",
    [
        PageResponse(200, ValueError("<html>bad gateway</html>")),
        PageResponse(304, ValueError("empty body")),
    ],
)
def test_malformed_listing_retries_the_attempt(bad_response: PageResponse) -> None:
    registry = InMemoryAppRegistry()
    session = ScriptedSession(
        [bad_response, PageResponse(200, [{"html_url": PR.url, "number": 12, "title": PR.title}])]
    )
    lister = GitHubPullRequestLister(session=session)

    result = run_with_retries(3, _factory(registry, lister))

    assert result.succeeded is True
    assert result.attempts == 2
    assert result.outputs.app_id == 1000


def test_registry_factory_defaults_to_websocket_client() -> None:
    make_registry = build_registry_factory(_settings())
    assert isinstance(make_registry(), DerivAppRegistryClient)


def test_in_memory_backend_runs_dry_without_registry_network() -> None:
    settings = _settings(registry_backend="in_memory")
    make_registry = build_registry_factory(settings)
    first, second = make_registry(), make_registry()
    assert isinstance(first, InMemoryRegistrySession)
    assert first.registry is second.registry

    listing = [{"html_url": PR.url, "number": 12, "title": PR.title}]
    session = ScriptedSession([PageResponse(200, listing), PageResponse(200, listing)])
    factory = build_context_factory(settings, PR, PREVIEW, session=session)

    created = run_with_retries(1, factory)
    repeated = run_with_retries(1, factory)

    assert created.outputs.app_id == 1000
    assert created.outputs.should_post_comment is True
    assert repeated.outputs.app_id == 1000
    assert repeated.outputs.should_post_comment is False
