"""Sequencing of one App ID run and the bounded retry loop around it."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Protocol

import requests

from appid_bot.github.action_outputs import ActionOutputs
from appid_bot.github.event_context import EventContext, gate_event, load_event_context
from appid_bot.github.pull_requests import GitHubPullRequestLister, PullRequest
from appid_bot.policy import PolicyAction, build_app_options, decide_action
from appid_bot.registry.client_ws import DerivAppRegistryClient
from appid_bot.registry.contracts import AppRegistryClient
from appid_bot.shared.errors import AttemptError
from appid_bot.shared.settings import ActionSettings

logger = logging.getLogger(__name__)

EXHAUSTED_MESSAGE = "Exceeded maximum amount of retries. Aborting."


class PullRequestLister(Protocol):
    def list_open_pull_requests(self, repo: str) -> list[PullRequest]: ...


@dataclass
class AttemptContext:
    """Everything one attempt needs; discarded after the attempt."""

    repository: str
    api_token: str
    pull_request: PullRequest
    preview_url: str
    lister: PullRequestLister
    registry: AppRegistryClient

    def close(self) -> None:
        self.registry.close()


@dataclass(frozen=True)
class RunOutputs:
    pr_url: str
    pr_number: int
    app_id: int
    preview_url: str
    should_post_comment: bool

    def as_dict(self) -> dict[str, Any]:
        return {
            "pr_url": self.pr_url,
            "pr_number": self.pr_number,
            "app_id": self.app_id,
            "preview_url": self.preview_url,
            "should_post_comment": self.should_post_comment,
        }


@dataclass(frozen=True)
class RunResult:
    succeeded: bool
    attempts: int
    outputs: RunOutputs | None = None
    skipped_reason: str = ""

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1


ContextFactory = Callable[[int], AttemptContext]


def run_attempt(context: AttemptContext) -> RunOutputs:
    pull_request = context.pull_request
    open_pull_requests = context.lister.list_open_pull_requests(context.repository)

    context.registry.authorize(context.api_token)
    apps = context.registry.list_apps()

    decision = decide_action(
        current_pr_url=pull_request.url,
        preview_url=context.preview_url,
        open_pr_urls=[pr.url for pr in open_pull_requests],
        existing_apps=apps,
    )

    if decision.action is PolicyAction.NOOP:
        logger.info(
            "There was an existing App ID for this URL. No action will be taken "
            "as a comment should have already been posted."
        )
        app_id = decision.app_id
    else:
        options = build_app_options(pull_request, context.preview_url)
        if decision.app_id is not None:
            logger.info(
                "Attempting to recycle App ID %s (%s)...", decision.app_id, decision.action.value
            )
            logger.info("App options: %s", options.to_request())
            app = context.registry.update_app(decision.app_id, options)
            logger.info("Done recycling App ID %s. Stay green!", app.app_id)
        else:
            logger.info("Unable to find recyclable App ID. Generating new one...")
            logger.info("App options: %s", options.to_request())
            app = context.registry.register_app(options)
            logger.info("Done generating App ID (%s).", app.app_id)
        app_id = app.app_id

    return RunOutputs(
        pr_url=pull_request.url,
        pr_number=pull_request.number,
        app_id=int(app_id),
        preview_url=context.preview_url,
        should_post_comment=decision.should_post_comment,
    )


def run_with_retries(max_retries: int, context_factory: ContextFactory) -> RunResult:
    """Run whole attempts until one succeeds or ``max_retries`` are used up.

    Each attempt gets a fresh context from ``context_factory`` and is retried
    immediately on ``AttemptError``. Anything else propagates.
    """
    attempts = max(1, int(max_retries))
    for attempt in range(1, attempts + 1):
        context = context_factory(attempt)
        try:
            outputs = run_attempt(context)
        except AttemptError as exc:
            logger.warning("An error occurred, retrying (%d/%d): %s", attempt, attempts, exc)
            continue
        finally:
            context.close()
        return RunResult(succeeded=True, attempts=attempt, outputs=outputs)

    logger.error(EXHAUSTED_MESSAGE)
    return RunResult(succeeded=False, attempts=attempts)


def build_registry_factory(settings: ActionSettings) -> Callable[[], AppRegistryClient]:
    """Pick the registry backend named by ``settings.registry_backend``.

    ``in_memory`` keeps one empty registry for the whole run so retries see
    the writes of earlier attempts; each attempt still opens its own session.
    """
    if settings.registry_backend == "in_memory":
        from appid_bot.registry.inmemory import InMemoryAppRegistry

        logger.info("Dry run: App IDs are managed in an in-memory registry.")
        return InMemoryAppRegistry().session

    def make_registry() -> AppRegistryClient:
        return DerivAppRegistryClient(settings.registry_url, timeout_s=settings.request_timeout_s)

    return make_registry


def build_context_factory(
    settings: ActionSettings,
    pull_request: PullRequest,
    preview_url: str,
    session: requests.Session | None = None,
    registry_factory: Callable[[], AppRegistryClient] | None = None,
) -> ContextFactory:
    make_registry = registry_factory or build_registry_factory(settings)

    def factory(attempt: int) -> AttemptContext:
        logger.debug("Preparing attempt %d", attempt)
        return AttemptContext(
            repository=settings.repository,
            api_token=settings.api_token,
            pull_request=pull_request,
            preview_url=preview_url,
            lister=GitHubPullRequestLister(
                token=settings.github_token,
                base_url=settings.github_api_url,
                session=session,
                timeout_s=settings.request_timeout_s,
            ),
            registry=make_registry(),
        )

    return factory


def run_action(
    settings: ActionSettings,
    outputs: ActionOutputs,
    event: EventContext | None = None,
    context_factory: ContextFactory | None = None,
) -> RunResult:
    """Gate the event, run with retries and publish outputs on success."""
    event = event if event is not None else load_event_context(settings.event_path)
    gate = gate_event(
        event,
        configured_preview_url=settings.preview_url,
        expected_comment_author=settings.expected_comment_author,
    )
    pull_request = event.pull_request
    if not gate.proceed or pull_request is None:
        logger.info("Nothing to do for this event (%s).", gate.reason)
        return RunResult(succeeded=True, attempts=0, skipped_reason=gate.reason)

    logger.info("Preview URL: %s", gate.preview_url)
    factory = context_factory or build_context_factory(settings, pull_request, gate.preview_url)
    result = run_with_retries(settings.max_retries, factory)
    if result.succeeded and result.outputs is not None:
        outputs.set_many(result.outputs.as_dict())
    else:
        outputs.set_failed(EXHAUSTED_MESSAGE)
    return result
