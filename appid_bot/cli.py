"""appid-bot CLI."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import typer

from appid_bot.github.action_outputs import ActionOutputs
from appid_bot.github.event_context import load_event_context
from appid_bot.orchestrator import run_action
from appid_bot.policy import decide_action, derive_app_name
from appid_bot.registry.contracts import App
from appid_bot.shared.settings import ActionSettings, SettingsError

app = typer.Typer(add_completion=False, help="appid-bot: preview App ID generator")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )


@app.command()
def run(verbose: bool = typer.Option(False, "--verbose", "-v")) -> None:
    """Create, relabel or recycle the App ID for the triggering pull request."""
    _configure_logging(verbose)
    try:
        settings = ActionSettings.from_env()
    except SettingsError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=2) from exc

    logging.getLogger(__name__).debug("Settings: %s", settings.redacted())
    result = run_action(
        settings,
        ActionOutputs(settings.output_path, echo=typer.echo),
        event=load_event_context(settings.event_path),
    )
    raise typer.Exit(code=result.exit_code)


@app.command()
def name(
    title: str = typer.Option(..., "--title"),
    number: int = typer.Option(..., "--number"),
) -> None:
    """Print the App name derived from a pull request title and number."""
    typer.echo(derive_app_name(title, number))


@app.command()
def plan(
    apps_file: Path = typer.Option(..., "--apps"),
    pr_url: str = typer.Option(..., "--pr-url"),
    preview_url: str = typer.Option(..., "--preview-url"),
    open_pr: list[str] = typer.Option([], "--open-pr"),
) -> None:
    """Show which action would be taken for a saved ``app_list`` payload."""
    rows = json.loads(apps_file.read_text())
    if isinstance(rows, dict):
        rows = rows.get("app_list", [])
    decision = decide_action(
        current_pr_url=pr_url,
        preview_url=preview_url,
        open_pr_urls=[pr_url, *open_pr],
        existing_apps=[App.model_validate(row) for row in rows],
    )
    typer.echo(
        json.dumps(
            {
                "action": decision.action.value,
                "app_id": decision.app_id,
                "should_post_comment": decision.should_post_comment,
            },
            indent=2,
        )
    )


if __name__ == "__main__":
    app()
