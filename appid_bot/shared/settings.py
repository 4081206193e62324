"""Action inputs and runner environment, loaded once per run."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

DEFAULT_ACTION_PATH = Path(__file__).resolve().parents[2] / "action.yml"

REGISTRY_BACKENDS = {"deriv", "in_memory"}

_FALLBACK_DEFAULTS = {
    "max_retries": "5",
    "registry_endpoint": "frontend.binaryws.com",
    "registry_brand": "deriv",
    "request_timeout": "30",
    "registry_backend": "deriv",
}


class SettingsError(ValueError):
    """Raised when an action input is missing or malformed."""


def load_action_inputs(action_path: Path = DEFAULT_ACTION_PATH) -> dict[str, dict[str, Any]]:
    """Return the ``inputs`` block of the action metadata, or ``{}`` when absent."""
    if not action_path.exists():
        return {}
    metadata = yaml.safe_load(action_path.read_text()) or {}
    inputs = metadata.get("inputs") or {}
    if not isinstance(inputs, dict):
        raise SettingsError(f"Malformed inputs block in {action_path}")
    return inputs


def input_env_name(name: str) -> str:
    return f"INPUT_{name.replace(' ', '_').upper()}"


def _input_defaults(action_path: Path) -> dict[str, str]:
    defaults = dict(_FALLBACK_DEFAULTS)
    for name, spec in load_action_inputs(action_path).items():
        if isinstance(spec, dict) and "default" in spec:
            defaults[name] = str(spec["default"])
    return defaults


def _parse_int(name: str, raw: str, minimum: int) -> int:
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise SettingsError(f"Input {name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise SettingsError(f"Input {name} must be >= {minimum}, got {value}")
    return value


@dataclass(frozen=True)
class ActionSettings:
    """Resolved configuration for one run of the App ID generator."""

    api_token: str
    app_id: int
    preview_url: str
    max_retries: int
    expected_comment_author: str
    github_token: str | None
    repository: str
    event_path: Path | None
    output_path: Path | None
    github_api_url: str
    registry_endpoint: str
    registry_brand: str
    request_timeout_s: float
    registry_backend: str = "deriv"

    @property
    def registry_url(self) -> str:
        return (
            f"wss://{self.registry_endpoint}/websockets/v3"
            f"?app_id={self.app_id}&brand={self.registry_brand}&lang=EN"
        )

    @classmethod
    def from_env(
        cls,
        env: dict[str, str] | None = None,
        action_path: Path = DEFAULT_ACTION_PATH,
    ) -> "ActionSettings":
        source = os.environ if env is None else env
        defaults = _input_defaults(action_path)

        def get_input(name: str, required: bool = False) -> str:
            value = (source.get(input_env_name(name)) or "").strip()
            if not value:
                value = defaults.get(name, "").strip()
            if required and not value:
                raise SettingsError(f"Input required and not supplied: {name}")
            return value

        repository = (source.get("GITHUB_REPOSITORY") or "").strip()
        if "/" not in repository:
            raise SettingsError(f"GITHUB_REPOSITORY must be <owner>/<repo>, got {repository!r}")
        event_path = (source.get("GITHUB_EVENT_PATH") or "").strip()
        output_path = (source.get("GITHUB_OUTPUT") or "").strip()
        github_token = get_input("GITHUB_TOKEN") or (source.get("GITHUB_TOKEN") or "").strip()
        registry_backend = get_input("registry_backend", required=True).lower()
        if registry_backend not in REGISTRY_BACKENDS:
            raise SettingsError(
                f"Input registry_backend must be one of {sorted(REGISTRY_BACKENDS)}, "
                f"got {registry_backend!r}"
            )

        return cls(
            api_token=get_input("DERIV_API_TOKEN", required=True),
            app_id=_parse_int("DERIV_APP_ID", get_input("DERIV_APP_ID", required=True), 1),
            preview_url=get_input("vercel_preview_url"),
            max_retries=_parse_int("max_retries", get_input("max_retries", required=True), 1),
            expected_comment_author=get_input("expected_comment_author"),
            github_token=github_token or None,
            repository=repository,
            event_path=Path(event_path) if event_path else None,
            output_path=Path(output_path) if output_path else None,
            github_api_url=(source.get("GITHUB_API_URL") or "https://api.github.com").strip(),
            registry_endpoint=get_input("registry_endpoint", required=True),
            registry_brand=get_input("registry_brand", required=True),
            request_timeout_s=float(
                _parse_int("request_timeout", get_input("request_timeout", required=True), 1)
            ),
            registry_backend=registry_backend,
        )

    def redacted(self) -> dict[str, str]:
        return {
            "api_token": _redact_token(self.api_token),
            "github_token": _redact_token(self.github_token),
            "app_id": str(self.app_id),
            "repository": self.repository,
            "max_retries": str(self.max_retries),
        }


def _redact_token(token: str | None) -> str:
    if token is None:
        return "unset"
    if len(token) <= 8:
        return "***"
    return f"{token[:4]}...{token[-4:]}"
