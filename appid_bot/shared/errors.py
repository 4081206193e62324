"""Failures that abort the current attempt and are retried by the orchestrator."""

from __future__ import annotations


class AttemptError(RuntimeError):
    """Base for remote failures that end an attempt."""


class GitHubAPIError(AttemptError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RegistryError(AttemptError):
    def __init__(self, message: str, code: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.code = code

    def __str__(self) -> str:
        if self.code:
            return f"{self.message} ({self.code})"
        return self.message
