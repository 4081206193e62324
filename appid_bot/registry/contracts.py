"""Pydantic contracts and the client protocol for the App ID registry."""

from __future__ import annotations

from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_SCOPES = ("read", "trade", "trading_information", "payments", "admin")
MAX_APP_NAME_LENGTH = 48


class App(BaseModel):
    """An App as returned by ``app_list``, ``app_register`` or ``app_update``."""

    model_config = ConfigDict(extra="allow")

    app_id: int
    redirect_uri: str = ""
    github: str | None = None
    name: str = ""
    scopes: list[str] = Field(default_factory=list)


class AppOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=MAX_APP_NAME_LENGTH)
    redirect_uri: str = Field(min_length=1)
    github: str = Field(min_length=1)
    scopes: list[str] = Field(default_factory=lambda: list(DEFAULT_SCOPES), min_length=1)

    def to_request(self) -> dict[str, Any]:
        return self.model_dump()


class AuthorizationResult(BaseModel):
    model_config = ConfigDict(extra="allow")

    loginid: str = ""
    scopes: list[str] = Field(default_factory=list)


class AppRegistryClient(Protocol):
    """One method per registry operation; every failure raises ``RegistryError``."""

    def authorize(self, token: str) -> AuthorizationResult: ...

    def list_apps(self) -> list[App]: ...

    def register_app(self, options: AppOptions) -> App: ...

    def update_app(self, app_id: int, options: AppOptions) -> App: ...

    def close(self) -> None: ...
