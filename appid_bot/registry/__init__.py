"""App ID registry clients."""

from appid_bot.registry.client_ws import DerivAppRegistryClient
from appid_bot.registry.contracts import (
    DEFAULT_SCOPES,
    App,
    AppOptions,
    AppRegistryClient,
    AuthorizationResult,
)
from appid_bot.registry.inmemory import InMemoryAppRegistry, InMemoryRegistrySession

__all__ = [
    "DEFAULT_SCOPES",
    "App",
    "AppOptions",
    "AppRegistryClient",
    "AuthorizationResult",
    "DerivAppRegistryClient",
    "InMemoryAppRegistry",
    "InMemoryRegistrySession",
]
