"""In-memory App ID registry for deterministic tests and dry runs."""

from __future__ import annotations

from appid_bot.registry.contracts import App, AppOptions, AuthorizationResult
from appid_bot.shared.errors import RegistryError


class InMemoryAppRegistry:
    """Shared registry state; each ``session()`` behaves like a fresh connection."""

    def __init__(
        self,
        apps: list[App] | None = None,
        valid_tokens: set[str] | None = None,
        next_app_id: int = 1000,
    ) -> None:
        self.apps: list[App] = list(apps or [])
        self.valid_tokens = valid_tokens
        self.next_app_id = max([next_app_id, *[app.app_id + 1 for app in self.apps]])
        self.failures: dict[str, int] = {}
        self.calls: list[tuple[str, dict]] = []
        self.sessions_opened = 0
        self.sessions_closed = 0

    def fail_next(self, operation: str, times: int = 1) -> None:
        self.failures[operation] = self.failures.get(operation, 0) + times

    def session(self) -> "InMemoryRegistrySession":
        self.sessions_opened += 1
        return InMemoryRegistrySession(self)

    def _maybe_fail(self, operation: str) -> None:
        remaining = self.failures.get(operation, 0)
        if remaining > 0:
            self.failures[operation] = remaining - 1
            raise RegistryError("Transient registry failure", code="TransientFailure")

    def find(self, app_id: int) -> App | None:
        return next((app for app in self.apps if app.app_id == app_id), None)


class InMemoryRegistrySession:
    def __init__(self, registry: InMemoryAppRegistry) -> None:
        self.registry = registry
        self._authorized = False
        self.closed = False

    def __enter__(self) -> "InMemoryRegistrySession":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.registry.sessions_closed += 1

    def authorize(self, token: str) -> AuthorizationResult:
        self.registry.calls.append(("authorize", {}))
        self.registry._maybe_fail("authorize")
        valid = self.registry.valid_tokens
        if valid is not None and token not in valid:
            raise RegistryError("The token is invalid.", code="InvalidToken")
        self._authorized = True
        return AuthorizationResult(loginid="CR000001", scopes=["admin"])

    def list_apps(self) -> list[App]:
        self._check("app_list")
        self.registry.calls.append(("app_list", {}))
        self.registry._maybe_fail("app_list")
        return [app.model_copy(deep=True) for app in self.registry.apps]

    def register_app(self, options: AppOptions) -> App:
        self._check("app_register")
        self.registry.calls.append(("app_register", options.to_request()))
        self.registry._maybe_fail("app_register")
        app = App(app_id=self.registry.next_app_id, **options.to_request())
        self.registry.next_app_id += 1
        self.registry.apps.append(app)
        return app.model_copy(deep=True)

    def update_app(self, app_id: int, options: AppOptions) -> App:
        self._check("app_update")
        self.registry.calls.append(("app_update", {"app_id": app_id, **options.to_request()}))
        self.registry._maybe_fail("app_update")
        for index, app in enumerate(self.registry.apps):
            if app.app_id == app_id:
                updated = App(app_id=app_id, **options.to_request())
                self.registry.apps[index] = updated
                return updated.model_copy(deep=True)
        raise RegistryError(f"App {app_id} not found", code="InvalidAppID")

    def _check(self, operation: str) -> None:
        if self.closed:
            raise RegistryError("Session is closed", code="ConnectionError")
        if not self._authorized:
            raise RegistryError(
                f"{operation} requires a successful authorize first", code="NotAuthorized"
            )
