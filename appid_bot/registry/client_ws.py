"""App ID registry client over the Deriv websocket API."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from pydantic import ValidationError
from websockets.exceptions import WebSocketException
from websockets.sync.client import connect

from appid_bot.registry.contracts import App, AppOptions, AuthorizationResult
from appid_bot.shared.errors import RegistryError

logger = logging.getLogger(__name__)

NOT_AUTHORIZED = "NotAuthorized"


class DerivAppRegistryClient:
    """Session-scoped client; one instance owns one websocket connection.

    Every operation sends a single request tagged with a fresh ``req_id`` and
    returns the field of the response named by its ``msg_type``.
    """

    def __init__(
        self,
        url: str,
        timeout_s: float = 30,
        connection: Any | None = None,
        connector: Callable[..., Any] = connect,
    ) -> None:
        self.url = url
        self.timeout_s = timeout_s
        self._connection = connection
        self._connector = connector
        self._req_id = 0
        self._authorized = False

    def __enter__(self) -> "DerivAppRegistryClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        if self._connection is None:
            return
        try:
            self._connection.close()
        except (OSError, WebSocketException) as exc:
            logger.debug("Ignoring error while closing registry session: %s", exc)
        self._connection = None
        self._authorized = False

    def authorize(self, token: str) -> AuthorizationResult:
        logger.info("Authorising...")
        payload = self._request({"authorize": token})
        if not isinstance(payload, dict):
            raise RegistryError("Unexpected authorize payload", code="MalformedResponse")
        result = AuthorizationResult.model_validate(payload)
        self._authorized = True
        logger.info("Done authorising.")
        return result

    def list_apps(self) -> list[App]:
        self._require_authorized("app_list")
        logger.info("Retrieving existing App IDs...")
        payload = self._request({"app_list": 1})
        if not isinstance(payload, list):
            raise RegistryError("Unexpected app_list payload", code="MalformedResponse")
        apps = [_parse_app(row, "app_list") for row in payload]
        for app in apps:
            if app.github:
                logger.info("> %s (%s)", app.redirect_uri, app.app_id)
        logger.info("Done retrieving App IDs.")
        return apps

    def register_app(self, options: AppOptions) -> App:
        self._require_authorized("app_register")
        payload = self._request({"app_register": 1, **options.to_request()})
        return _parse_app(payload, "app_register")

    def update_app(self, app_id: int, options: AppOptions) -> App:
        self._require_authorized("app_update")
        payload = self._request({"app_update": app_id, **options.to_request()})
        return _parse_app(payload, "app_update")

    def _require_authorized(self, operation: str) -> None:
        if not self._authorized:
            raise RegistryError(
                f"{operation} requires a successful authorize first", code=NOT_AUTHORIZED
            )

    def _ensure_connection(self) -> Any:
        if self._connection is None:
            try:
                self._connection = self._connector(self.url, open_timeout=self.timeout_s)
            except (OSError, TimeoutError, WebSocketException) as exc:
                logger.warning("Unable to open registry session: %s", exc)
                raise RegistryError(
                    f"Unable to open registry session: {exc}", code="ConnectionError"
                ) from exc
        return self._connection

    def _request(self, payload: dict[str, Any]) -> Any:
        connection = self._ensure_connection()
        self._req_id += 1
        req_id = self._req_id
        try:
            connection.send(json.dumps({**payload, "req_id": req_id}))
            while True:
                response = json.loads(connection.recv(timeout=self.timeout_s))
                if isinstance(response, dict) and response.get("req_id") == req_id:
                    break
                logger.debug("Skipping unrelated registry frame: %s", response)
        except (OSError, TimeoutError, WebSocketException) as exc:
            logger.warning("Registry session failed: %s", exc)
            raise RegistryError(f"Registry session failed: {exc}", code="ConnectionError") from exc
        except ValueError as exc:
            raise RegistryError("Registry sent a malformed frame", code="MalformedResponse") from exc

        error = response.get("error")
        if isinstance(error, dict):
            failure = RegistryError(
                str(error.get("message") or "Unknown registry error"),
                code=str(error.get("code") or ""),
            )
            logger.warning("%s", failure)
            raise failure

        msg_type = response.get("msg_type")
        if not msg_type or msg_type not in response:
            raise RegistryError(
                f"Response is missing its {msg_type or 'msg_type'} field",
                code="MalformedResponse",
            )
        return response[msg_type]


def _parse_app(payload: Any, operation: str) -> App:
    if not isinstance(payload, dict):
        raise RegistryError(f"Unexpected {operation} payload", code="MalformedResponse")
    try:
        return App.model_validate(payload)
    except ValidationError as exc:
        raise RegistryError(f"Invalid app in {operation} payload", code="MalformedResponse") from exc
