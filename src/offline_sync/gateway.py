"""Timeout-bounded REST client for the remote store.

Every call returns a ``GatewayResponse`` instead of raising: callers decide
whether to fall back to the local cache based on ``response.ok``.
"""

from __future__ import annotations

import http.client
import json
import logging
from collections.abc import Callable
from typing import Any
from urllib import error, request

from offline_sync.cache.base import LocalCache
from offline_sync.errors import FALLBACK_STATUS, TIMEOUT_STATUS, classify_status
from offline_sync.models import GatewayResponse

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 5.0
TOKEN_CACHE_KEY = "token"

TokenProvider = Callable[[], str | None]


def cache_token_provider(cache: LocalCache, fallback: str = "") -> TokenProvider:
    """Read the session token from the shared cache, like the UI login flow stores it."""

    def _provide() -> str | None:
        token = cache.get(TOKEN_CACHE_KEY)
        if isinstance(token, str) and token.strip():
            return token
        return fallback or None

    return _provide


class RemoteGateway:
    """GET/POST/PUT/DELETE against the remote store; never raises, never retries."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        token_provider: TokenProvider | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._token_provider = token_provider

    def get(self, path: str) -> GatewayResponse:
        return self._request("GET", path)

    def post(self, path: str, payload: Any) -> GatewayResponse:
        return self._request("POST", path, payload)

    def put(self, path: str, payload: Any) -> GatewayResponse:
        return self._request("PUT", path, payload)

    def delete(self, path: str) -> GatewayResponse:
        return self._request("DELETE", path)

    def _request(self, method: str, path: str, payload: Any = None) -> GatewayResponse:
        url = f"{self.base_url}{path}"
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        token = self._token_provider() if self._token_provider else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        logger.debug("gateway event=request method=%s path=%s", method, path)

        try:
            raw_payload = json.dumps(payload).encode("utf-8") if payload is not None else None
            req = request.Request(url=url, data=raw_payload, method=method, headers=headers)
            with request.urlopen(req, timeout=self.timeout_s) as response:
                status = int(getattr(response, "status", 200))
                raw_body = response.read()
        except error.HTTPError as exc:
            message = _error_message(_read_error_body(exc)) or f"HTTP error! status: {exc.code}"
            return self._failed(method, path, message, exc.code)
        except error.URLError as exc:
            if isinstance(exc.reason, TimeoutError):
                return self._failed(method, path, "Request timeout", TIMEOUT_STATUS)
            return self._failed(method, path, str(exc.reason), FALLBACK_STATUS)
        except TimeoutError:
            return self._failed(method, path, "Request timeout", TIMEOUT_STATUS)
        except OSError as exc:
            return self._failed(method, path, str(exc) or type(exc).__name__, FALLBACK_STATUS)
        except http.client.HTTPException as exc:
            message = f"Broken response from remote store: {type(exc).__name__}"
            return self._failed(method, path, message, FALLBACK_STATUS)
        except (TypeError, ValueError) as exc:
            # Unserializable payload or malformed URL.
            return self._failed(method, path, f"Invalid request: {exc}", FALLBACK_STATUS)

        try:
            body = raw_body.decode("utf-8")
        except UnicodeDecodeError:
            return self._failed(method, path, "Remote store returned non-UTF-8 response", FALLBACK_STATUS)

        if not body.strip():
            return GatewayResponse(data=None, error=None, status=status)
        try:
            parsed = json.loads(body)
        except json.JSONDecodeError:
            return self._failed(method, path, "Remote store returned non-JSON response", FALLBACK_STATUS)
        if not isinstance(parsed, dict):
            return self._failed(
                method,
                path,
                f"Remote store returned unsupported JSON shape: {type(parsed).__name__}",
                FALLBACK_STATUS,
            )
        remote_error = parsed.get("error")
        return GatewayResponse(
            data=parsed.get("data"),
            error=str(remote_error) if remote_error else None,
            status=status,
        )

    @staticmethod
    def _failed(method: str, path: str, message: str, status: int) -> GatewayResponse:
        logger.warning(
            "gateway event=failed method=%s path=%s status=%d kind=%s error=%s",
            method,
            path,
            status,
            classify_status(status),
            message,
        )
        return GatewayResponse(data=None, error=message, status=status)


def _read_error_body(exc: error.HTTPError) -> str:
    try:
        return exc.read().decode("utf-8", errors="replace")
    except (OSError, AttributeError, ValueError):
        return ""


def _error_message(raw_body: str) -> str | None:
    """Pull ``error`` out of a ``{data, error}`` body; None when absent."""
    if not raw_body:
        return None
    try:
        parsed = json.loads(raw_body)
    except json.JSONDecodeError:
        return None
    if isinstance(parsed, dict) and parsed.get("error"):
        return str(parsed["error"])
    return None
