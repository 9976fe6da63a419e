"""HTTP transport for the cloud bucketing API, with retries and error mapping."""

from __future__ import annotations

import time
from collections.abc import Iterable, Mapping
from typing import Any, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import requests

from . import log
from .request import decode, encode_body
from .variables import VERSION, exponential_backoff

__all__ = ["GenericError", "error_from_response", "ApiTransport"]

DEFAULT_BASE_PATH = "https://bucketing-api.devcycle.com"
DEFAULT_USER_AGENT = f"DevCycle-Server-SDK/{VERSION}"
# Five retries after the first attempt.
DEFAULT_MAX_ATTEMPTS = 6

_JSON_CONTENT_TYPE = "application/json"


class GenericError(Exception):
    """An error response from the API, carrying the raw body and decoded model."""

    def __init__(self, message: str, body: bytes = b"", model: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.body = body
        self.model = model

    def __str__(self) -> str:
        return self.message


def error_from_response(
    status_code: int, status: str, body: bytes, content_type: str
) -> Optional[GenericError]:
    """Build the error for an unsuccessful response.

    Server errors (5xx) are logged and yield None; an undecodable body yields
    an error whose message is the decoding failure.
    """
    model: Any = None
    if body:
        try:
            model = decode(body, content_type or "")
        except ValueError as exc:
            return GenericError(str(exc), body, None)
    error = GenericError(status, body, model)
    if status_code >= 500:
        log.warnf("Server reported a 5xx error: %s", error)
        return None
    return error


def _query_items(query: Mapping[str, Any] | None) -> Iterable[tuple[str, str]]:
    if not query:
        return
    for key, value in query.items():
        if isinstance(value, (list, tuple)):
            for item in value:
                yield key, str(item)
        else:
            yield key, str(value)


class ApiTransport:
    """Sends authenticated JSON requests to the bucketing API."""

    def __init__(
        self,
        sdk_key: str,
        base_path: str = DEFAULT_BASE_PATH,
        user_agent: str = DEFAULT_USER_AGENT,
        default_headers: Mapping[str, str] | None = None,
        enable_edge_db: bool = False,
        session: requests.Session | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.sdk_key = sdk_key
        self.base_path = base_path
        self.user_agent = user_agent
        self.default_headers = dict(default_headers or {})
        self.enable_edge_db = enable_edge_db
        self.session = session if session is not None else requests.Session()
        self.max_attempts = max_attempts

    def build_url(self, path: str, query: Mapping[str, Any] | None = None) -> str:
        """Join the base path and ``path`` and encode the query, sorted by key."""
        parts = urlsplit(self.base_path + path)
        items = parse_qsl(parts.query, keep_blank_values=True)
        items.extend(_query_items(query))
        if self.enable_edge_db:
            items.append(("enableEdgeDB", "true"))
        # Stable sort keeps the order of repeated keys.
        items.sort(key=lambda item: item[0])
        return urlunsplit(parts._replace(query=urlencode(items)))

    def build_headers(self) -> dict[str, str]:
        """Headers sent with every API request."""
        headers = {
            "Content-Type": _JSON_CONTENT_TYPE,
            "Accept": _JSON_CONTENT_TYPE,
            "Authorization": self.sdk_key,
            "User-Agent": self.user_agent,
        }
        headers.update(self.default_headers)
        return headers

    def perform_request(self, path: str, method: str, body: Any = None) -> requests.Response:
        """Send a request, retrying connection failures and server errors.

        Returns the final response, whose body has been read. A server error
        on the last attempt is returned rather than raised; a connection
        failure on the last attempt is raised.
        """
        data = encode_body(body, _JSON_CONTENT_TYPE) if body is not None else None
        url = self.build_url(path)
        headers = self.build_headers()
        method = method.upper()

        for attempt in range(1, self.max_attempts + 1):
            last_attempt = attempt == self.max_attempts
            try:
                response = self.session.request(method, url, data=data, headers=headers)
                _ = response.content
            except requests.RequestException:
                if last_attempt:
                    raise
                self._wait(attempt)
                continue
            if response.status_code >= 500 and not last_attempt:
                self._wait(attempt)
                continue
            return response
        raise AssertionError("unreachable")

    def change_base_path(self, path: str) -> None:
        """Point the transport at a different API host."""
        self.base_path = path

    @staticmethod
    def _wait(attempt: int) -> None:
        time.sleep(exponential_backoff(attempt) / 1000.0)