"""Fetching and polling of the environment configuration from the config CDN."""

from __future__ import annotations

import json
import threading
from typing import Optional, Protocol, runtime_checkable

import requests

from . import log

__all__ = [
    "CONFIG_RETRIES",
    "DEFAULT_CONFIG_CDN_BASE_PATH",
    "ConfigReceiver",
    "ConfigFetchError",
    "EnvironmentConfigManager",
]

CONFIG_RETRIES = 1
DEFAULT_CONFIG_CDN_BASE_PATH = "https://config-cdn.devcycle.com"
DEFAULT_REQUEST_TIMEOUT = 5.0


@runtime_checkable
class ConfigReceiver(Protocol):
    """Anything that accepts a freshly downloaded configuration."""

    def store_config(self, config: bytes, etag: str) -> None:
        """Store the raw JSON configuration and its ETag."""


class ConfigFetchError(Exception):
    """The configuration could not be downloaded or was rejected."""


class EnvironmentConfigManager:
    """Downloads the environment configuration and keeps it up to date."""

    def __init__(
        self,
        sdk_key: str,
        receiver: ConfigReceiver,
        config_cdn_base_path: str = DEFAULT_CONFIG_CDN_BASE_PATH,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self.sdk_key = sdk_key
        self.receiver = receiver
        self.config_cdn_base_path = config_cdn_base_path
        self.request_timeout = request_timeout
        self.config_etag = ""
        self._session = session if session is not None else requests.Session()
        self._has_config = threading.Event()
        self._stop = threading.Event()
        self._first_load = True
        self._poll_thread: Optional[threading.Thread] = None

    def config_url(self) -> str:
        """URL of this environment's server configuration."""
        return f"{self.config_cdn_base_path}/config/v1/server/{self.sdk_key}.json"

    def start_polling(self, interval: float) -> None:
        """Refetch the configuration every ``interval`` seconds in the background."""

        def poll() -> None:
            while not self._stop.wait(interval):
                try:
                    self.fetch_config(CONFIG_RETRIES)
                except Exception as exc:  # keep polling whatever went wrong
                    log.warnf("Error fetching config: %s", exc)
            log.warnf("Stopping config polling.")

        self._poll_thread = threading.Thread(target=poll, name="devcycle-config-poll", daemon=True)
        self._poll_thread.start()

    def initial_fetch(self) -> None:
        """Fetch the configuration once, with the usual retries."""
        self.fetch_config(CONFIG_RETRIES)

    def fetch_config(self, retries_remaining: int = CONFIG_RETRIES) -> None:
        """Download the configuration, retrying up to ``retries_remaining`` times.

        Raises ConfigFetchError on connection failures, a rejected SDK key,
        unexpected responses or invalid JSON. Server errors that persist
        through every retry are only logged.
        """
        headers = {"If-None-Match": self.config_etag} if self.config_etag else {}
        try:
            response = self._session.get(
                self.config_url(), headers=headers, timeout=self.request_timeout
            )
        except requests.RequestException as exc:
            if retries_remaining > 0:
                log.warnf(
                    "Retrying config fetch %d more times. Error: %s", retries_remaining, exc
                )
                return self.fetch_config(retries_remaining - 1)
            raise ConfigFetchError(f"error fetching config: {exc}") from exc

        status = response.status_code
        error: Optional[ConfigFetchError] = None
        if status == 200:
            self._set_config_from_response(response)
            return None
        if status == 304:
            return None
        if status == 403:
            self._stop.set()
            raise ConfigFetchError("invalid SDK key. Aborting config polling")
        if status >= 500:
            log.warnf("Config fetch failed. Status: %d", status)
        else:
            error = ConfigFetchError(
                f"Unexpected response code: {status}\n"
                f"Body: {response.text}\n"
                f"URL: {self.config_url()}\n"
                f"Headers: {dict(response.headers)}\n"
                "Could not download configuration. Using cached version if available "
                f"{response.headers.get('ETag', '')}\n"
            )

        if retries_remaining > 0:
            log.warnf(
                "Retrying config fetch %d more times. Status: %d", retries_remaining, status
            )
            return self.fetch_config(retries_remaining - 1)
        if error is not None:
            raise error
        return None

    def _set_config_from_response(self, response: requests.Response) -> None:
        config = response.content
        try:
            json.loads(config)
        except ValueError as exc:
            raise ConfigFetchError("invalid JSON data received for config") from exc

        self.config_etag = response.headers.get("Etag", "")
        self.set_config(config, self.config_etag)

        log.infof("Config set. ETag: %s", self.config_etag)
        if self._first_load:
            self._first_load = False
            log.infof("DevCycle SDK Initialized.")

    def set_config(self, config: bytes, etag: str) -> None:
        """Hand a configuration to the receiver and mark it as loaded."""
        self.receiver.store_config(config, etag)
        self._has_config.set()

    def has_config(self) -> bool:
        """Whether a configuration has been stored at least once."""
        return self._has_config.is_set()

    def close(self) -> None:
        """Stop background polling."""
        self._stop.set()
        thread = self._poll_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()