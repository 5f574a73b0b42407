"""
OMDb API client.
Handles the API key, client-side rate limiting and transport error mapping.
"""

import logging
import os
import threading
import time
from typing import Any, Dict, List, Optional

import requests

from ..models import ConfigError, ProviderRejected, ProviderUnavailable
from .base import MetadataProvider, RawRecord

logger = logging.getLogger(__name__)

# "Too many results." is OMDb's answer to very short titles; no usable match either way
_NO_MATCH_ERRORS = ("not found", "incorrect imdb id", "too many results")
_REJECTED_ERRORS = ("invalid api key", "no api key", "not activated")
_REJECTED_STATUS = {401, 403}
_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class OmdbProvider(MetadataProvider):
    """
    The Open Movie Database client.
    OMDb returns HTTP 200 with ``{"Response": "False", "Error": ...}`` for misses.
    """

    name = "omdb"
    BASE_URL = "https://www.omdbapi.com/"

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.api_key = config.get("api_key") or os.getenv("OMDB_API_KEY")
        if not self.api_key:
            raise ConfigError(
                "OMDb API key not configured. Set provider.api_key or OMDB_API_KEY.\n"
                "Get one at https://www.omdbapi.com/apikey.aspx"
            )
        self.base_url = config.get("base_url", self.BASE_URL)
        self.timeout = config.get("timeout", 10)
        self.rate_limit = config.get("rate_limit", 35)
        self.rate_window = config.get("rate_window", 10.0)

        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})

        # Calls arrive from executor threads
        self._rate_lock = threading.Lock()
        self.request_count = 0
        self.window_start = time.monotonic()

    def _rate_limit(self):
        """Stay under ``rate_limit`` requests per ``rate_window`` seconds."""
        with self._rate_lock:
            self.request_count += 1
            if self.request_count >= self.rate_limit:
                elapsed = time.monotonic() - self.window_start
                if elapsed < self.rate_window:
                    time.sleep(self.rate_window - elapsed)
                self.request_count = 0
                self.window_start = time.monotonic()

    def get(self, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Make a GET request. Returns None when OMDb reports no match."""
        self._rate_limit()

        try:
            response = self.session.get(
                self.base_url,
                params={"apikey": self.api_key, **params},
                timeout=self.timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            raise ProviderUnavailable(f"OMDb request failed: {e}") from e
        except requests.RequestException as e:
            raise ProviderUnavailable(f"OMDb request error: {e}") from e

        if response.status_code in _REJECTED_STATUS:
            raise ProviderRejected(f"OMDb refused the request (HTTP {response.status_code}), check the API key")
        if response.status_code in _RETRYABLE_STATUS:
            raise ProviderUnavailable(f"OMDb returned HTTP {response.status_code}")
        try:
            response.raise_for_status()
            data = response.json()
        except (requests.HTTPError, ValueError) as e:
            raise ProviderUnavailable(f"OMDb returned an unusable response: {e}") from e

        if str(data.get("Response", "True")).lower() == "false":
            error = str(data.get("Error", ""))
            if any(marker in error.lower() for marker in _NO_MATCH_ERRORS):
                logger.debug(f"OMDb miss for {params}: {error}")
                return None
            if any(marker in error.lower() for marker in _REJECTED_ERRORS):
                raise ProviderRejected(f"OMDb rejected the request: {error}")
            raise ProviderUnavailable(f"OMDb error: {error or 'unknown'}")

        return data

    def lookup_by_id(self, external_id: str) -> Optional[RawRecord]:
        """Get full details for one title."""
        return self.get({"i": external_id, "plot": "full"})

    def lookup_by_title(self, title: str, year: Optional[int] = None) -> List[RawRecord]:
        params = {"s": title}
        if year:
            params["y"] = str(year)
        data = self.get(params)
        if not data:
            return []
        return list(data.get("Search") or [])

    def close(self) -> None:
        self.session.close()
