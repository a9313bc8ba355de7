"""
Profile source capability.

The engine only ever asks for a normalized ProfileSnapshot. Whatever talks
to the code-hosting API (rate limits, OAuth, pagination) lives behind this
interface in another service.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional

import requests

from skillforge.assessment.scorer import ProfileSnapshot
from skillforge.core.config import PROFILE_SOURCE_TIMEOUT_S, PROFILE_SOURCE_URL
from skillforge.core.errors import ExternalServiceError, ValidationError

logger = logging.getLogger(__name__)

# Worth another attempt; any other requests error is a client-side problem
_TRANSIENT = (requests.ConnectionError, requests.Timeout, requests.exceptions.ChunkedEncodingError)


class ProfileSource(ABC):
    @abstractmethod
    def fetch_profile_snapshot(self, user_id: int) -> ProfileSnapshot:
        """Return the current snapshot or raise ExternalServiceError."""


class HttpProfileSource(ProfileSource):
    """
    Fetches snapshots from the profile normalizer service:
        GET {base_url}/profiles/{user_id}/snapshot -> ProfileSnapshot JSON

    Connection drops, timeouts and 5xx are retryable. 4xx, bad bodies and
    other request failures (redirect loops, invalid URLs) are not.
    """

    def __init__(self, base_url: str, timeout_s: float = PROFILE_SOURCE_TIMEOUT_S,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._session = session or requests.Session()

    def fetch_profile_snapshot(self, user_id: int) -> ProfileSnapshot:
        url = f"{self.base_url}/profiles/{user_id}/snapshot"
        try:
            resp = self._session.get(url, timeout=self.timeout_s)
        except _TRANSIENT as exc:
            raise ExternalServiceError(f"profile source unreachable at {url}: {exc}") from exc
        except requests.RequestException as exc:
            raise ExternalServiceError(f"request to {url} failed: {exc}", retryable=False) from exc

        if resp.status_code >= 500:
            raise ExternalServiceError(f"profile source returned HTTP {resp.status_code}")
        if resp.status_code >= 400:
            raise ExternalServiceError(
                f"profile source rejected request: HTTP {resp.status_code}", retryable=False
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise ExternalServiceError(f"invalid JSON from {url}", retryable=False) from exc

        try:
            return ProfileSnapshot.from_dict(data)
        except ValidationError as exc:
            raise ExternalServiceError(f"malformed snapshot from {url}: {exc}", retryable=False) from exc


def get_profile_source() -> ProfileSource:
    """Configured HTTP source, or a non-retryable error when none is set up."""
    if not PROFILE_SOURCE_URL:
        raise ExternalServiceError("PROFILE_SOURCE_URL is not configured", retryable=False)
    return HttpProfileSource(PROFILE_SOURCE_URL)
