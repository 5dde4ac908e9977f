"""
HTTP client for the config server protocol.

GET  {server}/archetypes/{name}
GET  {server}/archetypes/{name}/rules
GET  {server}/archetypes/{name}/rules/{rule}
GET  {server}/archetypes/{name}/exemptions
POST {server}/telemetry
"""

import logging
import re
import time
from typing import Any, Dict, Optional

import httpx

from .errors import ConfigurationError
from .schema import NAME_PATTERN

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-Id"
SHARED_SECRET_HEADER = "X-Shared-Secret"

_NAME_RE = re.compile(NAME_PATTERN)


def is_valid_name(name: str) -> bool:
    """Check an archetype/rule name is safe to use as a path segment."""
    return isinstance(name, str) and bool(_NAME_RE.fullmatch(name))


class RemoteConfigClient:
    """Thin wrapper over httpx with retries and correlation headers.

    A caller-supplied ``client`` (e.g. a FastAPI TestClient) is used as-is
    and never closed by this class.
    """

    def __init__(self, base_url: str, shared_secret: Optional[str] = None,
                 retries: int = 3, retry_delay: float = 1.0, timeout: float = 10.0,
                 client: Optional[httpx.Client] = None):
        self.base_url = base_url.rstrip("/")
        self.shared_secret = shared_secret
        self.retries = max(1, retries)
        self.retry_delay = retry_delay
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _headers(self, correlation_id: str, with_secret: bool = False) -> Dict[str, str]:
        headers = {REQUEST_ID_HEADER: correlation_id}
        if with_secret and self.shared_secret:
            headers[SHARED_SECRET_HEADER] = self.shared_secret
        return headers

    def _get_json(self, path: str, correlation_id: str, with_secret: bool = False,
                  allow_missing: bool = False) -> Any:
        url = f"{self.base_url}{path}"
        last_error: Optional[Exception] = None
        for attempt in range(1, self.retries + 1):
            try:
                response = self._client.get(url, headers=self._headers(correlation_id, with_secret))
                if allow_missing and response.status_code == 404:
                    return None
                response.raise_for_status()
                return response.json()
            except (httpx.HTTPError, ValueError) as e:
                last_error = e
                logger.warning("[%s] GET %s failed (attempt %d/%d): %s",
                               correlation_id, url, attempt, self.retries, e)
                if attempt < self.retries and self.retry_delay > 0:
                    time.sleep(self.retry_delay)
        raise ConfigurationError(f"Failed to fetch {url}: {last_error}", url=url)

    def _require_name(self, name: str, kind: str) -> None:
        if not is_valid_name(name):
            raise ConfigurationError(f"Invalid {kind} name: {name!r}")

    def fetch_archetype(self, name: str, correlation_id: str) -> Any:
        self._require_name(name, "archetype")
        return self._get_json(f"/archetypes/{name}", correlation_id)

    def fetch_rule(self, archetype: str, rule: str, correlation_id: str) -> Any:
        self._require_name(archetype, "archetype")
        self._require_name(rule, "rule")
        return self._get_json(f"/archetypes/{archetype}/rules/{rule}", correlation_id,
                              allow_missing=True)

    def fetch_exemptions(self, archetype: str, correlation_id: str) -> Any:
        self._require_name(archetype, "archetype")
        return self._get_json(f"/archetypes/{archetype}/exemptions", correlation_id,
                              with_secret=True)

    def post_telemetry(self, event: Dict[str, Any], correlation_id: str) -> bool:
        """Send one telemetry event. Never raises; returns delivery status."""
        url = f"{self.base_url}/telemetry"
        try:
            response = self._client.post(url, json=event,
                                         headers=self._headers(correlation_id, with_secret=True))
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.debug("[%s] telemetry POST failed: %s", correlation_id, e)
            return False
