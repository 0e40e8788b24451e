"""
HTTP client for the remote property-management API.

Every request goes through RemoteApiClient._request, which owns retry and
backoff: 429 honours Retry-After, 5xx and transport errors back off
exponentially, and anything else non-2xx fails immediately.
"""
import logging
import time
from datetime import datetime
from typing import Callable, Iterator, Optional, Tuple

import requests

from .config import RetryPolicy
from .models import Connection

logger = logging.getLogger(__name__)

USER_AGENT = "pmpulse-hub/1.0"

RESOURCE_ENDPOINTS = {
    "properties": "properties",
    "units": "units",
    "vendors": "vendors",
    "leases": "leases",
    "work_orders": "work-orders",
    "expenses": "expenses",
}


class RemoteApiError(Exception):
    """Fatal response from the remote API (non-retryable, or retries exhausted)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def basic_auth_credentials(connection: Connection) -> Tuple[str, str]:
    """Default credential provider: HTTP basic auth with the decrypted client secret."""
    return (connection.client_id, connection.get_client_secret())


class RemoteApiClient:
    def __init__(
        self,
        connection: Connection,
        policy: Optional[RetryPolicy] = None,
        session: Optional[requests.Session] = None,
        credential_provider: Optional[Callable[[Connection], Tuple[str, str]]] = None,
    ):
        self.connection = connection
        self.policy = policy or RetryPolicy()
        self.session = session or requests.Session()
        self.credential_provider = credential_provider or basic_auth_credentials

    @property
    def base_url(self) -> str:
        return (self.connection.base_url or "").rstrip("/")

    def is_configured(self) -> bool:
        return self.connection is not None and self.connection.is_configured()

    def test_connection(self) -> bool:
        """Check the API with a one-item page. Never raises."""
        if not self.is_configured():
            logger.warning("Connection test skipped: connection_id=%s is not configured", self.connection.pk)
            return False
        try:
            self.fetch_resource("properties", per_page=1)
        except Exception as e:
            logger.warning("Connection test failed for connection_id=%s: %s", self.connection.pk, e)
            return False
        logger.info("Connection test succeeded for connection_id=%s", self.connection.pk)
        return True

    def fetch_resource(
        self,
        resource_type: str,
        page: int = 1,
        per_page: Optional[int] = None,
        modified_since: Optional[datetime] = None,
        **params,
    ) -> dict:
        """Fetch one page of a resource. Returns {"data", "page", "per_page", "has_more"}."""
        endpoint = RESOURCE_ENDPOINTS.get(resource_type)
        if endpoint is None:
            raise ValueError(f"Unknown resource type: {resource_type}")
        per_page = per_page or self.policy.per_page
        query = {"page": page, "per_page": per_page}
        if modified_since is not None:
            query["modified_since"] = modified_since.isoformat()
        query.update({k: v for k, v in params.items() if v is not None})

        payload = self._request(endpoint, query)
        if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
            raise RemoteApiError(f"Unexpected response envelope from {endpoint}: expected a 'data' list")
        items = payload["data"]
        meta = payload.get("meta") if isinstance(payload.get("meta"), dict) else {}
        if "has_more" in meta:
            has_more = bool(meta["has_more"])
        else:
            has_more = len(items) >= per_page
        return {"data": items, "page": page, "per_page": per_page, "has_more": has_more}

    def iter_pages(
        self,
        resource_type: str,
        modified_since: Optional[datetime] = None,
        per_page: Optional[int] = None,
    ) -> Iterator[dict]:
        page = 1
        while True:
            result = self.fetch_resource(
                resource_type, page=page, per_page=per_page, modified_since=modified_since
            )
            yield result
            if not result["has_more"] or not result["data"]:
                return
            if page >= self.policy.max_pages:
                logger.warning(
                    "Stopping %s pagination at max_pages=%s for connection_id=%s",
                    resource_type, self.policy.max_pages, self.connection.pk,
                )
                return
            page += 1

    def get_properties(self, **kwargs) -> dict:
        return self.fetch_resource("properties", **kwargs)

    def get_units(self, **kwargs) -> dict:
        return self.fetch_resource("units", **kwargs)

    def get_vendors(self, **kwargs) -> dict:
        return self.fetch_resource("vendors", **kwargs)

    def get_leases(self, **kwargs) -> dict:
        return self.fetch_resource("leases", **kwargs)

    def get_work_orders(self, **kwargs) -> dict:
        return self.fetch_resource("work_orders", **kwargs)

    def get_expenses(self, **kwargs) -> dict:
        return self.fetch_resource("expenses", **kwargs)

    def _request(self, endpoint: str, params: dict):
        """GET with retry on 429/5xx/transport errors, up to policy.max_retries retries."""
        url = f"{self.base_url}/v1/{endpoint}"
        max_retries = self.policy.max_retries
        attempt = 0
        while True:
            attempt += 1
            try:
                resp = self.session.get(
                    url,
                    params=params,
                    auth=self.credential_provider(self.connection),
                    headers={"Accept": "application/json", "User-Agent": USER_AGENT},
                    timeout=self.policy.request_timeout_seconds,
                )
            except requests.RequestException as e:
                if attempt > max_retries:
                    raise RemoteApiError(
                        f"Request to {endpoint} failed after {attempt} attempts: {e}"
                    ) from e
                delay = self.policy.backoff_for(attempt)
                logger.warning(
                    "Request to %s raised %s, retrying in %.1fs (attempt %d/%d)",
                    endpoint, e.__class__.__name__, delay, attempt, max_retries + 1,
                )
                time.sleep(delay)
                continue

            status = resp.status_code
            if status == 429 or status >= 500:
                if attempt > max_retries:
                    raise RemoteApiError(
                        f"Remote API error: {status} from {endpoint} after {attempt} attempts",
                        status_code=status,
                    )
                delay = self._retry_delay(resp, attempt)
                logger.warning(
                    "Request to %s failed with %s, retrying in %.1fs (attempt %d/%d)",
                    endpoint, status, delay, attempt, max_retries + 1,
                )
                time.sleep(delay)
                continue

            if status >= 400:
                raise RemoteApiError(
                    f"Remote API error: {status} - {resp.text[:500]}", status_code=status
                )
            try:
                return resp.json()
            except ValueError as e:
                raise RemoteApiError(f"Invalid JSON from {endpoint}", status_code=status) from e

    def _retry_delay(self, resp, attempt: int) -> float:
        if resp.status_code == 429:
            retry_after = resp.headers.get("Retry-After")
            if retry_after:
                try:
                    return min(max(float(retry_after), 0.0), self.policy.max_backoff_seconds)
                except ValueError:
                    pass
        return self.policy.backoff_for(attempt)
