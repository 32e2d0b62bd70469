import logging
from typing import Any, Mapping, Optional
from urllib.parse import urljoin

import requests

from ..config import BillingSettings
from ..errors import ConfigurationError, SyncUnavailable
from .snapshot import BillingSnapshot

logger = logging.getLogger(__name__)


class BillingClient:
    """Read-only client for the billing provider's subscription API."""

    def __init__(
        self,
        settings: Optional[BillingSettings] = None,
        *,
        session: Optional[requests.Session] = None,
    ):
        # Raises ConfigurationError when the secret key is absent.
        self.settings = settings or BillingSettings.from_env()
        self.base_url = self.settings.api_base.rstrip("/")
        self.timeout = self.settings.timeout
        self.session = session or requests.Session()

    # -------- headers --------
    @property
    def auth_headers(self) -> Mapping[str, str]:
        return {
            "Accept": "application/json",
            "Authorization": f"Bearer {self.settings.api_key}",
        }

    # -------- core request --------
    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict] = None,
    ) -> Any:
        url = urljoin(self.base_url + "/", path.lstrip("/"))
        try:
            r = self.session.request(
                method=method.upper(),
                url=url,
                headers=self.auth_headers,
                params=params,
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            logger.warning(f"Billing request {method.upper()} {path} timed out after {self.timeout}s")
            raise SyncUnavailable(f"Billing system timed out: {exc}") from exc
        except requests.RequestException as exc:
            logger.warning(f"Billing request {method.upper()} {path} failed: {exc}")
            raise SyncUnavailable(f"Billing system unreachable: {exc}") from exc

        if r.status_code in (401, 403):
            # Do not echo the response body; it may quote the key prefix.
            raise ConfigurationError(
                f"Billing system rejected the configured credentials (HTTP {r.status_code})"
            )
        try:
            r.raise_for_status()
        except requests.HTTPError as exc:
            raise SyncUnavailable(f"Billing system returned HTTP {r.status_code}") from exc

        try:
            payload = r.json() if r.content else None
        except ValueError as exc:
            raise SyncUnavailable("Billing system returned a non-JSON response") from exc
        if isinstance(payload, dict) and payload.get("error"):
            error = payload["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise SyncUnavailable(f"Billing system error: {message}")
        return payload

    # -------- API callers --------
    def list_subscriptions(
        self, customer_ref: str, *, status: str = "all", limit: int = 1
    ) -> list[dict]:
        """Return the customer's subscriptions, most recent first."""
        if not customer_ref:
            raise ValueError("customer_ref is required")
        logger.debug(f"Listing billing subscriptions for customer {customer_ref}")
        payload = self._request(
            "GET",
            "/v1/subscriptions",
            params={"customer": customer_ref, "status": status, "limit": limit},
        )
        if not payload:
            return []
        data = payload.get("data") if isinstance(payload, dict) else None
        if data is None:
            raise SyncUnavailable("Billing subscription list response has no 'data' field")
        return list(data)

    def latest_subscription(self, customer_ref: str) -> Optional[BillingSnapshot]:
        """Return the single most recent subscription regardless of status.

        ``None`` means the provider reports no subscription for the customer.
        """
        subscriptions = self.list_subscriptions(customer_ref, status="all", limit=1)
        if not subscriptions:
            return None
        try:
            return BillingSnapshot.from_provider(customer_ref, subscriptions[0])
        except ValueError as exc:
            raise SyncUnavailable(f"Malformed billing subscription payload: {exc}") from exc


__all__ = ["BillingClient"]
