"""Environment-driven settings for the billing integration."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

DEFAULT_STRIPE_API_BASE = "https://api.stripe.com"
DEFAULT_BILLING_TIMEOUT_SECONDS = 10.0
DEFAULT_RECONCILE_MAX_ATTEMPTS = 3


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"Environment variable '{name}' must be a number") from exc


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"Environment variable '{name}' must be an integer") from exc


@dataclass(frozen=True)
class BillingSettings:
    """Credentials and limits used when talking to the billing provider.

    Attributes
    ----------
    api_key : str
        Secret key sent as a bearer token. Never logged.
    api_base : str
        Scheme and host of the provider's REST API.
    timeout : float
        Seconds before an outbound call is abandoned.
    max_attempts : int
        Upper bound on persistence retries during reconciliation.
    """

    api_key: str
    api_base: str = DEFAULT_STRIPE_API_BASE
    timeout: float = DEFAULT_BILLING_TIMEOUT_SECONDS
    max_attempts: int = DEFAULT_RECONCILE_MAX_ATTEMPTS

    @classmethod
    def from_env(cls, api_key: Optional[str] = None) -> "BillingSettings":
        """Build settings from ``.env``/process environment.

        Raises
        ------
        ConfigurationError
            If ``STRIPE_SECRET_KEY`` is not set or a numeric value is malformed.
        """
        load_dotenv()
        key = api_key or os.getenv("STRIPE_SECRET_KEY")
        if not key:
            raise ConfigurationError("Environment variable 'STRIPE_SECRET_KEY' is not set")
        api_base = (os.getenv("STRIPE_API_BASE") or DEFAULT_STRIPE_API_BASE).rstrip("/")
        timeout = _env_float("BILLING_TIMEOUT_SECONDS", DEFAULT_BILLING_TIMEOUT_SECONDS)
        max_attempts = _env_int("RECONCILE_MAX_ATTEMPTS", DEFAULT_RECONCILE_MAX_ATTEMPTS)
        if timeout <= 0:
            raise ConfigurationError("BILLING_TIMEOUT_SECONDS must be positive")
        if max_attempts < 1:
            raise ConfigurationError("RECONCILE_MAX_ATTEMPTS must be at least 1")
        return cls(
            api_key=key,
            api_base=api_base,
            timeout=timeout,
            max_attempts=max_attempts,
        )


def reconcile_max_attempts() -> int:
    """Return the persistence retry bound without requiring billing credentials."""
    load_dotenv()
    attempts = _env_int("RECONCILE_MAX_ATTEMPTS", DEFAULT_RECONCILE_MAX_ATTEMPTS)
    return max(attempts, 1)


__all__ = ["BillingSettings", "reconcile_max_attempts"]
