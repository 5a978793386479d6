"""
Supabase client and runtime settings.

This module contains *only* configuration loading and the database connection
setup. Nothing here is created at import time: the application builds one
Settings and one client per process (see api/main.py) and passes them down.

Environment variables required:
- SUPABASE_URL: Your Supabase project URL
- SUPABASE_KEY: Your Supabase API key (use a server-side key only on the backend)

Optional:
- GCASH_GATEWAY_URL / PAYPAL_GATEWAY_URL: payment gateway bridge endpoints
- PAYMENT_GATEWAY_API_KEY: bearer token for the gateway bridges
- PAYMENT_TIMEOUT_SECONDS: gateway request timeout (default 15)
- WALLET_MAX_RETRIES: optimistic-concurrency retries for wallet writes (default 5)
- CHECKOUT_LOCK_TTL_SECONDS: lifetime of a per-user checkout lease (default 60)
- LOG_LEVEL: root log level (default INFO)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

# The dependency is `supabase` (supabase-py). If your editor can't resolve it,
# install it in your environment: `pip install supabase`.
from supabase import AsyncClient, acreate_client  # type: ignore[import-not-found]

# Look for .env in the project root
ENV_PATH = Path(__file__).parent.parent / ".env"


@dataclass(frozen=True, slots=True)
class Settings:
    supabase_url: str
    supabase_key: str
    gcash_gateway_url: Optional[str] = None
    paypal_gateway_url: Optional[str] = None
    payment_gateway_api_key: Optional[str] = None
    payment_timeout_seconds: float = 15.0
    wallet_max_retries: int = 5
    checkout_lock_ttl_seconds: int = 60
    log_level: str = "INFO"


def _require(env: Mapping[str, str], name: str, hint: str) -> str:
    value = env.get(name)
    if not value:
        raise RuntimeError(f"Missing environment variable: {name}. {hint}")
    return value


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Read settings from the environment (after loading .env).

    Args:
        env: Mapping to read instead of os.environ (tests)

    Raises:
        RuntimeError: if a required variable is missing
    """

    if env is None:
        load_dotenv(dotenv_path=ENV_PATH)
        env = os.environ

    return Settings(
        supabase_url=_require(
            env, "SUPABASE_URL", "Set SUPABASE_URL to your Supabase project URL."
        ),
        supabase_key=_require(
            env, "SUPABASE_KEY", "Set SUPABASE_KEY to your Supabase API key."
        ),
        gcash_gateway_url=env.get("GCASH_GATEWAY_URL") or None,
        paypal_gateway_url=env.get("PAYPAL_GATEWAY_URL") or None,
        payment_gateway_api_key=env.get("PAYMENT_GATEWAY_API_KEY") or None,
        payment_timeout_seconds=float(env.get("PAYMENT_TIMEOUT_SECONDS", "15")),
        wallet_max_retries=int(env.get("WALLET_MAX_RETRIES", "5")),
        checkout_lock_ttl_seconds=int(env.get("CHECKOUT_LOCK_TTL_SECONDS", "60")),
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
    )


async def create_supabase_client(settings: Settings) -> AsyncClient:
    """Create the async Supabase client. Call once per process."""

    return await acreate_client(settings.supabase_url, settings.supabase_key)


__all__ = ["Settings", "load_settings", "create_supabase_client"]
