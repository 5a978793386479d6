"""
Per-user checkout lease.

Request handlers are stateless and may run in different processes, so the
lease lives in the document store: checkout_locks/{user_id} is created if
absent, and an expired lease can be taken over under its version. A second
checkout for the same user while the lease is held fails fast with
CheckoutInProgress (retryable). Different users never contend.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator

from domain.errors import CheckoutInProgress, StoreConflict, StoreUnavailable
from domain.time import Clock, parse_utc_datetime, to_iso_utc, utc_now
from repositories import document_store as ds
from repositories.document_store import DocumentStore

logger = logging.getLogger(__name__)

CHECKOUT_LOCKS: str = "checkout_locks"


class CheckoutLock:
    def __init__(self, store: DocumentStore, ttl_seconds: int = 60, clock: Clock = utc_now) -> None:
        self._store = store
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        version = await self._acquire(user_id)
        try:
            yield
        finally:
            await self._release(user_id, version)

    async def _acquire(self, user_id: str) -> int:
        now = self._clock()
        payload = {
            "user_id": user_id,
            "acquired_at": to_iso_utc(now, name="acquired_at"),
            "expires_at": to_iso_utc(now + self._ttl, name="expires_at"),
        }

        existing = await self._store.get(CHECKOUT_LOCKS, user_id)
        if existing is None:
            write = ds.create(CHECKOUT_LOCKS, user_id, payload)
            version = 1
        else:
            expires_at = parse_utc_datetime(existing.data.get("expires_at", now.isoformat()))
            if expires_at > now:
                raise CheckoutInProgress(user_id)
            logger.warning("Taking over expired checkout lease for user %s", user_id)
            write = ds.set_(CHECKOUT_LOCKS, user_id, payload, expected_version=existing.version)
            version = existing.version + 1

        try:
            await self._store.commit([write])
        except StoreConflict:
            raise CheckoutInProgress(user_id) from None
        return version

    async def _release(self, user_id: str, version: int) -> None:
        try:
            await self._store.commit([ds.delete(CHECKOUT_LOCKS, user_id, expected_version=version)])
        except StoreConflict:
            logger.warning("Checkout lease for user %s was taken over before release", user_id)
        except StoreUnavailable:
            logger.warning("Could not release checkout lease for user %s; it will expire", user_id)


__all__ = ["CHECKOUT_LOCKS", "CheckoutLock"]
