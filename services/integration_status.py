"""Cached Gmail/Calendar status polling on top of RequestCache.

Status changes slowly and the remote check is expensive, so each status is
fetched at most once per TTL per user, concurrent pollers share one call,
and a fresh value persisted by an earlier session of the same user is
reused. Error payloads are returned to the caller but never cached.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from config import DEFAULT_STATUS_CACHE_TTL
from services.errors import LookupFailure
from services.request_cache import RequestCache, SqlCacheStore
from tools import integration_status as status_tools

logger = logging.getLogger(__name__)

StatusFetcher = Callable[[str, str], Dict[str, Any]]


def status_cache_key(service: str, tenant_id: str, user_id: str) -> str:
    return f"status:{service}:{tenant_id}:{user_id}"


class IntegrationStatusService:
    """Gmail and Calendar connection status for CRM users.

    Args:
        cache: RequestCache shared by every status caller of the session.
        fetchers: Optional override of the per-service RPC functions.
    """

    def __init__(self, cache: RequestCache, fetchers: Optional[Dict[str, StatusFetcher]] = None):
        self.cache = cache
        self._fetchers = fetchers or {
            "gmail": status_tools.get_gmail_status,
            "calendar": status_tools.get_calendar_status,
        }

    @classmethod
    def for_user(
        cls,
        user_id: str,
        ttl_seconds: float = DEFAULT_STATUS_CACHE_TTL,
        persist: bool = True,
        fetchers: Optional[Dict[str, StatusFetcher]] = None,
    ) -> "IntegrationStatusService":
        """Build a service whose cache persists entries owned by user_id."""
        store = SqlCacheStore() if persist else None
        return cls(RequestCache(ttl_seconds, store=store, owner_id=user_id), fetchers=fetchers)

    async def _get(self, service: str, user_id: str, tenant_id: str) -> Dict[str, Any]:
        fetch = self._fetchers[service]

        async def _fetch() -> Dict[str, Any]:
            result = await asyncio.to_thread(fetch, user_id, tenant_id)
            if result.get("error"):
                raise LookupFailure(result["error"])
            return result

        try:
            return await self.cache.get_or_fetch(status_cache_key(service, tenant_id, user_id), _fetch)
        except LookupFailure as exc:
            logger.warning("%s status unavailable for %s: %s", service, user_id, exc)
            return {"connected": False, "syncStatus": "not_synced", "error": str(exc)}

    async def get_gmail_status(self, user_id: str, tenant_id: str) -> Dict[str, Any]:
        return await self._get("gmail", user_id, tenant_id)

    async def get_calendar_status(self, user_id: str, tenant_id: str) -> Dict[str, Any]:
        return await self._get("calendar", user_id, tenant_id)

    async def get_google_status(self, user_id: str, tenant_id: str) -> Dict[str, Dict[str, Any]]:
        """Return {'gmail': ..., 'calendar': ...}, both checked in parallel."""
        gmail, calendar = await asyncio.gather(
            self.get_gmail_status(user_id, tenant_id),
            self.get_calendar_status(user_id, tenant_id),
        )
        return {"gmail": gmail, "calendar": calendar}

    async def refresh(self, user_id: str, tenant_id: str) -> None:
        """Forget cached statuses (e.g. after connecting or disconnecting)."""
        for service in self._fetchers:
            await self.cache.invalidate(status_cache_key(service, tenant_id, user_id))
