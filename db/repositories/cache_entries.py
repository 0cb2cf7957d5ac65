"""Request cache persistence — warm-start entries shared across sessions."""
import logging
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import RequestCacheEntry

logger = logging.getLogger(__name__)


async def get_entry(session: AsyncSession, cache_key: str) -> Optional[RequestCacheEntry]:
    """Return the persisted entry for cache_key, or None."""
    result = await session.execute(
        select(RequestCacheEntry).where(RequestCacheEntry.cache_key == cache_key)
    )
    return result.scalar_one_or_none()


async def put_entry(
    session: AsyncSession,
    cache_key: str,
    value: Any,
    stored_at: float,
    owner_id: Optional[str] = None,
) -> RequestCacheEntry:
    """Insert or overwrite the entry for cache_key."""
    entry = await get_entry(session, cache_key)
    if entry is None:
        entry = RequestCacheEntry(cache_key=cache_key)
        session.add(entry)
    entry.value = value
    entry.stored_at = stored_at
    entry.owner_id = owner_id
    await session.flush()
    return entry


async def delete_entry(session: AsyncSession, cache_key: str) -> int:
    """Delete the entry for cache_key. Returns rows removed."""
    result = await session.execute(
        delete(RequestCacheEntry).where(RequestCacheEntry.cache_key == cache_key)
    )
    return result.rowcount


async def delete_for_owner(session: AsyncSession, owner_id: str) -> int:
    """Delete every entry owned by owner_id. Returns rows removed."""
    result = await session.execute(
        delete(RequestCacheEntry).where(RequestCacheEntry.owner_id == owner_id)
    )
    return result.rowcount
