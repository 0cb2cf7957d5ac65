"""Entity document repository — path-addressed JSON documents with versions."""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import EntityDocument

logger = logging.getLogger(__name__)


async def get(
    session: AsyncSession, collection_path: str, doc_id: str
) -> Optional[EntityDocument]:
    """Return the document at collection_path/doc_id, or None."""
    result = await session.execute(
        select(EntityDocument)
        .where(EntityDocument.collection_path == collection_path)
        .where(EntityDocument.doc_id == doc_id)
    )
    return result.scalar_one_or_none()


async def exists(session: AsyncSession, collection_path: str, doc_id: str) -> bool:
    """Return True if a document exists at collection_path/doc_id."""
    result = await session.execute(
        select(EntityDocument.id)
        .where(EntityDocument.collection_path == collection_path)
        .where(EntityDocument.doc_id == doc_id)
    )
    return result.scalar_one_or_none() is not None


async def create(
    session: AsyncSession, collection_path: str, doc_id: str, data: dict
) -> EntityDocument:
    """Insert a new document at version 1."""
    document = EntityDocument(
        collection_path=collection_path,
        doc_id=doc_id,
        data=dict(data),
        version=1,
    )
    session.add(document)
    await session.flush()
    return document


async def list_doc_ids(
    session: AsyncSession, collection_path: str, limit: Optional[int] = None
) -> list[str]:
    """Return document ids in a collection, ordered by id.

    limit caps the number of ids returned (None means no cap).
    """
    stmt = (
        select(EntityDocument.doc_id)
        .where(EntityDocument.collection_path == collection_path)
        .order_by(EntityDocument.doc_id)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return [row[0] for row in result.all()]


async def set_field(
    session: AsyncSession,
    collection_path: str,
    doc_id: str,
    field: str,
    value: Any,
    expected_version: Optional[int] = None,
) -> Optional[EntityDocument]:
    """Set one top-level field of a document and bump its version.

    When expected_version is given the update only applies if the stored
    version still matches. Returns the updated document, or None when the
    document is missing or its version moved on (callers tell the two apart
    with exists()).
    """
    document = await get(session, collection_path, doc_id)
    if document is None:
        return None
    if expected_version is not None and document.version != expected_version:
        return None

    # The UPDATE only matches the version read above.
    read_version = document.version
    data = {**(document.data or {}), field: value}
    result = await session.execute(
        update(EntityDocument)
        .where(EntityDocument.id == document.id)
        .where(EntityDocument.version == read_version)
        .values(
            data=data,
            version=read_version + 1,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        logger.debug(
            "Version guard rejected write to %s/%s (read v%d)",
            collection_path, doc_id, read_version,
        )
        return None

    await session.flush()
    await session.refresh(document)
    return document
