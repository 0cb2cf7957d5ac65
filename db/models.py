"""SQLAlchemy 2.0 ORM models for the CRM association store.

Covers 2 tables across 2 schemas:
  - crm: entity_documents (every CRM entity as a JSON document, addressed by
         collection path + document id, nested collections included)
  - cache: request_cache_entries (cross-session persistence for RequestCache)
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    UUID,
    DateTime,
    Float,
    Integer,
    JSON,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Shared base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    pass


# ===========================================================================
# Schema: crm
# ===========================================================================


class EntityDocument(Base):
    """crm.entity_documents — one CRM entity (company, deal, nested location...).

    ``collection_path`` is the full path of the owning collection, e.g.
    ``tenants/t1/crm_deals`` or ``tenants/t1/crm_companies/c1/locations``.
    ``version`` starts at 1 and is bumped by every write; writers that pass
    the version they read get optimistic concurrency.
    """

    __tablename__ = "entity_documents"
    __table_args__ = (
        UniqueConstraint("collection_path", "doc_id", name="uq_entity_document_path"),
        {"schema": "crm"},
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    collection_path: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    doc_id: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<EntityDocument {self.collection_path}/{self.doc_id} v{self.version}>"


# ===========================================================================
# Schema: cache
# ===========================================================================


class RequestCacheEntry(Base):
    """cache.request_cache_entries — warm-start copies of RequestCache values.

    ``stored_at`` is epoch seconds (same clock as the in-memory cache) and
    ``owner_id`` is the session identity allowed to trust the entry.
    """

    __tablename__ = "request_cache_entries"
    __table_args__ = {"schema": "cache"}

    cache_key: Mapped[str] = mapped_column(Text, primary_key=True)
    owner_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)
    stored_at: Mapped[float] = mapped_column(Float, nullable=False)

    def __repr__(self) -> str:
        return f"<RequestCacheEntry {self.cache_key} owner={self.owner_id}>"
