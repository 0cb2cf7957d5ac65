"""EnrichmentResolver — fill placeholder association records from the store.

Lookup order for one record, stopping at the first hit:
  1. scoped      nested under the parent (locations under their company)
  2. top-level   the tenant-level collection for the related entity kind
  3. scan        every parent's nested collection, capped and one at a time;
                 only when the relation is scoped and a parent is known
If nothing matches, a "{Label} {id}" placeholder carrying an errorNote is
returned instead of an error.

Resolved records are written back onto the owning entity's associations in
the background, so the next read is already enriched.
"""
import asyncio
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Union

from sqlalchemy.exc import SQLAlchemyError

import db.repositories.documents as documents_repo
from config import DEFAULT_ASSOCIATION_CACHE_TTL
from schemas.associations import (
    RELATION_KINDS,
    AssociationRecord,
    AssociationSet,
    EntityKind,
    RelationKind,
)
from services.association_service import AssociationService
from services.collections import collection_path, scope_parent_kind, scoped_collection_path
from services.errors import LookupFailure
from services.normalizer import RawAssociation, normalize, relation_kind
from services.request_cache import RequestCache

logger = logging.getLogger(__name__)

_NAME_FIELDS = ("name", "fullName", "companyName", "title")

Strategy = Tuple[str, Callable[[], Awaitable[Dict[str, Any]]]]


def placeholder(kind: RelationKind, record_id: str, note: Optional[str] = None) -> AssociationRecord:
    """Placeholder shown when a related entity cannot be resolved."""
    return AssociationRecord(
        id=record_id,
        name=f"{kind.label} {record_id}",
        error_note=note or f"{kind.label} data not accessible",
    )


class EnrichmentResolver:
    """Resolve display data for association records.

    Args:
        service: AssociationService used for tenant scope, reads and write-back.
        cache: RequestCache for document lookups (a private one by default).
        scan_limit: Maximum parent documents probed by the exhaustive scan.
    """

    def __init__(
        self,
        service: AssociationService,
        cache: Optional[RequestCache] = None,
        scan_limit: int = 200,
    ):
        self.service = service
        self.tenant_id = service.tenant_id
        self.cache = cache or RequestCache(DEFAULT_ASSOCIATION_CACHE_TTL)
        self.scan_limit = scan_limit
        self._db = service.db
        self._scan_slots = asyncio.Semaphore(1)
        self._pending_writes: set = set()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def _fetch_document(self, path: str, doc_id: str) -> Dict[str, Any]:
        async def _fetch() -> Dict[str, Any]:
            async with self._db() as session:
                document = await documents_repo.get(session, path, doc_id)
                data = dict(document.data or {}) if document is not None else None
            if data is None:
                raise LookupFailure(f"{path}/{doc_id} not found")
            return data

        return await self.cache.get_or_fetch(f"doc:{path}/{doc_id}", _fetch)

    async def _scan(self, kind: RelationKind, record_id: str, known_parent: str) -> Dict[str, Any]:
        parent_kind = scope_parent_kind(kind)
        async with self._scan_slots:
            async with self._db() as session:
                parent_ids = await documents_repo.list_doc_ids(
                    session, collection_path(self.tenant_id, parent_kind), limit=self.scan_limit
                )
                logger.warning(
                    "Scanning %d %s documents for %s %s",
                    len(parent_ids), parent_kind.value, kind.label.lower(), record_id,
                )
                for parent_id in parent_ids:
                    if parent_id == known_parent:
                        continue
                    path = scoped_collection_path(self.tenant_id, kind, parent_id)
                    document = await documents_repo.get(session, path, record_id)
                    if document is not None:
                        logger.info(
                            "Found %s %s under %s %s",
                            kind.label.lower(), record_id, parent_kind.value, parent_id,
                        )
                        return dict(document.data or {})
        raise LookupFailure(f"{kind.label} {record_id} not found under any {parent_kind.value}")

    def _strategies(self, kind: RelationKind, record_id: str, parent_id: Optional[str]) -> List[Strategy]:
        scoped = scoped_collection_path(self.tenant_id, kind, parent_id) if parent_id else None
        top_level = collection_path(self.tenant_id, kind.entity_kind)

        strategies: List[Strategy] = []
        if scoped:
            strategies.append(("scoped", lambda: self._fetch_document(scoped, record_id)))
        strategies.append(("top-level", lambda: self._fetch_document(top_level, record_id)))
        if scoped:
            strategies.append(("scan", lambda: self._scan(kind, record_id, parent_id)))
        return strategies

    @staticmethod
    def _merge(kind: RelationKind, record: AssociationRecord, data: Dict[str, Any]) -> AssociationRecord:
        fields = dict(data)
        fields["id"] = record.id
        fields.pop("errorNote", None)
        if not any(isinstance(fields.get(name), str) and fields[name].strip() for name in _NAME_FIELDS):
            full_name = " ".join(
                part for part in (fields.get("firstName"), fields.get("lastName")) if isinstance(part, str) and part
            )
            if full_name:
                fields["fullName"] = full_name
        if kind is RelationKind.LOCATIONS and not fields.get("address"):
            fields["address"] = fields.get("title") if isinstance(fields.get("title"), str) else ""
        if kind is RelationKind.COMPANIES:
            # primary/secondary describes the link, not the company document.
            fields["type"] = record.type
        return normalize(fields, kind)

    async def resolve(
        self,
        relation: Union[RelationKind, str],
        record: RawAssociation,
        parent_id: Optional[str] = None,
    ) -> AssociationRecord:
        """Return record with display fields filled in, or a placeholder."""
        kind = relation_kind(relation)
        record = normalize(record, kind)

        for name, attempt in self._strategies(kind, record.id, parent_id):
            try:
                data = await attempt()
            except (LookupFailure, SQLAlchemyError) as exc:
                logger.info("%s lookup for %s %s failed: %s", name, kind.label.lower(), record.id, exc)
                continue
            return self._merge(kind, record, data)

        logger.warning("%s %s not found in any collection", kind.label, record.id)
        return placeholder(kind, record.id)

    async def _resolve_isolated(
        self, kind: RelationKind, record: AssociationRecord, parent_id: Optional[str]
    ) -> AssociationRecord:
        try:
            return await self.resolve(kind, record, parent_id)
        except Exception as exc:
            logger.warning("Error resolving %s %s: %s", kind.label.lower(), record.id, exc)
            return placeholder(kind, record.id, note=str(exc))

    # ------------------------------------------------------------------
    # Whole-set enrichment
    # ------------------------------------------------------------------

    async def enrich_associations(
        self,
        entity_kind: Union[EntityKind, str],
        entity_id: str,
        associations: Optional[AssociationSet] = None,
        parent_id: Optional[str] = None,
        relations: Optional[Iterable[Union[RelationKind, str]]] = None,
        write_back: bool = True,
    ) -> AssociationSet:
        """Resolve every placeholder record of an entity's associations.

        Records are resolved independently; one failure only turns that
        record into a placeholder. The parent scope defaults to the entity
        itself for companies, else its primary company.
        """
        if associations is None:
            associations = await self.service.get_associations(entity_kind, entity_id)
        if parent_id is None:
            if str(getattr(entity_kind, "value", entity_kind)) == EntityKind.COMPANY.value:
                parent_id = entity_id
            else:
                parent_id = associations.primary_company_id()

        kinds = [relation_kind(r) for r in relations] if relations else list(RELATION_KINDS)
        jobs = [
            (kind, index, record)
            for kind in kinds
            for index, record in enumerate(associations.relation(kind))
            if record.is_placeholder
        ]
        if not jobs:
            return associations

        resolved = await asyncio.gather(
            *(self._resolve_isolated(kind, record, parent_id) for kind, _, record in jobs)
        )

        lists = {kind: list(associations.relation(kind)) for kind in kinds}
        healed: Dict[RelationKind, List[AssociationRecord]] = defaultdict(list)
        for (kind, index, _), record in zip(jobs, resolved):
            lists[kind][index] = record
            if not record.is_placeholder:
                healed[kind].append(record)

        logger.info(
            "Enriched %d of %d placeholder associations for %s:%s",
            sum(len(v) for v in healed.values()), len(jobs),
            getattr(entity_kind, "value", entity_kind), entity_id,
        )
        if write_back and healed:
            self._schedule_write_back(entity_kind, entity_id, dict(healed))
        return associations.model_copy(update={kind.value: records for kind, records in lists.items()})

    def _schedule_write_back(
        self,
        entity_kind: Union[EntityKind, str],
        entity_id: str,
        healed: Dict[RelationKind, List[AssociationRecord]],
    ) -> None:
        task = asyncio.ensure_future(self._write_back(entity_kind, entity_id, healed))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _write_back(
        self,
        entity_kind: Union[EntityKind, str],
        entity_id: str,
        healed: Dict[RelationKind, List[AssociationRecord]],
    ) -> None:
        for kind, records in healed.items():
            try:
                await self.service.merge_records(entity_kind, entity_id, kind, records)
            except Exception as exc:
                logger.warning(
                    "Could not write enriched %s back to %s:%s: %s",
                    kind.value, getattr(entity_kind, "value", entity_kind), entity_id, exc,
                )

    @property
    def pending_writes(self) -> int:
        return len(self._pending_writes)

    async def drain(self) -> None:
        """Wait for background write-backs started so far."""
        while self._pending_writes:
            await asyncio.gather(*list(self._pending_writes))
