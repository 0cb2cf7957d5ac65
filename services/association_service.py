"""AssociationService — read and write an entity's denormalized associations.

Every CRM entity document may carry an ``associations`` field holding one
list per relation kind (companies, contacts, salespeople, locations, deals,
divisions, tasks) plus ``lastUpdated``. Reads normalize whatever is stored;
writes replace whole relation lists and bump the document version.

Reciprocal entries on the related entities are written by an external
propagator some time after a write returns, so nothing here assumes the
other side is already up to date.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from sqlalchemy.exc import SQLAlchemyError

import db.repositories.documents as documents_repo
from db.connection import get_db
from schemas.associations import (
    RELATION_KINDS,
    AssociationRecord,
    AssociationSet,
    BulkAssociations,
    EntityKind,
    RelationKind,
)
from services.collections import collection_path
from services.errors import (
    InvalidAssociationError,
    NotFoundError,
    StaleWriteError,
    WriteFailure,
)
from services.normalizer import RawAssociation, normalize, normalize_stored, relation_kind

logger = logging.getLogger(__name__)

ASSOCIATIONS_FIELD = "associations"

EntityRef = Union[Mapping[str, str], Sequence[str]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(raw: Any) -> Optional[datetime]:
    if isinstance(raw, datetime):
        return raw
    if isinstance(raw, str) and raw:
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            logger.warning("Ignoring unparseable lastUpdated value %r", raw)
    return None


def _kind_value(kind: Union[EntityKind, str]) -> str:
    return kind.value if isinstance(kind, EntityKind) else str(kind)


class AssociationService:
    """Tenant-scoped access to denormalized association sets.

    Args:
        tenant_id: Tenant whose collections are addressed.
        db: Session scope factory (defaults to db.connection.get_db).
        allow_duplicates: Keep duplicate ids on append instead of replacing
            the existing entry in place.
        write_retries: Attempts for add/remove when the document changed
            between read and write.
        clock: Returns the timestamp stamped as lastUpdated.
    """

    def __init__(
        self,
        tenant_id: str,
        db: Callable = get_db,
        allow_duplicates: bool = False,
        write_retries: int = 3,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.tenant_id = tenant_id
        self._db = db
        self.allow_duplicates = allow_duplicates
        self.write_retries = max(1, write_retries)
        self._clock = clock

    @property
    def db(self) -> Callable:
        """Session scope factory shared with collaborators."""
        return self._db

    def collection_path(self, entity_kind: Union[EntityKind, str]) -> str:
        return collection_path(self.tenant_id, entity_kind)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _read_raw(self, session, entity_kind: str, entity_id: str):
        document = await documents_repo.get(session, self.collection_path(entity_kind), entity_id)
        if document is None:
            raise NotFoundError(_kind_value(entity_kind), entity_id)
        raw = (document.data or {}).get(ASSOCIATIONS_FIELD)
        return (raw if isinstance(raw, dict) else {}), document.version

    @staticmethod
    def _to_set(raw: Mapping[str, Any], version: int) -> AssociationSet:
        lists = {kind.value: normalize_stored(raw.get(kind.value), kind) for kind in RELATION_KINDS}
        return AssociationSet(
            **lists,
            last_updated=_parse_timestamp(raw.get("lastUpdated")),
            version=version,
        )

    async def get_associations(
        self, entity_kind: Union[EntityKind, str], entity_id: str
    ) -> AssociationSet:
        """Return the entity's normalized association set.

        A document without an associations field reads as an empty set.
        Raises NotFoundError when the entity document does not exist.
        """
        async with self._db() as session:
            raw, version = await self._read_raw(session, entity_kind, entity_id)
        return self._to_set(raw, version)

    async def get_multiple_associations(
        self, entities: Iterable[EntityRef]
    ) -> BulkAssociations:
        """Load association sets for many entities at once.

        entities: items of {"kind": ..., "id": ...} (or {"type": ..., "id": ...})
        or (kind, id) pairs. Each entity is read independently; a failure
        yields an empty set for that key and is counted in the result.
        """
        refs = [self._entity_ref(entity) for entity in entities]
        outcomes = await asyncio.gather(
            *(self._load_entity(kind, entity_id) for kind, entity_id in refs),
            return_exceptions=True,
        )

        bulk = BulkAssociations()
        for (kind, entity_id), outcome in zip(refs, outcomes):
            key = f"{kind}_{entity_id}"
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.warning("Error loading associations for %s:%s: %s", kind, entity_id, outcome)
                bulk.results[key] = AssociationSet()
                bulk.failed_keys.append(key)
            else:
                bulk.results[key] = outcome
        return bulk

    @staticmethod
    def _entity_ref(entity: EntityRef) -> tuple:
        """Return (kind, id); either is None when the ref does not carry it."""
        if isinstance(entity, Mapping):
            kind, entity_id = entity.get("kind") or entity.get("type"), entity.get("id")
        elif isinstance(entity, Sequence) and not isinstance(entity, str) and len(entity) == 2:
            kind, entity_id = entity
        else:
            kind, entity_id = None, None
        return (_kind_value(kind) if kind else None), entity_id

    async def _load_entity(self, kind: Optional[str], entity_id: Optional[str]) -> AssociationSet:
        if not kind or not entity_id:
            raise InvalidAssociationError(f"Entity reference needs a kind and an id, got {kind}:{entity_id}")
        return await self.get_associations(kind, entity_id)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _normalize_partial(
        self, partial_set: Union[AssociationSet, Mapping[str, Iterable[RawAssociation]]]
    ) -> Dict[RelationKind, List[AssociationRecord]]:
        if isinstance(partial_set, AssociationSet):
            return {kind: list(records) for kind, records in partial_set.relations().items()}

        lists: Dict[RelationKind, List[AssociationRecord]] = {}
        for key, entries in partial_set.items():
            if key in ("lastUpdated", "last_updated"):
                continue
            kind = relation_kind(key)
            if isinstance(entries, (str, bytes)) or not isinstance(entries, Iterable):
                raise InvalidAssociationError(f"Relation list for {kind.value} must be a list")
            lists[kind] = [normalize(entry, kind) for entry in entries]
        return lists

    async def update_associations(
        self,
        entity_kind: Union[EntityKind, str],
        entity_id: str,
        partial_set: Union[AssociationSet, Mapping[str, Iterable[RawAssociation]]],
        expected_version: Optional[int] = None,
    ) -> AssociationSet:
        """Replace the given relation lists wholesale and stamp lastUpdated.

        Relation kinds absent from partial_set keep their stored lists. With
        expected_version the write is rejected (StaleWriteError) if the
        document changed since that version was read; without it the last
        writer wins. Returns the set as written.
        """
        lists = self._normalize_partial(partial_set)
        kind_name = _kind_value(entity_kind)
        path = self.collection_path(entity_kind)

        try:
            async with self._db() as session:
                raw, version = await self._read_raw(session, entity_kind, entity_id)
                if expected_version is not None and version != expected_version:
                    raise StaleWriteError(kind_name, entity_id, expected_version)

                stored = dict(raw)
                for kind, records in lists.items():
                    stored[kind.value] = [record.to_document() for record in records]
                stored["lastUpdated"] = self._clock().isoformat()

                document = await documents_repo.set_field(
                    session, path, entity_id, ASSOCIATIONS_FIELD, stored,
                    expected_version=version,
                )
                if document is None:
                    raise StaleWriteError(kind_name, entity_id, version)
        except SQLAlchemyError as exc:
            raise WriteFailure(
                f"Could not write associations for {kind_name}:{entity_id}: {exc}"
            ) from exc

        logger.info(
            "Updated associations for %s:%s (%s) -> v%d",
            kind_name, entity_id, ", ".join(k.value for k in lists) or "no lists", document.version,
        )
        return self._to_set(stored, document.version)

    async def _mutate_relation(
        self,
        entity_kind: Union[EntityKind, str],
        entity_id: str,
        kind: RelationKind,
        mutate: Callable[[List[AssociationRecord]], List[AssociationRecord]],
    ) -> AssociationSet:
        """Read-modify-write one relation list, retrying on a stale version."""
        attempt = 1
        while True:
            current = await self.get_associations(entity_kind, entity_id)
            updated = mutate(list(current.relation(kind)))
            try:
                return await self.update_associations(
                    entity_kind, entity_id, {kind.value: updated},
                    expected_version=current.version,
                )
            except StaleWriteError:
                if attempt >= self.write_retries:
                    raise
                logger.warning(
                    "Associations of %s:%s changed during write (attempt %d/%d), retrying",
                    _kind_value(entity_kind), entity_id, attempt, self.write_retries,
                )
                attempt += 1

    async def add_association(
        self,
        entity_kind: Union[EntityKind, str],
        entity_id: str,
        relation: Union[RelationKind, str],
        target: RawAssociation,
    ) -> AssociationSet:
        """Append target (id, partial or full record) to one relation list.

        An id already in the list is replaced in place unless the service
        allows duplicates, in which case the record is appended again.
        """
        kind = relation_kind(relation)
        record = normalize(target, kind)

        def _append(records: List[AssociationRecord]) -> List[AssociationRecord]:
            if not self.allow_duplicates:
                for index, existing in enumerate(records):
                    if existing.id == record.id:
                        records[index] = record
                        return records
            records.append(record)
            return records

        return await self._mutate_relation(entity_kind, entity_id, kind, _append)

    async def remove_association(
        self,
        entity_kind: Union[EntityKind, str],
        entity_id: str,
        relation: Union[RelationKind, str],
        target_id: str,
    ) -> AssociationSet:
        """Drop every record with target_id from one relation list."""
        kind = relation_kind(relation)
        return await self._mutate_relation(
            entity_kind, entity_id, kind,
            lambda records: [r for r in records if r.id != target_id],
        )

    async def merge_records(
        self,
        entity_kind: Union[EntityKind, str],
        entity_id: str,
        relation: Union[RelationKind, str],
        records: Iterable[RawAssociation],
    ) -> AssociationSet:
        """Overwrite stored entries whose id matches one of records.

        Order is kept and ids not already in the list are ignored; this is
        the write-back path for enriched snapshots.
        """
        kind = relation_kind(relation)
        by_id = {}
        for raw in records:
            record = normalize(raw, kind)
            by_id[record.id] = record

        return await self._mutate_relation(
            entity_kind, entity_id, kind,
            lambda current: [by_id.get(r.id, r) for r in current],
        )
