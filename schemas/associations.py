"""Association data model — entity kinds, records, sets and write inputs."""
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

UNKNOWN_NAME = "Unknown"


class EntityKind(str, Enum):
    COMPANY = "company"
    CONTACT = "contact"
    DEAL = "deal"
    SALESPERSON = "salesperson"
    LOCATION = "location"
    DIVISION = "division"
    TASK = "task"


class RelationKind(str, Enum):
    COMPANIES = "companies"
    CONTACTS = "contacts"
    SALESPEOPLE = "salespeople"
    LOCATIONS = "locations"
    DEALS = "deals"
    DIVISIONS = "divisions"
    TASKS = "tasks"

    @property
    def entity_kind(self) -> EntityKind:
        return _RELATION_TO_ENTITY[self]

    @property
    def label(self) -> str:
        """Singular display label, e.g. 'Location'."""
        return _RELATION_TO_ENTITY[self].value.capitalize()


_RELATION_TO_ENTITY = {
    RelationKind.COMPANIES: EntityKind.COMPANY,
    RelationKind.CONTACTS: EntityKind.CONTACT,
    RelationKind.SALESPEOPLE: EntityKind.SALESPERSON,
    RelationKind.LOCATIONS: EntityKind.LOCATION,
    RelationKind.DEALS: EntityKind.DEAL,
    RelationKind.DIVISIONS: EntityKind.DIVISION,
    RelationKind.TASKS: EntityKind.TASK,
}

RELATION_KINDS = tuple(RelationKind)


class AssociationRecord(BaseModel):
    """Cached snapshot of a related entity as seen from the owning entity."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str = UNKNOWN_NAME
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    stage: Optional[str] = None
    value: Optional[float] = None
    status: Optional[str] = None
    type: Optional[Literal["primary", "secondary"]] = None
    error_note: Optional[str] = Field(default=None, alias="errorNote")

    @property
    def is_placeholder(self) -> bool:
        return self.name == UNKNOWN_NAME or not self.name or self.error_note is not None

    def to_document(self) -> Dict[str, Any]:
        """Stored shape: camelCase keys, unset optional fields omitted."""
        return self.model_dump(by_alias=True, exclude_none=True)


class AssociationSet(BaseModel):
    """All association lists owned by one entity.

    List order is insertion order; it carries no ranking. ``version`` is the
    owning document's version at read time and is never stored.
    """

    model_config = ConfigDict(populate_by_name=True)

    companies: List[AssociationRecord] = Field(default_factory=list)
    contacts: List[AssociationRecord] = Field(default_factory=list)
    salespeople: List[AssociationRecord] = Field(default_factory=list)
    locations: List[AssociationRecord] = Field(default_factory=list)
    deals: List[AssociationRecord] = Field(default_factory=list)
    divisions: List[AssociationRecord] = Field(default_factory=list)
    tasks: List[AssociationRecord] = Field(default_factory=list)
    last_updated: Optional[datetime] = Field(default=None, alias="lastUpdated")
    version: int = Field(default=0, exclude=True)

    def relation(self, kind: Union[RelationKind, str]) -> List[AssociationRecord]:
        return getattr(self, RelationKind(kind).value)

    def relations(self) -> Dict[RelationKind, List[AssociationRecord]]:
        return {kind: self.relation(kind) for kind in RELATION_KINDS}

    def ids(self, kind: Union[RelationKind, str]) -> List[str]:
        return [record.id for record in self.relation(kind)]

    def primary_company_id(self) -> Optional[str]:
        for record in self.companies:
            if record.type == "primary":
                return record.id
        return self.companies[0].id if self.companies else None

    def same_relations(self, other: "AssociationSet") -> bool:
        """Compare relation lists only (ignores lastUpdated and version)."""
        return all(
            [r.to_document() for r in self.relation(kind)]
            == [r.to_document() for r in other.relation(kind)]
            for kind in RELATION_KINDS
        )

    def to_document(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            kind.value: [record.to_document() for record in self.relation(kind)]
            for kind in RELATION_KINDS
        }
        doc["lastUpdated"] = self.last_updated.isoformat() if self.last_updated else None
        return doc


# ---------------------------------------------------------------------------
# Write inputs: callers hand over whatever shape they have; only the
# Normalizer turns these into AssociationRecords.
# ---------------------------------------------------------------------------


class IdReference(BaseModel):
    """A bare identifier."""

    tag: Literal["id"] = "id"
    id: str


class PartialRecord(BaseModel):
    """A loose mapping with at least an identity field (id or _id)."""

    tag: Literal["partial"] = "partial"
    fields: Dict[str, Any]


class FullRecord(BaseModel):
    """An already-typed AssociationRecord."""

    tag: Literal["record"] = "record"
    record: AssociationRecord


AssociationInput = Annotated[
    Union[IdReference, PartialRecord, FullRecord],
    Field(discriminator="tag"),
]


class BulkAssociations(BaseModel):
    """Result of a bulk load: one set per "{kind}_{id}" key plus failures."""

    results: Dict[str, AssociationSet] = Field(default_factory=dict)
    failed_keys: List[str] = Field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.failed_keys)

    def __getitem__(self, key: str) -> AssociationSet:
        return self.results[key]
