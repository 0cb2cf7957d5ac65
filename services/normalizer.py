"""Normalizer — the one place association inputs become AssociationRecords.

Accepted raw shapes (see schemas.associations):
  - "c42"                                   bare identifier
  - {"id": "c42", "fullName": "Jane Doe"}   partial record (id or _id)
  - AssociationRecord(id="c42", ...)        full record
  - IdReference / PartialRecord / FullRecord already tagged

The same logical entity normalizes to the same record whatever shape it
arrived in.
"""
import logging
from collections.abc import Mapping
from typing import Any, Optional, Union

from schemas.associations import (
    UNKNOWN_NAME,
    AssociationRecord,
    FullRecord,
    IdReference,
    PartialRecord,
    RelationKind,
)
from services.errors import InvalidAssociationError

logger = logging.getLogger(__name__)

_ID_FIELDS = ("id", "_id")
_NAME_FIELDS = ("name", "fullName", "companyName", "title")
_TEXT_FIELDS = ("address", "stage", "status")
_COMPANY_TYPES = ("primary", "secondary")

RawAssociation = Union[str, Mapping, AssociationRecord, IdReference, PartialRecord, FullRecord]


def relation_kind(kind: Union[RelationKind, str]) -> RelationKind:
    """Coerce a relation-kind name, rejecting unknown kinds."""
    try:
        return RelationKind(kind)
    except ValueError:
        raise InvalidAssociationError(f"Unknown relation kind: {kind!r}") from None


def as_input(raw: RawAssociation) -> Union[IdReference, PartialRecord, FullRecord]:
    """Tag a raw association value with its input shape."""
    if isinstance(raw, (IdReference, PartialRecord, FullRecord)):
        return raw
    if isinstance(raw, AssociationRecord):
        return FullRecord(record=raw)
    if isinstance(raw, str):
        return IdReference(id=raw)
    if isinstance(raw, Mapping):
        return PartialRecord(fields=dict(raw))
    raise InvalidAssociationError(
        f"Cannot interpret association input of type {type(raw).__name__}"
    )


def _company_type(kind: RelationKind, requested: Optional[str]) -> Optional[str]:
    if kind is not RelationKind.COMPANIES:
        return None
    return requested if requested in _COMPANY_TYPES else "primary"


def _first_text(fields: Mapping, names) -> Optional[str]:
    for name in names:
        value = fields.get(name)
        if isinstance(value, str) and value.strip():
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool) and name in _ID_FIELDS:
            return str(value)
    return None


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _from_id(ref: IdReference, kind: RelationKind) -> AssociationRecord:
    if not ref.id:
        raise InvalidAssociationError("Association id must not be empty")
    return AssociationRecord(
        id=ref.id,
        name=UNKNOWN_NAME,
        email="",
        phone="",
        type=_company_type(kind, None),
    )


def _from_fields(fields: Mapping[str, Any], kind: RelationKind) -> AssociationRecord:
    entity_id = _first_text(fields, _ID_FIELDS)
    if entity_id is None:
        raise InvalidAssociationError(f"Association has no id: {dict(fields)!r}")

    extras = {name: fields[name] for name in _TEXT_FIELDS if isinstance(fields.get(name), str)}
    value = fields.get("value")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        extras["value"] = value
    note = fields.get("errorNote", fields.get("error_note"))
    if isinstance(note, str):
        extras["error_note"] = note

    return AssociationRecord(
        id=entity_id,
        name=_first_text(fields, _NAME_FIELDS) or UNKNOWN_NAME,
        email=_text(fields.get("email")),
        phone=_text(fields.get("phone")),
        type=_company_type(kind, fields.get("type")),
        **extras,
    )


def _from_record(record: AssociationRecord, kind: RelationKind) -> AssociationRecord:
    return record.model_copy(
        update={
            "name": record.name or UNKNOWN_NAME,
            "email": record.email or "",
            "phone": record.phone or "",
            "type": _company_type(kind, record.type),
        }
    )


def normalize(raw: RawAssociation, kind: Union[RelationKind, str]) -> AssociationRecord:
    """Turn any accepted association input into the canonical record."""
    kind = relation_kind(kind)
    tagged = as_input(raw)
    if isinstance(tagged, IdReference):
        return _from_id(tagged, kind)
    if isinstance(tagged, PartialRecord):
        return _from_fields(tagged.fields, kind)
    return _from_record(tagged.record, kind)


def normalize_stored(raw_list: Any, kind: Union[RelationKind, str]) -> list[AssociationRecord]:
    """Normalize a stored relation list, dropping entries that cannot be read.

    Anything that is not a list reads as empty.
    """
    kind = relation_kind(kind)
    if not isinstance(raw_list, list):
        return []
    records = []
    for entry in raw_list:
        try:
            records.append(normalize(entry, kind))
        except InvalidAssociationError as exc:
            logger.warning("Dropping unreadable %s association entry: %s", kind.value, exc)
    return records
