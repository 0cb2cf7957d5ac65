from .associations import (
    RELATION_KINDS,
    UNKNOWN_NAME,
    AssociationInput,
    AssociationRecord,
    AssociationSet,
    BulkAssociations,
    EntityKind,
    FullRecord,
    IdReference,
    PartialRecord,
    RelationKind,
)

__all__ = [
    "RELATION_KINDS", "UNKNOWN_NAME",
    "EntityKind", "RelationKind",
    "AssociationRecord", "AssociationSet", "BulkAssociations",
    "AssociationInput", "IdReference", "PartialRecord", "FullRecord",
]
