"""Collection-path table: entity kind -> backing collection path."""
from typing import Optional, Union

from schemas.associations import EntityKind, RelationKind

_COLLECTIONS = {
    EntityKind.DEAL.value: "crm_deals",
    EntityKind.COMPANY.value: "crm_companies",
    EntityKind.CONTACT.value: "crm_contacts",
    EntityKind.SALESPERSON.value: "crm_salespeople",
    EntityKind.LOCATION.value: "crm_locations",
    EntityKind.DIVISION.value: "crm_divisions",
    EntityKind.TASK.value: "crm_tasks",
}

# relation kind -> (parent entity kind, nested collection name)
SCOPED_RELATIONS = {
    RelationKind.LOCATIONS: (EntityKind.COMPANY, "locations"),
}


def _kind_value(kind: Union[EntityKind, str]) -> str:
    return kind.value if isinstance(kind, EntityKind) else str(kind)


def collection_path(tenant_id: str, entity_kind: Union[EntityKind, str]) -> str:
    """Return the tenant-level collection path for an entity kind.

    Unknown kinds fall back to a pluralized guess (``{kind}s``) so newer
    entity kinds keep working without a table change.
    """
    kind = _kind_value(entity_kind)
    return f"tenants/{tenant_id}/{_COLLECTIONS.get(kind, kind + 's')}"


def scoped_collection_path(
    tenant_id: str, relation_kind: RelationKind, parent_id: str
) -> Optional[str]:
    """Return the nested path for relation_kind under parent_id, if it has one."""
    scope = SCOPED_RELATIONS.get(relation_kind)
    if scope is None:
        return None
    parent_kind, nested = scope
    return f"{collection_path(tenant_id, parent_kind)}/{parent_id}/{nested}"


def scope_parent_kind(relation_kind: RelationKind) -> Optional[EntityKind]:
    scope = SCOPED_RELATIONS.get(relation_kind)
    return scope[0] if scope else None
