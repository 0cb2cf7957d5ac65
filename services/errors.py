"""Error taxonomy for the association core.

Reads raise NotFoundError, writes raise WriteFailure (never confused with a
read failure), LookupFailure stays inside the enrichment fallback chain.
"""


class AssociationError(Exception):
    """Base class for association-core errors."""


class NotFoundError(AssociationError, LookupError):
    """The owning entity's document does not exist."""

    def __init__(self, entity_kind: str, entity_id: str):
        super().__init__(f"Entity {entity_kind}:{entity_id} not found")
        self.entity_kind = entity_kind
        self.entity_id = entity_id


class LookupFailure(AssociationError):
    """One enrichment lookup strategy could not produce the related entity."""


class WriteFailure(AssociationError):
    """The backing write for a mutation did not take effect."""


class StaleWriteError(WriteFailure):
    """The document changed since it was read (optimistic concurrency)."""

    def __init__(self, entity_kind: str, entity_id: str, expected_version: int):
        super().__init__(
            f"Associations of {entity_kind}:{entity_id} changed since version "
            f"{expected_version} was read"
        )
        self.entity_kind = entity_kind
        self.entity_id = entity_id
        self.expected_version = expected_version


class InvalidAssociationError(AssociationError, ValueError):
    """An association input or relation kind cannot be interpreted."""
