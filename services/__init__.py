from .association_service import AssociationService
from .enrichment import EnrichmentResolver, placeholder
from .errors import (
    AssociationError,
    InvalidAssociationError,
    LookupFailure,
    NotFoundError,
    StaleWriteError,
    WriteFailure,
)
from .integration_status import IntegrationStatusService
from .normalizer import normalize
from .request_cache import RequestCache, SqlCacheStore

__all__ = [
    "AssociationService", "EnrichmentResolver", "placeholder",
    "AssociationError", "InvalidAssociationError", "LookupFailure",
    "NotFoundError", "StaleWriteError", "WriteFailure",
    "IntegrationStatusService", "normalize", "RequestCache", "SqlCacheStore",
]
