"""Backfill display fields of denormalized association snapshots.

Walks every document of one entity kind, resolves placeholder associations
("Unknown" names, bare ids stored by older writers) and writes the improved
records back. Safe to re-run; already-enriched records are left alone.

    uv run python scripts/backfill_association_snapshots.py --kind deal
    uv run python scripts/backfill_association_snapshots.py --kind deal --id d1 --dry-run

CRM_TENANT_ID and DATABASE_URL must be set.
"""
import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# Resolve project root so imports work when run from any cwd
_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_ROOT))

import db.repositories.documents as documents_repo
from config import get_settings, require_tenant_id
from db.connection import dispose_engine
from services.association_service import AssociationService
from services.enrichment import EnrichmentResolver
from services.errors import NotFoundError
from services.request_cache import RequestCache

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
logger = logging.getLogger(__name__)


@dataclass
class BackfillSummary:
    entities: int = 0
    placeholders: int = 0
    resolved: int = 0
    missing: int = 0


async def backfill(
    service: AssociationService,
    resolver: EnrichmentResolver,
    kind: str,
    entity_id: Optional[str] = None,
    limit: Optional[int] = None,
    dry_run: bool = False,
) -> BackfillSummary:
    """Enrich every entity of one kind; returns counts for the run."""
    summary = BackfillSummary()

    if entity_id:
        entity_ids = [entity_id]
    else:
        async with service.db() as session:
            entity_ids = await documents_repo.list_doc_ids(
                session, service.collection_path(kind), limit=limit
            )
    logger.info("Found %d %s document(s)", len(entity_ids), kind)

    for current_id in entity_ids:
        try:
            before = await service.get_associations(kind, current_id)
        except NotFoundError:
            logger.warning("  %s:%s vanished, skipping", kind, current_id)
            continue
        summary.entities += 1

        pending = sum(1 for records in before.relations().values() for r in records if r.is_placeholder)
        if not pending:
            continue
        summary.placeholders += pending

        after = await resolver.enrich_associations(
            kind, current_id, associations=before, write_back=not dry_run
        )
        still_missing = sum(
            1 for records in after.relations().values() for r in records if r.is_placeholder
        )
        summary.missing += still_missing
        summary.resolved += pending - still_missing
        logger.info(
            "  %s:%s: %d placeholder(s), %d resolved",
            kind, current_id, pending, pending - still_missing,
        )

    await resolver.drain()
    return summary


async def main(args: argparse.Namespace) -> None:
    settings = get_settings()
    service = AssociationService(
        require_tenant_id(settings),
        allow_duplicates=settings.allow_duplicates,
        write_retries=settings.write_retries,
    )
    resolver = EnrichmentResolver(
        service,
        cache=RequestCache(settings.association_cache_ttl),
        scan_limit=settings.scan_limit,
    )
    try:
        summary = await backfill(
            service, resolver, args.kind,
            entity_id=args.id, limit=args.limit, dry_run=args.dry_run,
        )
    finally:
        await dispose_engine()

    logger.info(
        "Done%s. Entities: %d, placeholders: %d, resolved: %d, still missing: %d",
        " (dry run)" if args.dry_run else "",
        summary.entities, summary.placeholders, summary.resolved, summary.missing,
    )


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Backfill association snapshots")
    parser.add_argument("--kind", required=True, help="Entity kind to walk (deal, contact, ...)")
    parser.add_argument("--id", default=None, help="Only backfill this entity")
    parser.add_argument("--limit", type=int, default=None, help="Max entities to walk")
    parser.add_argument("--dry-run", action="store_true", help="Resolve but do not write back")
    return parser


if __name__ == "__main__":
    asyncio.run(main(_build_arg_parser().parse_args()))
