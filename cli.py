"""Command line for the CRM association core.

Usage:
  # Show an entity's associations
  python cli.py get --kind deal --id d1

  # Associate a contact (bare id or JSON record) with a deal
  python cli.py add --kind deal --id d1 --relation contacts --target c42
  python cli.py add --kind deal --id d1 --relation contacts \
      --target '{"id": "c42", "name": "Jane Doe", "email": "jane@x.com"}'

  # Drop an association
  python cli.py remove --kind deal --id d1 --relation contacts --target-id c42

  # Fill in placeholder records and write them back
  python cli.py enrich --kind deal --id d1

  # Gmail / Calendar connection status for a user
  python cli.py status --user-id u1

CRM_TENANT_ID and DATABASE_URL must be set (see config.py).
"""
import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, Optional, Union

from config import Settings, get_settings, require_tenant_id
from db.connection import dispose_engine
from services.association_service import AssociationService
from services.enrichment import EnrichmentResolver
from services.integration_status import IntegrationStatusService
from services.request_cache import RequestCache

logger = logging.getLogger(__name__)


def build_service(settings: Optional[Settings] = None) -> AssociationService:
    settings = settings or get_settings()
    return AssociationService(
        require_tenant_id(settings),
        allow_duplicates=settings.allow_duplicates,
        write_retries=settings.write_retries,
    )


def build_resolver(service: AssociationService, settings: Optional[Settings] = None) -> EnrichmentResolver:
    settings = settings or get_settings()
    return EnrichmentResolver(
        service,
        cache=RequestCache(settings.association_cache_ttl),
        scan_limit=settings.scan_limit,
    )


def parse_target(raw: str) -> Union[str, Dict[str, Any]]:
    """A target is a bare id, or a JSON object for a partial/full record."""
    text = raw.strip()
    if text.startswith("{"):
        return json.loads(text)
    return text


def _dump(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def run_get(kind: str, entity_id: str) -> Dict[str, Any]:
    service = build_service()
    associations = await service.get_associations(kind, entity_id)
    return associations.to_document()


async def run_add(kind: str, entity_id: str, relation: str, target: str) -> Dict[str, Any]:
    service = build_service()
    associations = await service.add_association(kind, entity_id, relation, parse_target(target))
    return associations.to_document()


async def run_remove(kind: str, entity_id: str, relation: str, target_id: str) -> Dict[str, Any]:
    service = build_service()
    associations = await service.remove_association(kind, entity_id, relation, target_id)
    return associations.to_document()


async def run_enrich(kind: str, entity_id: str, parent_id: Optional[str] = None) -> Dict[str, Any]:
    settings = get_settings()
    service = build_service(settings)
    resolver = build_resolver(service, settings)
    associations = await resolver.enrich_associations(kind, entity_id, parent_id=parent_id)
    await resolver.drain()
    return associations.to_document()


async def run_status(user_id: str) -> Dict[str, Any]:
    settings = get_settings()
    status_service = IntegrationStatusService.for_user(user_id, ttl_seconds=settings.status_cache_ttl)
    return await status_service.get_google_status(user_id, require_tenant_id(settings))


async def _run(coro) -> Any:
    try:
        return await coro
    finally:
        await dispose_engine()


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="CRM denormalized associations"
    )
    sub = parser.add_subparsers(dest="command")

    get = sub.add_parser("get", help="Show an entity's associations")
    get.add_argument("--kind", required=True, help="Entity kind (deal, company, contact, ...)")
    get.add_argument("--id", required=True, dest="entity_id")

    add = sub.add_parser("add", help="Associate a related entity")
    add.add_argument("--kind", required=True)
    add.add_argument("--id", required=True, dest="entity_id")
    add.add_argument("--relation", required=True, help="Relation kind (companies, contacts, ...)")
    add.add_argument("--target", required=True, help="Related id, or a JSON object with at least 'id'")

    remove = sub.add_parser("remove", help="Remove an association")
    remove.add_argument("--kind", required=True)
    remove.add_argument("--id", required=True, dest="entity_id")
    remove.add_argument("--relation", required=True)
    remove.add_argument("--target-id", required=True)

    enrich = sub.add_parser("enrich", help="Resolve placeholder associations and write them back")
    enrich.add_argument("--kind", required=True)
    enrich.add_argument("--id", required=True, dest="entity_id")
    enrich.add_argument("--parent-id", default=None, help="Parent company for scoped lookups (optional)")

    status = sub.add_parser("status", help="Gmail / Calendar connection status")
    status.add_argument("--user-id", required=True)

    return parser


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s %(message)s")
    parser = _build_arg_parser()
    args = parser.parse_args()

    if args.command == "get":
        _dump(asyncio.run(_run(run_get(args.kind, args.entity_id))))

    elif args.command == "add":
        _dump(asyncio.run(_run(run_add(args.kind, args.entity_id, args.relation, args.target))))

    elif args.command == "remove":
        _dump(asyncio.run(_run(run_remove(args.kind, args.entity_id, args.relation, args.target_id))))

    elif args.command == "enrich":
        _dump(asyncio.run(_run(run_enrich(args.kind, args.entity_id, parent_id=args.parent_id))))

    elif args.command == "status":
        _dump(asyncio.run(_run(run_status(args.user_id))))

    else:
        parser.print_help()
        sys.exit(1)
