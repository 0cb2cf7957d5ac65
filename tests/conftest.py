"""Shared fixtures: a throwaway SQLite document store per test."""
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

import db.repositories.documents as documents_repo
from db import configure, dispose_engine, get_db
from db.models import Base
from services.association_service import AssociationService
from services.collections import collection_path

TENANT = "t1"


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path}/crm.db",
        execution_options={"schema_translate_map": {"crm": None, "cache": None}},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    configure(engine)
    yield engine
    await dispose_engine()


@pytest_asyncio.fixture
async def seed(engine):
    """Insert a document: await seed("deal", "d1", {...})."""

    async def _seed(kind, doc_id, data=None, path=None):
        async with get_db() as session:
            document = await documents_repo.create(
                session, path or collection_path(TENANT, kind), doc_id, data or {}
            )
            return document.version

    return _seed


@pytest.fixture
def service(engine):
    return AssociationService(TENANT)
