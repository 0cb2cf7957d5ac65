"""Integration tests for the document and cache-entry repositories."""
import pytest

from db import get_db
from db.repositories import cache_entries as cache_repo
from db.repositories import documents as documents_repo

PATH = "tenants/t1/crm_deals"


@pytest.mark.asyncio
async def test_create_and_get(engine):
    async with get_db() as session:
        created = await documents_repo.create(session, PATH, "d1", {"name": "Renewal"})
    async with get_db() as session:
        fetched = await documents_repo.get(session, PATH, "d1")
        missing = await documents_repo.get(session, PATH, "d2")
        assert await documents_repo.exists(session, PATH, "d1")
        assert not await documents_repo.exists(session, PATH, "d2")
    assert fetched.id == created.id
    assert fetched.data == {"name": "Renewal"}
    assert fetched.version == 1
    assert missing is None


@pytest.mark.asyncio
async def test_same_doc_id_in_different_collections(engine):
    async with get_db() as session:
        await documents_repo.create(session, "tenants/t1/crm_companies/co1/locations", "l1", {"title": "A"})
        await documents_repo.create(session, "tenants/t1/crm_companies/co2/locations", "l1", {"title": "B"})
    async with get_db() as session:
        doc = await documents_repo.get(session, "tenants/t1/crm_companies/co2/locations", "l1")
    assert doc.data["title"] == "B"


@pytest.mark.asyncio
async def test_list_doc_ids_is_ordered_and_capped(engine):
    async with get_db() as session:
        for doc_id in ("c", "a", "b"):
            await documents_repo.create(session, PATH, doc_id, {})
        await documents_repo.create(session, "tenants/t1/crm_contacts", "z", {})
    async with get_db() as session:
        assert await documents_repo.list_doc_ids(session, PATH) == ["a", "b", "c"]
        assert await documents_repo.list_doc_ids(session, PATH, limit=2) == ["a", "b"]


@pytest.mark.asyncio
async def test_set_field_bumps_version_and_keeps_other_fields(engine):
    async with get_db() as session:
        await documents_repo.create(session, PATH, "d1", {"name": "Renewal"})
    async with get_db() as session:
        updated = await documents_repo.set_field(session, PATH, "d1", "associations", {"contacts": []})
    assert updated.version == 2
    assert updated.data == {"name": "Renewal", "associations": {"contacts": []}}


@pytest.mark.asyncio
async def test_set_field_rejects_stale_version(engine):
    async with get_db() as session:
        await documents_repo.create(session, PATH, "d1", {})
    async with get_db() as session:
        await documents_repo.set_field(session, PATH, "d1", "x", 1, expected_version=1)
    async with get_db() as session:
        stale = await documents_repo.set_field(session, PATH, "d1", "x", 2, expected_version=1)
        current = await documents_repo.get(session, PATH, "d1")
    assert stale is None
    assert current.data == {"x": 1}
    assert current.version == 2


@pytest.mark.asyncio
async def test_set_field_on_missing_document(engine):
    async with get_db() as session:
        assert await documents_repo.set_field(session, PATH, "ghost", "x", 1) is None


@pytest.mark.asyncio
async def test_cache_entry_upsert_and_delete(engine):
    async with get_db() as session:
        await cache_repo.put_entry(session, "k1", {"connected": True}, 100.0, "u1")
        await cache_repo.put_entry(session, "k1", {"connected": False}, 200.0, "u1")
        await cache_repo.put_entry(session, "k2", [1, 2], 100.0, "u2")
    async with get_db() as session:
        entry = await cache_repo.get_entry(session, "k1")
        assert entry.value == {"connected": False}
        assert entry.stored_at == 200.0
        assert await cache_repo.delete_for_owner(session, "u1") == 1
        assert await cache_repo.get_entry(session, "k1") is None
        assert await cache_repo.delete_entry(session, "k2") == 1
        assert await cache_repo.delete_entry(session, "k2") == 0
