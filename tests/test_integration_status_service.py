"""Tests for cached Gmail/Calendar status polling."""
import asyncio
from unittest.mock import MagicMock

import pytest

from services.integration_status import IntegrationStatusService, status_cache_key
from services.request_cache import RequestCache

CONNECTED = {"connected": True, "email": "rep@acme.com", "lastSync": None, "syncStatus": "synced"}


def _service(gmail=None, calendar=None):
    fetchers = {
        "gmail": MagicMock(return_value=gmail or CONNECTED),
        "calendar": MagicMock(return_value=calendar or CONNECTED),
    }
    return IntegrationStatusService(RequestCache(ttl_seconds=5400), fetchers=fetchers), fetchers


@pytest.mark.asyncio
async def test_status_fetched_once_per_ttl():
    status_service, fetchers = _service()

    results = await asyncio.gather(*(status_service.get_gmail_status("u1", "t1") for _ in range(5)))

    assert all(r == CONNECTED for r in results)
    fetchers["gmail"].assert_called_once_with("u1", "t1")
    assert status_service.cache.peek(status_cache_key("gmail", "t1", "u1")) == CONNECTED


@pytest.mark.asyncio
async def test_google_status_checks_both_services():
    status_service, fetchers = _service(calendar={"connected": False, "syncStatus": "not_synced"})

    result = await status_service.get_google_status("u1", "t1")

    assert result["gmail"] == CONNECTED
    assert result["calendar"]["connected"] is False
    fetchers["calendar"].assert_called_once_with("u1", "t1")


@pytest.mark.asyncio
async def test_error_payload_is_returned_but_not_cached():
    status_service, fetchers = _service(
        gmail={"connected": False, "syncStatus": "not_synced", "error": "status service unavailable"}
    )

    first = await status_service.get_gmail_status("u1", "t1")
    fetchers["gmail"].return_value = CONNECTED
    second = await status_service.get_gmail_status("u1", "t1")

    assert first["error"] == "status service unavailable"
    assert second == CONNECTED
    assert fetchers["gmail"].call_count == 2


@pytest.mark.asyncio
async def test_refresh_forces_new_check():
    status_service, fetchers = _service()

    await status_service.get_google_status("u1", "t1")
    await status_service.refresh("u1", "t1")
    await status_service.get_google_status("u1", "t1")

    assert fetchers["gmail"].call_count == 2
    assert fetchers["calendar"].call_count == 2


@pytest.mark.asyncio
async def test_users_do_not_share_entries():
    status_service, fetchers = _service()

    await status_service.get_gmail_status("u1", "t1")
    await status_service.get_gmail_status("u2", "t1")

    assert fetchers["gmail"].call_count == 2


@pytest.mark.asyncio
async def test_persisted_status_survives_new_session(engine):
    fetch = MagicMock(return_value=CONNECTED)

    first = IntegrationStatusService.for_user("u1", fetchers={"gmail": fetch})
    await first.get_gmail_status("u1", "t1")

    second = IntegrationStatusService.for_user("u1", fetchers={"gmail": fetch})
    assert await second.get_gmail_status("u1", "t1") == CONNECTED
    fetch.assert_called_once()
