"""Google integration status RPCs (Gmail, Calendar).

Calls the CRM's callable functions over plain HTTP: the request body is
{"data": {...}} and the reply carries the payload under "result". Fails
open: on any error the caller gets a disconnected status with an 'error'
key instead of an exception.
"""
import logging
import os
from typing import Any, Dict

import requests

logger = logging.getLogger(__name__)


def _base_url() -> str:
    return os.environ.get("CRM_FUNCTIONS_URL", "http://127.0.0.1:5001").rstrip("/")


def _timeout() -> int:
    return int(os.environ.get("STATUS_RPC_TIMEOUT", "15"))


def _call(function_name: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    resp = requests.post(
        f"{_base_url()}/{function_name}",
        json={"data": payload},
        timeout=_timeout(),
    )
    resp.raise_for_status()
    return resp.json().get("result") or {}


def _status(result: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "connected": bool(result.get("connected", False)),
        "email": result.get("email"),
        "lastSync": result.get("lastSync"),
        "syncStatus": result.get("syncStatus", "not_synced"),
    }


def get_gmail_status(user_id: str, tenant_id: str) -> Dict[str, Any]:
    """Return the Gmail connection status for a user.

    Args:
        user_id: CRM user id.
        tenant_id: Tenant the user belongs to.

    Returns:
        Dict with 'connected', 'email', 'lastSync', 'syncStatus'.
    """
    try:
        return _status(_call("getGmailStatus", {"userId": user_id, "tenantId": tenant_id}))
    except requests.exceptions.ConnectionError:
        logger.warning("Functions endpoint not reachable, Gmail status unknown")
        return {"connected": False, "syncStatus": "not_synced", "error": "status service unavailable"}
    except Exception as exc:
        return {"connected": False, "syncStatus": "not_synced", "error": str(exc)}


def get_calendar_status(user_id: str, tenant_id: str) -> Dict[str, Any]:
    """Return the Google Calendar connection status for a user.

    Args:
        user_id: CRM user id.
        tenant_id: Tenant the user belongs to.

    Returns:
        Dict with 'connected', 'email', 'lastSync', 'syncStatus'.
    """
    try:
        return _status(_call("getCalendarStatus", {"userId": user_id, "tenantId": tenant_id}))
    except requests.exceptions.ConnectionError:
        logger.warning("Functions endpoint not reachable, Calendar status unknown")
        return {"connected": False, "syncStatus": "not_synced", "error": "status service unavailable"}
    except Exception as exc:
        return {"connected": False, "syncStatus": "not_synced", "error": str(exc)}
