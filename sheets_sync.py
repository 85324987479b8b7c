"""
Legacy Google Sheets webhook client.

The sheet is an Apps Script web app that accepts POSTed JSON of the form
{"action": "<verb>", ...payload} and answers with JSON. It predates the Supabase
tables and is kept as an optional mirror; every call returns None when the webhook
is not configured or the call fails.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

import requests

import config

logger = logging.getLogger(__name__)


def is_configured() -> bool:
    return bool(config.GOOGLE_SHEETS_WEBHOOK_URL)


def request(action: str, payload: Optional[Dict[str, Any]] = None) -> Optional[Any]:
    if not is_configured():
        logger.debug("Sheets webhook not configured, skipping %s", action)
        return None

    body = {"action": action}
    body.update(payload or {})
    try:
        r = requests.post(
            config.GOOGLE_SHEETS_WEBHOOK_URL,
            json=body,
            allow_redirects=True,  # Apps Script answers through a redirect
            timeout=config.SHEETS_TIMEOUT,
        )
        r.raise_for_status()
        return r.json()
    except (requests.RequestException, ValueError) as e:
        logger.error("Sheets API error [%s]: %s", action, e)
        return None


# ------------------------
# Sales
# ------------------------
def sync_record(record: Dict[str, Any]):
    return request("sync_record", {"record": record})


def fetch_records():
    return request("fetch_records")


def delete_record(record_id: str):
    return request("delete_record", {"id": record_id})


def purge_records():
    return request("purge_records")


# ------------------------
# Users
# ------------------------
def sync_user(user: Dict[str, Any]):
    return request("sync_user", {"user": user})


def fetch_users():
    return request("fetch_users")


def delete_user(phone: str):
    return request("delete_user", {"phone": phone})


def purge_users():
    return request("purge_users")


# ------------------------
# Orders
# ------------------------
def sync_order(order: Dict[str, Any]):
    return request("sync_order", {"order": order})


def fetch_orders():
    return request("fetch_orders")


def purge_orders():
    return request("purge_orders")


# ------------------------
# Produce
# ------------------------
def sync_produce(produce: Dict[str, Any]):
    return request("sync_produce", {"produce": produce})


def fetch_produce():
    return request("fetch_produce")


def delete_produce(produce_id: str):
    return request("delete_produce", {"id": produce_id})


def purge_produce():
    return request("purge_produce")


PURGE_ACTIONS = {
    "records": purge_records,
    "users": purge_users,
    "orders": purge_orders,
    "produce": purge_produce,
}


def rows_from_response(response) -> List[Dict[str, Any]]:
    """The script has answered with a bare list, {"data": [...]} and {"records": [...]} over time."""
    if response is None:
        return []
    if isinstance(response, list):
        return response
    if isinstance(response, dict):
        for key in ("data", "records", "rows", "items"):
            if isinstance(response.get(key), list):
                return response[key]
    return []


def push_unsynced(records: Iterable[Dict[str, Any]]) -> List[str]:
    """Push records one by one; returns ids the sheet accepted."""
    accepted = []
    for record in records:
        result = sync_record(record)
        if result is None:
            continue
        if isinstance(result, dict) and result.get("success") is False:
            logger.warning("Sheet rejected record %s: %s", record.get("id"), result.get("message"))
            continue
        accepted.append(record.get("id"))
    return accepted
