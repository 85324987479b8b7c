"""
Thin helpers over the Supabase HTTP APIs.

Table access goes through PostgREST with the service role key (row level security
is enforced by the role checks in app.py instead). Auth administration (creating
phone users, invites, PIN resets) goes through the supabase-py client.
"""

import logging
from typing import Any, Dict, List, Optional

import requests
from supabase import Client, create_client

import config

logger = logging.getLogger(__name__)

_client: Optional[Client] = None


def service_headers() -> Dict[str, str]:
    return {
        "apikey": config.SERVICE_KEY,
        "Authorization": f"Bearer {config.SERVICE_KEY}",
        "Content-Type": "application/json",
    }


def get_client() -> Client:
    """Supabase Python client (service role) for auth admin calls; created on first use."""
    global _client
    if _client is None:
        _client = create_client(config.SUPABASE_URL, config.SERVICE_KEY)
    return _client


# ------------------------
# PostgREST
# ------------------------
def supabase_get(table: str, params: Optional[Dict[str, str]] = None, select: str = "*") -> List[Dict[str, Any]]:
    """
    Generic GET from Supabase PostgREST.
    params: dict of query params (PostgREST style), e.g. {"agent_id": "eq.<uuid>", "order": "date.desc"}
    """
    url = f"{config.SUPABASE_REST}/{table}"
    q = {"select": select}
    if params:
        q.update(params)
    resp = requests.get(url, headers=service_headers(), params=q)
    resp.raise_for_status()
    return resp.json()


def supabase_get_one(table: str, params: Dict[str, str]) -> Optional[Dict[str, Any]]:
    rows = supabase_get(table, params=dict(params, limit="1"))
    return rows[0] if rows else None


def supabase_insert(table: str, payload: Any, returning: str = "*") -> Any:
    url = f"{config.SUPABASE_REST}/{table}"
    headers = service_headers()
    headers["Prefer"] = "return=representation"
    r = requests.post(url, headers=headers, json=payload, params={"select": returning})
    r.raise_for_status()
    return r.json()


def supabase_upsert(table: str, payload: Any, on_conflict: str = "id", returning: str = "*") -> Any:
    url = f"{config.SUPABASE_REST}/{table}"
    headers = service_headers()
    headers["Prefer"] = "resolution=merge-duplicates,return=representation"
    params = {"select": returning, "on_conflict": on_conflict}
    r = requests.post(url, headers=headers, json=payload, params=params)
    r.raise_for_status()
    return r.json()


def _match_params(match: Dict[str, Any], returning: str) -> Dict[str, str]:
    params = {"select": returning}
    params.update({k: f"eq.{v}" for k, v in match.items()})
    return params


def supabase_update(table: str, match: Dict[str, Any], payload: Dict[str, Any], returning: str = "*") -> Any:
    url = f"{config.SUPABASE_REST}/{table}"
    headers = service_headers()
    headers["Prefer"] = "return=representation"
    r = requests.patch(url, headers=headers, json=payload, params=_match_params(match, returning))
    r.raise_for_status()
    return r.json()


def supabase_delete(table: str, match: Dict[str, Any], returning: str = "*") -> Any:
    url = f"{config.SUPABASE_REST}/{table}"
    headers = service_headers()
    headers["Prefer"] = "return=representation"
    r = requests.delete(url, headers=headers, params=_match_params(match, returning))
    r.raise_for_status()
    return r.json()


# ------------------------
# Storage
# ------------------------
def supabase_storage_upload(bucket_name: str, file_path: str, file) -> str:
    """Uploads a werkzeug FileStorage to a bucket and returns its public URL."""
    url = f"{config.SUPABASE_STORAGE_URL}/object/{bucket_name}/{file_path}"
    headers = service_headers()
    headers["Content-Type"] = file.mimetype or "application/octet-stream"
    r = requests.post(url, headers=headers, data=file.read())
    r.raise_for_status()
    return f"{config.SUPABASE_STORAGE_URL}/object/public/{bucket_name}/{file_path}"


# ------------------------
# Auth
# ------------------------
def supabase_sign_in(phone: str, password: str) -> Optional[Dict[str, Any]]:
    """
    Password grant against Supabase Auth. Returns the session JSON
    (access_token, refresh_token, user) or None when the credentials are rejected.
    """
    url = f"{config.SUPABASE_AUTH_URL}/token"
    headers = {"apikey": config.ANON_KEY or config.SERVICE_KEY, "Content-Type": "application/json"}
    r = requests.post(url, headers=headers, params={"grant_type": "password"},
                      json={"phone": phone, "password": password})
    if r.status_code == 200:
        return r.json()
    logger.info("Supabase sign-in rejected with status %s: %s", r.status_code, r.text)
    return None


def get_auth_user_from_token(access_token: str) -> Optional[dict]:
    """
    Call Supabase Auth endpoint to validate access_token.
    Returns auth user JSON on success, else None.
    """
    if not access_token:
        return None
    url = f"{config.SUPABASE_AUTH_URL}/user"
    headers = {"Authorization": f"Bearer {access_token}", "apikey": config.ANON_KEY or config.SERVICE_KEY}
    try:
        r = requests.get(url, headers=headers)
    except requests.RequestException as e:
        logger.error("Token verification request failed: %s", e)
        return None
    if r.status_code != 200:
        return None
    return r.json()
