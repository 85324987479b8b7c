import copy
import os
from unittest.mock import MagicMock

import pytest

# Configure before the application modules read the environment
os.environ.setdefault("SUPABASE_URL", "https://example.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "service-key")
os.environ.setdefault("SUPABASE_ANON_KEY", "anon-key")
os.environ["GOOGLE_SHEETS_WEBHOOK_URL"] = ""
os.environ["GOOGLE_API_KEY"] = ""
os.environ["SYSTEM_DEVELOPER_PHONES"] = "0700000001"
os.environ["SYNC_ENABLED"] = "false"

import app as server  # noqa: E402
import config  # noqa: E402
import weather  # noqa: E402


class FakeTables:
    """In-memory stand-in for the PostgREST helpers (eq., is., ilike or-filters, order, limit)."""

    def __init__(self):
        self.tables = {}
        # Auth users keyed by bearer token; unknown "user-" tokens get a bare account
        self.auth_users = {}

    def auth_user(self, token):
        if token in self.auth_users:
            return copy.deepcopy(self.auth_users[token])
        if token.startswith("user-"):
            return {"id": token, "user_metadata": {}, "app_metadata": {}}
        return None

    def rows(self, table):
        return self.tables.setdefault(table, [])

    @staticmethod
    def _matches(row, key, expr):
        value = row.get(key)
        if expr.startswith("eq."):
            return value is not None and str(value) == expr[3:]
        if expr == "is.false":
            return value is False
        if expr == "is.true":
            return value is True
        if expr == "is.null":
            return value is None
        raise AssertionError(f"unsupported filter {key}={expr}")

    @staticmethod
    def _matches_or(row, expr):
        for clause in expr.strip("()").split(","):
            column, op, operand = clause.split(".", 2)
            value = str(row.get(column) or "")
            if op == "ilike" and operand.strip("*").lower() in value.lower():
                return True
            if op == "eq" and operand.strip('"') == value:
                return True
        return False

    def get(self, table, params=None, select="*"):
        params = dict(params or {})
        order = params.pop("order", None)
        limit = params.pop("limit", None)
        or_expr = params.pop("or", None)
        out = [r for r in self.rows(table) if all(self._matches(r, k, v) for k, v in params.items())]
        if or_expr:
            out = [r for r in out if self._matches_or(r, or_expr)]
        if order:
            column, _, direction = order.partition(".")
            out.sort(key=lambda r: str(r.get(column) or ""), reverse=direction == "desc")
        if limit:
            out = out[: int(limit)]
        return copy.deepcopy(out)

    def get_one(self, table, params):
        rows = self.get(table, dict(params, limit="1"))
        return rows[0] if rows else None

    def insert(self, table, payload, returning="*"):
        rows = copy.deepcopy(payload if isinstance(payload, list) else [payload])
        self.rows(table).extend(rows)
        return copy.deepcopy(rows)

    def upsert(self, table, payload, on_conflict="id", returning="*"):
        out = []
        for row in copy.deepcopy(payload if isinstance(payload, list) else [payload]):
            existing = [r for r in self.rows(table) if r.get(on_conflict) == row.get(on_conflict)]
            if existing:
                existing[0].update(row)
                out.append(copy.deepcopy(existing[0]))
            else:
                self.rows(table).append(row)
                out.append(copy.deepcopy(row))
        return out

    def update(self, table, match, payload, returning="*"):
        out = []
        for row in self.rows(table):
            if all(str(row.get(k)) == str(v) for k, v in match.items()):
                row.update(copy.deepcopy(payload))
                out.append(copy.deepcopy(row))
        return out

    def delete(self, table, match, returning="*"):
        keep, gone = [], []
        for row in self.rows(table):
            (gone if all(str(row.get(k)) == str(v) for k, v in match.items()) else keep).append(row)
        self.tables[table] = keep
        return gone


@pytest.fixture
def db(monkeypatch):
    fake = FakeTables()
    monkeypatch.setattr(server, "supabase_get", fake.get)
    monkeypatch.setattr(server, "supabase_get_one", fake.get_one)
    monkeypatch.setattr(server, "supabase_insert", fake.insert)
    monkeypatch.setattr(server, "supabase_upsert", fake.upsert)
    monkeypatch.setattr(server, "supabase_update", fake.update)
    monkeypatch.setattr(server, "supabase_delete", fake.delete)
    monkeypatch.setattr(server, "get_auth_user_from_token", fake.auth_user)
    return fake


@pytest.fixture
def auth_admin(monkeypatch):
    """Mocked supabase-py client; tests inspect calls on client.auth.admin."""
    client = MagicMock()
    monkeypatch.setattr(server, "get_client", lambda: client)
    return client.auth.admin


@pytest.fixture
def client(db):
    server.app.config["TESTING"] = True
    with server.app.test_client() as c:
        yield c


@pytest.fixture
def member(db):
    """Create a profile and return request headers that authenticate as it."""
    counter = {"n": 0}

    def _member(role, name=None, phone=None, cluster="Mariwa", status="ACTIVE"):
        counter["n"] += 1
        user_id = f"user-{counter['n']}"
        db.insert("profiles", [{
            "id": user_id,
            "name": name or f"{role} {counter['n']}",
            "phone": phone or f"+2547110000{counter['n']:02d}",
            "role": role,
            "cluster": cluster,
            "status": status,
        }])
        return {"Authorization": f"Bearer {user_id}"}

    return _member


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    monkeypatch.setattr(config, "GOOGLE_SHEETS_WEBHOOK_URL", "")
    monkeypatch.setattr(config, "GOOGLE_API_KEY", "")
    weather.clear_cache()
    yield
    weather.clear_cache()
