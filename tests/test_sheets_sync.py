from unittest.mock import MagicMock, patch

import requests

import config
import sheets_sync

WEBHOOK = "https://script.google.com/macros/s/abc/exec"


def test_unconfigured_webhook_skips_network(monkeypatch):
    with patch("sheets_sync.requests.post") as post:
        assert sheets_sync.sync_record({"id": "r1"}) is None
        post.assert_not_called()


def test_request_posts_action_and_payload(monkeypatch):
    monkeypatch.setattr(config, "GOOGLE_SHEETS_WEBHOOK_URL", WEBHOOK)
    resp = MagicMock()
    resp.json.return_value = {"success": True}
    with patch("sheets_sync.requests.post", return_value=resp) as post:
        assert sheets_sync.delete_produce("p1") == {"success": True}

    args, kwargs = post.call_args
    assert args[0] == WEBHOOK
    assert kwargs["json"] == {"action": "delete_produce", "id": "p1"}
    assert kwargs["allow_redirects"] is True


def test_request_swallows_transport_errors(monkeypatch):
    monkeypatch.setattr(config, "GOOGLE_SHEETS_WEBHOOK_URL", WEBHOOK)
    with patch("sheets_sync.requests.post", side_effect=requests.ConnectionError("down")):
        assert sheets_sync.fetch_records() is None


def test_request_swallows_bad_json(monkeypatch):
    monkeypatch.setattr(config, "GOOGLE_SHEETS_WEBHOOK_URL", WEBHOOK)
    resp = MagicMock()
    resp.json.side_effect = ValueError("not json")
    with patch("sheets_sync.requests.post", return_value=resp):
        assert sheets_sync.fetch_users() is None


def test_rows_from_response_shapes():
    assert sheets_sync.rows_from_response(None) == []
    assert sheets_sync.rows_from_response([{"id": 1}]) == [{"id": 1}]
    assert sheets_sync.rows_from_response({"data": [{"id": 2}]}) == [{"id": 2}]
    assert sheets_sync.rows_from_response({"records": [{"id": 3}]}) == [{"id": 3}]
    assert sheets_sync.rows_from_response({"success": True}) == []


def test_push_unsynced_returns_accepted_ids(monkeypatch):
    results = {"a": {"success": True}, "b": None, "c": {"success": False, "message": "dup"}}
    monkeypatch.setattr(sheets_sync, "sync_record", lambda record: results[record["id"]])
    assert sheets_sync.push_unsynced([{"id": "a"}, {"id": "b"}, {"id": "c"}]) == ["a"]


def test_purge_actions_cover_every_sheet():
    assert set(sheets_sync.PURGE_ACTIONS) == {"records", "users", "orders", "produce"}
