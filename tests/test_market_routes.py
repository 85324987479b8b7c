import io

import pytest

import app as server
from catalog import SystemRole

LISTING = {"crop_type": "Maize", "unit_type": "Bag/Sack", "units_available": 5, "selling_price": 3500}


@pytest.fixture
def people(member):
    return {
        "supplier": member(SystemRole.SUPPLIER, name="Otieno", phone="+254712345678"),
        "customer": member(SystemRole.CUSTOMER, name="Akinyi"),
        "agent": member(SystemRole.SALES_AGENT, name="Jane"),
        "finance": member(SystemRole.FINANCE_OFFICER),
        "director": member(SystemRole.MANAGER, name="Dee"),
        "supplier2": member(SystemRole.SUPPLIER),
    }


def _list(client, headers, **overrides):
    res = client.post("/produce", headers=headers, json=dict(LISTING, **overrides))
    assert res.status_code == 201, res.get_json()
    return res.get_json()["produce"]


def test_supplier_lists_produce(client, people):
    listing = _list(client, people["supplier"])
    assert listing["supplier_phone"] == "+254712345678"
    assert listing["status"] == "AVAILABLE"

    listed = client.get("/produce?crop_type=Maize", headers=people["customer"]).get_json()["produce"]
    assert [p["id"] for p in listed] == [listing["id"]]


def test_customers_cannot_list(client, people):
    assert client.post("/produce", headers=people["customer"], json=LISTING).status_code == 403


def test_agent_listing_validation(client, people):
    assert client.post("/produce", headers=people["agent"], json=LISTING).status_code == 400


def test_only_owner_or_admin_edits_listing(client, db, people):
    listing = _list(client, people["supplier"])
    url = f"/produce/{listing['id']}"
    assert client.patch(url, headers=people["supplier2"], json={"units_available": 1}).status_code == 403
    assert client.patch(url, headers=people["supplier"], json={"selling_price": -5}).status_code == 400
    assert client.patch(url, headers=people["supplier"], json={}).status_code == 400

    res = client.patch(url, headers=people["supplier"], json={"status": "SOLD_OUT"})
    assert res.get_json()["produce"]["status"] == "SOLD_OUT"

    assert client.delete(url, headers=people["director"]).status_code == 200
    assert db.rows("produce") == []


def test_order_flow(client, db, people):
    listing = _list(client, people["supplier"])
    res = client.post("/orders", headers=people["customer"], json={"listing_id": listing["id"], "quantity": 2})
    assert res.status_code == 201
    order = res.get_json()["order"]
    assert order["total_amount"] == 7000.0
    assert order["customer_name"] == "Akinyi"

    mine = client.get("/orders", headers=people["customer"]).get_json()["orders"]
    assert [o["id"] for o in mine] == [order["id"]]
    assert client.get("/orders", headers=people["supplier2"]).get_json()["orders"] == []
    assert len(client.get("/orders", headers=people["finance"]).get_json()["orders"]) == 1

    url = f"/orders/{order['id']}/status"
    assert client.patch(url, headers=people["customer"], json={"status": "CONFIRMED"}).status_code == 403
    assert client.patch(url, headers=people["finance"], json={"status": "SHIPPED"}).status_code == 400
    assert client.patch(url, headers=people["customer"], json={"status": "CANCELLED"}).status_code == 200
    assert client.patch(url, headers=people["finance"], json={"status": "CONFIRMED"}).status_code == 409


def test_order_more_than_available(client, people):
    listing = _list(client, people["supplier"])
    res = client.post("/orders", headers=people["customer"], json={"listing_id": listing["id"], "quantity": 9})
    assert res.status_code == 409


def test_order_unknown_or_withdrawn_listing(client, people):
    assert client.post("/orders", headers=people["customer"], json={"quantity": 1}).status_code == 400
    assert client.post("/orders", headers=people["customer"],
                       json={"listing_id": "missing", "quantity": 1}).status_code == 404

    listing = _list(client, people["supplier"])
    client.patch(f"/produce/{listing['id']}", headers=people["supplier"], json={"status": "WITHDRAWN"})
    assert client.post("/orders", headers=people["customer"],
                       json={"listing_id": listing["id"], "quantity": 1}).status_code == 404


def test_agent_orders_for_customer(client, people):
    listing = _list(client, people["supplier"])
    res = client.post("/orders", headers=people["agent"], json={
        "listing_id": listing["id"], "quantity": 3, "unit_type": "Kg", "target_price": 40,
        "customer_name": "Walk-in", "customer_phone": "0733000000"})
    order = res.get_json()["order"]
    assert order["customer_name"] == "Walk-in"
    assert order["total_amount"] == 120.0


def test_forum(client, people):
    res = client.post("/forum/posts", headers=people["customer"], json={"title": "Prices", "content": "Up"})
    assert res.status_code == 201
    post = res.get_json()["post"]
    assert post["author_name"] == "Akinyi"

    posts = client.get("/forum/posts", headers=people["agent"]).get_json()["posts"]
    assert len(posts) == 1
    assert client.delete(f"/forum/posts/{post['id']}", headers=people["agent"]).status_code == 403
    assert client.delete(f"/forum/posts/{post['id']}", headers=people["customer"]).status_code == 200
    assert client.delete(f"/forum/posts/{post['id']}", headers=people["director"]).status_code == 404


def test_news(client, people, monkeypatch):
    body = {"title": "AGM", "summary": "Annual meeting", "content": "Line one\n\nLine two",
            "image": "https://img.example/agm.png"}
    assert client.post("/news", headers=people["agent"], json=body).status_code == 403
    assert client.post("/news", headers=people["director"], json=dict(body, image="")).status_code == 400
    res = client.post("/news", headers=people["director"], json=body)
    assert res.status_code == 201
    assert res.get_json()["article"]["content"] == "<p>Line one</p><br/><p>Line two</p>"

    uploads = []
    monkeypatch.setattr(server, "supabase_storage_upload",
                        lambda bucket, path, f: uploads.append((bucket, path)) or f"https://cdn/{path}")
    form = dict(body, image="", image_file=(io.BytesIO(b"png"), "my photo.png"))
    res = client.post("/news", headers=people["director"], data=form, content_type="multipart/form-data")
    assert res.status_code == 201
    assert uploads[0][0] == "news-images"
    assert uploads[0][1].endswith("my_photo.png")

    assert len(client.get("/news").get_json()["articles"]) == 2


def test_contact(client, people):
    assert client.post("/contact", json={"name": "A", "phone": "0712345678"}).status_code == 400
    res = client.post("/contact", json={"name": "A", "phone": "0712345678", "subject": "Hi", "message": "Hello"})
    assert res.status_code == 201
    assert client.get("/contact", headers=people["customer"]).status_code == 403
    messages = client.get("/contact?status=NEW", headers=people["director"]).get_json()["messages"]
    assert messages[0]["subject"] == "Hi"
