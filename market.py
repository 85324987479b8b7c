"""
Payload builders for the marketplace (produce listings, orders) and the community
pages (forum posts, news articles, contact messages).

Each builder validates a request body and returns the row to store; bad input
raises ValueError with a message fit for the client.
"""

import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from markupsafe import escape

from catalog import (
    ORDER_STATUSES,
    SystemRole,
    normalize_phone,
    resolve_unit,
    units_for,
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _number(body: Dict[str, Any], *keys) -> Optional[float]:
    for key in keys:
        if body.get(key) not in (None, ""):
            try:
                return float(body[key])
            except (TypeError, ValueError):
                raise ValueError(f"{keys[0]} must be a number")
    return None


def _text(body: Dict[str, Any], *keys) -> str:
    for key in keys:
        value = body.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return ""


# ------------------------
# Produce listings
# ------------------------
def build_listing(body: Dict[str, Any], user: Dict[str, Any], today: Optional[date] = None) -> Dict[str, Any]:
    crop = _text(body, "crop_type", "cropType")
    if crop == "Other":
        crop = _text(body, "other_crop_type", "otherCropType")
    if not crop:
        raise ValueError("crop_type is required")

    units = _number(body, "units_available", "unitsAvailable")
    price = _number(body, "selling_price", "sellingPrice")
    if not units or units <= 0:
        raise ValueError("units_available must be greater than zero")
    if not price or price <= 0:
        raise ValueError("selling_price must be greater than zero")

    # Suppliers list their own produce; agents list on behalf of a named supplier
    if user.get("role") == SystemRole.SUPPLIER:
        supplier_name = _text(body, "supplier_name", "supplierName") or user.get("name") or ""
        supplier_phone = _text(body, "supplier_phone", "supplierPhone") or user.get("phone") or ""
    else:
        supplier_name = _text(body, "supplier_name", "supplierName")
        supplier_phone = _text(body, "supplier_phone", "supplierPhone")
    if not supplier_name or not supplier_phone:
        raise ValueError("supplier_name and supplier_phone are required")

    return {
        "id": str(uuid.uuid4()),
        "date": _text(body, "date") or (today or date.today()).isoformat(),
        "crop_type": crop,
        "unit_type": resolve_unit(crop, _text(body, "unit_type", "unitType")),
        "units_available": units,
        "selling_price": price,
        "supplier_name": supplier_name,
        "supplier_phone": normalize_phone(supplier_phone),
        "cluster": _text(body, "cluster") or user.get("cluster"),
        "agent_id": user.get("id"),
        "status": "AVAILABLE",
        "created_at": _now(),
    }


LISTING_UPDATABLE = ("units_available", "selling_price", "status")
LISTING_STATUSES = ("AVAILABLE", "SOLD_OUT", "WITHDRAWN")


def listing_updates(body: Dict[str, Any]) -> Dict[str, Any]:
    updates = {}
    for field in ("units_available", "selling_price"):
        value = _number(body, field)
        if value is not None:
            if value < 0:
                raise ValueError(f"{field} cannot be negative")
            updates[field] = value
    if body.get("status") is not None:
        if body["status"] not in LISTING_STATUSES:
            raise ValueError(f"status must be one of {', '.join(LISTING_STATUSES)}")
        updates["status"] = body["status"]
    return updates


# ------------------------
# Orders
# ------------------------
def build_order(body: Dict[str, Any], listing: Dict[str, Any], user: Dict[str, Any],
                today: Optional[date] = None) -> Dict[str, Any]:
    quantity = _number(body, "quantity")
    if not quantity or quantity <= 0:
        raise ValueError("Please enter a valid quantity.")

    crop = listing.get("crop_type")
    listing_unit = listing.get("unit_type")
    unit = _text(body, "unit_type", "unitType") or listing_unit
    if unit not in units_for(crop):
        raise ValueError(f"{unit} is not sold for {crop}")

    price = _number(body, "target_price", "targetPrice")
    if price is None:
        # The listing price only applies to the listing's own unit
        if unit != listing_unit:
            raise ValueError("target_price is required when ordering in a different unit")
        price = float(listing.get("selling_price") or 0)
    if price < 0:
        raise ValueError("Please enter a valid unit price.")

    # Only field agents place orders for someone else
    if user.get("role") == SystemRole.SALES_AGENT and _text(body, "customer_name", "customerName"):
        customer_name = _text(body, "customer_name", "customerName")
        customer_phone = _text(body, "customer_phone", "customerPhone")
    else:
        customer_name = user.get("name") or ""
        customer_phone = user.get("phone") or ""
    if not customer_name or not customer_phone:
        raise ValueError("Please provide customer details.")

    return {
        "id": str(uuid.uuid4()),
        "date": (today or date.today()).isoformat(),
        "listing_id": listing.get("id"),
        "crop_type": crop,
        "unit_type": unit,
        "quantity": quantity,
        "target_price": price,
        "total_amount": round(quantity * price, 2),
        "customer_name": customer_name,
        "customer_phone": normalize_phone(customer_phone),
        "supplier_name": listing.get("supplier_name"),
        "supplier_phone": listing.get("supplier_phone"),
        "cluster": listing.get("cluster") or user.get("cluster"),
        "agent_id": user.get("id"),
        "status": "PENDING",
        "created_at": _now(),
    }


def check_order_status(status) -> str:
    if status not in ORDER_STATUSES:
        raise ValueError(f"status must be one of {', '.join(ORDER_STATUSES)}")
    return status


# ------------------------
# Forum / news / contact
# ------------------------
def build_forum_post(body: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
    title = _text(body, "title")
    content = _text(body, "content")
    if not title or not content:
        raise ValueError("title and content are required")
    return {
        "id": str(uuid.uuid4()),
        "title": title,
        "content": content,
        "author_id": user.get("id"),
        "author_name": user.get("name"),
        "author_role": user.get("role"),
        "author_cluster": user.get("cluster"),
        "author_phone": user.get("phone"),
        "created_at": _now(),
    }


def format_article(content: str) -> str:
    """Blank lines start paragraphs, single newlines become line breaks."""
    paragraphs = [p for p in content.split("\n\n") if p.strip()]
    return "<br/>".join(
        "<p>" + "<br/>".join(str(escape(line)) for line in p.split("\n")) + "</p>"
        for p in paragraphs
    )


def build_article(body: Dict[str, Any], image_url: Optional[str], user: Dict[str, Any]) -> Dict[str, Any]:
    title = _text(body, "title")
    summary = _text(body, "summary")
    content = body.get("content") or ""
    author = _text(body, "author") or user.get("name") or ""
    image = image_url or _text(body, "image")
    if not title or not summary or not content.strip() or not image or not author:
        raise ValueError("title, summary, content, image and author are required")
    return {
        "id": str(uuid.uuid4()),
        "title": title,
        "summary": summary,
        "content": format_article(content),
        "category": _text(body, "category") or "Cooperative Movement",
        "image": image,
        "author": author,
        "role": _text(body, "role"),
        "date": _now(),
    }


def build_contact_message(body: Dict[str, Any]) -> Dict[str, Any]:
    fields = {k: _text(body, k) for k in ("name", "phone", "email", "subject", "message")}
    missing = [k for k in ("name", "phone", "subject", "message") if not fields[k]]
    if missing:
        raise ValueError(f"{', '.join(missing)} required")
    fields["phone"] = normalize_phone(fields["phone"])
    fields.update({"id": str(uuid.uuid4()), "date": _now(), "status": "NEW"})
    return fields
