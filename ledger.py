"""
Sale record ledger.

A sale is entered by a field agent as a DRAFT, confirmed as PAID by a finance
officer and finally VALIDATED (or FLAGGED) by an auditor. Each state carries a
SHA-256 signature over the record's business fields so tampering in the table or
in the legacy spreadsheet can be detected.
"""

import hashlib
import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from catalog import PROFIT_MARGIN, RecordStatus, normalize_phone, resolve_unit


class InvalidTransition(Exception):
    """Raised when a record is moved to a status its current status does not allow."""


# snake_case column -> legacy camelCase keys still found in the sheet and old rows
FIELD_ALIASES = {
    "crop_type": ("cropType",),
    "unit_type": ("unitType",),
    "farmer_name": ("farmerName",),
    "farmer_phone": ("farmerPhone",),
    "customer_name": ("customerName",),
    "customer_phone": ("customerPhone",),
    "units_sold": ("unitsSold",),
    "unit_price": ("unitPrice",),
    "total_sale": ("totalSale",),
    "coop_profit": ("coopProfit",),
    "created_by": ("createdBy", "agentName", "agent_name"),
    "agent_phone": ("agentPhone",),
    "agent_id": ("agentId",),
    "confirmed_by": ("confirmedBy",),
    "created_at": ("createdAt",),
    "flag_reason": ("flagReason",),
}

NUMERIC_FIELDS = ("units_sold", "unit_price", "total_sale", "coop_profit")

PASSTHROUGH_FIELDS = ("id", "date", "status", "signature", "cluster", "synced")

# Every column of the records table; bulk upserts need one key set across rows
RECORD_COLUMNS = PASSTHROUGH_FIELDS + tuple(FIELD_ALIASES)


def table_row(record: Dict[str, Any]) -> Dict[str, Any]:
    """Project a normalized record onto the full column set, missing columns as None."""
    return {column: record.get(column) for column in RECORD_COLUMNS}


def _to_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def normalize_record(row: Dict[str, Any]) -> Dict[str, Any]:
    """Map a row from any backend (snake_case table, camelCase sheet) onto table columns."""
    record = {k: row.get(k) for k in PASSTHROUGH_FIELDS if k in row}
    for column, aliases in FIELD_ALIASES.items():
        value = row.get(column)
        if value is None:
            for alias in aliases:
                if row.get(alias) is not None:
                    value = row[alias]
                    break
        if value is not None:
            record[column] = value
    for column in NUMERIC_FIELDS:
        record[column] = _to_float(record.get(column))
    if isinstance(record.get("date"), str):
        record["date"] = record["date"][:10]
    record.setdefault("status", RecordStatus.DRAFT)
    return record


def _fmt(value) -> str:
    # Render whole numbers without a trailing ".0" so signatures are stable across backends
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def compute_signature(record: Dict[str, Any]) -> str:
    msg = "-".join(_fmt(v) for v in (
        record.get("id"),
        record.get("date"),
        record.get("crop_type"),
        record.get("unit_type"),
        record.get("farmer_name"),
        record.get("farmer_phone"),
        record.get("customer_name"),
        record.get("customer_phone"),
        _to_float(record.get("units_sold")),
        _to_float(record.get("unit_price")),
        record.get("created_by"),
        record.get("agent_phone"),
        record.get("status"),
        record.get("confirmed_by") or "none",
    ))
    return hashlib.sha256(msg.encode("utf-8")).hexdigest()


def verify_signature(record: Dict[str, Any]) -> bool:
    record = normalize_record(record)
    return bool(record.get("signature")) and compute_signature(record) == record["signature"]


def _sign(record: Dict[str, Any]) -> Dict[str, Any]:
    record["signature"] = compute_signature(record)
    return record


def build_sale_record(data: Dict[str, Any], agent: Dict[str, Any], today: Optional[date] = None) -> Dict[str, Any]:
    """
    Validate a sale form submission and return a signed DRAFT row.
    `agent` is the authenticated profile (id, name, phone, cluster).
    Raises ValueError on invalid input.
    """
    data = normalize_record(data)
    for field in ("crop_type", "farmer_name", "customer_name"):
        if not str(data.get(field) or "").strip():
            raise ValueError(f"{field} is required")
    if data["units_sold"] <= 0:
        raise ValueError("units_sold must be greater than zero")
    if data["unit_price"] <= 0:
        raise ValueError("unit_price must be greater than zero")

    total_sale = round(data["units_sold"] * data["unit_price"], 2)
    record = {
        "id": data.get("id") or str(uuid.uuid4()),
        "date": data.get("date") or (today or date.today()).isoformat(),
        "crop_type": data["crop_type"].strip(),
        "unit_type": resolve_unit(data["crop_type"].strip(), data.get("unit_type")),
        "farmer_name": data["farmer_name"].strip(),
        "farmer_phone": normalize_phone(data.get("farmer_phone") or ""),
        "customer_name": data["customer_name"].strip(),
        "customer_phone": normalize_phone(data.get("customer_phone") or ""),
        "units_sold": data["units_sold"],
        "unit_price": data["unit_price"],
        "total_sale": total_sale,
        "coop_profit": round(total_sale * PROFIT_MARGIN, 2),
        "status": RecordStatus.DRAFT,
        "created_by": agent.get("name"),
        "agent_phone": agent.get("phone"),
        "agent_id": agent.get("id"),
        "cluster": agent.get("cluster"),
        "confirmed_by": None,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "synced": False,
    }
    return _sign(record)


def _transition(record: Dict[str, Any], allowed_from, target: str, **changes) -> Dict[str, Any]:
    current = record.get("status")
    if current not in allowed_from:
        raise InvalidTransition(f"Cannot move record from {current} to {target}")
    updated = dict(record, status=target, **changes)
    return _sign(updated)


def confirm_payment(record: Dict[str, Any], officer_name: str) -> Dict[str, Any]:
    return _transition(normalize_record(record), (RecordStatus.DRAFT,), RecordStatus.PAID,
                       confirmed_by=officer_name)


def validate(record: Dict[str, Any]) -> Dict[str, Any]:
    return _transition(normalize_record(record), (RecordStatus.PAID, RecordStatus.VERIFIED),
                       RecordStatus.VALIDATED)


def flag(record: Dict[str, Any], reason: str) -> Dict[str, Any]:
    allowed = (RecordStatus.DRAFT, RecordStatus.PAID, RecordStatus.VERIFIED, RecordStatus.FLAGGED)
    return _transition(normalize_record(record), allowed, RecordStatus.FLAGGED, flag_reason=reason)


def receipt(record: Dict[str, Any]) -> Dict[str, Any]:
    """Payment receipt handed back to the finance officer after confirmation."""
    record = normalize_record(record)
    return {
        "receipt_no": (record.get("id") or "")[:8].upper(),
        "date": record.get("date"),
        "item": f"{_fmt(record['units_sold'])} x {record.get('unit_type')} {record.get('crop_type')}",
        "unit_price": record["unit_price"],
        "total": record["total_sale"],
        "farmer": record.get("farmer_name"),
        "customer": record.get("customer_name"),
        "confirmed_by": record.get("confirmed_by"),
        "signature": record.get("signature"),
    }
