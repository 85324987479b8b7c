"""Aggregations behind the finance dashboard, the board view and the public supplier portal."""

import csv
import io
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional

from catalog import CLUSTER_SHARE, REALIZED_STATUSES, RecordStatus
from ledger import normalize_record


def coop_stats(records: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    total_sales = 0.0
    finalized_profit = 0.0
    total_units = 0.0
    count = 0
    for r in map(normalize_record, records):
        total_sales += r["total_sale"]
        total_units += r["units_sold"]
        if r["status"] == RecordStatus.VALIDATED:
            finalized_profit += r["coop_profit"]
        count += 1
    return {
        "total_sales": round(total_sales, 2),
        "finalized_profit": round(finalized_profit, 2),
        "total_units": total_units,
        "avg_unit_price": round(total_sales / total_units, 2) if total_units > 0 else 0,
        "record_count": count,
    }


def commodity_totals(records: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Sales value per crop, largest first (feeds the board's bar chart)."""
    totals: Dict[str, float] = {}
    for r in map(normalize_record, records):
        crop = r.get("crop_type") or "Other"
        totals[crop] = totals.get(crop, 0.0) + r["total_sale"]
    rows = [{"name": k, "value": round(v, 2)} for k, v in totals.items()]
    return sorted(rows, key=lambda row: row["value"], reverse=True)


def _bucket(records: List[Dict[str, Any]], period: str) -> Dict[str, Any]:
    total_sales = sum(r["total_sale"] for r in records)
    coop_profit = sum(r["coop_profit"] for r in records)
    return {
        "period": period,
        "total_sales": round(total_sales, 2),
        "coop_profit": round(coop_profit, 2),
        "cluster_share": round(coop_profit * CLUSTER_SHARE, 2),
        "transaction_count": len(records),
    }


def _record_date(record: Dict[str, Any]) -> Optional[date]:
    try:
        return date.fromisoformat(str(record.get("date"))[:10])
    except (TypeError, ValueError):
        return None


def week_start(today: date) -> date:
    # Weeks start on Sunday
    return today - timedelta(days=(today.weekday() + 1) % 7)


def supplier_stats(records: Iterable[Dict[str, Any]], today: Optional[date] = None) -> Dict[str, Any]:
    """
    Weekly / monthly / all-time rollups of a supplier's realized sales.
    DRAFT and FLAGGED rows are excluded; the cluster share is 60% of coop profit.
    """
    today = today or date.today()
    valid = [r for r in map(normalize_record, records) if r["status"] in REALIZED_STATUSES]

    since_week = week_start(today)
    since_month = today.replace(day=1)
    weekly, monthly = [], []
    for r in valid:
        d = _record_date(r)
        if d is None:
            continue
        if d >= since_week:
            weekly.append(r)
        if d >= since_month:
            monthly.append(r)

    return {
        "supplier_name": valid[0].get("farmer_name") if valid else "Supplier",
        "weekly": _bucket(weekly, "week"),
        "monthly": _bucket(monthly, "month"),
        "all_time": _bucket(valid, "all"),
    }


LEDGER_COLUMNS = ["date", "crop_type", "unit_type", "units_sold", "unit_price", "total_sale",
                  "coop_profit", "farmer_name", "customer_name", "confirmed_by", "signature"]


def ledger_csv(records: Iterable[Dict[str, Any]]) -> str:
    """CSV export of the validated ledger."""
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=LEDGER_COLUMNS, extrasaction="ignore")
    writer.writeheader()
    for r in map(normalize_record, records):
        if r["status"] == RecordStatus.VALIDATED:
            writer.writerow(r)
    return buf.getvalue()
