"""Export formatting for bill summaries.

Exports take the ``BillSummary`` produced by the allocation engine and
only format it: every monetary value becomes a fixed two-decimal
string.  No arithmetic on amounts happens here beyond percentage
display, so an export and the summary endpoint always agree.
"""

from __future__ import annotations

import csv
import datetime as dt
import io
from typing import Any, Dict, List

from billsplit.models.tables import Bill
from billsplit.services.allocation import ZERO, BillSummary, format_money, quantize_money


def _iso(value: dt.datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def build_export_document(bill: Bill, summary: BillSummary) -> Dict[str, Any]:
    """Build the downloadable JSON representation of a bill."""
    names = {p.participant_id: p.name for p in summary.participants}
    rec = summary.reconciliation

    products: List[Dict[str, Any]] = []
    for item in summary.products:
        products.append(
            {
                "id": item.product_id,
                "name": item.name,
                "price": format_money(item.price),
                "quantity": item.quantity,
                "total_cost": format_money(item.line_cost),
                "orphaned": item.orphaned,
                "error": item.error,
                "participants": [
                    {
                        "participant_id": pid,
                        "name": names.get(pid),
                        "share_percentage": str(quantize_money(item.weights.get(pid, ZERO) * 100)),
                        "share_amount": format_money(amount),
                    }
                    for pid, amount in item.shares.items()
                ],
            }
        )

    return {
        "bill": {
            "id": bill.id,
            "title": bill.title,
            "description": bill.description,
            "total_amount": format_money(rec.stated_total),
            "image_url": bill.image_url,
            "created_at": _iso(bill.created_at),
        },
        "participants": [
            {
                "id": p.participant_id,
                "name": p.name,
                "color": p.color,
                "total_owed": format_money(p.total_owed),
                "items_count": p.items_count,
            }
            for p in summary.participants
        ],
        "products": products,
        "summary": {
            "total_items": len(summary.products),
            "total_participants": len(summary.participants),
            "stated_total": format_money(rec.stated_total),
            "computed_total": format_money(rec.computed_total),
            "allocated_total": format_money(rec.allocated_total),
            "orphaned_amount": format_money(rec.orphaned_amount),
            "stated_difference": format_money(rec.stated_difference),
            "generated_at": dt.datetime.now(dt.timezone.utc).isoformat().replace("+00:00", "Z"),
        },
    }


CSV_COLUMNS = ["product", "quantity", "price", "total_cost", "participant", "share_percentage", "share_amount"]


def render_csv(document: Dict[str, Any]) -> str:
    """Flatten an export document into CSV rows.

    One row per participant share, one row per orphaned product with an
    empty participant, then a totals footer.
    """
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(CSV_COLUMNS)
    for product in document["products"]:
        base = [product["name"], product["quantity"], product["price"], product["total_cost"]]
        if product["orphaned"]:
            writer.writerow(base + ["", "", "0.00"])
            continue
        for share in product["participants"]:
            writer.writerow(base + [share["name"], share["share_percentage"], share["share_amount"]])
    writer.writerow([])
    writer.writerow(["participant", "total_owed"])
    for participant in document["participants"]:
        writer.writerow([participant["name"], participant["total_owed"]])
    writer.writerow([])
    summary = document["summary"]
    for key in ("stated_total", "computed_total", "allocated_total", "orphaned_amount"):
        writer.writerow([key, summary[key]])
    return buf.getvalue()


__all__ = ["build_export_document", "render_csv", "CSV_COLUMNS"]
