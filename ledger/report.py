from typing import Any, Iterable, Sequence

from .models import LedgerEntry, Receipt

REPORT_TABLES = ("consultas", "recebimentos")


def format_table(headers: Sequence[str], rows: Iterable[dict[str, Any]]) -> str:
    """Render rows as a bordered fixed-width text table."""
    rows = list(rows)
    widths = [len(h) for h in headers]
    for row in rows:
        for i, h in enumerate(headers):
            widths[i] = max(widths[i], len(_cell(row.get(h))))

    border = "+" + "+".join("-" * (w + 2) for w in widths) + "+"
    head = "| " + " | ".join(h.ljust(widths[i]) for i, h in enumerate(headers)) + " |"
    body = [
        "| " + " | ".join(_cell(row.get(h)).ljust(widths[i]) for i, h in enumerate(headers)) + " |"
        for row in rows
    ]
    return "\n".join([border, head, border, *body, border])


def _cell(value: Any) -> str:
    return "" if value is None else str(value)


def entries_table(entries: Iterable[LedgerEntry]) -> str:
    return format_table(
        ["txid", "amount", "unit_price"],
        ({"txid": e.txid, "amount": e.accrued_amount, "unit_price": e.unit_price} for e in entries),
    )


def receipts_table(receipts: Iterable[Receipt]) -> str:
    return format_table(
        ["txid", "end_to_end_id", "amount"],
        ({"txid": r.txid, "end_to_end_id": r.end_to_end_id, "amount": r.amount} for r in receipts),
    )
