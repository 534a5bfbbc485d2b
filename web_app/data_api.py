# web_app/data_api.py
# Row CRUD scoped to the signed-in user, plus manual cash entries.
from __future__ import annotations

from datetime import date

from flask import Blueprint, g, jsonify, request

from pocketpilot.categorize import categorize_transaction
from pocketpilot.dates import to_date
from pocketpilot.errors import NotFoundError, ValidationError
from web_app.services import current

bp = Blueprint("data_api", __name__, url_prefix="/api")

# route name -> backing table, required fields, numeric fields, soft delete
TABLES = {
    "transactions": {
        "table": "transactions",
        "required": ("date", "amount"),
        "numeric": ("amount",),
        "soft": False,
    },
    "budgets": {
        "table": "budgets",
        "required": ("category", "amount"),
        "numeric": ("amount",),
        "soft": True,
    },
    "goals": {
        "table": "goals",
        "required": ("name", "target_amount"),
        "numeric": ("target_amount", "current_amount", "monthly_contribution"),
        "soft": True,
    },
    "subscriptions": {
        "table": "detected_subscriptions",
        "required": ("merchant", "amount"),
        "numeric": ("amount",),
        "soft": True,
    },
    "credit_goals": {
        "table": "credit_goals",
        "required": ("target_score",),
        "numeric": ("target_score", "current_score"),
        "soft": True,
    },
    "widget_configs": {
        "table": "widget_configs",
        "required": ("widget_id",),
        "numeric": (),
        "soft": False,
    },
    "financial_events": {
        "table": "financial_events",
        "required": ("title", "event_date"),
        "numeric": ("amount",),
        "soft": True,
    },
}

PROTECTED = ("id", "user_id", "created_at", "updated_at")


def _meta(name: str) -> dict:
    meta = TABLES.get(name)
    if meta is None:
        raise NotFoundError(f"Unknown table: {name}")
    return meta


def _clean(meta: dict, data: dict) -> dict:
    row = {k: v for k, v in data.items() if k not in PROTECTED}
    for k in meta["numeric"]:
        if k in row and row[k] not in (None, ""):
            try:
                row[k] = float(row[k])
            except (TypeError, ValueError):
                raise ValidationError(f"{k} must be a number")
    return row


def _own_row(meta: dict, row_id: str) -> dict:
    row = current().store.table(meta["table"]).first(id=row_id, user_id=g.user["id"])
    if row is None or (meta["soft"] and row.get("status") == "deleted"):
        raise NotFoundError("Not found")
    return row


@bp.get("/<name>")
def list_rows(name):
    meta = _meta(name)
    include_deleted = request.args.get("include_deleted") in ("1", "true", "yes")

    def _visible(r):
        return include_deleted or not meta["soft"] or r.get("status") != "deleted"

    rows = current().store.table(meta["table"]).select(
        user_id=g.user["id"], where=_visible, order_by="created_at", desc=True)
    return jsonify({"ok": True, "rows": rows, "count": len(rows)})


@bp.post("/<name>")
def create_row(name):
    meta = _meta(name)
    data = request.get_json(silent=True) or {}
    missing = [k for k in meta["required"] if data.get(k) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")
    row = _clean(meta, data)
    row["user_id"] = g.user["id"]
    if meta["soft"]:
        row.setdefault("status", "active")
    saved = current().store.table(meta["table"]).insert(row)
    return jsonify({"ok": True, "row": saved}), 201


@bp.patch("/<name>/<row_id>")
def update_row(name, row_id):
    meta = _meta(name)
    _own_row(meta, row_id)
    changes = _clean(meta, request.get_json(silent=True) or {})
    if not changes:
        raise ValidationError("No changes supplied")
    updated = current().store.table(meta["table"]).update(changes, id=row_id, user_id=g.user["id"])
    return jsonify({"ok": True, "row": updated[0]})


@bp.delete("/<name>/<row_id>")
def delete_row(name, row_id):
    meta = _meta(name)
    _own_row(meta, row_id)
    table = current().store.table(meta["table"])
    if meta["soft"]:
        table.update({"status": "deleted"}, id=row_id, user_id=g.user["id"])
    else:
        table.delete(id=row_id, user_id=g.user["id"])
    return jsonify({"ok": True, "deleted": row_id, "soft": meta["soft"]})


# ------------------ MANUAL CASH ENTRIES ------------------
def normalize_manual_tx(tx: dict) -> dict:
    if tx.get("amount") in (None, ""):
        raise ValidationError("Missing 'amount'")
    try:
        amount = float(tx["amount"])
    except (TypeError, ValueError):
        raise ValidationError("amount must be a number")

    # optional: coerce sign if the client sends kind/type
    kind = str(tx.get("kind") or tx.get("type") or "").lower()
    if kind == "expense" and amount > 0:
        amount = -amount
    elif kind == "income" and amount < 0:
        amount = -amount

    d = to_date(tx.get("date")) if tx.get("date") else date.today()
    if d is None:
        raise ValidationError("date must be YYYY-MM-DD or MM/DD/YYYY")

    # one description for both fields so keyword matching sees it
    desc = (tx.get("description") or tx.get("name") or tx.get("memo") or "Manual").strip()
    norm = {
        "date": d.isoformat(),
        "name": desc,
        "description": desc,
        "merchant": (tx.get("merchant") or desc).strip(),
        "amount": amount,
        "pending": False,
        "source": "manual",
    }
    for k in ("category", "subcategory", "memo"):
        if tx.get(k) not in (None, ""):
            norm[k] = tx[k]
    norm.setdefault("category", categorize_transaction(desc, amount))
    return norm


@bp.post("/transactions/manual")
def manual_transaction():
    row = normalize_manual_tx(request.get_json(silent=True) or {})
    row["user_id"] = g.user["id"]
    saved = current().store.table("transactions").insert(row)
    return jsonify({"ok": True, "saved": saved}), 201
