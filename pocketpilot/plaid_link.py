# pocketpilot/plaid_link.py
# Plaid Link + transaction sync into the transactions table.
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List

from plaid.api import plaid_api
from plaid.api_client import ApiClient
from plaid.configuration import Configuration
from plaid.exceptions import ApiException
from plaid.model.country_code import CountryCode
from plaid.model.item_public_token_exchange_request import ItemPublicTokenExchangeRequest
from plaid.model.link_token_create_request import LinkTokenCreateRequest
from plaid.model.link_token_create_request_user import LinkTokenCreateRequestUser
from plaid.model.products import Products
from plaid.model.transactions_get_request import TransactionsGetRequest
from plaid.model.transactions_get_request_options import TransactionsGetRequestOptions

from pocketpilot.categorize import categorize_transaction
from pocketpilot.errors import ConfigError, NotFoundError, UpstreamError, ValidationError
from pocketpilot.settings import PLAID_ENV_HOSTS, Settings
from pocketpilot.store import Store

log = logging.getLogger(__name__)

PAGE_SIZE = 100


def build_client(settings: Settings) -> plaid_api.PlaidApi:
    if not all([settings.plaid_client_id, settings.plaid_secret, settings.plaid_env]):
        raise ConfigError("One or more Plaid env vars are missing (PLAID_CLIENT_ID / PLAID_SECRET / PLAID_ENV).")
    if settings.plaid_host is None:
        raise ConfigError(f"Invalid PLAID_ENV: {settings.plaid_env} (expected one of {', '.join(PLAID_ENV_HOSTS)})")
    configuration = Configuration(
        host=settings.plaid_host,
        api_key={"clientId": settings.plaid_client_id, "secret": settings.plaid_secret},
    )
    return plaid_api.PlaidApi(ApiClient(configuration))


def create_link_token(client, user_id: str, client_name: str = "PocketPilot") -> str:
    request = LinkTokenCreateRequest(
        products=[Products("transactions")],
        client_name=client_name,
        country_codes=[CountryCode("US")],
        language="en",
        user=LinkTokenCreateRequestUser(client_user_id=str(user_id)),
    )
    try:
        response = client.link_token_create(request)
    except ApiException as e:
        log.error("Plaid link_token_create failed: %s", e)
        raise UpstreamError(f"Plaid API Error: {e.status}")
    return response.link_token


def exchange_public_token(store: Store, client, user_id: str, public_token: str) -> Dict[str, Any]:
    if not public_token:
        raise ValidationError("public_token is required")
    try:
        resp = client.item_public_token_exchange(ItemPublicTokenExchangeRequest(public_token=public_token))
    except ApiException as e:
        log.error("Plaid token exchange failed: %s", e)
        raise UpstreamError(f"Plaid API Error: {e.status}")
    item = store.table("plaid_items").upsert(
        {"user_id": user_id, "item_id": resp.item_id, "access_token": resp.access_token, "status": "active"},
        on_conflict=("user_id", "item_id"),
    )
    log.info("[PlaidExchange] user=%s item=%s", user_id, resp.item_id)
    return {"item_id": item["item_id"], "id": item["id"]}


def _key(tx: dict):
    """Stable dedupe key: prefer Plaid id; else name/amount/date."""
    tid = tx.get("transaction_id") or tx.get("plaid_transaction_id")
    return ("id", tid) if tid else ("nad", tx.get("name"), tx.get("amount"), str(tx.get("date")))


def _fetch_all(client, access_token: str, start: date, end: date) -> List[dict]:
    fetched: List[dict] = []
    offset = 0
    while True:
        request = TransactionsGetRequest(
            access_token=access_token,
            start_date=start,
            end_date=end,
            options=TransactionsGetRequestOptions(count=PAGE_SIZE, offset=offset),
        )
        response = client.transactions_get(request)
        batch = [t.to_dict() for t in response.transactions]
        fetched.extend(batch)
        log.info("Fetched %d (Total: %d/%d)", len(batch), len(fetched), response.total_transactions)
        if not batch or len(fetched) >= response.total_transactions:
            break
        offset += len(batch)
    return fetched


def _to_row(user_id: str, tx: dict) -> Dict[str, Any]:
    desc = tx.get("name") or tx.get("merchant_name") or ""
    # Plaid reports outflows as positive; rows store them negative
    amount = -float(tx.get("amount") or 0.0)
    return {
        "user_id": user_id,
        "plaid_transaction_id": tx.get("transaction_id"),
        "account_id": tx.get("account_id"),
        "date": str(tx.get("date")),
        "description": desc,
        "merchant": tx.get("merchant_name") or desc,
        "name": tx.get("name"),
        "amount": amount,
        "category": categorize_transaction(desc, amount),
        "pending": False,
        "source": "plaid",
    }


def sync_transactions(store: Store, client, user_id: str, start: date, end: date) -> Dict[str, Any]:
    if start > end:
        raise ValidationError("start must be on or before end")
    items = store.table("plaid_items").select(user_id=user_id, status="active")
    if not items:
        raise NotFoundError("No linked bank account")

    table = store.table("transactions")
    existing = {
        _key({"plaid_transaction_id": r.get("plaid_transaction_id"), "name": r.get("name"),
              "amount": -float(r.get("amount") or 0.0), "date": r.get("date")})
        for r in table.select(user_id=user_id, source="plaid")
    }

    fetched_total = 0
    new_rows: List[Dict[str, Any]] = []
    for item in items:
        try:
            fetched = _fetch_all(client, item["access_token"], start, end)
        except ApiException as e:
            log.error("Plaid transactions_get failed for item %s: %s", item.get("item_id"), e)
            raise UpstreamError(f"Plaid API Error: {e.status}")
        fetched_total += len(fetched)
        for t in fetched:
            if t.get("pending", False):
                continue
            k = _key(t)
            if k in existing:
                continue
            existing.add(k)
            new_rows.append(_to_row(user_id, t))

    if new_rows:
        table.insert(new_rows)
    log.info("[PlaidSync] user=%s fetched=%d new=%d", user_id, fetched_total, len(new_rows))
    return {"fetched": fetched_total, "added": len(new_rows), "start": start.isoformat(), "end": end.isoformat()}
