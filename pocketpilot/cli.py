# pocketpilot/cli.py
# Operator commands: tokens, bank link/sync, and the scheduled detectors.
import argparse
import json
import logging
import sys
from datetime import date, datetime, timedelta

from pocketpilot.alerts import analyze_transaction, process_alert_queue
from pocketpilot.auth import AuthService
from pocketpilot.cache import TTLCache
from pocketpilot.errors import FunctionError
from pocketpilot.inflation import run_inflation_detection
from pocketpilot.llm import LLMClient
from pocketpilot.market import GasPriceClient, monitor_gas_prices
from pocketpilot.plaid_link import build_client, create_link_token, sync_transactions
from pocketpilot.quota import QuotaTracker
from pocketpilot.recurring import run_subscription_detection
from pocketpilot.settings import configure_logging, load_settings
from pocketpilot.store import Store

log = logging.getLogger(__name__)


def _die(msg: str, code: int = 1):
    print(f"❌ {msg}", file=sys.stderr)
    log.error(msg)
    sys.exit(code)


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, default=str))


def _date(raw: str) -> date:
    return datetime.strptime(raw, "%Y-%m-%d").date()


def cmd_issue_token(args, settings, store):
    token = AuthService(settings.secret_key, settings.token_max_age).issue_token(args.user, args.email)
    print(token)


def cmd_link(args, settings, store):
    print(f"✅ Your new link_token:\n{create_link_token(build_client(settings), args.user, settings.plaid_client_name)}")


def cmd_sync(args, settings, store):
    today = date.today()
    start = _date(args.since) if args.since else today - timedelta(days=args.days)
    end = _date(args.end) if args.end else today
    print(f"📆 Fetching transactions from {start} to {end}...")
    _print(sync_transactions(store, build_client(settings), args.user, start, end))


def cmd_detect_subscriptions(args, settings, store):
    _print(run_subscription_detection(store, args.user, days=args.days))


def cmd_detect_inflation(args, settings, store):
    _print(run_inflation_detection(store, args.user, months=args.months))


def cmd_process_alerts(args, settings, store):
    quota = QuotaTracker()
    fast_llm = LLMClient(settings.fast_llm_url, settings.fast_llm_api_key, settings.fast_llm_model,
                         timeout=settings.http_timeout, quota=quota, name="FAST_LLM_API_KEY")
    fast_llm = fast_llm if fast_llm.configured else None

    def _analyze(user_id, tx):
        return analyze_transaction(store, user_id, tx, fast_llm=fast_llm, quota=quota)

    _print(process_alert_queue(store, _analyze, limit=args.limit))


def cmd_monitor_gas(args, settings, store):
    client = GasPriceClient(settings.gas_api_url, settings.gas_api_key, cache=TTLCache(),
                            timeout=settings.http_timeout)
    _print(monitor_gas_prices(store, client, cooldown_hours=args.cooldown_hours))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pocketpilot")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("issue-token", help="Sign a bearer token for a user id")
    p.add_argument("--user", required=True)
    p.add_argument("--email")
    p.set_defaults(func=cmd_issue_token)

    p = sub.add_parser("link", help="Create a Plaid Link token")
    p.add_argument("--user", required=True)
    p.set_defaults(func=cmd_link)

    p = sub.add_parser("sync", help="Pull cleared Plaid transactions into the store")
    p.add_argument("--user", required=True)
    p.add_argument("--since", help="Start date (YYYY-MM-DD)")
    p.add_argument("--end", help="End date (YYYY-MM-DD)")
    p.add_argument("--days", type=int, default=2, help="Number of days back to fetch")
    p.set_defaults(func=cmd_sync)

    p = sub.add_parser("detect-subscriptions")
    p.add_argument("--user", required=True)
    p.add_argument("--days", type=int, default=180)
    p.set_defaults(func=cmd_detect_subscriptions)

    p = sub.add_parser("detect-inflation")
    p.add_argument("--user", required=True)
    p.add_argument("--months", type=int, default=3)
    p.set_defaults(func=cmd_detect_inflation)

    p = sub.add_parser("process-alerts", help="Drain the pending transaction alert queue")
    p.add_argument("--limit", type=int, default=10)
    p.set_defaults(func=cmd_process_alerts)

    p = sub.add_parser("monitor-gas", help="Snapshot gas prices and fire threshold alerts")
    p.add_argument("--cooldown-hours", type=float, default=6.0)
    p.set_defaults(func=cmd_monitor_gas)
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    settings = load_settings()
    configure_logging("pocketpilot-cli", settings)
    store = Store(settings.data_dir)
    try:
        args.func(args, settings, store)
    except FunctionError as e:
        _die(e.message)
    except ValueError as e:
        _die(f"Bad argument: {e}")
    return 0


if __name__ == "__main__":
    main()
