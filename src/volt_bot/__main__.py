"""CLI entry point for volt-bot."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from volt_bot.app import VoltBotApp
from volt_bot.billing.ledger import reconcile
from volt_bot.config import AppConfig, load_config
from volt_bot.core.errors import LedgerError
from volt_bot.core.types import Platform
from volt_bot.log import setup_logging
from volt_bot.pricing.table import load_pricing_table
from volt_bot.storage.database import Database
from volt_bot.storage.models import CostRate
from volt_bot.storage.rate_repo import CostRateRepository
from volt_bot.storage.session_repo import QuerySessionRepository
from volt_bot.storage.user_repo import UserRepository


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    parser.add_argument("-e", "--env", default=".env", help="Path to .env file")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="volt-bot",
        description="Cable quotation, stock and metal price assistant for chat platforms",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    start_parser = subparsers.add_parser("start", help="Start the bot")
    _add_config_args(start_parser)

    check_parser = subparsers.add_parser("config-check", help="Validate configuration and pricing table")
    _add_config_args(check_parser)

    approve_parser = subparsers.add_parser("approve-user", help="Activate a user")
    _add_config_args(approve_parser)
    approve_parser.add_argument("sender_id", help="Telegram user id or WhatsApp phone number")
    approve_parser.add_argument(
        "-p", "--platform", choices=[p.value for p in Platform], default=Platform.TELEGRAM.value
    )

    rate_parser = subparsers.add_parser("set-rate", help="Add a new cost rate version")
    _add_config_args(rate_parser)
    rate_parser.add_argument("provider", help="Service provider, e.g. anthropic")
    rate_parser.add_argument("cost_type", help="Cost type, e.g. input_token")
    rate_parser.add_argument("unit_cost", help="Cost per unit, e.g. 3.0")
    rate_parser.add_argument("--unit-type", default="per_1m_tokens", help="per_1m_tokens, message, call")
    rate_parser.add_argument("--currency", default="USD")
    rate_parser.add_argument("--effective-from", help="ISO timestamp, defaults to now")

    reconcile_parser = subparsers.add_parser("reconcile", help="Check session totals against cost events")
    _add_config_args(reconcile_parser)
    reconcile_parser.add_argument("--session", help="Reconcile a single session id")
    reconcile_parser.add_argument("--limit", type=int, default=100, help="Number of recent sessions")

    args = parser.parse_args()

    if args.command is None:
        # Default to start
        args.command = "start"
        args.config = "config.yaml"
        args.env = ".env"

    match args.command:
        case "config-check":
            _check_config(args.config, args.env)
        case "start":
            _run(args.config, args.env)
        case "approve-user":
            config = _load_or_exit(args.config, args.env)
            asyncio.run(_approve_user(config, Platform(args.platform), args.sender_id))
        case "set-rate":
            config = _load_or_exit(args.config, args.env)
            rate = _parse_rate(args)
            ok = asyncio.run(_set_rate(config, rate))
            sys.exit(0 if ok else 1)
        case "reconcile":
            config = _load_or_exit(args.config, args.env)
            ok = asyncio.run(_reconcile(config, args.session, args.limit))
            sys.exit(0 if ok else 1)


def _load_or_exit(config_path: str, env_path: str) -> AppConfig:
    try:
        config = load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Run 'python install.py' first or copy config.example.yaml to config.yaml")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    setup_logging(config.log_level, json_output=config.log_json)
    return config


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    try:
        config = load_config(config_path, env_path)
        table = load_pricing_table(config.pricing.table_path)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Configuration valid: {config_path}")
    print(f"  Data directory: {config.data_dir}")
    print(f"  Storage: {config.storage.db_path}")
    print(f"  LLM providers (in fallback order): {', '.join(config.llm.providers)}")
    for name in config.llm.providers:
        provider_cfg = getattr(config, name)
        status = f"model {provider_cfg.model}" if provider_cfg else "NOT CONFIGURED"
        print(f"    - {name}: {status}")
    print(f"  Telegram: {'configured' if config.telegram else 'not configured'}")
    if config.telegram:
        print(f"    Error alerts: {config.telegram.error_chat_id or 'off'}")
    print(f"  Pricing table: {config.pricing.table_path}")
    print(f"    Quotation PDF: {'on' if config.pricing.quotation_pdf else 'off'}")
    print(f"    Categories: {', '.join(table.categories) or '(none)'}")
    print(f"    List prices: {len(table.list_prices)}")
    print(f"    Discount tiers: {', '.join(f'{k}={v}' for k, v in table.discount_tiers.items())}")
    print(f"  Metal price sources: {', '.join(str(m) for m in config.metal_prices.urls) or '(none)'}")
    print(f"  Stock ERP: {config.stock.base_url or '(not configured)'}")
    print(f"  Price alerts: {'on' if config.alerts.enabled else 'off'} {config.alerts.schedules}")


def _parse_rate(args: argparse.Namespace) -> CostRate:
    try:
        unit_cost = Decimal(args.unit_cost)
    except InvalidOperation:
        print(f"Invalid unit cost: {args.unit_cost}", file=sys.stderr)
        sys.exit(2)
    if unit_cost < 0:
        print("Unit cost cannot be negative", file=sys.stderr)
        sys.exit(2)
    effective_from = datetime.now(timezone.utc)
    if args.effective_from:
        effective_from = datetime.fromisoformat(args.effective_from)
        if effective_from.tzinfo is None:
            effective_from = effective_from.replace(tzinfo=timezone.utc)
    return CostRate(
        service_provider=args.provider,
        cost_type=args.cost_type,
        unit_cost=unit_cost,
        unit_type=args.unit_type,
        currency=args.currency,
        effective_from=effective_from,
    )


async def _approve_user(config: AppConfig, platform: Platform, sender_id: str) -> None:
    db = Database(config.storage.db_path)
    await db.initialize()
    try:
        user = await UserRepository(db).approve(platform, sender_id)
        print(f"User {user.id} ({platform} {sender_id}) is {user.status}")
    finally:
        await db.close()


async def _set_rate(config: AppConfig, rate: CostRate) -> bool:
    db = Database(config.storage.db_path)
    await db.initialize()
    try:
        saved = await CostRateRepository(db).add(rate)
    except LedgerError as e:
        print(f"Rate rejected: {e.message}", file=sys.stderr)
        return False
    else:
        print(
            f"Rate #{saved.id}: {saved.service_provider}/{saved.cost_type} = {saved.unit_cost} "
            f"{saved.currency} {saved.unit_type} from {saved.effective_from.isoformat()}"
        )
        return True
    finally:
        await db.close()


async def _reconcile(config: AppConfig, session_id: str | None, limit: int) -> bool:
    db = Database(config.storage.db_path)
    await db.initialize()
    try:
        sessions_repo = QuerySessionRepository(db)
        rate_book = await CostRateRepository(db).rate_book()
        if session_id:
            session = await sessions_repo.get(session_id)
            if session is None:
                print(f"Session not found: {session_id}", file=sys.stderr)
                return False
            sessions = [session]
        else:
            sessions = await sessions_repo.list_recent(limit)

        failed = 0
        for session in sessions:
            result = reconcile(session, await sessions_repo.cost_events(session.id), rate_book)
            if result.ok:
                continue
            failed += 1
            print(f"MISMATCH {session.id}")
            for problem in result.mismatches:
                print(f"  - {problem}")
        print(f"Reconciled {len(sessions)} session(s), {failed} mismatch(es)")
        return failed == 0
    finally:
        await db.close()


def _run(config_path: str, env_path: str) -> None:
    """Load config and start the application."""
    config = _load_or_exit(config_path, env_path)

    async def _async_main() -> None:
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        def _signal_handler() -> None:
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _signal_handler)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                signal.signal(sig, lambda s, f: _signal_handler())

        app = VoltBotApp(config)
        await app.start()
        try:
            await stop_event.wait()
        finally:
            await app.stop()

    asyncio.run(_async_main())


if __name__ == "__main__":
    main()
