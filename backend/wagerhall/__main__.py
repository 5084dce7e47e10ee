"""Wagerhall CLI entry point."""

import argparse
import asyncio
import logging
import signal
import sys
from contextlib import AsyncExitStack
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError

env_file = Path(__file__).parent.parent / ".env"
load_dotenv(env_file)

from wagerhall import __version__
from wagerhall.amounts import format_base_units, parse_whole_tokens, whole_tokens_to_base_units
from wagerhall.announcer import Announcer, LoggingAnnouncer, TelegramAnnouncer
from wagerhall.config import ConfigurationError, Settings, get_settings
from wagerhall.distribution import create_fee_distributor
from wagerhall.scheduler import build_scheduler
from wagerhall.services.ledger import create_ledger_client
from wagerhall.services.roster import create_roster_client
from wagerhall.services.telegram import create_telegram_client
from wagerhall.storage import load_distribution_state, save_distribution_state
from wagerhall.wagers import load_escrow_tables

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger(__name__)

CONFIG_TEMPLATE = """# Wagerhall Configuration
# Operational parameters only. Wallets, keys and endpoints belong in .env.

wager:
  enabled: false
  fee_bps: 100
  min_tokens: 100
  max_tokens: 1000000
  accept_window_seconds: 120
  fund_window_seconds: 300
  expiry_grace_seconds: 1
  poll_interval_seconds: 3
  signature_limit: 25
  min_escrow_sol: "0.05"

distribution:
  enabled: false
  interval_seconds: 3600
  min_pool_tokens: "1"
  concurrency: 6
  pool_numerator: 2
  pool_denominator: 3
  # false carries sub-minimum pools into the next run instead of discarding them
  advance_baseline_on_dust: true

ledger:
  commitment: confirmed
  timeout_seconds: 30
  max_retries: 3
  confirm_timeout_seconds: 60

telegram:
  send_wager_alerts: true
  send_distribution_alerts: true
"""


def _init_logfire() -> None:
    """Initialize Logfire if available, without failing commands."""
    try:
        from wagerhall.observability import initialize_logfire

        initialize_logfire(get_settings())
    except Exception as e:
        logger.warning(f"Failed to initialize Logfire: {e}")


def _ledger(settings: Settings):
    return create_ledger_client(settings.rpc_url, **settings.ledger.model_dump())


def _roster(settings: Settings):
    return create_roster_client(
        export_url=settings.export_url, post_secret=settings.roster_post_secret
    )


async def _announcer(
    settings: Settings, stack: AsyncExitStack, send_alerts: bool
) -> Announcer:
    if not settings.telegram_bot_token:
        return LoggingAnnouncer()
    client = create_telegram_client(
        bot_token=settings.telegram_bot_token,
        operator_chat_id=settings.telegram_chat_id,
    )
    await stack.enter_async_context(client)
    return TelegramAnnouncer(client, send_alerts=send_alerts)


def cmd_init(args: argparse.Namespace) -> int:
    """Initialize data directory and configuration files."""
    data_dir = Path("data").resolve()

    try:
        data_dir.mkdir(exist_ok=True)
        logger.info(f"Created data directory: {data_dir}")

        config_path = data_dir / "config.yaml"
        if not config_path.exists():
            config_path.write_text(CONFIG_TEMPLATE)
            logger.info(f"Created config template: {config_path}")
        else:
            logger.info(f"Config file already exists: {config_path}")

        state_path = data_dir / "distribution-state.json"
        if not state_path.exists():
            save_distribution_state(load_distribution_state(state_path), state_path)
            logger.info(f"Created empty distribution state: {state_path}")
        else:
            logger.info(f"State file already exists: {state_path}")

        print(f"\n✓ Data directory initialized at {data_dir}")
        print("\nNext steps:")
        print("1. Add RPC_URL, EXPORT_URL, FEE_WALLET and keys to .env")
        print("2. Review and customize data/config.yaml if needed")
        print("3. Run 'python -m wagerhall config' to verify configuration")
        print("4. Run 'python -m wagerhall run' to start the system\n")

        return 0

    except Exception as e:
        logger.error(f"Failed to initialize: {e}")
        print(f"\n❌ Initialization failed: {e}\n")
        return 1


def cmd_config(args: argparse.Namespace) -> int:
    """Display merged configuration."""
    try:
        settings = get_settings()

        print("\n=== Wagerhall Configuration ===\n")
        print(f"Data Directory: {settings.data_dir}\n")

        wager = settings.wager
        print("Wagers:")
        print(f"  Enabled: {wager.enabled}")
        print(f"  Fee: {wager.fee_bps / 100:g}%")
        print(f"  Stake Range: {wager.min_tokens:,} - {wager.max_tokens:,} tokens")
        print(f"  Accept Window: {wager.accept_window_seconds:g}s")
        print(f"  Funding Window: {wager.fund_window_seconds:g}s")
        print(f"  Poll Interval: {wager.poll_interval_seconds:g}s")
        print(f"  Min Escrow SOL: {wager.min_escrow_sol}")
        print(f"  Tables: {len(settings.wager_channel_ids)}\n")

        dist = settings.distribution
        print("Fee Distribution:")
        print(f"  Enabled: {dist.enabled}")
        print(f"  Interval: {dist.interval_seconds:g}s")
        print(f"  Pool Share: {dist.pool_numerator}/{dist.pool_denominator}")
        print(f"  Min Pool: {dist.min_pool_tokens} tokens")
        print(f"  Concurrency: {dist.concurrency}")
        print(f"  Advance Baseline On Dust: {dist.advance_baseline_on_dust}\n")

        print("Ledger:")
        print(f"  Commitment: {settings.ledger.commitment}")
        print(f"  Max Retries: {settings.ledger.max_retries}\n")

        print("Endpoints and Keys:")
        print(f"  RPC URL: {'✓ Set' if settings.rpc_url else '✗ Not set'}")
        print(f"  Export URL: {'✓ Set' if settings.export_url else '✗ Not set'}")
        print(f"  Fee Wallet: {settings.fee_wallet or '✗ Not set'}")
        print(f"  Treasury Key: {'✓ Set' if settings.treasury_secret else '✗ Not set'}")
        print(f"  Escrow Keys: {len(settings.escrow_keypairs)}")
        print(f"  Telegram: {'✓ Set' if settings.telegram_bot_token else '✗ Not set'}")
        print(f"  Logfire: {'✓ Set' if settings.logfire_token else '✗ Not set'}\n")

        return 0

    except ValidationError as e:
        print("\n❌ Configuration Error:\n")
        for error in e.errors():
            print(f"  • {'.'.join(str(x) for x in error['loc'])}: {error['msg']}")
        print()
        return 1
    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        print(f"\n❌ Failed to load configuration: {e}\n")
        return 1


def cmd_status(args: argparse.Namespace) -> int:
    """Display the fee distribution baseline."""
    try:
        settings = get_settings()
        state = load_distribution_state(settings.state_path)

        print("\n=== Fee Distribution Status ===\n")
        print(f"State File: {settings.state_path}")
        print(f"Baseline: {state.last_fee_balance_base} base units")
        last_run = state.last_run_timestamp.isoformat() if state.last_run_timestamp else "never"
        print(f"Last Run: {last_run}\n")

        return 0

    except Exception as e:
        logger.error(f"Failed to read status: {e}")
        print(f"\n❌ Failed to read status: {e}\n")
        return 1


async def _distribute_once(settings: Settings):
    async with AsyncExitStack() as stack:
        ledger = await stack.enter_async_context(_ledger(settings))
        roster = await stack.enter_async_context(_roster(settings))
        announcer = await _announcer(
            settings, stack, settings.telegram.send_distribution_alerts
        )
        distributor = create_fee_distributor(settings, ledger, roster, announcer)
        return await distributor.run_once()


def cmd_distribute(args: argparse.Namespace) -> int:
    """Run one fee distribution cycle."""
    _init_logfire()

    try:
        print("\n=== Fee Distribution ===\n")

        report = asyncio.run(_distribute_once(get_settings()))
        if report is None:
            print("A distribution run is already in progress.\n")
            return 1

        print(f"✓ {report.summary()}\n")
        print(f"Recipients: {report.recipients}")
        print(f"Fee Balance: {report.previous_balance_base} -> {report.current_balance_base}")
        print(f"Pool: {format_base_units(report.pool_base, report.decimals)}")
        print(f"Baseline Advanced: {report.baseline_advanced}\n")

        for outcome in report.failed:
            print(f"  ✗ {outcome.wallet}: {outcome.amount_base} ({outcome.error})")

        return 0 if not report.failed else 1

    except ConfigurationError as e:
        print(f"\n❌ Configuration error: {e}\n")
        return 1
    except Exception as e:
        logger.error(f"Fee distribution failed: {e}", exc_info=True)
        print(f"\n❌ Fee distribution failed: {e}\n")
        return 1


async def _refund(settings: Settings, table_number: int, wallet: str, tokens: int, send: bool) -> str | None:
    tables = {table.number: table for table in load_escrow_tables(settings)}
    table = tables.get(table_number)
    if table is None:
        raise ConfigurationError(f"No escrow table {table_number} (have {sorted(tables)})")

    async with AsyncExitStack() as stack:
        ledger = await stack.enter_async_context(_ledger(settings))
        roster = await stack.enter_async_context(_roster(settings))

        export = await roster.fetch_export()
        mint = export.require_token_mint()
        mint_info = await ledger.get_mint_info(mint)
        amount_base = whole_tokens_to_base_units(tokens, mint_info.decimals)

        print(f"Table {table.number} escrow: {table.owner}")
        print(f"Recipient: {wallet}")
        print(f"Amount: {format_base_units(amount_base, mint_info.decimals)} ({amount_base} base units)\n")
        if not send:
            return None

        return await ledger.transfer_token(
            table.keypair, wallet, mint, amount_base, mint_info.decimals, mint_info.token_program
        )


def cmd_refund(args: argparse.Namespace) -> int:
    """Re-send a refund from an escrow table (operator recovery)."""
    _init_logfire()

    tokens = parse_whole_tokens(args.amount)
    if tokens is None:
        print(f"\n❌ Amount must be a positive whole number of tokens: {args.amount}\n")
        return 1

    try:
        print("\n=== Escrow Refund ===\n")
        signature = asyncio.run(
            _refund(get_settings(), args.table, args.wallet, tokens, args.yes)
        )
        if signature is None:
            print("Dry run only. Re-run with --yes to send.\n")
        else:
            print(f"✓ Refund sent: {signature}\n")
        return 0

    except ConfigurationError as e:
        print(f"\n❌ Configuration error: {e}\n")
        return 1
    except Exception as e:
        logger.error(f"Refund failed: {e}", exc_info=True)
        print(f"\n❌ Refund failed: {e}\n")
        return 1


async def _run_service(settings: Settings) -> None:
    async with AsyncExitStack() as stack:
        ledger = await stack.enter_async_context(_ledger(settings))
        roster = await stack.enter_async_context(_roster(settings))

        distributor = None
        if settings.distribution.enabled:
            announcer = await _announcer(
                settings, stack, settings.telegram.send_distribution_alerts
            )
            distributor = create_fee_distributor(settings, ledger, roster, announcer)

        if settings.wager.enabled:
            tables = load_escrow_tables(settings)
            logger.info(
                f"Wager escrow ready on {len(tables)} tables; "
                "wagers are opened by the chat front-end"
            )

        scheduler = build_scheduler(settings, distributor)
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        scheduler.start()
        logger.info("✓ Scheduler started")
        logger.info(f"✓ {len(scheduler.get_jobs())} jobs registered")
        logger.info("Press Ctrl+C to stop\n")

        try:
            await stop.wait()
        finally:
            scheduler.shutdown(wait=False)
            logger.info("✓ Scheduler stopped cleanly")


def cmd_run(args: argparse.Namespace) -> int:
    """Start the fee distribution schedule."""
    try:
        _init_logfire()

        if args.debug:
            logging.getLogger().setLevel(logging.DEBUG)

        settings = get_settings()

        print("\n=== Wagerhall ===\n")
        print(f"Version: {__version__}")
        print(f"Wagers: {'enabled' if settings.wager.enabled else 'disabled'}")
        print(f"Fee Distribution: {'enabled' if settings.distribution.enabled else 'disabled'}")
        print(f"Data Directory: {settings.data_dir}\n")

        asyncio.run(_run_service(settings))
        return 0

    except KeyboardInterrupt:
        print("\n\nReceived interrupt signal. Shutting down...\n")
        return 0
    except ConfigurationError as e:
        print(f"\n❌ Configuration error: {e}\n")
        return 1
    except Exception as e:
        logger.error(f"Failed to start system: {e}", exc_info=True)
        print(f"\nFailed to start: {e}\n")
        return 1


def main() -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Wagerhall: token wager escrow and protocol fee distribution",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Wagerhall {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    parser_init = subparsers.add_parser(
        "init",
        help="Initialize data directory and configuration files",
    )
    parser_init.set_defaults(func=cmd_init)

    parser_config = subparsers.add_parser(
        "config",
        help="Display merged configuration",
    )
    parser_config.set_defaults(func=cmd_config)

    parser_status = subparsers.add_parser(
        "status",
        help="Display the fee distribution baseline",
    )
    parser_status.set_defaults(func=cmd_status)

    parser_distribute = subparsers.add_parser(
        "distribute",
        help="Run one fee distribution cycle",
    )
    parser_distribute.set_defaults(func=cmd_distribute)

    parser_refund = subparsers.add_parser(
        "refund",
        help="Re-send a refund from an escrow table",
    )
    parser_refund.add_argument("--table", type=int, required=True, help="Table number (1-based)")
    parser_refund.add_argument("--wallet", required=True, help="Recipient wallet")
    parser_refund.add_argument("--amount", required=True, help="Whole tokens to send")
    parser_refund.add_argument(
        "--yes",
        action="store_true",
        help="Send the transfer (default is a dry run)",
    )
    parser_refund.set_defaults(func=cmd_refund)

    parser_run = subparsers.add_parser(
        "run",
        help="Start the scheduler",
    )
    parser_run.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser_run.set_defaults(func=cmd_run)

    args = parser.parse_args()

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
