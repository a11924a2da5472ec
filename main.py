#!/usr/bin/env python3
"""Entry point for the bridge relayer.

Runs the relayer continuously, triggers one-off scans, relays a single
source transaction, or reports relay status from the store.
"""

import argparse
import asyncio
import json
import logging
import os
import sys

from dotenv import load_dotenv

from bridge_relayer.config import DEFAULT_DATABASE_URL
from bridge_relayer.relayer import ALL_CHAINS, BridgeRelayer
from bridge_relayer.status import StatusQuery
from bridge_relayer.store import IdempotencyStore


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


logger = logging.getLogger(__name__)


def parse_trigger(value: str) -> int | str:
    """Chain id or "all"."""
    if value.lower() == ALL_CHAINS:
        return ALL_CHAINS
    try:
        return int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a chain id or '{ALL_CHAINS}', got {value!r}") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Bridge Relayer - relay locks and unlocks between two EVM chains",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  BRIDGE_LOCK_SEPOLIA       - Bridge lock contract on Sepolia
  BRIDGE_LOCK_POLKADOT_HUB  - Bridge lock contract on Polkadot Hub
  WRAPPED_ETH_POLKADOT_HUB  - Wrapped ETH token on Polkadot Hub
  WRAPPED_PAS_SEPOLIA       - Wrapped PAS token on Sepolia
  RPC_SEPOLIA               - Comma-separated Sepolia RPC endpoints (optional)
  RPC_POLKADOT_HUB          - Comma-separated Polkadot Hub RPC endpoints (optional)
  RELAYER_PRIVATE_KEY       - Relayer key (required with --local)
  ROFL_KEY_ID               - ROFL key id (default: bridge-relayer)
  DATABASE_URL              - Store URL (default: sqlite:///.data/bridge.db)
  POLLING_INTERVAL          - Seconds between scans (default: 12)
  LOOKBACK_BLOCKS           - Blocks re-scanned by triggers (default: 20)
  LOG_LEVEL                 - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "--local",
        action="store_true",
        default=False,
        help="Sign with RELAYER_PRIVATE_KEY instead of a ROFL-managed key"
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )

    commands = parser.add_subparsers(dest="command")
    commands.add_parser("run", help="Poll both chains continuously (default)")

    trigger = commands.add_parser("trigger", help="Scan once, re-covering the look-back window")
    trigger.add_argument("chain", type=parse_trigger, help="Source chain id or 'all'")

    relay_tx = commands.add_parser("relay-tx", help="Relay the bridge events of one transaction")
    relay_tx.add_argument("tx_hash", help="Source transaction hash")

    status = commands.add_parser("status", help="Show relay status of a source transaction")
    status.add_argument("chain_id", type=int, help="Source chain id")
    status.add_argument("tx_hash", help="Source transaction hash")
    status.add_argument("--wait", action="store_true", help="Poll until relayed, re-triggering scans")

    commands.add_parser("pending", help="List transfers that have not been relayed yet")
    return parser


def open_store() -> IdempotencyStore:
    return IdempotencyStore(os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL))


async def run_command(args: argparse.Namespace) -> int:
    """Execute the selected command and return the process exit code."""
    match args.command:
        case "status" if not args.wait:
            store = open_store()
            try:
                print(json.dumps(StatusQuery(store).status(args.chain_id, args.tx_hash)))
            finally:
                store.close()
            return 0

        case "pending":
            store = open_store()
            try:
                for record in store.list_pending():
                    print(
                        f"{record.direction.value}\t{record.source_chain_id}\t{record.source_tx_hash}\t"
                        f"nonce={record.nonce}\tattempts={record.attempts}\t{record.last_error or ''}"
                    )
            finally:
                store.close()
            return 0

    relayer = await BridgeRelayer.from_env(local_mode=args.local)
    try:
        match args.command:
            case "trigger":
                results = await relayer.run_once(args.chain)
                print(json.dumps({str(chain_id): handled for chain_id, handled in results.items()}))
                return 0 if all(handled is not None for handled in results.values()) else 1

            case "relay-tx":
                outcomes = await relayer.relay_transaction(args.tx_hash)
                print(json.dumps([outcome.value for outcome in outcomes]))
                return 0 if outcomes else 1

            case "status":
                print(json.dumps(await relayer.wait_for_relay(args.chain_id, args.tx_hash)))
                return 0

            case _:
                await relayer.run()
                return 0
    finally:
        relayer.close()


async def main() -> None:
    """Main entry point for the bridge relayer.

    Raises:
        SystemExit: On configuration or runtime errors
    """
    load_dotenv()
    args: argparse.Namespace = build_parser().parse_args()
    setup_logging(args.log_level)

    logger.info(f"=== Bridge Relayer ({'LOCAL' if args.local else 'ROFL'} mode) ===")

    try:
        sys.exit(await run_command(args))

    except ValueError as e:
        logger.error(f"Configuration Error: {e}")
        logger.error("Please check your environment variables:")
        logger.error("  - BRIDGE_LOCK_SEPOLIA: Bridge lock contract on Sepolia")
        logger.error("  - BRIDGE_LOCK_POLKADOT_HUB: Bridge lock contract on Polkadot Hub")
        logger.error("  - WRAPPED_ETH_POLKADOT_HUB / WRAPPED_PAS_SEPOLIA: Wrapped token contracts")
        if args.local:
            logger.error("  - RELAYER_PRIVATE_KEY: Required for local mode")
        sys.exit(1)

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
        sys.exit(0)

    except Exception as e:
        logger.error(f"Fatal Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
