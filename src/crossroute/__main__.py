"""Command line access to the routing service.

Usage:
    python -m crossroute chains
    python -m crossroute assets [--chain-id osmosis-1]
    python -m crossroute route --source-denom uatom --source-chain cosmoshub-4 \\
        --dest-denom uosmo --dest-chain osmosis-1 --amount 1000000
    python -m crossroute status CHAIN_ID TX_HASH
    python -m crossroute track CHAIN_ID TX_HASH [--timeout 120]
    python -m crossroute config

Output is JSON on stdout; logs go to stderr.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from crossroute.api import RoutingClient
from crossroute.broadcast import TransactionTracker
from crossroute.config import get_settings
from crossroute.errors import CrossRouteError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="crossroute", description="Cross-chain routing client")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("chains", help="List supported chains")

    assets = subparsers.add_parser("assets", help="List supported assets")
    assets.add_argument("--chain-id", type=str, help="Only list assets on this chain")
    assets.add_argument("--native-only", action="store_true", help="Only native assets")

    route = subparsers.add_parser("route", help="Quote a route")
    route.add_argument("--source-denom", required=True)
    route.add_argument("--source-chain", required=True)
    route.add_argument("--dest-denom", required=True)
    route.add_argument("--dest-chain", required=True)
    route.add_argument("--amount", required=True, help="Input amount in base units")

    status = subparsers.add_parser("status", help="Get a transaction's status")
    status.add_argument("chain_id")
    status.add_argument("tx_hash")

    track = subparsers.add_parser("track", help="Track a transaction until it completes")
    track.add_argument("chain_id")
    track.add_argument("tx_hash")
    track.add_argument("--timeout", type=float, default=None, help="Maximum seconds to track")

    subparsers.add_parser("config", help="Show effective settings (secrets redacted)")

    return parser


async def run(args: argparse.Namespace) -> object:
    """Run one command and return its JSON-serializable result."""
    settings = get_settings()

    if args.command == "config":
        return settings.get_safe_dict()

    async with RoutingClient(settings) as client:
        if args.command == "chains":
            chains = await client.chains()
            return [chain.model_dump() for chain in chains]

        if args.command == "assets":
            assets = await client.assets(
                chain_id=args.chain_id,
                native_only=True if args.native_only else None,
            )
            return {
                chain_id: [asset.model_dump() for asset in chain_assets]
                for chain_id, chain_assets in assets.items()
            }

        if args.command == "route":
            quote = await client.route(
                source_asset_denom=args.source_denom,
                source_asset_chain_id=args.source_chain,
                dest_asset_denom=args.dest_denom,
                dest_asset_chain_id=args.dest_chain,
                amount_in=args.amount,
            )
            return quote.model_dump()

        if args.command == "status":
            status = await client.transaction_status(args.chain_id, args.tx_hash)
            return {**status.model_dump(), "normalized": status.normalized.value}

        if args.command == "track":
            tracker = TransactionTracker(client, settings.poll_interval_seconds)
            timeout = args.timeout if args.timeout is not None else settings.tracking_timeout_seconds
            result = await tracker.track(args.chain_id, args.tx_hash, timeout=timeout)
            return {
                "chain_id": result.chain_id,
                "tx_hash": result.tx_hash,
                "outcome": result.outcome.value,
                "polls": result.polls,
                "elapsed": round(result.elapsed, 3),
                "explorer_link": result.explorer_link,
                "state": result.status.state if result.status else None,
            }

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()

    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    try:
        result = asyncio.run(run(args))
    except CrossRouteError as e:
        logger.error(str(e))
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
