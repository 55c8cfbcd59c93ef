"""
Command line utilities.

    mostro keys [--mnemonic WORDS] [--index N] [--json]
    mostro orders --relay URL [--relay URL ...] --mostro PUBKEY [--seconds N]
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import getpass
import json
import os
import sys
from typing import Any, Dict, List

from mostro.client.mostro import Mostro
from mostro.core import config
from mostro.core.exceptions import MostroError
from mostro.core.logging_config import setup_logging
from mostro.core.order import order_to_dict
from mostro.network.relay_pool import RelayPool
from mostro.security.crypto_utils import encode_public_key, generate_private_key_hex
from mostro.security.key_manager import KeyManager


def _read_mnemonic(args: argparse.Namespace) -> str:
    if args.mnemonic:
        return args.mnemonic
    from_env = os.getenv("MOSTRO_MNEMONIC", "").strip()
    if from_env:
        return from_env
    print("Mnemonic (input hidden):", file=sys.stderr)
    return getpass.getpass("")


def _key_entry(label: str, index: int, public_key: str) -> Dict[str, Any]:
    return {"label": label, "index": index, "hex": public_key, "npub": encode_public_key(public_key)}


def _show_keys(args: argparse.Namespace) -> int:
    manager = KeyManager()
    try:
        manager.initialize(_read_mnemonic(args))
        entries = [_key_entry("identity", KeyManager.IDENTITY_INDEX, manager.identity_public_key)]
        for index in args.index or []:
            public_key = KeyManager.get_public_key_from_private(manager.get_key_by_index(index))
            entries.append(_key_entry("trade", index, public_key))
    except MostroError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        manager.clear()

    if args.json:
        print(json.dumps(entries, indent=2))
    else:
        for entry in entries:
            print(f"{entry['label']:<9} #{entry['index']:<4} {entry['hex']}  {entry['npub']}")
    return 0


async def _collect_orders(relays: List[str], mostro_pubkey: str, seconds: float) -> List[Dict[str, Any]]:
    # Listening needs no identity of ours: a throwaway key is enough.
    client = Mostro(mostro_pubkey, RelayPool(relays), private_key=generate_private_key_hex())
    await client.connect()
    dispatcher = client.start()
    try:
        await asyncio.wait_for(asyncio.shield(dispatcher), timeout=seconds)
    except asyncio.TimeoutError:
        pass
    finally:
        with contextlib.suppress(MostroError):
            await client.close()
    return [order_to_dict(order) for order in client.get_active_orders()]


def _list_orders(args: argparse.Namespace) -> int:
    relays = args.relay or config.RELAYS
    mostro_pubkey = args.mostro or config.MOSTRO_PUBKEY
    if not relays or not mostro_pubkey:
        print("Specify --relay and --mostro (or MOSTRO_RELAYS / MOSTRO_PUBKEY)", file=sys.stderr)
        return 2
    try:
        orders = asyncio.run(_collect_orders(relays, mostro_pubkey, args.seconds))
    except MostroError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(orders, indent=2, sort_keys=True))
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(description="Mostro client utilities")
    parser.add_argument(
        "--log-level",
        default=config.LOG_LEVEL,
        help=f"Logging level (default: {config.LOG_LEVEL})",
    )
    subparsers = parser.add_subparsers(dest="command")

    keys = subparsers.add_parser(
        "keys",
        help="Show the identity and trade public keys derived from a mnemonic",
    )
    keys.add_argument(
        "--mnemonic",
        help="BIP-39 phrase (default: MOSTRO_MNEMONIC or a hidden prompt)",
    )
    keys.add_argument(
        "--index",
        type=int,
        action="append",
        help="Also show the trade key at this index (repeatable)",
    )
    keys.add_argument(
        "--json",
        action="store_true",
        help="Emit JSON",
    )
    keys.set_defaults(func=_show_keys)

    orders = subparsers.add_parser(
        "orders",
        help="Listen to relays and print the daemon's active orders",
    )
    orders.add_argument(
        "--relay",
        action="append",
        help="Relay websocket URL (repeatable, default: MOSTRO_RELAYS)",
    )
    orders.add_argument(
        "--mostro",
        help="Mostro daemon public key, hex or npub (default: MOSTRO_PUBKEY)",
    )
    orders.add_argument(
        "--seconds",
        type=float,
        default=5.0,
        help="How long to listen before printing",
    )
    orders.set_defaults(func=_list_orders)

    return parser


def main(argv: Any = None) -> int:
    """Program entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 0

    try:
        config.Config.validate()
    except MostroError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    setup_logging(level=args.log_level, log_file=config.LOG_FILE or None)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
