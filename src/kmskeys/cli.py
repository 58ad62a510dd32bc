"""Operator command line for KMS signing keys.

Usage:
    kmskeys create [--key-spec RSA_2048] [--ttl-days 90]
    kmskeys status KEY_ID
    kmskeys delete KEY_ID [--window-days 7]
    kmskeys sign --kid KID --kms-key-id KEY_ID --payload '{"sub": "user1"}'

Configuration comes from KMSKEYS_* environment variables. Results are
printed as JSON on stdout; the exit code is 1 when the operation failed.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, NoReturn

from kmskeys.core.settings import get_settings
from kmskeys.services.jwks import InMemoryJWKStore, JWKRecord
from kmskeys.services.kms_session import open_kms_session
from kmskeys.services.policy import format_instant

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kmskeys",
        description="Manage KMS-backed JWT signing keys.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    create = commands.add_parser("create", help="Create a time-bound signing key")
    create.add_argument("--key-spec", default=None, help="KMS KeySpec (default from config)")
    create.add_argument("--ttl-days", type=int, default=None, help="Days until policy expiry")

    status = commands.add_parser("status", help="Show a key's live status")
    status.add_argument("key_id")

    delete = commands.add_parser("delete", help="Schedule a key for deletion")
    delete.add_argument("key_id")
    delete.add_argument("--window-days", type=int, default=None, help="Pending window (7-30)")

    sign = commands.add_parser("sign", help="Sign a JWT with a KMS key")
    sign.add_argument("--kid", required=True, help="kid to place in the header")
    sign.add_argument("--kms-key-id", required=True, help="KMS key the kid maps to")
    sign.add_argument("--payload", required=True, help="JSON object of claims")
    sign.add_argument("--header", default="{}", help="Extra JSON header fields")

    return parser


def _emit(data: dict[str, Any]) -> None:
    print(json.dumps(data, indent=2, default=str))


async def _dispatch(args: argparse.Namespace) -> int:
    settings = get_settings()
    opened = await open_kms_session(settings)
    if not opened.ok:
        _emit({"error": str(opened.error), "operation": opened.error.operation})  # type: ignore[union-attr]
        return 1
    session = opened.unwrap()

    if args.command == "create":
        result = await session.lifecycle.create(args.key_spec, args.ttl_days)
        if result.ok:
            _emit(result.unwrap().to_dict())
    elif args.command == "status":
        result = await session.lifecycle.describe(args.key_id)
        if result.ok:
            status = result.unwrap()
            _emit({"key_id": status.key_id, "enabled": status.enabled, "state": status.state.value})
    elif args.command == "delete":
        window = (
            settings.keys.deletion_window_days if args.window_days is None else args.window_days
        )
        result = await session.lifecycle.schedule_deletion(args.key_id, window)
        if result.ok:
            receipt = result.unwrap()
            _emit(
                {
                    "key_id": receipt.key_id,
                    "pending_window_days": receipt.pending_window_days,
                    "deletion_date": (
                        format_instant(receipt.deletion_date) if receipt.deletion_date else None
                    ),
                }
            )
    else:
        try:
            payload = json.loads(args.payload)
            extra_header = json.loads(args.header)
        except json.JSONDecodeError as e:
            _emit({"error": f"Invalid JSON argument: {e}", "operation": "parse"})
            return 1
        if not isinstance(payload, dict) or not isinstance(extra_header, dict):
            _emit({"error": "--payload and --header must be JSON objects", "operation": "parse"})
            return 1
        store = InMemoryJWKStore([JWKRecord(kid=args.kid, kms_key_id=args.kms_key_id)])
        header = {"alg": "RS256", "typ": "JWT", **extra_header, "kid": args.kid}
        result = await session.signer(store).sign(header, payload)
        if result.ok:
            _emit({"token": result.unwrap().token})

    if not result.ok:
        _emit({"error": str(result.error), "operation": result.error.operation})  # type: ignore[union-attr]
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, run one command, and return the exit code."""
    args = build_parser().parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    return asyncio.run(_dispatch(args))


def run() -> NoReturn:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
