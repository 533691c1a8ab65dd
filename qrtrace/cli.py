#!/usr/bin/env python3
"""
qrtrace Command Line Interface

Usage:
    qrtrace keygen [--output <file>]
    qrtrace sign --unit <name> <station> [--secret-file <file>]
    qrtrace sign --batch-id <id> [--secret-file <file>]
    qrtrace verify <token> [--secret-file <file>]
    qrtrace inspect <token>
"""

import argparse
import json
import sys

from . import config
from .errors import ConfigError, TokenRejected
from .keys import (
    FileSecretProvider,
    generate_secret,
    get_secret_provider,
    write_secret_file,
)
from .tokens import MasterPayload, TokenCodec, UnitPayload
from .util import b64e, generate_id


def _codec(args) -> TokenCodec:
    if args.secret_file:
        secrets = FileSecretProvider(args.secret_file)
    else:
        secrets = get_secret_provider(config.SECRET_KEY, config.SECRET_PATH, config.is_production())
    return TokenCodec(secrets, ttl_seconds=config.TOKEN_TTL_SECONDS)


def cmd_keygen(args) -> int:
    """Generate a signing secret."""
    secret = generate_secret()
    if args.output:
        write_secret_file(args.output, secret)
        print(f"Secret saved to: {args.output}")
    else:
        print(json.dumps({"secret_b64": b64e(secret)}, indent=2))
    return 0


def cmd_sign(args) -> int:
    """Issue a single unit or master token."""
    codec = _codec(args)
    if args.unit:
        name, station_id = args.unit
        payload = UnitPayload(name=name, station_id=station_id, unit_id=generate_id())
    else:
        payload = MasterPayload(batch_id=args.batch_id)
    print(codec.issue(payload))
    return 0


def cmd_verify(args) -> int:
    """Verify a token and print its payload."""
    codec = _codec(args)
    try:
        payload = codec.verify(args.token)
    except TokenRejected as e:
        print(f"INVALID: {e.reason.value}")
        return 1

    if isinstance(payload, UnitPayload):
        out = {"type": "unit", **payload.to_claims()}
    else:
        out = {"type": "master", **payload.to_claims()}
    print(json.dumps(out, indent=2))
    return 0


def cmd_inspect(args) -> int:
    """Print a token's claims without checking its signature."""
    try:
        claims = TokenCodec.decode_unverified(args.token)
    except TokenRejected as e:
        print(f"INVALID: {e.reason.value}")
        return 1
    print(json.dumps(claims, indent=2, sort_keys=True))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="qrtrace",
        description="qrtrace token CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  qrtrace keygen -o secrets/signing_secret.json
  qrtrace sign --unit "Olive Oil 1L" station-07 -s secrets/signing_secret.json
  qrtrace sign --batch-id 6f1c... -s secrets/signing_secret.json
  qrtrace verify eyJi... -s secrets/signing_secret.json
  qrtrace inspect eyJi...
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    keygen_parser = subparsers.add_parser("keygen", help="Generate signing secret")
    keygen_parser.add_argument("-o", "--output", help="Output file for the secret")

    sign_parser = subparsers.add_parser("sign", help="Issue a token")
    target = sign_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--unit", nargs=2, metavar=("NAME", "STATION"), help="Issue a unit token")
    target.add_argument("--batch-id", help="Issue a master token for a batch id")
    sign_parser.add_argument("-s", "--secret-file", help="Secret JSON file")

    verify_parser = subparsers.add_parser("verify", help="Verify a token")
    verify_parser.add_argument("token", help="Token string")
    verify_parser.add_argument("-s", "--secret-file", help="Secret JSON file")

    inspect_parser = subparsers.add_parser("inspect", help="Show token claims without verifying")
    inspect_parser.add_argument("token", help="Token string")

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    commands = {
        "keygen": cmd_keygen,
        "sign": cmd_sign,
        "verify": cmd_verify,
        "inspect": cmd_inspect,
    }
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 2

    try:
        return handler(args)
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
