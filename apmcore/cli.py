"""Operator utility for inspecting agent configuration and header values."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from .config import CONFIG_FILE, load_config
from .crossprocess import deobfuscate, obfuscate
from .errors import ObfuscationError


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="apmcore", description=__doc__)
    commands = parser.add_subparsers(dest="command", required=True)

    config = commands.add_parser("config", help="Print the effective configuration as JSON")
    config.add_argument("--file", type=Path, default=None, help=f"Config file (default: {CONFIG_FILE})")

    decode = commands.add_parser("decode", help="Restore an obfuscated cross-process header value")
    decode.add_argument("--key", required=True, help="Encoding key from the connect reply")
    decode.add_argument("value", help="Header value to decode")

    encode = commands.add_parser("encode", help="Obfuscate text for a cross-process header")
    encode.add_argument("--key", required=True, help="Encoding key from the connect reply")
    encode.add_argument("text", help="Plaintext to encode")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    if args.command == "config":
        print(json.dumps(load_config(args.file).model_dump(mode="json"), indent=2, sort_keys=True))
        return 0
    try:
        if args.command == "decode":
            print(deobfuscate(args.value, args.key))
        else:
            print(obfuscate(args.text, args.key))
    except ObfuscationError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


__all__ = ["main", "parse_args"]
