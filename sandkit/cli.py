from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from dotenv import find_dotenv, load_dotenv

from sandkit.config import get_settings
from sandkit.exceptions import SandkitConfigError, SandkitError, fail
from sandkit.names import require_valid_name
from sandkit.relay import CommandRelay
from sandkit.releases import default_order
from sandkit.sysctl import read_sysctl, write_sysctl


def _positive_float(raw: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {raw!r}") from None
    if value <= 0:
        raise argparse.ArgumentTypeError("must be > 0")
    return value


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="sandkit", description="Sandbox bootstrap helpers."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    relay = sub.add_parser("relay", help="Send a request to the relay agent.")
    relay.add_argument("payload", help="Request text, sent verbatim.")
    relay.add_argument(
        "--newline", action="store_true", help="Append a newline to the payload."
    )
    relay.add_argument("--timeout", type=_positive_float, help="Transaction timeout in seconds.")
    relay.add_argument(
        "--strict",
        action="store_true",
        help="Exit 1 when the response is an error instead of printing it and exiting 0.",
    )

    name = sub.add_parser("validate-name", help="Check an environment name.")
    name.add_argument("name")

    release = sub.add_parser("release-cmp", help="Compare two release names.")
    release.add_argument("a")
    release.add_argument("b")

    sysctl = sub.add_parser("sysctl", help="Read or write a kernel sysctl.")
    sysctl.add_argument("key")
    sysctl.add_argument("value", nargs="?")

    return parser.parse_args(argv)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _run(args: argparse.Namespace) -> int:
    if args.command == "relay":
        payload = args.payload + ("\n" if args.newline else "")
        result = CommandRelay(timeout=args.timeout).request(payload)
        sys.stdout.write(result.to_wire())
        sys.stdout.flush()
        return 1 if args.strict and not result.ok else 0

    if args.command == "validate-name":
        require_valid_name(args.name)
        return 0

    if args.command == "release-cmp":
        print(default_order.compare(args.a, args.b))
        return 0

    if args.command == "sysctl":
        if args.value is None:
            print(read_sysctl(args.key))
        else:
            print(write_sysctl(args.key, args.value))
        return 0

    raise AssertionError(f"unhandled command {args.command}")


def main(argv: Optional[List[str]] = None) -> None:
    args = _parse_args(argv)
    load_dotenv(find_dotenv(usecwd=True))
    try:
        settings = get_settings()
    except SandkitConfigError as e:
        fail(1, f"sandkit: {e.message}")
    _configure_logging(settings.log_level)

    try:
        code = _run(args)
    except SandkitError as e:
        fail(getattr(e, "exit_code", 1), f"sandkit: {e.message}")
    raise SystemExit(code)


if __name__ == "__main__":
    main()
