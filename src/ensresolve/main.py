from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from .cancellation import CancelToken
from .config.config_parser import parse_config_file
from .config.logging_config import init_logging
from .config.settings import load_settings
from .engine import ResolutionEngine
from .errors import ResolutionCancelled, TransientError
from .models import RecordSelection, Resolution
from .reverse_names import ETH_COIN_TYPE

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_INVALID = 2
EXIT_TRANSIENT = 3
EXIT_CANCELLED = 4

logger = logging.getLogger("ensresolve.main")


def _coin_type(text: str) -> int:
    """Parse a coin type given in decimal or 0x-prefixed hex."""

    return int(text, 16) if text.lower().startswith("0x") else int(text)


def _add_selection_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--name", action="store_true", help="Resolve the name record")
    parser.add_argument(
        "--addr",
        action="append",
        type=_coin_type,
        default=[],
        metavar="COIN_TYPE",
        help="Resolve the address record for COIN_TYPE (repeatable; default 60)",
    )
    parser.add_argument(
        "--text",
        action="append",
        default=[],
        metavar="KEY",
        help="Resolve the text record KEY (repeatable)",
    )


def _selection(args: argparse.Namespace) -> RecordSelection:
    addresses = list(args.addr)
    if not (args.name or addresses or args.text):
        addresses = [ETH_COIN_TYPE]
    return RecordSelection(name=args.name, addresses=tuple(addresses), texts=tuple(args.text))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ensresolve", description="Resolve ENS names and primary names"
    )
    parser.add_argument("-c", "--config", default="config.yaml", help="Path to YAML config")
    parser.add_argument(
        "-v",
        "--var",
        action="append",
        default=[],
        metavar="KEY=YAML",
        help="Set a config variable (overrides environment and config vars)",
    )
    parser.add_argument("--trace", action="store_true", help="Include the protocol trace")
    parser.add_argument(
        "--no-accelerate",
        action="store_true",
        help="Never answer from the index; always call resolvers",
    )
    parser.add_argument(
        "--deadline-ms",
        type=int,
        default=None,
        help="Cancel the request after this many milliseconds",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    p_forward = sub.add_parser("forward", help="Resolve records of a name")
    p_forward.add_argument("target", metavar="NAME")
    _add_selection_args(p_forward)

    p_reverse = sub.add_parser("reverse", help="Resolve the primary name of an address")
    p_reverse.add_argument("target", metavar="ADDRESS")
    p_reverse.add_argument("--coin-type", type=_coin_type, default=None)

    p_universal = sub.add_parser("universal", help="Resolve records of a name or address")
    p_universal.add_argument("target", metavar="ADDRESS_OR_NAME")
    _add_selection_args(p_universal)

    p_primary = sub.add_parser("primary-names", help="Resolve primary names on several chains")
    p_primary.add_argument("target", metavar="ADDRESS")
    p_primary.add_argument(
        "--chain-id", action="append", type=int, default=None, dest="chain_ids"
    )
    return parser


def _render(command: str, resolution: Resolution, include_trace: bool) -> Dict[str, Any]:
    value = resolution.value
    if command in ("forward", "universal"):
        rendered: Any = value.to_dict()
    elif command == "primary-names":
        rendered = {str(k): v for k, v in value.items()}
    else:
        rendered = value
    out: Dict[str, Any] = {
        "result": rendered,
        "acceleration_requested": resolution.acceleration_requested,
    }
    if command in ("forward", "universal"):
        out["partial_failure"] = value.partial_failure
    if include_trace and resolution.trace is not None:
        out["trace"] = resolution.trace.to_dict()
    return out


def run_command(engine: ResolutionEngine, args: argparse.Namespace) -> Resolution:
    kwargs = dict(
        accelerate=not args.no_accelerate,
        cancel=CancelToken(args.deadline_ms / 1000.0) if args.deadline_ms is not None else None,
        trace=bool(args.trace),
    )
    if args.command == "forward":
        return engine.resolve_forward(args.target, _selection(args), **kwargs)
    if args.command == "reverse":
        return engine.resolve_reverse(args.target, args.coin_type, **kwargs)
    if args.command == "universal":
        return engine.resolve_universal(args.target, _selection(args), **kwargs)
    return engine.resolve_primary_names(args.target, args.chain_ids, **kwargs)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the ensresolve CLI.
    Parses arguments, loads configuration, builds the engine and prints the
    result of one resolution as JSON on stdout.

    Args:
        argv: Command-line arguments.

    Returns:
        An exit code: 0 success, 1 configuration error, 2 invalid input,
        3 transient failure, 4 cancelled or deadline exceeded.

    Example use:
        CLI:
            ensresolve -c config.yaml forward vitalik.eth --addr 60 --text url
            ensresolve -c config.yaml --trace reverse 0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        cfg = parse_config_file(args.config, cli_vars=args.var)
        settings = load_settings(cfg)
    except (OSError, ValueError) as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_CONFIG

    init_logging(settings.logging)
    logger.debug("Loaded config from %s", args.config)

    engine = ResolutionEngine.from_settings(settings)
    try:
        resolution = run_command(engine, args)
    except ResolutionCancelled as exc:
        logger.warning("Request cancelled: %s", exc)
        return EXIT_CANCELLED
    except TransientError as exc:
        logger.error("Transient failure (%s): %s", exc.source, exc)
        return EXIT_TRANSIENT
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_INVALID
    finally:
        engine.close()

    print(json.dumps(_render(args.command, resolution, args.trace), indent=2, sort_keys=True))
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())  # pragma: no cover
