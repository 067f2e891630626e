"""scalper.cli

Command line interface entry point.

Design constraints:
- argparse-based.
- Lazy imports: do not import the trading stack at parse time.
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from scalper.core.config import Config


@dataclass(frozen=True)
class CliContext:
    repo_root: Path


def _repo_root_from_cwd() -> Path:
    return Path.cwd()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scalper",
        description="Short-hold swap trading: entries, exits and risk limits.",
    )
    parser.add_argument("--version", action="store_true", help="Print version and exit.")
    parser.add_argument("--config", type=Path, default=None, help="Config file (default: config/default.yaml).")

    sub = parser.add_subparsers(dest="command")

    p_run = sub.add_parser("run", help="Run the trading loop")
    p_run.add_argument("--signals", type=Path, required=True, help="JSONL file of trade signals to follow.")
    p_run.add_argument("--max-cycles", type=int, default=None, help="Stop after this many loop cycles.")

    sub.add_parser("config", help="Print the effective configuration")

    return parser


def _print_version() -> None:
    from scalper import __version__

    print(f"scalper v{__version__}")


def _load_config(ctx: CliContext, args: argparse.Namespace) -> Config:
    from scalper.core.config import Config

    if args.config is not None:
        return Config.from_yaml(Path(args.config))
    return Config.from_repo_defaults(ctx.repo_root)


def _cmd_run(ctx: CliContext, args: argparse.Namespace) -> int:
    # Lazy imports
    import asyncio

    from scalper.core.exceptions import ConfigError, FatalLoopError
    from scalper.core.logging import configure_logging
    from scalper.runner import JsonlSignalSource, run_trading

    try:
        config = _load_config(ctx, args)
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    configure_logging(config.logging)

    source = JsonlSignalSource(args.signals, default_amount=config.loop.trade_amount)
    try:
        asyncio.run(run_trading(config, source, max_cycles=args.max_cycles))
    except FatalLoopError as e:
        print(f"fatal: {e}", file=sys.stderr)
        return 1
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        return 130
    return 0


def _cmd_config(ctx: CliContext, args: argparse.Namespace) -> int:
    from scalper.core.exceptions import ConfigError

    try:
        config = _load_config(ctx, args)
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    print(config.model_dump_json(indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        _print_version()
        return 0

    if not args.command:
        parser.print_help()
        return 2

    ctx = CliContext(repo_root=_repo_root_from_cwd())

    dispatch: dict[str, Callable[[CliContext, argparse.Namespace], int]] = {
        "run": _cmd_run,
        "config": _cmd_config,
    }

    fn = dispatch.get(str(args.command))
    if fn is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 2

    return int(fn(ctx, args))


if __name__ == "__main__":
    raise SystemExit(main())
