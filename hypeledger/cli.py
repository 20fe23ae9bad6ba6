"""hypeledger.cli

Command line interface entry point for hypeledger.

Design constraints:
- argparse-based.
- Lazy imports: do not import the engine or the web stack at parse time.
"""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

EPILOG = "Effort is scored once. Reach is scored as it arrives."

LEADERBOARD_KINDS = ["global", "drop", "weekly", "quality", "team", "engagement"]


@dataclass(frozen=True)
class CliContext:
    repo_root: Path


def _repo_root_from_cwd() -> Path:
    return Path.cwd()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hypeledger",
        description="Points ledger and click attribution for social-sharing drops.",
        epilog=EPILOG,
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version and exit.",
    )

    sub = parser.add_subparsers(dest="command")

    p_api = sub.add_parser("api", help="Start FastAPI server")
    p_api.add_argument("--host", default=None)
    p_api.add_argument("--port", type=int, default=None)

    sub.add_parser("status", help="Print ledger status")

    p_lb = sub.add_parser("leaderboard", help="Print a leaderboard view")
    p_lb.add_argument("kind", choices=LEADERBOARD_KINDS, nargs="?", default="global")
    p_lb.add_argument("--drop", dest="drop_id", default=None, help="Drop id (required for the drop view).")
    p_lb.add_argument("--limit", type=int, default=10)
    p_lb.add_argument("--winners", action="store_true", help="Exclude pairs under review.")
    p_lb.add_argument("--json", action="store_true", help="Emit JSON instead of a table.")

    p_create = sub.add_parser("create-drop", help="Register a drop")
    p_create.add_argument("drop_id")
    p_create.add_argument("--starts", required=True, help="ISO-8601 start time.")
    p_create.add_argument("--ends", required=True, help="ISO-8601 end time.")
    p_create.add_argument("--name", default="")
    p_create.add_argument("--base-points", type=int, default=None)
    p_create.add_argument("--activate", action="store_true", help="Open the drop immediately.")

    p_close = sub.add_parser("close-drop", help="Complete a drop and close its ledger entries")
    p_close.add_argument("drop_id")
    p_close.add_argument("--actor", default="cli")

    p_clear = sub.add_parser("clear-review", help="Clear the review flag on a (user, drop) pair")
    p_clear.add_argument("user_id")
    p_clear.add_argument("drop_id")
    p_clear.add_argument("--actor", default="cli")

    sub.add_parser("rebuild", help="Rebuild leaderboard views from ledger rows and print their state")

    return parser


def _print_version() -> None:
    from hypeledger import __version__

    print(f"hypeledger v{__version__}")


def _engine(ctx: CliContext):
    from hypeledger.core.config import Config
    from hypeledger.core.log import configure_logging
    from hypeledger.ledger.attribution import AttributionEngine

    config = Config.load(ctx.repo_root)
    if not config.data_dir.is_absolute():
        config = config.model_copy(update={"data_dir": ctx.repo_root / config.data_dir})
    configure_logging(config.logging)
    return AttributionEngine(config)


def _cmd_api(ctx: CliContext, args: argparse.Namespace) -> int:
    from hypeledger.core.config import Config

    config = Config.load(ctx.repo_root)

    host = args.host or config.api.host
    port = args.port or config.api.port

    import uvicorn

    uvicorn.run("api.main:app", host=host, port=port, reload=False)
    return 0


def _cmd_status(ctx: CliContext, args: argparse.Namespace) -> int:
    from hypeledger.core.exceptions import ConfigError

    try:
        engine = _engine(ctx)
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    status = engine.status()
    print("hypeledger status")
    print(f"- db: {engine.db.db_path}")
    print(f"- preset: {engine.config.preset}")
    for name, count in status["drops"].items():
        print(f"- drops.{name}: {count}")
    lb = status["leaderboard"]
    print(f"- ledger entries: {lb['entries']}")
    print(f"- users: {lb['users']}")
    print(f"- under review: {lb['under_review']}")
    return 0


def _cmd_leaderboard(ctx: CliContext, args: argparse.Namespace) -> int:
    from hypeledger.core.exceptions import HypeLedgerError
    from hypeledger.core.time import to_iso

    engine = _engine(ctx)
    try:
        if args.winners:
            rows = engine.leaderboard.winners(args.kind, drop_id=args.drop_id, limit=args.limit)
        else:
            rows = engine.leaderboard.view(args.kind, drop_id=args.drop_id, limit=args.limit)
    except HypeLedgerError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    if args.json:
        out = [
            {
                "rank": r.rank,
                "user_id": r.user_id,
                "team": r.team,
                "display_score": r.display_score,
                "participated_at": to_iso(r.participated_at),
            }
            for r in rows
        ]
        print(json.dumps(out, indent=2))
        return 0

    if not rows:
        print("(empty)")
        return 0
    for r in rows:
        who = r.team if args.kind == "team" else r.user_id
        score = f"{r.display_score:.4f}" if args.kind == "engagement" else f"{r.display_score:.0f}"
        print(f"{r.rank:>4}  {score:>10}  {who}")
    return 0


def _cmd_create_drop(ctx: CliContext, args: argparse.Namespace) -> int:
    from hypeledger.core.events import DropStatus
    from hypeledger.core.exceptions import HypeLedgerError
    from hypeledger.core.time import parse_dt

    engine = _engine(ctx)
    try:
        drop = engine.drops.create(
            drop_id=args.drop_id,
            name=args.name,
            starts_at=parse_dt(args.starts),
            ends_at=parse_dt(args.ends),
            base_points=args.base_points,
        )
        if args.activate:
            drop = engine.drops.transition(drop.id, DropStatus.ACTIVE)
    except (HypeLedgerError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    print(f"drop {drop.id}: {drop.status}")
    return 0


def _cmd_close_drop(ctx: CliContext, args: argparse.Namespace) -> int:
    from hypeledger.core.exceptions import HypeLedgerError

    engine = _engine(ctx)
    try:
        closed = engine.close_drop(args.drop_id, actor=args.actor)
    except HypeLedgerError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    print(f"drop {args.drop_id} closed ({closed} entries)")
    return 0


def _cmd_clear_review(ctx: CliContext, args: argparse.Namespace) -> int:
    from hypeledger.core.exceptions import HypeLedgerError

    engine = _engine(ctx)
    try:
        changed = engine.clear_review(args.user_id, args.drop_id, actor=args.actor)
    except HypeLedgerError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    print("review cleared" if changed else "not under review")
    return 0


def _cmd_rebuild(ctx: CliContext, args: argparse.Namespace) -> int:
    engine = _engine(ctx)
    engine.leaderboard.rebuild()
    print(json.dumps(engine.leaderboard.get_state(), sort_keys=True))
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
        "api": _cmd_api,
        "status": _cmd_status,
        "leaderboard": _cmd_leaderboard,
        "create-drop": _cmd_create_drop,
        "close-drop": _cmd_close_drop,
        "clear-review": _cmd_clear_review,
        "rebuild": _cmd_rebuild,
    }

    fn = dispatch.get(str(args.command))
    if fn is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 2

    return int(fn(ctx, args))


if __name__ == "__main__":
    raise SystemExit(main())
