"""
rankmesh CLI Entrypoint

Commands:
    rankmesh add SCORE [SCORE ...]       Track scores
    rankmesh remove SCORE [SCORE ...]    Forget one occurrence of each score
    rankmesh rank SCORE                  Rank of a score
    rankmesh score RANK [--highest]      Score needed for a rank
    rankmesh count                       Total tracked scores
    rankmesh count-score SCORE           Occurrences of one score
    rankmesh topology                    Print bucket descriptors
    rankmesh demo                        Seed an in-memory leaderboard and query it

Usage:
    python -m rankmesh --min-score 1 --max-score 100 --branch-factor 8 demo

    # Shared Redis collection
    REDIS_URL=redis://localhost:6379/0 python -m rankmesh --backend redis add 97 50
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from dataclasses import replace
from typing import Optional, Sequence

from rankmesh.core.config import RankConfig
from rankmesh.core.errors import RankMeshError
from rankmesh.core.types import Err, Ok, Result
from rankmesh.observability.logging import LogLevel, log_context, setup_logging
from rankmesh.ranks.engine import RankEngine
from rankmesh.storage import create_store
from rankmesh.storage.config import BackendType, RedisConfig, StorageConfig

logger = logging.getLogger(__name__)

DEFAULT_MIN_SCORE = 1
DEFAULT_MAX_SCORE = 100
DEFAULT_BRANCH_FACTOR = 10

DEMO_SCORES = (100, 100, 97, 50, 8)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rankmesh",
        description="Rank tracking over a document store",
    )
    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )
    parser.add_argument(
        "--backend",
        choices=["memory", "redis"],
        default=os.environ.get("RANKMESH_BACKEND", "memory"),
        help="Document store backend (default: $RANKMESH_BACKEND or memory)",
    )
    parser.add_argument(
        "--redis-url",
        type=str,
        default=None,
        help="redis:// URL (default: REDIS_* environment variables)",
    )
    parser.add_argument("--min-score", type=int, default=None, help="Lowest trackable score")
    parser.add_argument("--max-score", type=int, default=None, help="Highest trackable score")
    parser.add_argument("--branch-factor", type=int, default=None, help="Children per bucket")
    parser.add_argument("--collection", type=str, default=None, help="Collection name")
    parser.add_argument(
        "--skip-transaction",
        action="store_true",
        help="Update buckets without a cross-bucket transaction",
    )
    parser.add_argument(
        "--log-level",
        choices=[level.name.lower() for level in LogLevel],
        default="warning",
        help="Minimum log level (default: warning)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs as JSON lines",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    add_parser = subparsers.add_parser("add", help="Track scores")
    add_parser.add_argument("scores", type=int, nargs="+")

    remove_parser = subparsers.add_parser("remove", help="Forget one occurrence of each score")
    remove_parser.add_argument("scores", type=int, nargs="+")

    rank_parser = subparsers.add_parser("rank", help="Rank of a score")
    rank_parser.add_argument("score", type=int)

    score_parser = subparsers.add_parser("score", help="Score needed for a rank")
    score_parser.add_argument("rank", type=int)
    score_parser.add_argument(
        "--highest",
        action="store_true",
        help="Highest score that still holds the rank",
    )

    subparsers.add_parser("count", help="Total tracked scores")

    count_score_parser = subparsers.add_parser("count-score", help="Occurrences of one score")
    count_score_parser.add_argument("score", type=int)

    topology_parser = subparsers.add_parser("topology", help="Print bucket descriptors")
    topology_parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Print at most this many nodes",
    )

    subparsers.add_parser("demo", help="Seed an in-memory leaderboard and query it")

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main CLI entrypoint; returns the process exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    setup_logging(
        level=LogLevel.parse(args.log_level),
        json_output=args.json_logs,
    )

    loaded = build_config(args)
    if loaded.is_err():
        print(loaded.error, file=sys.stderr)
        return 1
    config = loaded.unwrap()

    if args.command == "topology":
        _print_topology(config, args.limit)
        return 0

    try:
        with log_context(command=args.command, collection=config.namespace):
            asyncio.run(_run(args, config))
    except RankMeshError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    return 0


def build_config(args: argparse.Namespace) -> Result[RankConfig, str]:
    """
    RankConfig from RANKMESH_* variables when any is set, otherwise
    built-in defaults; command-line options override either.
    """
    if any(
        f"RANKMESH_{name}" in os.environ
        for name in ("MIN_SCORE", "MAX_SCORE", "BRANCH_FACTOR")
    ):
        loaded = RankConfig.from_env()
        if loaded.is_err():
            return loaded
        base = loaded.unwrap()
    else:
        base = RankConfig(
            min_score=DEFAULT_MIN_SCORE,
            max_score=DEFAULT_MAX_SCORE,
            branch_factor=DEFAULT_BRANCH_FACTOR,
        )

    overrides = {
        "min_score": args.min_score,
        "max_score": args.max_score,
        "branch_factor": args.branch_factor,
        "collection_name": args.collection,
    }
    overrides = {name: value for name, value in overrides.items() if value is not None}
    if args.skip_transaction:
        overrides["skip_transaction"] = True

    try:
        return Ok(replace(base, **overrides))
    except ValueError as e:
        return Err(f"Configuration error: {e}")


def build_storage_config(args: argparse.Namespace) -> StorageConfig:
    if args.command == "demo" or BackendType.parse(args.backend) == BackendType.IN_MEMORY:
        return StorageConfig.for_development()

    redis = RedisConfig.from_env()
    if args.redis_url:
        redis = replace(redis, url=args.redis_url)
    return StorageConfig(backend=BackendType.REDIS, redis=redis)


async def _run(args: argparse.Namespace, config: RankConfig) -> None:
    store = await create_store(build_storage_config(args))
    try:
        engine = RankEngine(store, config)
        await _dispatch(engine, args)
    finally:
        close = getattr(store, "close", None)
        if close is not None:
            await close()


async def _dispatch(engine: RankEngine, args: argparse.Namespace) -> None:
    if args.command == "add":
        for score in args.scores:
            await engine.add_score(score)
        print(f"added {len(args.scores)} score(s)")

    elif args.command == "remove":
        for score in args.scores:
            await engine.remove_score(score)
        print(f"removed {len(args.scores)} score(s)")

    elif args.command == "rank":
        print(await engine.get_rank_by_score(args.score))

    elif args.command == "score":
        print(await engine.get_score_by_rank(args.rank, use_highest=args.highest))

    elif args.command == "count":
        print(await engine.count())

    elif args.command == "count-score":
        print(await engine.count_by_score(args.score))

    elif args.command == "demo":
        await _run_demo(engine)


async def _run_demo(engine: RankEngine) -> None:
    config = engine.config
    scores = [s for s in DEMO_SCORES if config.min_score <= s <= config.max_score]

    print("=" * 48)
    print(f"rankmesh demo [{config.min_score}, {config.max_score}] "
          f"branch factor {config.branch_factor}")
    print("=" * 48)

    for score in scores:
        await engine.add_score(score)
    print(f"tracked: {', '.join(str(s) for s in scores)}")
    print(f"count:   {await engine.count()}")

    print("\nscore  rank  occurrences")
    for score in sorted(set(scores), reverse=True):
        rank = await engine.get_rank_by_score(score)
        occurrences = await engine.count_by_score(score)
        print(f"{score:>5}  {rank:>4}  {occurrences:>11}")

    print("\nrank  lowest  highest")
    for rank in range(1, len(scores) + 2):
        lowest = await engine.get_score_by_rank(rank)
        highest = await engine.get_score_by_rank(rank, use_highest=True)
        print(f"{rank:>4}  {lowest:>6}  {highest:>7}")


def _print_topology(config: RankConfig, limit: Optional[int]) -> None:
    from rankmesh.ranks.topology import iter_nodes

    shown = 0
    for node in iter_nodes(config.min_score, config.max_score, config.branch_factor):
        if limit is not None and shown >= limit:
            print("...")
            break
        fields = " ".join(field.field_name for field in node.fields)
        print(f"{'  ' * node.layer}{node.document_id}: {fields}")
        shown += 1


def _get_version() -> str:
    from rankmesh import __version__
    return __version__


if __name__ == "__main__":
    sys.exit(main())
