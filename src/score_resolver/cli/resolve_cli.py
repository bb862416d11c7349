#!/usr/bin/env python3
"""CLI for the score-resolve command.

Resolves critic/audience scores for a list of item names, and inspects or
clears the persisted score cache.

Usage:
    score-resolve resolve games.json
    score-resolve resolve names.txt --url-template "https://www.metacritic.com/game/{key}/"
    score-resolve stats --cache .cache.scores.json
    score-resolve clear --config resolver.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

import yaml

from score_resolver.cache import JsonFileStore, ScoreCache
from score_resolver.coalescer import Coalescer
from score_resolver.config import ResolverConfig, load_config_file
from score_resolver.resolver import BatchResolver, BatchResult, ScoreRequest
from score_resolver.utils import AsyncRateLimiterRegistry
from score_resolver.worker import HttpScoreWorker


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="score-resolve",
        description="Resolve critic and audience scores for item names, with caching.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Resolve a JSON list of {"rawName", "sourceURLTemplate"} objects
  score-resolve resolve games.json

  # Resolve one name per line, building URLs from the item key
  score-resolve resolve names.txt --url-template "https://www.metacritic.com/game/{key}/"

  # Show cache statistics / clear the cache
  score-resolve stats
  score-resolve clear
""",
    )
    p.add_argument("--config", help="YAML config file")
    p.add_argument("--cache", help="Score cache file (default: .cache.scores.json)")
    p.add_argument("--ttl-hours", type=float, help="Hours a cached score stays valid (default: 24)")
    p.add_argument("--verbose", action="store_true", help="Verbose logging")

    sub = p.add_subparsers(dest="command", required=True)

    r = sub.add_parser("resolve", help="Resolve scores for a batch of names")
    r.add_argument("input", help="JSON list, or text file with one name per line ('-' for stdin)")
    r.add_argument("--url-template", default="", help="URL for names without one; '{key}' is replaced")
    r.add_argument("-o", "--output", help="Write JSON results to this file instead of stdout")
    r.add_argument("--ordered", action="store_true", help="Emit a list aligned with the input instead of a mapping")
    r.add_argument("--max-concurrency", type=int, help="Maximum simultaneous fetches (default: 4)")
    r.add_argument("--timeout", type=float, help="Seconds before a fetch is abandoned (default: 30)")
    r.add_argument("--rate-limit", type=int, help="Requests per minute to the review source (default: 30)")

    sub.add_parser("stats", help="Show cache statistics")
    sub.add_parser("clear", help="Remove every cached score")
    return p


def init_logging(verbose: bool) -> logging.Logger:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")
    return logging.getLogger("score_resolver")


def build_config(args: argparse.Namespace) -> ResolverConfig:
    """Merge the optional config file with command line overrides."""
    config = load_config_file(args.config) if args.config else ResolverConfig()
    overrides = {
        "cache_path": args.cache,
        "ttl_hours": args.ttl_hours,
        "max_concurrency": getattr(args, "max_concurrency", None),
        "fetch_timeout": getattr(args, "timeout", None),
        "rate_limit": getattr(args, "rate_limit", None),
    }
    for name, value in overrides.items():
        if value is not None:
            setattr(config, name, value)
    if args.verbose:
        config.verbose = True
    return config


def load_requests(path: str, url_template: str = "") -> list[ScoreRequest]:
    """Read lookup requests from a JSON list or a plain text file.

    JSON items may be strings, [name, url] pairs or objects with
    rawName/sourceURLTemplate keys. Text files hold one name per line;
    blank lines and lines starting with '#' are skipped.
    """
    if path == "-":
        content = sys.stdin.read()
    else:
        with open(path, encoding="utf-8") as f:
            content = f.read()

    stripped = content.lstrip()
    if stripped.startswith("["):
        items = json.loads(stripped)
    else:
        lines = (line.strip() for line in content.splitlines())
        items = [line for line in lines if line and not line.startswith("#")]

    requests: list[ScoreRequest] = []
    for item in items:
        req = ScoreRequest.coerce(item)
        if not req.url and url_template:
            req = ScoreRequest(raw_name=req.raw_name, url=url_template)
        requests.append(req)
    return requests


def format_results(result: BatchResult, ordered: bool) -> Any:
    if ordered:
        return [
            {
                "rawName": item.raw_name,
                "key": item.key,
                "scores": item.scores.to_dict() if item.scores else None,
                "source": item.source,
            }
            for item in result.items
        ]
    return result.as_dict()


async def run_resolve(config: ResolverConfig, requests: list[ScoreRequest], logger: logging.Logger) -> BatchResult:
    rate_limiters = AsyncRateLimiterRegistry({"metacritic": config.rate_limit})
    async with HttpScoreWorker(
        rate_limiters=rate_limiters,
        timeout=config.http_timeout,
        user_agent=config.user_agent,
    ) as worker:
        resolver = BatchResolver.from_config(config, worker, coalescer=Coalescer(), logger=logger)
        return await resolver.resolve(requests)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Args:
        argv: Command line arguments (defaults to sys.argv)

    Returns:
        Exit code
    """
    args = build_arg_parser().parse_args(argv)
    logger = init_logging(args.verbose)

    try:
        config = build_config(args)
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.error("Cannot load config: %s", e)
        return 1

    if args.command == "stats":
        cache = ScoreCache(JsonFileStore(config.cache_path), ttl_seconds=config.ttl_seconds, logger=logger)
        print(json.dumps(cache.stats().to_dict(), indent=2))
        return 0

    if args.command == "clear":
        cache = ScoreCache(JsonFileStore(config.cache_path), ttl_seconds=config.ttl_seconds, logger=logger)
        return 0 if cache.clear() else 1

    try:
        requests = load_requests(args.input, args.url_template)
    except (OSError, ValueError) as e:
        logger.error("Cannot read input %s: %s", args.input, e)
        return 1

    result = asyncio.run(run_resolve(config, requests, logger))
    output = json.dumps(format_results(result, args.ordered), indent=2, ensure_ascii=False)
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(output + "\n")
        logger.info("Wrote %d results to %s", len(result), args.output)
    else:
        print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
