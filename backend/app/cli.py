"""Cron entry point for dealer inventory sync.

Usage:
  inventory-sync sync 12 --mode feed
  inventory-sync sync-all --limit 10 --offset 20 --no-cleanup
  inventory-sync cleanup --sold-after-days 30 --dry-run
"""
import argparse
import asyncio
import json
import sys
from typing import Any, Dict, List, Optional

from backend.app.core.logging_config import configure_logging
from backend.app.services.lifecycle import run_cleanup
from backend.app.services.sync_orchestrator import (
    SYNC_MODES,
    DealerSyncOrchestrator,
    load_dealer_config,
)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="inventory-sync", description="Dealer inventory sync")
    ap.add_argument("--log-level", type=str, default=None, help="Override LOG_LEVEL")
    sub = ap.add_subparsers(dest="command", required=True)

    sync = sub.add_parser("sync", help="Sync one dealer")
    sync.add_argument("dealer_id", type=int)
    sync.add_argument("--mode", choices=SYNC_MODES, default="auto")

    sync_all = sub.add_parser("sync-all", help="Sync a batch of configured dealers")
    sync_all.add_argument("--mode", choices=SYNC_MODES, default="auto")
    sync_all.add_argument("--limit", type=int, default=None)
    sync_all.add_argument("--offset", type=int, default=0)
    sync_all.add_argument("--no-cleanup", action="store_true", help="Skip the lifecycle sweep")
    sync_all.add_argument("--sold-after-days", type=int, default=None)
    sync_all.add_argument("--expire-after-days", type=int, default=None)

    cleanup = sub.add_parser("cleanup", help="Age stale listings into sold/expired")
    cleanup.add_argument("--sold-after-days", type=int, default=None)
    cleanup.add_argument("--expire-after-days", type=int, default=None)
    cleanup.add_argument("--dry-run", action="store_true")
    return ap


async def _sync_one(dealer_id: int, mode: str) -> Dict[str, Any]:
    config = load_dealer_config(dealer_id)
    if config is None:
        return {"ok": False, "error": "Dealer not found"}
    async with DealerSyncOrchestrator() as orchestrator:
        result = await orchestrator.sync_dealer(config, mode)
    return result.as_dict()


async def _sync_all(args: argparse.Namespace) -> Dict[str, Any]:
    async with DealerSyncOrchestrator() as orchestrator:
        return await orchestrator.sync_all(
            mode=args.mode,
            limit=args.limit,
            offset=args.offset,
            cleanup=not args.no_cleanup,
            sold_after_days=args.sold_after_days,
            expire_after_days=args.expire_after_days,
        )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    exit_code = 0
    if args.command == "sync":
        output = asyncio.run(_sync_one(args.dealer_id, args.mode))
        exit_code = 0 if output.get("ok") else 1
    elif args.command == "sync-all":
        output = asyncio.run(_sync_all(args))
    else:
        output = run_cleanup(
            sold_after_days=args.sold_after_days,
            expire_after_days=args.expire_after_days,
            dry_run=args.dry_run,
        ).as_dict()

    print(json.dumps(output, indent=2, default=str))
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
