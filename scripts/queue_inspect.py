#!/usr/bin/env python3
"""
Upload Queue Inspector - Maintenance Script

Prints what the upload queue has persisted on disk: which owners have a
queue, the tasks in each queue and the recently completed uploads.
Read-only: nothing in the store is modified.

Usage:
    python scripts/queue_inspect.py                          # All owners
    python scripts/queue_inspect.py --owner u1 --history     # One owner + history
    python scripts/queue_inspect.py --store-dir /data/queue --json

Note: unreadable partitions are reported, not repaired. The queue manager
resets them on its next start.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

# Add parent directory to path so we can import modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import QUEUE_KEY_PREFIX, QUEUE_STORE_PATH
from core.logging_setup import setup_logging
from storage.implementations.file_store import FileKeyValueStore
from storage.interfaces.kv_store_interface import StorageError
from upload.managers.queue_persistence import QueuePersistence

logger = logging.getLogger(__name__)


async def _read_partition(
    persistence: QueuePersistence,
    key: str,
    owner_id: str,
) -> Dict:
    raw = await persistence.store.get(key)
    if raw is None:
        return {"tasks": [], "error": None}
    try:
        tasks = persistence.decode(owner_id, raw)
    except (UnicodeDecodeError, KeyError, TypeError, ValueError) as e:
        return {"tasks": [], "error": f"unreadable ({e})"}
    return {"tasks": [task.to_dict() for task in tasks], "error": None}


async def inspect_store(
    store_dir: Path,
    owner_id: Optional[str] = None,
    show_history: bool = False,
    key_prefix: str = QUEUE_KEY_PREFIX,
) -> Dict:
    """
    Collect the persisted queue state.

    Args:
        store_dir: FileKeyValueStore directory
        owner_id: Only this owner (None = every owner in the index)
        show_history: Include completed history
        key_prefix: Key prefix used by the queue

    Returns:
        {"owners": {owner_id: {"tasks": [...], "error": ..., "history": [...]}}}
    """
    store = FileKeyValueStore(store_dir)
    persistence = QueuePersistence(store, key_prefix=key_prefix)

    if owner_id:
        owners: List[str] = [owner_id]
    else:
        raw_index = await store.get(persistence.index_key)
        owners = json.loads(raw_index.decode("utf-8")) if raw_index else []

    report: Dict = {"store_dir": str(store_dir), "owners": {}}
    for owner in owners:
        entry = await _read_partition(persistence, persistence.tasks_key(owner), owner)
        if show_history:
            history = await _read_partition(
                persistence,
                persistence.history_key(owner),
                owner,
            )
            entry["history"] = history["tasks"]
        report["owners"][owner] = entry

    await store.close()
    return report


def format_report(report: Dict) -> str:
    """Render an inspect_store() report as plain text"""
    lines = [f"Upload queue store: {report['store_dir']}"]
    if not report["owners"]:
        lines.append("  (no owners)")

    for owner_id, entry in report["owners"].items():
        lines.append("")
        lines.append(f"Owner {owner_id}: {len(entry['tasks'])} tasks")
        if entry["error"]:
            lines.append(f"  ⚠️  partition {entry['error']}")
        for task in entry["tasks"]:
            line = (
                f"  {task['id']}  {task['state']:<10} attempt={task['attempt']}  "
                f"{task['source_ref']['uri']}"
            )
            if task.get("last_error"):
                line += f"  [{task['last_error']['error_class']}]"
            lines.append(line)

        if "history" in entry:
            lines.append(f"  Completed history: {len(entry['history'])} uploads")
            for task in entry["history"]:
                media_url = (task.get("result_ref") or {}).get("media_url") or "-"
                lines.append(f"    {task['completed_at']}  {task['id']}  {media_url}")

    return "\n".join(lines)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Show the persisted upload queue (read-only)",
    )
    parser.add_argument(
        "--store-dir",
        type=Path,
        default=QUEUE_STORE_PATH,
        help=f"Queue store directory (default: {QUEUE_STORE_PATH})",
    )
    parser.add_argument("--owner", help="Only show this owner")
    parser.add_argument(
        "--history",
        action="store_true",
        help="Include recently completed uploads",
    )
    parser.add_argument(
        "--key-prefix",
        default=QUEUE_KEY_PREFIX,
        help="Key prefix used by the queue",
    )
    parser.add_argument("--json", action="store_true", help="Print raw JSON")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    setup_logging(level="DEBUG" if args.verbose else "WARNING")

    if not args.store_dir.exists():
        logger.error(f"❌ Store directory not found: {args.store_dir}")
        return 1

    try:
        report = asyncio.run(
            inspect_store(
                args.store_dir,
                owner_id=args.owner,
                show_history=args.history,
                key_prefix=args.key_prefix,
            ),
        )
    except (StorageError, ValueError) as e:
        logger.error(f"❌ Inspection failed: {e}", exc_info=True)
        return 1

    if args.json:
        print(json.dumps(report, indent=2, ensure_ascii=False))
    else:
        print(format_report(report))
    return 0


if __name__ == "__main__":
    sys.exit(main())
