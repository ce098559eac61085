"""
Inspect and drain the local offline queue.

Field tablets sometimes come back to the site office with a backlog of
queued writes; this script lets support staff see what is waiting, push it
to Supabase, or reset a corrupted queue.

Usage:
    python scripts/offline_queue.py status
    python scripts/offline_queue.py list
    python scripts/offline_queue.py sync
    python scripts/offline_queue.py clear --yes

Requirements:
    - Supabase credentials in .streamlit/secrets.toml (for `sync`)
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from site_core.errors import SiteCoreError, safe_execute  # noqa: E402
from site_core.logging import setup_logging  # noqa: E402
from site_core.offline import (  # noqa: E402
    MutationQueue,
    OfflineSyncService,
    SQLiteKeyValueStore,
    build_offline_service,
    load_config,
)


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Inspect and drain the local offline queue")
    parser.add_argument("--secrets", type=Path, default=None, help="Path to secrets.toml")
    parser.add_argument("--db", type=Path, default=None, help="Path to the local offline database")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("status", help="Show pending count")
    sub.add_parser("list", help="List pending operations, oldest first")
    sub.add_parser("sync", help="Replay pending operations against Supabase")
    clear = sub.add_parser("clear", help="Discard every pending operation")
    clear.add_argument("--yes", action="store_true", help="Confirm the reset")
    return parser.parse_args(argv)


def _offline_queue(config) -> MutationQueue:
    queue = MutationQueue(SQLiteKeyValueStore(config.db_path), storage_key=config.storage_key)
    queue.load_from_storage()
    return queue


def main(argv: Optional[List[str]] = None, service: Optional[OfflineSyncService] = None) -> int:
    args = _parse_args(argv)

    setup_logging(level=logging.DEBUG if args.verbose else logging.WARNING, log_to_file=False)

    try:
        config = load_config(args.secrets, db_path=args.db)
    except SiteCoreError as e:
        print(f"ERROR: {e}")
        return 2

    if args.command == "sync":
        if service is None:
            if not config.has_remote:
                print("ERROR: Missing Supabase credentials.")
                print("Set [supabase] url/key in .streamlit/secrets.toml or SUPABASE_URL / SUPABASE_KEY.")
                return 2
            service = safe_execute(
                build_offline_service,
                config,
                error_message="Could not create the Supabase client",
                show_user_message=False,
            )
            if service is None:
                print("ERROR: Could not create the Supabase client (see log).")
                return 2
            # Probe once instead of starting the background monitor
            service.monitor_connection = False
        service.start()
        try:
            if not service.is_online:
                print(f"Offline: {service.pending_count} changes remain queued.")
                return 1
            # Coming online during start() already ran a pass
            report = service.engine.state.last_report or service.sync_pending_operations()
            print(report.summary())
            for op_id, error in report.failed.items():
                print(f"  FAILED {op_id}: {error}")
            for op_id in report.held:
                print(f"  HELD   {op_id}")
            return 0 if report.ok else 1
        finally:
            service.stop()

    queue = service.queue if service is not None else _offline_queue(config)
    if service is not None:
        queue.load_from_storage()

    if args.command == "status":
        print(f"Pending changes: {queue.pending_count}")
        return 0

    if args.command == "list":
        if queue.pending_count == 0:
            print("No pending changes.")
            return 0
        frame = queue.to_dataframe()
        print(frame[["id", "resource", "kind", "key", "created_at"]].to_string(index=False))
        return 0

    if args.command == "clear":
        if not args.yes:
            print(f"Refusing to discard {queue.pending_count} changes without --yes.")
            return 1
        count = queue.pending_count
        queue.clear()
        print(f"Discarded {count} pending changes.")
        return 0

    return 2


if __name__ == "__main__":
    sys.exit(main())
