"""Sync commands for the carryzone CLI: local-to-remote synchronization."""

import json
import logging
import sys
from typing import TYPE_CHECKING

from carryzone.types import QueuedOperation, ms_to_datetime

if TYPE_CHECKING:
    from carryzone import CarryZone

logger = logging.getLogger(__name__)


def operation_to_json(entry: QueuedOperation) -> dict:
    return {
        "id": entry.id,
        "pin_id": entry.pin_id,
        "operation": entry.operation.value,
        "queued_at": ms_to_datetime(entry.timestamp).isoformat(),
        "retry_count": entry.retry_count,
        "last_error": entry.last_error,
    }


def cmd_sync(args, cz: "CarryZone"):
    """Handle sync subcommands."""
    engine = cz.engine

    if args.sync_action == "run":
        result = engine.trigger_sync()
        if args.json:
            print(
                json.dumps(
                    {
                        "success": result.success,
                        "uploaded": result.uploaded,
                        "downloaded": result.downloaded,
                        "discarded": result.discarded,
                        "still_queued": result.still_queued,
                        "error": str(result.error) if result.error else None,
                        "errors": result.errors,
                    },
                    indent=2,
                )
            )
        elif result.success:
            print(f"✓ Sync complete: {result.uploaded} uploaded, {result.downloaded} downloaded")
            if result.discarded:
                print(f"  ⚠️  {result.discarded} operation(s) discarded")
            if result.upload_failure:
                print(f"  ⚠️  {result.upload_failure}")
        else:
            print(f"✗ Sync failed: {result.error}")
            for error in result.errors[:5]:
                print(f"  - {error}")
        if not result.success:
            sys.exit(1)

    elif args.sync_action == "status":
        pending_count = engine.get_pending_operation_count()
        failed = engine.get_failed_operations()
        online = cz.connectivity.is_online()

        if args.json:
            print(
                json.dumps(
                    {
                        "backend": cz.backend_name,
                        "online": online,
                        "pending_operations": pending_count,
                        "failed_operations": len(failed),
                        "max_retries": engine.max_retries,
                        "database": str(cz.db_path),
                    },
                    indent=2,
                )
            )
            return

        print("Sync Status")
        print("=" * 50)
        conn_icon = "🟢" if online else "🔴"
        print(f"{conn_icon} Backend: {cz.backend_name} ({'online' if online else 'offline'})")
        pending_icon = "🟢" if pending_count == 0 else "🟡" if pending_count < 10 else "🟠"
        print(f"{pending_icon} Pending operations: {pending_count}")
        if failed:
            print(f"🔴 Failing operations: {len(failed)}")
            print(f"   Entries are discarded after {engine.max_retries} failed attempts.")
        print(f"   Database: {cz.db_path}")

    elif args.sync_action == "pending":
        entries = cz.queue.list_pending()
        if args.json:
            print(json.dumps([operation_to_json(e) for e in entries], indent=2))
            return
        if not entries:
            print("No pending operations.")
            return
        print(f"Pending operations ({len(entries)})")
        for entry in entries:
            retry = f" retry {entry.retry_count}/{engine.max_retries}" if entry.retry_count else ""
            print(f"  [{entry.id}] {entry.operation.value:<6} {entry.pin_id}{retry}")
            if entry.last_error:
                print(f"         last error: {entry.last_error}")

    elif args.sync_action == "clear":
        count = engine.clear_queue()
        print(f"✓ Cleared {count} pending operation(s)")
