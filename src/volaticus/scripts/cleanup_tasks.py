"""
One-shot maintenance sweep.

Runs the same two sweeps the server's background worker schedules:
1. Remove expired uploads and deactivate expired short URLs
2. Reconcile storage with the catalog (orphan blobs and orphan rows)

Usage:
    python -m volaticus.scripts.cleanup_tasks
"""

from volaticus.core.config import settings
from volaticus.db.session import SessionLocal, init_db
from volaticus.services.worker import CleanupWorker
from volaticus.storage import create_storage


def run_cleanup() -> int:
    """Run all cleanup tasks and return the number of entries removed."""
    init_db()
    storage = create_storage(settings)
    worker = CleanupWorker(SessionLocal, storage, grace=settings.RECONCILE_GRACE)

    try:
        cleanup = worker.cleanup_expired()
        print(f"Cleaned up {cleanup.deleted_items} expired uploads ({cleanup.failed_items} failed)")
        print(f"Deactivated {cleanup.deactivated_urls} expired URLs")

        reconcile = worker.reconcile()
        print(
            f"Reconciled storage: {reconcile.orphan_blobs} orphan blobs, "
            f"{reconcile.orphan_rows} orphan rows removed"
        )

        return cleanup.deleted_items + cleanup.deactivated_urls + reconcile.orphan_blobs + reconcile.orphan_rows
    finally:
        storage.close()


def main():
    total_cleaned = run_cleanup()
    print(f"Total cleaned entries: {total_cleaned}")


if __name__ == "__main__":
    main()
