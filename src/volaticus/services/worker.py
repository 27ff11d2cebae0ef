"""
Background sweeps that keep the catalog and the blob store in step.

Two interval jobs on an APScheduler BackgroundScheduler:

* cleanup: deletes expired uploads (blob first, then row) and deactivates
  expired short URLs.
* reconcile: two-way diff between storage keys and catalog blob keys.
  Blobs without a row are deleted once they are older than the grace
  period; rows whose blob is gone are deleted.

Per-item failures are logged and the sweep moves on.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from volaticus.catalog import uploads as upload_catalog
from volaticus.catalog import urls as url_catalog
from volaticus.core.config import logger
from volaticus.core.exceptions import VolaticusError
from volaticus.db.base import utcnow
from volaticus.services.url_service import evict_url
from volaticus.storage.base import StorageBackend

CLEANUP_JOB_ID = "cleanup-expired"
RECONCILE_JOB_ID = "reconcile-storage"


@dataclass
class CleanupReport:
    deleted_items: int = 0
    failed_items: int = 0
    deactivated_urls: int = 0


@dataclass
class ReconcileReport:
    orphan_blobs: int = 0
    orphan_rows: int = 0
    skipped_recent: int = 0
    failures: int = 0


class CleanupWorker:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        storage: StorageBackend,
        cleanup_interval: timedelta = timedelta(minutes=1),
        reconcile_interval: timedelta = timedelta(hours=6),
        grace: timedelta = timedelta(minutes=15),
        scheduler: Optional[BackgroundScheduler] = None,
    ):
        self.session_factory = session_factory
        self.storage = storage
        self.cleanup_interval = cleanup_interval
        self.reconcile_interval = reconcile_interval
        self.grace = grace
        self.scheduler = scheduler or BackgroundScheduler(timezone=UTC)

    def cleanup_expired(self, now: Optional[datetime] = None) -> CleanupReport:
        """Delete expired uploads and deactivate expired short URLs."""
        now = now or utcnow()
        report = CleanupReport()
        db = self.session_factory()
        try:
            for item in upload_catalog.list_expired(db, now):
                try:
                    self.storage.delete(item.blob_key)
                    upload_catalog.delete(db, item.id)
                    report.deleted_items += 1
                except (VolaticusError, SQLAlchemyError) as e:
                    report.failed_items += 1
                    logger.error(f"Failed to clean up expired upload {item.reference}: {e}", exc_info=True)

            try:
                codes = url_catalog.deactivate_expired(db, now)
            except (VolaticusError, SQLAlchemyError) as e:
                logger.error(f"Failed to deactivate expired URLs: {e}", exc_info=True)
                codes = []
            for code in codes:
                evict_url(code)
            report.deactivated_urls = len(codes)
        finally:
            db.close()

        if report.deleted_items or report.failed_items or report.deactivated_urls:
            logger.info(
                f"Cleanup: {report.deleted_items} expired uploads deleted, "
                f"{report.failed_items} failed, {report.deactivated_urls} URLs deactivated"
            )
        return report

    def reconcile(self, now: Optional[datetime] = None) -> ReconcileReport:
        """
        Heal divergence between storage and catalog.

        The catalog is read before storage, so a blob written by an upload in
        flight shows up without its row; the grace period keeps it. A row is
        only dropped after its blob is confirmed absent.
        """
        now = now or utcnow()
        cutoff = now - self.grace
        report = ReconcileReport()
        db = self.session_factory()
        try:
            items = {item.blob_key: item for item in upload_catalog.list_all(db)}
            blobs = {blob.name: blob for blob in self.storage.enumerate("")}

            for name, blob in blobs.items():
                if name in items:
                    continue
                if blob.modified_at > cutoff:
                    report.skipped_recent += 1
                    continue
                try:
                    self.storage.delete(name)
                    report.orphan_blobs += 1
                    logger.info(f"Deleted orphan blob {name}")
                except VolaticusError as e:
                    report.failures += 1
                    logger.error(f"Failed to delete orphan blob {name}: {e}", exc_info=True)

            for key, item in items.items():
                if key in blobs:
                    continue
                try:
                    if self.storage.exists(key):
                        continue
                    upload_catalog.delete(db, item.id)
                    report.orphan_rows += 1
                    logger.info(f"Deleted catalog row {item.reference} with missing blob {key}")
                except (VolaticusError, SQLAlchemyError) as e:
                    report.failures += 1
                    logger.error(f"Failed to delete orphan row {item.reference}: {e}", exc_info=True)
        finally:
            db.close()

        logger.info(
            f"Reconcile: {report.orphan_blobs} orphan blobs, {report.orphan_rows} orphan rows, "
            f"{report.skipped_recent} recent blobs skipped, {report.failures} failures"
        )
        return report

    def _run_job(self, job: Callable, name: str) -> None:
        try:
            job()
        except Exception:
            logger.exception(f"{name} sweep failed")

    def _run_cleanup(self) -> None:
        self._run_job(self.cleanup_expired, "Cleanup")

    def _run_reconcile(self) -> None:
        self._run_job(self.reconcile, "Reconcile")

    def start(self) -> None:
        """Schedule both sweeps, each running once right away."""
        first_run = datetime.now(UTC)
        self.scheduler.add_job(
            self._run_cleanup,
            "interval",
            seconds=self.cleanup_interval.total_seconds(),
            id=CLEANUP_JOB_ID,
            next_run_time=first_run,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.add_job(
            self._run_reconcile,
            "interval",
            seconds=self.reconcile_interval.total_seconds(),
            id=RECONCILE_JOB_ID,
            next_run_time=first_run,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(
            f"Cleanup worker started (cleanup every {self.cleanup_interval}, "
            f"reconcile every {self.reconcile_interval})"
        )

    def stop(self) -> None:
        """Stop scheduling and wait for running sweeps to finish."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)
            logger.info("Cleanup worker stopped")
