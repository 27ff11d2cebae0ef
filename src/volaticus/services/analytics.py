import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from volaticus.catalog import urls as url_catalog
from volaticus.core.config import logger
from volaticus.core.exceptions import VolaticusError
from volaticus.models.url import ClickEvent
from volaticus.services.geoip import UNKNOWN_LOCATION, Location

CLICK_TIMEOUT = 10.0


@dataclass(frozen=True)
class RequestInfo:
    referrer: str = ""
    user_agent: str = ""
    ip_address: str = ""


class ClickRecorder:
    """
    Writes click analytics off the request path.

    Each click becomes one task on a bounded thread pool that opens its own
    session, inserts the ClickEvent and bumps the URL's access counter. A
    task has CLICK_TIMEOUT seconds from submission; steps that would start
    after that are skipped. Failures are logged and never reach the
    redirecting request. ``shutdown`` lets queued clicks finish.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        executor: Optional[Executor] = None,
        max_workers: int = 8,
        timeout: float = CLICK_TIMEOUT,
    ):
        self.session_factory = session_factory
        self.timeout = timeout
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="click-recorder"
        )

    def record(self, url_id: UUID, info: RequestInfo, location: Location = UNKNOWN_LOCATION) -> Optional[Future]:
        deadline = time.monotonic() + self.timeout
        try:
            return self._executor.submit(self._record, url_id, info, location, deadline)
        except RuntimeError:
            logger.warning(f"Click recorder is shut down, dropping click for {url_id}")
            return None

    def _past_deadline(self, deadline: float, step: str, url_id: UUID) -> bool:
        if time.monotonic() > deadline:
            logger.warning(f"Skipping {step} for {url_id}: click deadline exceeded")
            return True
        return False

    def _record(self, url_id: UUID, info: RequestInfo, location: Location, deadline: float) -> None:
        db = self.session_factory()
        try:
            if not self._past_deadline(deadline, "click event", url_id):
                event = ClickEvent(
                    url_id=url_id,
                    referrer=info.referrer or "",
                    user_agent=info.user_agent or "",
                    ip_address=info.ip_address or "",
                    country_code=location.country_code,
                    city=location.city,
                    region=location.region,
                )
                try:
                    url_catalog.record_click(db, event)
                except (VolaticusError, SQLAlchemyError) as e:
                    logger.error(f"Failed to record click for {url_id}: {e}", exc_info=True)

            if not self._past_deadline(deadline, "access count", url_id):
                try:
                    url_catalog.increment_access(db, url_id)
                except (VolaticusError, SQLAlchemyError) as e:
                    logger.error(f"Failed to increment access count for {url_id}: {e}", exc_info=True)
        finally:
            db.close()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
