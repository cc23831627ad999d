"""Periodic reconciliation of cached tallies with the durable store.

The CacheSyncWorker runs in the background of the API process. Each pass
verifies every active award's cached tally and, when auto-fix is enabled,
rebuilds the ones that drifted. One award failing never stops the pass, and
no pass failing stops the loop.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ballot_stage.core.settings import settings
from ballot_stage.db.session import SessionLocal
from ballot_stage.db.time import utcnow
from ballot_stage.repositories import BiasStore, VoteStore
from ballot_stage.services.cache import CacheAdapter, get_cache_adapter
from ballot_stage.services.errors import VoteCountError
from ballot_stage.services.vote_counts import AwardFailure, VoteCountService

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Summary of one reconciliation pass."""

    started_at: datetime
    finished_at: datetime | None = None
    checked: int = 0
    inconsistent: int = 0
    fixed: int = 0
    purged_fallback_entries: int = 0
    errors: list[AwardFailure] = field(default_factory=list)


class CacheSyncWorker:
    """Background loop verifying, and optionally repairing, cached tallies."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        *,
        cache: CacheAdapter | None = None,
        interval: float | None = None,
        auto_fix: bool | None = None,
    ) -> None:
        """Initialize the worker.

        Args:
            session_factory: Creates the session each pass runs in.
            cache: Cache adapter to reconcile; defaults to the process-wide one.
            interval: Seconds between passes.
            auto_fix: Whether inconsistent awards are synchronized.
        """
        self._session_factory = session_factory
        self._cache = cache or get_cache_adapter()
        self.interval = max(
            0.1,
            float(settings.cache_sync_interval_seconds if interval is None else interval),
        )
        self.auto_fix = settings.cache_sync_auto_fix if auto_fix is None else auto_fix
        self.last_report: SweepReport | None = None
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background loop; the first pass runs immediately."""
        if not self.running:
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())
            logger.info(
                "Cache sync worker started (interval: %.0fs, auto_fix: %s)",
                self.interval,
                self.auto_fix,
            )

    async def stop(self) -> None:
        """Stop the background loop and wait for the current pass to end."""
        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None
        logger.info("Cache sync worker stopped")

    async def run_once(self) -> SweepReport:
        """Run a single pass in a worker thread."""
        report = await asyncio.to_thread(self.sweep)
        self.last_report = report
        return report

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except (VoteCountError, SQLAlchemyError, OSError) as e:
                logger.error("Cache sync pass failed: %s", e, exc_info=True)
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                logger.error("Cache sync pass hit a data processing error: %s", e, exc_info=True)

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except TimeoutError:
                continue

    def sweep(self) -> SweepReport:
        """Verify all active awards and synchronize the inconsistent ones."""
        report = SweepReport(started_at=utcnow())
        report.purged_fallback_entries = self._cache.purge_fallback()

        with self._session_factory() as db:
            counts = VoteCountService(VoteStore(db), BiasStore(db), self._cache)
            consistency = counts.verify_all()
            report.checked = consistency.total_awards
            report.inconsistent = consistency.inconsistent_awards
            report.errors.extend(consistency.errors)

            logger.info(
                "Cache consistency check completed: %d/%d awards consistent",
                consistency.consistent_awards,
                consistency.total_awards,
            )

            if self.auto_fix:
                for award_report in consistency.reports:
                    if award_report.consistent:
                        continue
                    try:
                        result = counts.synchronize(award_report.award_id)
                    except VoteCountError as e:
                        logger.error(
                            "Failed to fix cached tally for award %s: %s",
                            award_report.award_id,
                            e,
                        )
                        report.errors.append(
                            AwardFailure(award_report.award_id, "", str(e))
                        )
                        continue
                    except (ValueError, TypeError, KeyError, AttributeError) as e:
                        logger.error(
                            "Data error fixing cached tally for award %s: %s",
                            award_report.award_id,
                            e,
                            exc_info=True,
                        )
                        report.errors.append(
                            AwardFailure(award_report.award_id, "", str(e))
                        )
                        continue
                    if result.success:
                        report.fixed += 1

        report.finished_at = utcnow()
        return report
