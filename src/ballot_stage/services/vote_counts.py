"""Vote count aggregation with bias overlay, caching and consistency repair.

Reads are served from the cached tally when present and rebuilt from the
durable store otherwise. Active bias entries are always reconstructed from
the store, so a warm read and a cold read of the same award agree.

Cached tallies come in two flavours, distinguished by the overlay marker the
cache adapter stores alongside the counts:

* overlaid: written through by the read path, counts already include bias;
* raw: written by warming and synchronization, counts are organic only.

Consistency checks always compare organic counts, removing the overlay from
an overlaid tally first.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TypeVar

from sqlalchemy.exc import SQLAlchemyError

from ballot_stage.core.settings import settings
from ballot_stage.models import Award, VoteBias
from ballot_stage.repositories import BiasStore, NomineeCount, VoteStore
from ballot_stage.services.cache import CacheAdapter, TallySnapshot, get_cache_adapter
from ballot_stage.services.circuit_breaker import (
    CircuitBreaker,
    CircuitOpenError,
    get_database_breaker,
)
from ballot_stage.services.errors import (
    CacheSyncError,
    VoteCountError,
    VoteCountsUnavailableError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

UNKNOWN_NOMINEE_NAME = "Unknown Nominee"

SYNC_ACTION_NONE = "none"
SYNC_ACTION_SYNCHRONIZED = "synchronized"


@dataclass
class NomineeTally:
    """Vote total for one nominee, split into organic and administrative parts."""

    nominee_id: str
    nominee_name: str
    count: int
    original_count: int
    bias_amount: int = 0
    has_bias: bool = False
    bias_reason: str | None = None


@dataclass(frozen=True)
class Discrepancy:
    nominee_id: str
    database_count: int
    cache_count: int
    # Signed: database minus cache.
    difference: int
    # The cached value was not an integer; cache_count is reported as 0.
    corrupt: bool = False


@dataclass(frozen=True)
class ConsistencyReport:
    """Comparison of an award's cached organic counts with the durable store."""

    award_id: str
    consistent: bool
    cached: bool
    total_nominees: int
    database_total: int
    cache_total: int
    discrepancies: list[Discrepancy] = field(default_factory=list)


@dataclass(frozen=True)
class AwardFailure:
    """An award skipped by an all-awards operation, with the reason."""

    award_id: str
    title: str
    error: str


@dataclass(frozen=True)
class ConsistencySweep:
    total_awards: int
    consistent_awards: int
    inconsistent_awards: int
    reports: list[ConsistencyReport] = field(default_factory=list)
    errors: list[AwardFailure] = field(default_factory=list)


@dataclass(frozen=True)
class SyncResult:
    """Outcome of synchronizing one award's cached tally."""

    award_id: str
    action: str
    message: str
    success: bool
    previous: ConsistencyReport | None = None
    current: ConsistencyReport | None = None


@dataclass(frozen=True)
class SyncSweep:
    total_awards: int
    synchronized: int
    already_consistent: int
    failed: int
    results: list[SyncResult] = field(default_factory=list)
    errors: list[AwardFailure] = field(default_factory=list)


@dataclass(frozen=True)
class WarmResult:
    total: int
    success: int
    failed: int
    errors: list[AwardFailure] = field(default_factory=list)


def apply_bias(
    counts: Sequence[NomineeCount],
    biases: Iterable[VoteBias],
    nominee_names: Mapping[str, str] | None = None,
) -> list[NomineeTally]:
    """Overlay active bias entries on organic counts.

    Each entry's signed amount is added to its nominee's count. A nominee
    with bias but no organic votes is added with an original count of zero.
    The result is sorted by total count, highest first; ties keep the order
    of ``counts``.
    """
    names = nominee_names or {}
    tallies: dict[str, NomineeTally] = {
        row.nominee_id: NomineeTally(
            nominee_id=row.nominee_id,
            nominee_name=row.nominee_name,
            count=row.count,
            original_count=row.count,
        )
        for row in counts
    }

    for bias in biases:
        tally = tallies.get(bias.nominee_id)
        if tally is None:
            tally = NomineeTally(
                nominee_id=bias.nominee_id,
                nominee_name=names.get(bias.nominee_id, UNKNOWN_NOMINEE_NAME),
                count=0,
                original_count=0,
            )
            tallies[bias.nominee_id] = tally
        tally.count = tally.original_count + bias.bias_amount
        tally.bias_amount = bias.bias_amount
        tally.has_bias = True
        tally.bias_reason = bias.reason

    return sorted(tallies.values(), key=lambda tally: tally.count, reverse=True)


class VoteCountService:
    """Reads and maintains per-award vote tallies."""

    def __init__(
        self,
        vote_store: VoteStore,
        bias_store: BiasStore,
        cache: CacheAdapter | None = None,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self._votes = vote_store
        self._biases = bias_store
        self._cache = cache or get_cache_adapter()
        self._breaker = breaker or get_database_breaker()

    # --- Reads ----------------------------------------------------------------------
    def get_counts(self, award_id: str) -> list[NomineeTally]:
        """Return the award's tallies including the bias overlay.

        Raises:
            VoteCountsUnavailableError: If the durable store failed outside
                the breaker's fallback path.
        """
        snapshot = self._cache.get_tally(award_id)
        if snapshot is not None and snapshot.corrupt:
            logger.warning(
                "Cached tally for award %s has corrupt fields %s; rebuilding from the store",
                award_id,
                ", ".join(snapshot.corrupt_fields),
            )
            self._cache.clear_tally(award_id)
            snapshot = None
        if snapshot is not None:
            return self._from_snapshot(award_id, snapshot)

        raw, raw_degraded = self._query(
            "vote counts", lambda: self._votes.count_by_nominee(award_id), list
        )
        biases, bias_degraded = self._query(
            "active bias", lambda: self._biases.list_active_for_award(award_id), list
        )
        names = self._names_for_bias_only(raw, biases)
        tallies = apply_bias(raw, biases, names)

        if raw_degraded or bias_degraded:
            logger.warning("Serving degraded vote counts for award %s; not caching", award_id)
        elif tallies:
            self._write_through(award_id, tallies)
        return tallies

    def get_original_counts(self, award_id: str) -> list[NomineeCount]:
        """Return organic counts straight from the store, without bias."""
        counts, _ = self._query(
            "original vote counts", lambda: self._votes.count_by_nominee(award_id), list
        )
        return counts

    def _from_snapshot(self, award_id: str, snapshot: TallySnapshot) -> list[NomineeTally]:
        biases = self._strict(
            "active bias", lambda: self._biases.list_active_for_award(award_id)
        )
        bias_by_nominee = {bias.nominee_id: bias for bias in biases}
        wanted = list(dict.fromkeys([*snapshot.counts, *bias_by_nominee]))
        nominees = self._strict("nominee details", lambda: self._votes.get_nominees(wanted))

        organic: list[NomineeCount] = []
        for nominee_id, cached in snapshot.counts.items():
            nominee = nominees.get(nominee_id)
            if nominee is None:
                logger.debug("Cached tally for award %s names unknown nominee %s", award_id, nominee_id)
                continue
            bias = bias_by_nominee.get(nominee_id)
            if snapshot.overlay_applied and bias is not None:
                cached -= bias.bias_amount
            organic.append(NomineeCount(nominee_id, nominee.name, cached))

        known_biases = [bias for bias in biases if bias.nominee_id in nominees]
        names = {nominee_id: nominee.name for nominee_id, nominee in nominees.items()}
        return apply_bias(organic, known_biases, names)

    def _names_for_bias_only(
        self, raw: Sequence[NomineeCount], biases: Sequence[VoteBias]
    ) -> dict[str, str]:
        counted = {row.nominee_id for row in raw}
        missing = [bias.nominee_id for bias in biases if bias.nominee_id not in counted]
        if not missing:
            return {}
        nominees, _ = self._query(
            "nominee details", lambda: self._votes.get_nominees(missing), dict
        )
        return {nominee_id: nominee.name for nominee_id, nominee in nominees.items()}

    def _write_through(self, award_id: str, tallies: Sequence[NomineeTally]) -> None:
        self._cache.put_tally(
            award_id,
            {tally.nominee_id: tally.count for tally in tallies},
            overlay_applied=True,
        )
        logger.debug("Cached overlaid tally for award %s (%d nominees)", award_id, len(tallies))

    # --- Consistency ----------------------------------------------------------------
    def verify_consistency(self, award_id: str) -> ConsistencyReport:
        """Compare cached organic counts with the durable store's counts."""
        database = {
            row.nominee_id: row.count
            for row in self._strict(
                "vote counts", lambda: self._votes.count_by_nominee(award_id)
            )
        }

        snapshot = self._cache.get_tally(award_id)
        cache: dict[str, int] = dict(snapshot.counts) if snapshot is not None else {}
        if snapshot is not None and snapshot.overlay_applied:
            for bias in self._strict(
                "active bias", lambda: self._biases.list_active_for_award(award_id)
            ):
                if bias.nominee_id in cache:
                    cache[bias.nominee_id] -= bias.bias_amount

        corrupt = set(snapshot.corrupt_fields) if snapshot is not None else set()
        nominee_ids = list(dict.fromkeys([*database, *cache, *sorted(corrupt)]))
        discrepancies = []
        for nominee_id in nominee_ids:
            database_count = database.get(nominee_id, 0)
            cache_count = cache.get(nominee_id, 0)
            if database_count != cache_count or nominee_id in corrupt:
                discrepancies.append(
                    Discrepancy(
                        nominee_id=nominee_id,
                        database_count=database_count,
                        cache_count=cache_count,
                        difference=database_count - cache_count,
                        corrupt=nominee_id in corrupt,
                    )
                )

        return ConsistencyReport(
            award_id=award_id,
            consistent=not discrepancies,
            cached=snapshot is not None,
            total_nominees=len(nominee_ids),
            database_total=sum(database.values()),
            cache_total=sum(cache.values()),
            discrepancies=discrepancies,
        )

    def verify_all(self) -> ConsistencySweep:
        """Check every active award; failures are collected per award."""
        awards = self._active_awards()
        reports: list[ConsistencyReport] = []
        errors: list[AwardFailure] = []
        for award in awards:
            try:
                reports.append(self.verify_consistency(award.id))
            except VoteCountError as exc:
                logger.error("Consistency check failed for award %s: %s", award.id, exc)
                errors.append(AwardFailure(award.id, award.title, str(exc)))
            except (ValueError, TypeError, KeyError, AttributeError) as exc:
                logger.error(
                    "Data error checking cached tally for award %s: %s",
                    award.id,
                    exc,
                    exc_info=True,
                )
                errors.append(AwardFailure(award.id, award.title, str(exc)))

        consistent = sum(1 for report in reports if report.consistent)
        return ConsistencySweep(
            total_awards=len(awards),
            consistent_awards=consistent,
            inconsistent_awards=len(reports) - consistent,
            reports=reports,
            errors=errors,
        )

    def synchronize(self, award_id: str, force_rebuild: bool = False) -> SyncResult:
        """Rebuild the award's cached tally from raw store counts when it has drifted.

        Raises:
            CacheSyncError: If the tally could not be rebuilt.
        """
        previous: ConsistencyReport | None = None
        if not force_rebuild:
            previous = self.verify_consistency(award_id)
            if previous.consistent:
                return SyncResult(
                    award_id=award_id,
                    action=SYNC_ACTION_NONE,
                    message="Cache is already consistent with database",
                    success=True,
                    previous=previous,
                    current=previous,
                )

        self.clear(award_id)
        if not self.warm_award(award_id):
            raise CacheSyncError(
                f"Failed to rebuild cached tally for award {award_id}",
                retry_after=settings.counts_unavailable_retry_after_seconds,
            )

        current = self.verify_consistency(award_id)
        if current.consistent:
            logger.info("Cached tally for award %s synchronized", award_id)
        else:
            logger.warning("Cached tally for award %s still inconsistent after rebuild", award_id)
        return SyncResult(
            award_id=award_id,
            action=SYNC_ACTION_SYNCHRONIZED,
            message="Cache synchronized with database",
            success=current.consistent,
            previous=previous,
            current=current,
        )

    def synchronize_all(self, force_rebuild: bool = False) -> SyncSweep:
        awards = self._active_awards()
        results: list[SyncResult] = []
        errors: list[AwardFailure] = []
        for award in awards:
            try:
                results.append(self.synchronize(award.id, force_rebuild))
            except VoteCountError as exc:
                logger.error("Cache synchronization failed for award %s: %s", award.id, exc)
                errors.append(AwardFailure(award.id, award.title, str(exc)))
            except (ValueError, TypeError, KeyError, AttributeError) as exc:
                logger.error(
                    "Data error synchronizing cached tally for award %s: %s",
                    award.id,
                    exc,
                    exc_info=True,
                )
                errors.append(AwardFailure(award.id, award.title, str(exc)))

        return SyncSweep(
            total_awards=len(awards),
            synchronized=sum(1 for r in results if r.action == SYNC_ACTION_SYNCHRONIZED),
            already_consistent=sum(1 for r in results if r.action == SYNC_ACTION_NONE),
            failed=len(errors),
            results=results,
            errors=errors,
        )

    # --- Cache maintenance ----------------------------------------------------------
    def warm_award(self, award_id: str) -> bool:
        """Cache the award's raw counts; return False if the store could not be read."""
        try:
            counts = self._strict("vote counts", lambda: self._votes.count_by_nominee(award_id))
        except VoteCountsUnavailableError as exc:
            logger.error("Failed to warm cached tally for award %s: %s", award_id, exc)
            return False
        self._cache.put_tally(
            award_id,
            {row.nominee_id: row.count for row in counts},
            overlay_applied=False,
        )
        logger.info("Cache warmed for award %s: %d nominees", award_id, len(counts))
        return True

    def warm_all(self) -> WarmResult:
        awards = self._active_awards()
        errors = [
            AwardFailure(award.id, award.title, "Failed to read vote counts")
            for award in awards
            if not self.warm_award(award.id)
        ]
        logger.info(
            "Cache warming completed: %d/%d awards cached",
            len(awards) - len(errors),
            len(awards),
        )
        return WarmResult(
            total=len(awards),
            success=len(awards) - len(errors),
            failed=len(errors),
            errors=errors,
        )

    def clear(self, award_id: str) -> bool:
        """Drop the award's cached tally; return True if one was cached."""
        removed = self._cache.clear_tally(award_id)
        logger.info("Cache cleared for award %s", award_id)
        return removed

    # --- Store access ---------------------------------------------------------------
    def _active_awards(self) -> list[Award]:
        return self._strict("active awards", self._votes.list_active_awards)

    def _query(
        self, what: str, primary: Callable[[], T], empty: Callable[[], T]
    ) -> tuple[T, bool]:
        """Run ``primary`` under the breaker, answering ``empty()`` while it is open.

        Returns the value and whether it came from the fallback.
        """
        degraded = False

        def fallback() -> T:
            nonlocal degraded
            degraded = True
            logger.warning("Database unavailable for %s, returning empty results", what)
            return empty()

        try:
            return self._breaker.run(primary, fallback), degraded
        except (SQLAlchemyError, OSError) as exc:
            raise self._unavailable(what, exc) from exc

    def _strict(self, what: str, primary: Callable[[], T]) -> T:
        try:
            return self._breaker.run(primary)
        except (SQLAlchemyError, OSError, CircuitOpenError) as exc:
            raise self._unavailable(what, exc) from exc

    def _unavailable(self, what: str, exc: Exception) -> VoteCountsUnavailableError:
        if isinstance(exc, SQLAlchemyError):
            try:
                self._votes.rollback()
            except SQLAlchemyError as rollback_exc:
                logger.warning("Rollback after failed %s read also failed: %s", what, rollback_exc)
        logger.error("Failed to retrieve %s: %s", what, exc)
        return VoteCountsUnavailableError(
            f"Failed to retrieve {what}",
            retry_after=settings.counts_unavailable_retry_after_seconds,
        )
