from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from core.domain.entities.multi_month_snapshot_entity import MonthSlot, MultiMonthSnapshotEntity
from core.domain.entities.tick_entity import ContractQuote, MultiMonthTick
from core.repositories.snapshot_repository import SnapshotRepository
from core.services.contract_month_service import ContractMonthService
from core.services.deadline_service import with_deadline


@dataclass(frozen=True)
class Reconciliation:
    snapshot: MultiMonthSnapshotEntity
    changed: bool


class ReconciliationService:
    """
    Merge a partial multi-month reading into the last persisted snapshot.

    Rules:
      - At most three reported contracts are kept, nearest first. Labels that
        are not contract months only fill leftover room.
      - Prior contracts that were not reported keep their values (fill-forward).
        When a rollover brings in more contracts than there are slots, the
        oldest carried contracts are dropped.
      - The result is sorted by calendar order, so month1 < month2 < month3
        always holds. Unused slots are ("", 0, 0, 0) and come last.
      - `changed` is True when any slot's label differs or any of its price /
        rate fields moved by at least `tolerance`.
    """

    SLOT_COUNT = 3

    def __init__(self, *, tolerance: float = 0.001, logger: logging.Logger | None = None) -> None:
        self._tolerance = float(tolerance)
        self._logger = logger or logging.getLogger(self.__class__.__name__)

    async def load_prior(
        self,
        repository: SnapshotRepository,
        feed_key: str,
        *,
        timeout_s: float,
    ) -> Optional[MultiMonthSnapshotEntity]:
        """
        Most recent snapshot, or None when there is none or the lookup failed.
        """
        try:
            return await with_deadline(repository.find_latest(feed_key), timeout_s, "find_latest")
        except Exception as exc:
            self._logger.warning("Prior snapshot lookup failed for feed=%s, reconciling from empty: %s", feed_key, exc)
            return None

    def reconcile(
        self,
        candidate: MultiMonthTick,
        prior: Optional[MultiMonthSnapshotEntity],
    ) -> Reconciliation:
        before: List[MonthSlot] = (
            [s.model_copy() for s in prior.slots()] if prior is not None else [MonthSlot() for _ in range(self.SLOT_COUNT)]
        )

        reported = self._nearest_reported(candidate)
        reported_labels = {c.label for c in reported}

        carried = ContractMonthService.sort_by_label(
            [s for s in before if s.label and s.label not in reported_labels],
            lambda s: s.label,
        )
        # expired contracts go first when a rollover leaves no room
        while carried and len(reported) + len(carried) > self.SLOT_COUNT:
            carried.pop(0)

        merged = ContractMonthService.sort_by_label(
            [self._slot(c) for c in reported] + carried,
            lambda s: s.label,
        )
        after = merged + [MonthSlot() for _ in range(self.SLOT_COUNT - len(merged))]

        changed = any(not self.slots_equal(a, b) for a, b in zip(before, after))

        snapshot = MultiMonthSnapshotEntity(
            feed_key=candidate.feed_key,
            timestamp=candidate.timestamp,
            month1=after[0],
            month2=after[1],
            month3=after[2],
        )
        return Reconciliation(snapshot=snapshot, changed=changed)

    def _nearest_reported(self, candidate: MultiMonthTick) -> List[ContractQuote]:
        reported = ContractMonthService.sort_by_label(candidate.contracts, lambda c: c.label)
        if len(reported) <= self.SLOT_COUNT:
            return reported

        self._logger.debug(
            "feed=%s reported %d contracts, keeping the nearest %d",
            candidate.feed_key,
            len(reported),
            self.SLOT_COUNT,
        )
        known = [c for c in reported if ContractMonthService.parse_label(c.label) is not None]
        unknown = [c for c in reported if ContractMonthService.parse_label(c.label) is None]
        return ContractMonthService.sort_by_label((known + unknown)[: self.SLOT_COUNT], lambda c: c.label)

    def slots_equal(self, a: MonthSlot, b: MonthSlot) -> bool:
        tol = self._tolerance
        return (
            a.label == b.label
            and abs(a.price - b.price) < tol
            and abs(a.rate_change - b.rate_change) < tol
            and abs(a.rate_change_percent - b.rate_change_percent) < tol
        )

    @staticmethod
    def _slot(quote: ContractQuote) -> MonthSlot:
        return MonthSlot(
            label=quote.label,
            price=quote.price,
            rate_change=quote.rate_change,
            rate_change_percent=quote.rate_change_percent,
        )
