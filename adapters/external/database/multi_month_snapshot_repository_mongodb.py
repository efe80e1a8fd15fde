from __future__ import annotations

from adapters.external.database.snapshot_repository_mongodb import SnapshotRepositoryMongoDB
from core.domain.entities.multi_month_snapshot_entity import MultiMonthSnapshotEntity


class MultiMonthSnapshotRepositoryMongoDB(SnapshotRepositoryMongoDB[MultiMonthSnapshotEntity]):
    """
    MongoDB repository for reconciled 3-contract-month snapshots.

    Month slots are embedded sub-documents (`month1.label`, `month1.price`, ...).
    """

    COLLECTION = "mcx_3_month"
    ENTITY = MultiMonthSnapshotEntity
    VALUE_FIELDS = (
        "month1.label", "month1.price",
        "month2.label", "month2.price",
        "month3.label", "month3.price",
    )
