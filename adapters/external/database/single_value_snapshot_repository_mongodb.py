from __future__ import annotations

from adapters.external.database.snapshot_repository_mongodb import SnapshotRepositoryMongoDB
from core.domain.entities.single_value_snapshot_entity import SingleValueSnapshotEntity


class SingleValueSnapshotRepositoryMongoDB(SnapshotRepositoryMongoDB[SingleValueSnapshotEntity]):
    """
    MongoDB repository for single-value feeds.

    All single-value feeds share one collection, partitioned by `feed_key`.
    """

    COLLECTION = "single_value_snapshots"
    ENTITY = SingleValueSnapshotEntity
    VALUE_FIELDS = ("value", "rate_change", "rate_change_percent")
