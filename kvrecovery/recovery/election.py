"""Per-shard winner election."""

from typing import Sequence

from .models import ManifestRecord


class WinnerNodeElector:
    """Picks the best-backed node of a shard.

    Ranking, highest first: larger sequence number, then master over
    replica, then the lexicographically smaller node name. The key is a
    total order, so the result does not depend on input order.
    """

    @staticmethod
    def rank_key(record: ManifestRecord):
        return (-record.sequence_number, not record.is_master, record.full_node_name)

    def elect(self, records: Sequence[ManifestRecord]) -> ManifestRecord:
        if not records:
            raise ValueError("Cannot elect a winner from an empty candidate pool")
        incomplete = [r.full_node_name for r in records if not r.is_complete]
        if incomplete:
            raise ValueError(f"Incomplete backups are not eligible: {incomplete}")
        return min(records, key=self.rank_key)
