"""Backward search for the actual recovery time."""

import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .._utils import logger
from ..exceptions import ManifestFormatError, NoConsistentRecoveryPointError
from .copier import RetryingFileCopier
from .election import WinnerNodeElector
from .models import ManifestRecord, WinnerSelection
from .paths import ArchiveLocation
from .scanner import BackupIndex


@dataclass
class RecoverySelection:
    """Outcome of a search: the chosen bucket and one winner per shard.

    ``winners`` maps store name to shard name to the elected selection.
    """
    art: str
    base_path: str
    winners: Dict[str, Dict[str, WinnerSelection]] = field(default_factory=dict)

    def winner(self, store_name: str, shard_name: str) -> WinnerSelection:
        return self.winners[store_name][shard_name]


class RecoveryPointSelector:
    """Walks buckets newest first and stops at the first fully covered one.

    Every bucket is evaluated from scratch. A bucket is dropped as soon as one
    known shard has no complete backup in it, so later shards' manifests are
    never fetched for that bucket.
    """

    def __init__(
        self,
        copier: RetryingFileCopier,
        elector: Optional[WinnerNodeElector] = None,
    ):
        self.copier = copier
        self.elector = elector or WinnerNodeElector()

    async def select(self, index: BackupIndex) -> RecoverySelection:
        with tempfile.TemporaryDirectory(prefix="kvrecovery-manifests-") as tmpdir:
            work_dir = Path(tmpdir)
            for bucket in index.bucket_keys:
                pools = await self._complete_pools(index, bucket, work_dir)
                if pools is None:
                    continue
                logger.info(f"Actual recovery time {bucket} covers all {len(pools)} shard(s)")
                return self._build_selection(index, bucket, pools)

        raise NoConsistentRecoveryPointError(index.base_path, index.target, index.oldest_bucket)

    async def _complete_pools(
        self,
        index: BackupIndex,
        bucket: str,
        work_dir: Path,
    ) -> Optional[Dict[Tuple[str, str], List[ManifestRecord]]]:
        """Complete records per shard, or None if any shard has none."""
        grouped = index.locations_by_shard(bucket)
        pools: Dict[Tuple[str, str], List[ManifestRecord]] = {}

        for shard_key in index.shard_keys:
            pool = []
            for location in grouped.get(shard_key, []):
                record = await self._read_manifest(location, work_dir)
                if record is not None and record.is_complete:
                    pool.append(record)
            if not pool:
                store_name, shard_name = shard_key
                logger.info(
                    f"Bucket {bucket} rejected: no complete backup for "
                    f"shard {shard_name} of store {store_name}"
                )
                return None
            pools[shard_key] = pool
        return pools

    async def _read_manifest(self, location: ArchiveLocation, work_dir: Path) -> Optional[ManifestRecord]:
        local = work_dir / location.bucket / location.store_name / location.node_name / location.file_name
        local.parent.mkdir(parents=True, exist_ok=True)
        await self.copier.fetch(location.path, local)
        try:
            record = ManifestRecord.from_json(local.read_bytes())
        except ManifestFormatError as e:
            logger.warning(f"Treating {location.path} as incomplete: {e}")
            return None
        logger.debug(
            f"Manifest {location.path}: node={record.full_node_name} "
            f"sequence={record.sequence_number} master={record.is_master} "
            f"complete={record.is_complete}"
        )
        return record

    def _build_selection(
        self,
        index: BackupIndex,
        bucket: str,
        pools: Dict[Tuple[str, str], List[ManifestRecord]],
    ) -> RecoverySelection:
        selection = RecoverySelection(art=bucket, base_path=index.base_path)
        for (store_name, shard_name), pool in sorted(pools.items()):
            record = self.elector.elect(pool)
            winner = WinnerSelection(
                winner_node=record.full_node_name,
                jdb_files_list=record.log_file_entries(index.base_path, store_name),
                record=record,
            )
            logger.info(
                f"Winner for {store_name}/{shard_name} at {bucket}: {winner.winner_node} "
                f"(sequence {record.sequence_number}, {len(winner.entries)} file(s))"
            )
            selection.winners.setdefault(store_name, {})[shard_name] = winner
        return selection
