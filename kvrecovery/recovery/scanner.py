"""Enumerate manifest descriptors in the archive and group them by bucket."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from .._utils import logger, is_valid_timestamp
from ..archive import BaseArchiveCopy
from ..exceptions import ConfigurationError, ManifestFormatError
from .paths import ArchiveLocation, parse_archive_path


@dataclass
class BackupIndex:
    """Manifest locations under one base path, restricted to buckets <= target.

    ``buckets`` is ordered newest first. ``known_shards`` maps every store
    seen in the scanned range to the shard names observed for it.
    """
    base_path: str
    target: str
    buckets: Dict[str, List[ArchiveLocation]] = field(default_factory=dict)
    known_shards: Dict[str, Set[str]] = field(default_factory=dict)

    @property
    def bucket_keys(self) -> List[str]:
        return list(self.buckets)

    @property
    def oldest_bucket(self) -> Optional[str]:
        return self.bucket_keys[-1] if self.buckets else None

    @property
    def shard_keys(self) -> List[Tuple[str, str]]:
        """Every known (store, shard) pair in a stable order."""
        return sorted(
            (store_name, shard_name)
            for store_name, shards in self.known_shards.items()
            for shard_name in shards
        )

    def locations_by_shard(self, bucket: str) -> Dict[Tuple[str, str], List[ArchiveLocation]]:
        grouped: Dict[Tuple[str, str], List[ArchiveLocation]] = {}
        for location in self.buckets.get(bucket, []):
            grouped.setdefault(location.shard_key, []).append(location)
        return grouped


class BackupIndexScanner:
    """Builds a ``BackupIndex`` from an archive listing."""

    def __init__(self, archive: BaseArchiveCopy):
        self.archive = archive

    async def scan(self, base_path: str, target: str) -> BackupIndex:
        """List manifest descriptors and bucket them.

        Buckets later than ``target`` are dropped before any manifest is
        read. Paths that do not follow the archive convention are skipped
        with a warning.

        Raises:
            ConfigurationError: If ``target`` is not a YYMMDDHH value or the
                base path is unreachable
            ManifestFormatError: If one node has two manifests in one bucket
        """
        if not is_valid_timestamp(target):
            raise ConfigurationError(
                f"Target recovery time {target!r} must be in YYMMDDHH format"
            )

        paths = await self.archive.list_files(base_path, manifests_only=True)
        logger.info(f"Found {len(paths)} manifest file(s) under {base_path}")

        buckets: Dict[str, List[ArchiveLocation]] = {}
        seen_nodes: Set[Tuple[str, str, str]] = set()
        skipped_newer = 0

        for path in paths:
            try:
                location = parse_archive_path(path, base_path)
            except ManifestFormatError as e:
                logger.warning(f"Skipping unrecognised archive path: {e}")
                continue

            if location.bucket > target:
                skipped_newer += 1
                continue

            node_key = (location.store_name, location.node_name, location.bucket)
            if node_key in seen_nodes:
                raise ManifestFormatError(
                    f"There are multiple manifest files for node {location.node_name} "
                    f"of store {location.store_name} in bucket {location.bucket}"
                )
            seen_nodes.add(node_key)
            buckets.setdefault(location.bucket, []).append(location)

        if skipped_newer:
            logger.debug(f"Ignored {skipped_newer} manifest(s) newer than target {target}")

        index = BackupIndex(base_path=base_path, target=target)
        for bucket in sorted(buckets, reverse=True):
            locations = sorted(buckets[bucket], key=lambda loc: loc.path)
            index.buckets[bucket] = locations
            for location in locations:
                index.known_shards.setdefault(location.store_name, set()).add(location.shard_name)

        logger.info(
            f"Scanned {len(index.buckets)} bucket(s) not after {target} "
            f"covering {len(index.shard_keys)} shard(s) in {len(index.known_shards)} store(s)"
        )
        return index
