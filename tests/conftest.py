"""Global pytest configuration and fixtures."""

import hashlib
import json
import sys
from pathlib import Path
from typing import Dict, Optional
from unittest.mock import AsyncMock

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from kvrecovery.config import RecoveryConfig, RetryConfig
from kvrecovery.archive.filesystem import FilesystemArchiveCopy
from kvrecovery.recovery.copier import BackoffPolicy, RetryingFileCopier


def sha256_hex(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


class FakeArchive:
    """Writes node backups in the archive layout under ``root``.

    ``rgX-rnY`` nodes land in ``<store>/rgX/rnY/<bucket>/`` and ``adminX``
    nodes in ``<store>/adminX/<bucket>/``, with a manifest.json next to the
    segment files.
    """

    def __init__(self, root: Path):
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)

    @property
    def base_dir(self) -> str:
        return str(self.root)

    def node_dir(self, store: str, node: str, bucket: str) -> Path:
        if node.startswith("rg"):
            shard, node_part = node.split("-")
            return self.root / store / shard / node_part / bucket
        return self.root / store / node / bucket

    def add_backup(
        self,
        store: str,
        node: str,
        bucket: str,
        sequence: int = 100,
        is_master: bool = False,
        is_complete: bool = True,
        files: Optional[Dict[str, bytes]] = None,
        version: int = 2,
        checksums: Optional[Dict[str, str]] = None,
    ) -> Path:
        """Write segment files plus a manifest; returns the manifest path."""
        directory = self.node_dir(store, node, bucket)
        directory.mkdir(parents=True, exist_ok=True)
        files = {"00000000.jdb": f"{store}/{node}/{bucket}".encode()} if files is None else files
        checksums = checksums or {}

        snapshot_files = {}
        for file_name, content in files.items():
            (directory / file_name).write_bytes(content)
            info = {
                "checksum": checksums.get(file_name, sha256_hex(content)),
                "encryptionAlg": "NONE",
                "compressionAlg": "NONE",
                "isCopied": True,
                "copyStartTimeMs": 0,
                "snapshot": bucket,
                "nodeName": node if node.startswith("rg") else node[len("admin"):],
            }
            if version >= 2:
                info["checksumAlg"] = "SHA-256"
            snapshot_files[file_name] = info

        manifest = {
            "version": version,
            "sequence": sequence,
            "snapshot": bucket,
            "startTimeMs": 0,
            "lastFileCopiedTimeMs": 0,
            "nodeName": node if node.startswith("rg") else node[len("admin"):],
            "checksum": "0",
            "endOfLog": 0,
            "isMaster": is_master,
            "isComplete": is_complete,
            "snapshotFiles": snapshot_files,
            "erasedFiles": {},
        }
        path = directory / "manifest.json"
        path.write_text(json.dumps(manifest))
        return path


@pytest.fixture
def fake_archive(tmp_path):
    return FakeArchive(tmp_path / "backup")


@pytest.fixture
def fs_config(fake_archive):
    return RecoveryConfig(
        copy_impl="filesystem",
        base_dir=fake_archive.base_dir,
        retry=RetryConfig(initial_wait=0.0, max_wait=0.0, max_attempts=3),
    )


@pytest.fixture
def fs_archive(fs_config):
    return FilesystemArchiveCopy(fs_config)


@pytest.fixture
def no_sleep():
    return AsyncMock()


@pytest.fixture
def copier(fs_archive, no_sleep):
    """Filesystem-backed copier that never sleeps between retries."""
    policy = BackoffPolicy(initial_wait=1.0, max_wait=8.0, max_attempts=3, sleep=no_sleep)
    return RetryingFileCopier(fs_archive, policy)
