"""Tests for archive path parsing."""

import pytest

from kvrecovery.exceptions import ManifestFormatError
from kvrecovery.recovery.paths import parse_archive_path

BASE = "/backups/fleet"


def test_replica_node_path():
    location = parse_archive_path(f"{BASE}/kvstore/rg2/rn3/23010112/manifest.json", BASE)

    assert location.store_name == "kvstore"
    assert location.shard_name == "rg2"
    assert location.node_name == "rg2-rn3"
    assert location.bucket == "23010112"
    assert location.file_name == "manifest.json"
    assert location.shard_key == ("kvstore", "rg2")
    assert not location.is_admin


def test_admin_node_path():
    location = parse_archive_path(f"{BASE}/kvstore/admin1/23010112/manifest.json", BASE)

    assert location.shard_name == "admin"
    assert location.node_name == "admin1"
    assert location.is_admin


@pytest.mark.parametrize("node_dir,shard,node", [
    ("1", "admin", "admin1"),
    ("rg1-rn2", "rg1", "rg1-rn2"),
])
def test_flat_forms(node_dir, shard, node):
    location = parse_archive_path(f"{BASE}/kvstore/{node_dir}/23010112/manifest.json", BASE + "/")

    assert location.shard_name == shard
    assert location.node_name == node


@pytest.mark.parametrize("path", [
    "/elsewhere/kvstore/rg1/rn1/23010112/manifest.json",
    f"{BASE}/kvstore/manifest.json",
    f"{BASE}/kvstore/rg1/23010112/manifest.json",
    f"{BASE}/kvstore/rg1/node1/23010112/manifest.json",
    f"{BASE}/kvstore/rg1/rn1/2301/manifest.json",
    f"{BASE}/kvstore/rg1/rn1/extra/23010112/manifest.json",
    f"{BASE}//rg1/rn1/23010112/manifest.json",
])
def test_invalid_paths(path):
    with pytest.raises(ManifestFormatError):
        parse_archive_path(path, BASE)
