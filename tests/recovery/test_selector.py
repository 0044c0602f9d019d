"""Tests for the recovery point search."""

import pytest
from unittest.mock import patch

from kvrecovery.exceptions import ManifestFormatError, NoConsistentRecoveryPointError
from kvrecovery.recovery.scanner import BackupIndexScanner
from kvrecovery.recovery.selector import RecoveryPointSelector


async def search(fake_archive, fs_archive, copier, target):
    index = await BackupIndexScanner(fs_archive).scan(fake_archive.base_dir, target)
    return await RecoveryPointSelector(copier).select(index)


@pytest.mark.asyncio
async def test_incomplete_newer_bucket_is_skipped(fake_archive, fs_archive, copier):
    """Test ART falls back to the newest bucket with a complete backup."""
    fake_archive.add_backup("kvstore", "rg1-rn1", "20230101")
    fake_archive.add_backup("kvstore", "rg1-rn1", "20230102", is_complete=False)

    selection = await search(fake_archive, fs_archive, copier, "20230103")

    assert selection.art == "20230101"
    assert selection.winner("kvstore", "rg1").winner_node == "rg1-rn1"


@pytest.mark.asyncio
async def test_every_store_must_be_covered(fake_archive, fs_archive, copier):
    """Test a store without any complete backup leaves no recovery point."""
    for bucket in ("23010100", "23010200", "23010300"):
        fake_archive.add_backup("storeA", "rg1-rn1", bucket)
        fake_archive.add_backup("storeB", "rg1-rn1", bucket, is_complete=False)

    with pytest.raises(NoConsistentRecoveryPointError) as exc_info:
        await search(fake_archive, fs_archive, copier, "23010300")

    error = exc_info.value
    assert error.oldest_bucket == "23010100"
    assert error.target == "23010300"
    assert error.base_path == fake_archive.base_dir
    assert "[23010100, 23010300]" in str(error)


@pytest.mark.asyncio
async def test_shard_missing_from_bucket_disqualifies_it(fake_archive, fs_archive, copier):
    fake_archive.add_backup("kvstore", "rg1-rn1", "23010100")
    fake_archive.add_backup("kvstore", "rg2-rn1", "23010100")
    fake_archive.add_backup("kvstore", "rg1-rn1", "23010200")

    selection = await search(fake_archive, fs_archive, copier, "23010200")

    assert selection.art == "23010100"
    assert set(selection.winners["kvstore"]) == {"rg1", "rg2"}


@pytest.mark.asyncio
async def test_selection_covers_every_shard_with_complete_winner(fake_archive, fs_archive, copier):
    fake_archive.add_backup("storeA", "admin1", "23010100", sequence=10)
    fake_archive.add_backup("storeA", "admin2", "23010100", sequence=12)
    fake_archive.add_backup("storeA", "rg1-rn1", "23010100", sequence=500)
    fake_archive.add_backup("storeA", "rg1-rn2", "23010100", sequence=500, is_master=True)
    fake_archive.add_backup("storeB", "rg1-rn1", "23010100", sequence=400)
    fake_archive.add_backup("storeB", "rg1-rn3", "23010100", sequence=600)

    selection = await search(fake_archive, fs_archive, copier, "23010100")

    assert selection.winner("storeA", "admin").winner_node == "admin2"
    assert selection.winner("storeA", "rg1").winner_node == "rg1-rn2"
    assert selection.winner("storeB", "rg1").winner_node == "rg1-rn3"
    for shards in selection.winners.values():
        for winner in shards.values():
            assert winner.record.is_complete


@pytest.mark.asyncio
async def test_search_is_deterministic(fake_archive, fs_archive, copier):
    for node in ("rg1-rn1", "rg1-rn2", "rg1-rn3"):
        fake_archive.add_backup("kvstore", node, "23010100")

    first = await search(fake_archive, fs_archive, copier, "23010500")
    second = await search(fake_archive, fs_archive, copier, "23010500")

    assert first.art == second.art
    assert first.winners == second.winners


@pytest.mark.asyncio
async def test_fail_fast_skips_remaining_shards(fake_archive, fs_archive, copier):
    """Test a bucket stops fetching manifests at the first uncovered shard."""
    fake_archive.add_backup("kvstore", "rg1-rn1", "23010100")
    fake_archive.add_backup("kvstore", "rg2-rn1", "23010100")
    fake_archive.add_backup("kvstore", "rg1-rn1", "23010200", is_complete=False)
    fake_archive.add_backup("kvstore", "rg2-rn1", "23010200")

    fetched = []
    real_fetch = copier.fetch

    async def recording_fetch(source, destination):
        fetched.append(source)
        await real_fetch(source, destination)

    copier.fetch = recording_fetch
    selection = await search(fake_archive, fs_archive, copier, "23010200")

    assert selection.art == "23010100"
    newer = [path for path in fetched if "/23010200/" in path]
    assert len(newer) == 1
    assert "/rg1/rn1/" in newer[0]


@pytest.mark.asyncio
async def test_unparseable_manifest_counts_as_incomplete(fake_archive, fs_archive, copier):
    fake_archive.add_backup("kvstore", "rg1-rn1", "23010100")
    broken = fake_archive.add_backup("kvstore", "rg1-rn1", "23010200")
    broken.write_text("{not json")

    with patch("kvrecovery.recovery.selector.logger") as mock_logger:
        selection = await search(fake_archive, fs_archive, copier, "23010200")

    assert selection.art == "23010100"
    assert "as incomplete" in mock_logger.warning.call_args[0][0]


@pytest.mark.asyncio
async def test_file_paths_use_recorded_snapshot(fake_archive, fs_archive, copier):
    """Test segment paths point at the bucket that holds each file."""
    fake_archive.add_backup("kvstore", "rg1-rn1", "23010100", version=1)
    manifest = fake_archive.add_backup("kvstore", "admin1", "23010100", version=1)

    selection = await search(fake_archive, fs_archive, copier, "23010100")

    rn_entry = selection.winner("kvstore", "rg1").entries[0]
    assert rn_entry.file_path == f"{fake_archive.base_dir}/kvstore/rg1/rn1/23010100/00000000.jdb"
    assert rn_entry.checksum_alg == "SHA-256"
    admin_entry = selection.winner("kvstore", "admin").entries[0]
    assert admin_entry.file_path == str(manifest.parent / "00000000.jdb")


@pytest.mark.asyncio
async def test_bad_checksum_length_in_winner(fake_archive, fs_archive, copier):
    fake_archive.add_backup("kvstore", "rg1-rn1", "23010100", version=1,
                            checksums={"00000000.jdb": "abc123"})

    with pytest.raises(ManifestFormatError, match="length 6"):
        await search(fake_archive, fs_archive, copier, "23010100")


@pytest.mark.asyncio
async def test_no_buckets_before_target(fake_archive, fs_archive, copier):
    fake_archive.add_backup("kvstore", "rg1-rn1", "23020100")

    with pytest.raises(NoConsistentRecoveryPointError, match="<none>"):
        await search(fake_archive, fs_archive, copier, "23010100")
