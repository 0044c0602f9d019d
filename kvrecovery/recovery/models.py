"""Data models for recovery-point search and restore."""

import json
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..exceptions import ConfigurationError, ManifestFormatError


ADMIN_SHARD = "admin"
REQUIRED_FILES_SUFFIX = "_requiredfiles.json"

# checksumAlg and corresponding hex digest lengths
SHA_256_CHECKSUMALG = "SHA-256"
SHA_256_CHECKSUMALG_LENGTH = 64
SHA_1_CHECKSUMALG = "SHA-1"
SHA_1_CHECKSUMALG_LENGTH = 40


class _CamelModel(BaseModel):
    """Snake-case attributes, camelCase on the wire."""

    model_config = ConfigDict(populate_by_name=True)


class LogFileEntry(_CamelModel):
    """One log segment of a winner node, as listed in the interchange manifest."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    file_name: str = Field(..., alias="fileName")
    file_path: str = Field(..., alias="filePath")
    checksum: str
    checksum_alg: str = Field(..., alias="checksumAlg")
    encryption_alg: str = Field("NONE", alias="encryptionAlg")
    compression_alg: str = Field("NONE", alias="compressionAlg")


class ManifestFileInfo(_CamelModel):
    """Per-file record inside a node's manifest document."""

    checksum: str
    checksum_alg: Optional[str] = Field(None, alias="checksumAlg")
    encryption_alg: str = Field("NONE", alias="encryptionAlg")
    compression_alg: str = Field("NONE", alias="compressionAlg")
    is_copied: bool = Field(False, alias="isCopied")
    copy_start_time_ms: int = Field(0, alias="copyStartTimeMs")
    snapshot: Optional[str] = None
    node_name: Optional[str] = Field(None, alias="nodeName")


class ManifestRecord(_CamelModel):
    """A node's self-description of one backup attempt at one bucket."""

    version: int = 0
    sequence: int
    snapshot: str
    start_time_ms: int = Field(..., alias="startTimeMs")
    last_file_copied_time_ms: int = Field(..., alias="lastFileCopiedTimeMs")
    node_name: str = Field(..., alias="nodeName")
    checksum: Optional[str] = None
    end_of_log: int = Field(..., alias="endOfLog")
    is_master: bool = Field(..., alias="isMaster")
    is_complete: bool = Field(..., alias="isComplete")
    snapshot_files: Dict[str, ManifestFileInfo] = Field(..., alias="snapshotFiles")
    erased_files: Dict[str, ManifestFileInfo] = Field(..., alias="erasedFiles")

    @property
    def sequence_number(self) -> int:
        return self.sequence

    @property
    def checksum_format_version(self) -> int:
        return self.version

    @property
    def is_admin(self) -> bool:
        return not self.node_name.startswith("rg")

    @property
    def full_node_name(self) -> str:
        """Node name as used in topology: ``admin<id>`` or ``rgX-rnY``."""
        if self.is_admin and not self.node_name.startswith(ADMIN_SHARD):
            return ADMIN_SHARD + self.node_name
        return self.node_name

    @classmethod
    def from_json(cls, content: bytes) -> 'ManifestRecord':
        """Deserialize a manifest document.

        Raises:
            ManifestFormatError: If the document is not valid JSON or misses
                a required field
        """
        try:
            return cls.model_validate(json.loads(content))
        except (ValueError, ValidationError) as e:
            raise ManifestFormatError(f"Invalid manifest document: {e}") from e

    def resolve_checksum_alg(self, info: ManifestFileInfo) -> str:
        """Return the checksum algorithm used for one file.

        Version 1 manifests do not record the algorithm, so it is derived
        from the digest length. Only SHA-1 and SHA-256 are distinguishable.
        """
        if self.version >= 2 and info.checksum_alg:
            return info.checksum_alg
        length = len(info.checksum)
        if length == SHA_256_CHECKSUMALG_LENGTH:
            return SHA_256_CHECKSUMALG
        if length == SHA_1_CHECKSUMALG_LENGTH:
            return SHA_1_CHECKSUMALG
        raise ManifestFormatError(
            f"Checksum with length {length} is not valid for either of the "
            f"SHA-1 and SHA-256 algorithms supported for scheduled backups"
        )

    def log_file_entries(self, base_dir: str, store_name: str) -> List[LogFileEntry]:
        """Build the ordered log segment list for this node.

        Each file path is rebuilt from the snapshot recorded for that file,
        which may be older than the manifest's own bucket.
        """
        entries = []
        for file_name in sorted(self.snapshot_files):
            info = self.snapshot_files[file_name]
            node_name = info.node_name or self.node_name
            snapshot = info.snapshot or self.snapshot

            file_path = f"{base_dir.rstrip('/')}/{store_name}/"
            if node_name.startswith("rg"):
                shard, _, node = node_name.partition("-")
                file_path += f"{shard}/{node}/"
            elif node_name.startswith(ADMIN_SHARD):
                file_path += f"{node_name}/"
            else:
                file_path += f"{ADMIN_SHARD}{node_name}/"
            file_path += f"{snapshot}/{file_name}"

            entries.append(LogFileEntry(
                file_name=file_name,
                file_path=file_path,
                checksum=info.checksum,
                checksum_alg=self.resolve_checksum_alg(info),
                encryption_alg=info.encryption_alg,
                compression_alg=info.compression_alg,
            ))
        return entries


class WinnerSelection(_CamelModel):
    """The elected node of one shard and the segments to restore from it."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    winner_node: str = Field(..., alias="winnerNode")
    jdb_files_list: List[LogFileEntry] = Field(default_factory=list, alias="jdbFilesList")
    record: Optional[ManifestRecord] = Field(None, exclude=True)

    @property
    def entries(self) -> List[LogFileEntry]:
        return self.jdb_files_list


class RequiredFilesManifest(BaseModel):
    """Per-store interchange document: shard name to winner selection."""

    model_config = ConfigDict(frozen=True)

    store_name: str
    shards: Dict[str, WinnerSelection]

    def to_document(self) -> Dict[str, dict]:
        return {
            shard_name: self.shards[shard_name].model_dump(by_alias=True)
            for shard_name in sorted(self.shards)
        }

    def to_json(self) -> str:
        return json.dumps(self.to_document(), indent=2, sort_keys=True) + "\n"

    @classmethod
    def from_document(cls, store_name: str, document: Dict[str, dict]) -> 'RequiredFilesManifest':
        try:
            shards = {
                shard_name: WinnerSelection.model_validate(value)
                for shard_name, value in document.items()
            }
        except (ValidationError, AttributeError) as e:
            raise ManifestFormatError(f"Invalid required files document for {store_name}: {e}") from e
        return cls(store_name=store_name, shards=shards)

    @classmethod
    def from_file(cls, path: Path) -> 'RequiredFilesManifest':
        """Load ``<store>_requiredfiles.json``."""
        path = Path(path)
        store_name = path.name
        if store_name.endswith(REQUIRED_FILES_SUFFIX):
            store_name = store_name[:-len(REQUIRED_FILES_SUFFIX)]
        try:
            with open(path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except ValueError as e:
            raise ConfigurationError(f"Required files {path} is not a valid JSON document: {e}") from e
        if not isinstance(document, dict):
            raise ConfigurationError(f"Expected a JSON object in {path}")
        return cls.from_document(store_name, document)


class ArtRecord(_CamelModel):
    """The single actual-recovery-time value of a run."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    art_value: str = Field(..., alias="ARTValue")


class CopyStatus(str, Enum):
    PENDING = "pending"
    RETRYING = "retrying"
    VERIFIED = "verified"
    FATAL = "fatal"


class CopyTask(BaseModel):
    """One log segment copy and its lifecycle."""

    entry: LogFileEntry
    destination: Path
    status: CopyStatus = CopyStatus.PENDING
    attempts: int = 0
    archive_checksum: Optional[str] = None
    local_checksum: Optional[str] = None
    error: Optional[str] = None
