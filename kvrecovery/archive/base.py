"""Base backup archive abstraction."""

import asyncio
import hashlib
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

from ..config import RecoveryConfig
from ..exceptions import ConfigurationError


MANIFEST_FILE_NAME = "manifest.json"
CHUNK_SIZE = 1024 * 1024

# Algorithm names as they appear in manifests, mapped to hashlib names
_HASHLIB_NAMES = {
    "SHA-1": "sha1",
    "SHA1": "sha1",
    "SHA-256": "sha256",
    "SHA256": "sha256",
    "SHA-512": "sha512",
    "MD5": "md5",
}

NO_ALGORITHM = "NONE"


def new_hasher(algorithm: str):
    """Return a hashlib object for a manifest algorithm name."""
    name = _HASHLIB_NAMES.get(algorithm.upper())
    if name is None:
        raise ConfigurationError(f"Unsupported checksum algorithm: {algorithm}")
    return hashlib.new(name)


def compute_checksum(file_path: Path, algorithm: str) -> str:
    """Compute the hex checksum of a local file.

    Args:
        file_path: Path to file
        algorithm: Manifest algorithm name, e.g. ``SHA-1`` or ``SHA-256``

    Returns:
        Lower-case hex digest
    """
    hasher = new_hasher(algorithm)
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


class BaseArchiveCopy(ABC):
    """Read-only access to the backup archive.

    Implementations translate their library errors into ``TransientIOError``
    for conditions worth retrying and ``ConfigurationError`` when the archive
    location itself is unusable. The archive is never mutated.
    """

    name: str = ""

    def __init__(self, config: RecoveryConfig):
        self.config = config

    @abstractmethod
    async def list_files(self, base_path: str, manifests_only: bool = False) -> List[str]:
        """Enumerate archive paths under ``base_path``.

        Args:
            base_path: Absolute archive path to list recursively
            manifests_only: Only return manifest descriptor paths

        Returns:
            Archive paths in the same absolute form as ``base_path``

        Raises:
            ConfigurationError: If the base path is unreachable
            TransientIOError: If listing failed for a retryable reason
        """
        pass

    @abstractmethod
    async def copy(
        self,
        source: str,
        destination: Path,
        checksum_alg: Optional[str] = None,
    ) -> Optional[str]:
        """Copy one archive object to a local file.

        Args:
            source: Absolute archive path
            destination: Local file to write
            checksum_alg: Algorithm to compute over the bytes read from the
                archive, or None to skip checksumming

        Returns:
            Hex checksum of the archive bytes, or None if ``checksum_alg`` is None

        Raises:
            TransientIOError: If the copy failed for a retryable reason
        """
        pass

    async def checksum(self, path: Path, algorithm: str) -> str:
        """Recompute the checksum of a local file."""
        return await asyncio.to_thread(compute_checksum, Path(path), algorithm)

    def validate_algorithms(self, encryption_alg: str, compression_alg: str) -> None:
        """Reject segment encodings this archive cannot decode."""
        if encryption_alg.upper() != NO_ALGORITHM:
            raise ConfigurationError(
                f"{self.name} archive does not support encryption algorithm {encryption_alg}"
            )
        if compression_alg.upper() != NO_ALGORITHM:
            raise ConfigurationError(
                f"{self.name} archive does not support compression algorithm {compression_alg}"
            )
