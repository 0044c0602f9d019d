"""Archive stored on a local or mounted filesystem."""

import asyncio
import os
from pathlib import Path
from typing import List, Optional

from .._utils import logger
from ..exceptions import ConfigurationError, TransientIOError
from .base import BaseArchiveCopy, MANIFEST_FILE_NAME, CHUNK_SIZE, new_hasher


class FilesystemArchiveCopy(BaseArchiveCopy):
    """Archive rooted in a directory tree, e.g. an NFS mount of the object store."""

    name = "filesystem"

    async def list_files(self, base_path: str, manifests_only: bool = False) -> List[str]:
        base = Path(base_path)
        if not base.is_dir():
            raise ConfigurationError(f"Backup archive base path {base_path} is not reachable")
        try:
            return await asyncio.to_thread(self._walk, base, manifests_only)
        except OSError as e:
            raise TransientIOError(f"Failed to list files under {base_path}: {e}") from e

    @staticmethod
    def _walk(base: Path, manifests_only: bool) -> List[str]:
        paths = []
        for dirpath, dirnames, filenames in os.walk(base):
            dirnames.sort()
            for filename in sorted(filenames):
                if manifests_only and filename != MANIFEST_FILE_NAME:
                    continue
                paths.append(os.path.join(dirpath, filename))
        return paths

    async def copy(
        self,
        source: str,
        destination: Path,
        checksum_alg: Optional[str] = None,
    ) -> Optional[str]:
        logger.debug(f"Copying {source} to {destination}")
        try:
            return await asyncio.to_thread(self._copy, Path(source), Path(destination), checksum_alg)
        except OSError as e:
            raise TransientIOError(f"Failed to copy {source} to {destination}: {e}") from e

    @staticmethod
    def _copy(source: Path, destination: Path, checksum_alg: Optional[str]) -> Optional[str]:
        hasher = new_hasher(checksum_alg) if checksum_alg else None
        with open(source, "rb") as src, open(destination, "wb") as dst:
            for chunk in iter(lambda: src.read(CHUNK_SIZE), b""):
                if hasher is not None:
                    hasher.update(chunk)
                dst.write(chunk)
        return hasher.hexdigest() if hasher is not None else None
