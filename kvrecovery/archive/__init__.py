"""Backup archive implementations."""

from typing import TYPE_CHECKING

from ..config import RecoveryConfig
from ..exceptions import ConfigurationError
from .base import BaseArchiveCopy, compute_checksum, MANIFEST_FILE_NAME

# Type checking imports (no runtime cost)
if TYPE_CHECKING:
    from .filesystem import FilesystemArchiveCopy
    from .s3 import S3ArchiveCopy


def get_archive_copy(config: RecoveryConfig) -> BaseArchiveCopy:
    """Factory function to get the archive implementation named by the config.

    Args:
        config: Recovery configuration carrying the copy implementation id

    Returns:
        Archive copy instance
    """
    if config.copy_impl == "filesystem":
        from .filesystem import FilesystemArchiveCopy
        return FilesystemArchiveCopy(config)
    elif config.copy_impl == "s3":
        from .s3 import S3ArchiveCopy
        return S3ArchiveCopy(config)
    else:
        raise ConfigurationError(f"Unknown copy implementation: {config.copy_impl}")


__all__ = [
    "BaseArchiveCopy",
    "compute_checksum",
    "get_archive_copy",
    "MANIFEST_FILE_NAME",
]
