from .models import (
    LogFileEntry,
    ManifestRecord,
    WinnerSelection,
    RequiredFilesManifest,
    ArtRecord,
    CopyStatus,
    CopyTask,
)
from .paths import ArchiveLocation, parse_archive_path
from .scanner import BackupIndex, BackupIndexScanner
from .election import WinnerNodeElector
from .copier import BackoffPolicy, RetryingFileCopier
from .selector import RecoverySelection, RecoveryPointSelector
from .emitter import RequiredFilesBundle, RequiredFilesEmitter, load_bundle
from .placement import PlacementDescription
from .executors import (
    AdminRecoveryExecutor,
    NodeRecoveryExecutor,
    RecoveryRunResult,
    UnitOutcome,
)
from .config_regen import AdminDatabaseReader, ConfigRegenerator, JsonExportAdminReader

__all__ = [
    "LogFileEntry",
    "ManifestRecord",
    "WinnerSelection",
    "RequiredFilesManifest",
    "ArtRecord",
    "CopyStatus",
    "CopyTask",
    "ArchiveLocation",
    "parse_archive_path",
    "BackupIndex",
    "BackupIndexScanner",
    "WinnerNodeElector",
    "BackoffPolicy",
    "RetryingFileCopier",
    "RecoverySelection",
    "RecoveryPointSelector",
    "RequiredFilesBundle",
    "RequiredFilesEmitter",
    "load_bundle",
    "PlacementDescription",
    "AdminRecoveryExecutor",
    "NodeRecoveryExecutor",
    "RecoveryRunResult",
    "UnitOutcome",
    "AdminDatabaseReader",
    "ConfigRegenerator",
    "JsonExportAdminReader",
]
