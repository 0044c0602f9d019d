"""Configuration management for kv-recovery."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Union

from .exceptions import ConfigurationError


RECOVERY_COPY_CLASS_KEY = "recoveryCopyClass"
BASEDIR_KEY = "backupDirPath"

# Copy implementation identifiers and the aliases accepted for them
COPY_IMPLEMENTATIONS = {
    "filesystem": "filesystem",
    "fs": "filesystem",
    "local": "filesystem",
    "com.sleepycat.je.RecoverArchiveFSCopy": "filesystem",
    "s3": "s3",
    "objectstorage": "s3",
    "oracle.nosql.objectstorage.backup.BackupObjectStorageCopy": "s3",
}


def load_properties(path: Union[str, Path]) -> Dict[str, str]:
    """Parse a flat key/value properties file.

    Supports ``#`` and ``!`` comments, ``=`` or ``:`` separators and
    surrounding whitespace. Later keys override earlier ones.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Specified input config file {path} does not exist")

    props: Dict[str, str] = {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            lines = f.readlines()
    except UnicodeDecodeError as e:
        raise ConfigurationError(f"Config file {path} is not valid UTF-8 text: {e}") from e

    for lineno, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line or line[0] in "#!":
            continue
        # split on the first unescaped separator
        idx = min(
            (i for i in (line.find("="), line.find(":")) if i >= 0),
            default=-1,
        )
        if idx < 0:
            raise ConfigurationError(
                f"Malformed line {lineno} in config file {path}: {raw.rstrip()}"
            )
        key = line[:idx].strip()
        value = line[idx + 1:].strip()
        if not key:
            raise ConfigurationError(f"Empty key on line {lineno} in config file {path}")
        props[key] = value
    return props


def _optional_float(props: Dict[str, str], key: str, default: Optional[float]) -> Optional[float]:
    value = props.pop(key, None)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{key} must be numeric, got {value!r}") from None


def _optional_int(props: Dict[str, str], key: str, default: Optional[int]) -> Optional[int]:
    value = props.pop(key, None)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {value!r}") from None


@dataclass(frozen=True)
class RetryConfig:
    """Backoff configuration for transient archive faults.

    ``max_attempts`` and ``max_elapsed`` default to None, which retries
    forever. Operators are expected to intervene on persistent faults.
    """
    initial_wait: float = 1.0
    max_wait: float = 3600.0
    max_attempts: Optional[int] = None
    max_elapsed: Optional[float] = None

    @classmethod
    def from_env(cls) -> 'RetryConfig':
        """Create config from environment variables."""
        max_attempts = os.getenv("KVRECOVERY_RETRY_MAX_ATTEMPTS")
        max_elapsed = os.getenv("KVRECOVERY_RETRY_MAX_ELAPSED")
        return cls(
            initial_wait=float(os.getenv("KVRECOVERY_RETRY_INITIAL_WAIT", "1.0")),
            max_wait=float(os.getenv("KVRECOVERY_RETRY_MAX_WAIT", "3600.0")),
            max_attempts=int(max_attempts) if max_attempts else None,
            max_elapsed=float(max_elapsed) if max_elapsed else None,
        )

    def __post_init__(self):
        """Validate configuration."""
        if self.initial_wait < 0:
            raise ConfigurationError(f"initial_wait must be non-negative, got {self.initial_wait}")
        if self.max_wait < self.initial_wait:
            raise ConfigurationError(
                f"max_wait must be >= initial_wait, got {self.max_wait} < {self.initial_wait}"
            )
        if self.max_attempts is not None and self.max_attempts <= 0:
            raise ConfigurationError(f"max_attempts must be positive, got {self.max_attempts}")
        if self.max_elapsed is not None and self.max_elapsed <= 0:
            raise ConfigurationError(f"max_elapsed must be positive, got {self.max_elapsed}")


@dataclass(frozen=True)
class RecoveryConfig:
    """Settings shared by the recovery subcommands."""
    copy_impl: str = "filesystem"
    base_dir: Optional[str] = None
    retry: RetryConfig = field(default_factory=RetryConfig)
    max_concurrent_units: int = 1

    # S3 specific settings
    s3_bucket: Optional[str] = None
    s3_region: Optional[str] = None
    s3_endpoint_url: Optional[str] = None
    s3_prefix: str = ""

    # Unrecognised keys, handed to the archive implementation
    extra: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_properties(
        cls,
        props: Dict[str, str],
        require_base_dir: bool = False,
    ) -> 'RecoveryConfig':
        """Create config from parsed properties."""
        props = dict(props)

        copy_class = props.pop(RECOVERY_COPY_CLASS_KEY, None)
        if not copy_class:
            raise ConfigurationError(f"{RECOVERY_COPY_CLASS_KEY} missing from config: {sorted(props)}")
        if copy_class not in COPY_IMPLEMENTATIONS:
            raise ConfigurationError(
                f"Illegal {RECOVERY_COPY_CLASS_KEY} argument: {copy_class}. "
                f"Available: {sorted(set(COPY_IMPLEMENTATIONS.values()))}"
            )

        base_dir = props.pop(BASEDIR_KEY, None) or None
        if require_base_dir and base_dir is None:
            raise ConfigurationError(f"{BASEDIR_KEY} missing from config")

        retry = RetryConfig(
            initial_wait=_optional_float(props, "retryInitialWaitSeconds", 1.0),
            max_wait=_optional_float(props, "retryMaxWaitSeconds", 3600.0),
            max_attempts=_optional_int(props, "retryMaxAttempts", None),
            max_elapsed=_optional_float(props, "retryMaxElapsedSeconds", None),
        )

        return cls(
            copy_impl=COPY_IMPLEMENTATIONS[copy_class],
            base_dir=base_dir,
            retry=retry,
            max_concurrent_units=_optional_int(props, "maxConcurrentUnits", 1),
            s3_bucket=props.pop("s3Bucket", None),
            s3_region=props.pop("s3Region", None),
            s3_endpoint_url=props.pop("s3EndpointUrl", None),
            s3_prefix=props.pop("s3Prefix", ""),
            extra=props,
        )

    @classmethod
    def from_file(cls, path: Union[str, Path], require_base_dir: bool = False) -> 'RecoveryConfig':
        """Create config from a properties file."""
        return cls.from_properties(load_properties(path), require_base_dir=require_base_dir)

    @classmethod
    def from_env(cls) -> 'RecoveryConfig':
        """Create config from environment variables."""
        return cls(
            copy_impl=COPY_IMPLEMENTATIONS.get(
                os.getenv("KVRECOVERY_COPY_CLASS", "filesystem"), "unknown"
            ),
            base_dir=os.getenv("KVRECOVERY_BACKUP_DIR"),
            retry=RetryConfig.from_env(),
            max_concurrent_units=int(os.getenv("KVRECOVERY_MAX_CONCURRENT_UNITS", "1")),
            s3_bucket=os.getenv("KVRECOVERY_S3_BUCKET"),
            s3_region=os.getenv("AWS_REGION"),
            s3_endpoint_url=os.getenv("KVRECOVERY_S3_ENDPOINT_URL"),
            s3_prefix=os.getenv("KVRECOVERY_S3_PREFIX", ""),
        )

    def __post_init__(self):
        """Validate configuration."""
        if self.copy_impl not in set(COPY_IMPLEMENTATIONS.values()):
            raise ConfigurationError(f"Unknown copy implementation: {self.copy_impl}")
        if self.base_dir is not None and not self.base_dir.startswith("/"):
            raise ConfigurationError(
                f"The {BASEDIR_KEY}: {self.base_dir} path must be an absolute pathname"
            )
        if self.max_concurrent_units <= 0:
            raise ConfigurationError(
                f"max_concurrent_units must be positive, got {self.max_concurrent_units}"
            )
        if self.copy_impl == "s3" and not self.s3_bucket:
            raise ConfigurationError("s3Bucket is required for the s3 copy implementation")
