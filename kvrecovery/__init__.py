from .config import RecoveryConfig, RetryConfig
from .exceptions import (
    RecoveryError,
    ConfigurationError,
    TransientIOError,
    IntegrityError,
    NoConsistentRecoveryPointError,
    ManifestFormatError,
    UnitFailedError,
)

__version__ = "0.3.0"
__author__ = "kv-recovery maintainers"
__url__ = "https://github.com/kv-recovery/kv-recovery"

__all__ = [
    "RecoveryConfig",
    "RetryConfig",
    "RecoveryError",
    "ConfigurationError",
    "TransientIOError",
    "IntegrityError",
    "NoConsistentRecoveryPointError",
    "ManifestFormatError",
    "UnitFailedError",
]
