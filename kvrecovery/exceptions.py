"""Error taxonomy for recovery runs."""

from typing import List, Optional, Tuple


class RecoveryError(Exception):
    """Base exception for recovery operations."""
    pass


class ConfigurationError(RecoveryError):
    """Missing or invalid arguments, config keys or input files."""
    pass


class TransientIOError(RecoveryError):
    """Archive temporarily unreachable; safe to retry."""
    pass


class ManifestFormatError(RecoveryError):
    """A manifest document or archive path does not follow the expected format."""
    pass


class IntegrityError(RecoveryError):
    """Checksum mismatch between archive, manifest and local copy.

    Never retried: the source is already corrupted or mismatched.
    """

    def __init__(
        self,
        path: str,
        expected: Optional[str],
        actual: Optional[str],
        stage: str,
    ):
        self.path = path
        self.expected = expected
        self.actual = actual
        self.stage = stage
        super().__init__(
            f"Checksum mismatch for {path} ({stage}): "
            f"expected {expected}, found {actual}"
        )


class NoConsistentRecoveryPointError(RecoveryError):
    """No bucket in the searched range has a complete backup for every shard."""

    def __init__(
        self,
        base_path: str,
        target: str,
        oldest_bucket: Optional[str] = None,
    ):
        self.base_path = base_path
        self.target = target
        self.oldest_bucket = oldest_bucket
        searched = f"[{oldest_bucket}, {target}]" if oldest_bucket else f"[<none>, {target}]"
        super().__init__(
            f"Could not reach an actual recovery time across stores based on "
            f"backups available under {base_path} for target recovery time "
            f"{target}; searched range {searched}"
        )


class UnitFailedError(RecoveryError):
    """One or more independent units of work failed during an executor run."""

    def __init__(self, failures: List[Tuple[str, BaseException]]):
        self.failures = failures
        unit_id, first = failures[0]
        others = len(failures) - 1
        suffix = f" (and {others} more failed unit(s))" if others else ""
        super().__init__(f"Recovery of {unit_id} failed: {first}{suffix}")

    @property
    def first_error(self) -> BaseException:
        return self.failures[0][1]
