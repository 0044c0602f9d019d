"""Checksum-verified archive copy with capped exponential backoff."""

from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    stop_never,
    wait_exponential,
)

from .._utils import logger
from ..archive import BaseArchiveCopy
from ..config import RetryConfig
from ..exceptions import IntegrityError, TransientIOError
from .models import CopyStatus, CopyTask, LogFileEntry


@dataclass(frozen=True)
class BackoffPolicy:
    """How long to keep retrying transient archive faults.

    Waits are ``min(initial_wait * 2 ** (attempt - 1), max_wait)``. Without
    ``max_attempts`` or ``max_elapsed`` the policy retries forever and every
    retry is logged at warning level so the loop stays visible.
    """
    initial_wait: float = 1.0
    max_wait: float = 3600.0
    max_attempts: Optional[int] = None
    max_elapsed: Optional[float] = None
    sleep: Optional[Callable[[float], Awaitable[None]]] = None

    @classmethod
    def from_config(
        cls,
        config: RetryConfig,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> 'BackoffPolicy':
        return cls(
            initial_wait=config.initial_wait,
            max_wait=config.max_wait,
            max_attempts=config.max_attempts,
            max_elapsed=config.max_elapsed,
            sleep=sleep,
        )

    @property
    def unbounded(self) -> bool:
        return self.max_attempts is None and self.max_elapsed is None

    def retrying(self, description: str) -> AsyncRetrying:
        stop = stop_never
        if self.max_attempts is not None:
            stop = stop_after_attempt(self.max_attempts)
        if self.max_elapsed is not None:
            elapsed = stop_after_delay(self.max_elapsed)
            stop = elapsed if stop is stop_never else stop | elapsed

        def log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception()
            wait = retry_state.next_action.sleep if retry_state.next_action else 0
            bound = "forever" if self.unbounded else "until the retry bound is reached"
            logger.warning(
                f"{description} failed on attempt {retry_state.attempt_number}: {error}. "
                f"Retrying in {wait:.1f}s ({bound})"
            )

        kwargs = dict(
            stop=stop,
            wait=wait_exponential(multiplier=self.initial_wait, max=self.max_wait),
            retry=retry_if_exception_type(TransientIOError),
            before_sleep=log_retry,
            reraise=True,
        )
        if self.sleep is not None:
            kwargs["sleep"] = self.sleep
        return AsyncRetrying(**kwargs)


class RetryingFileCopier:
    """Copies archive objects to local files.

    Transient faults are retried per the backoff policy. Integrity faults are
    raised on first sight and never retried.
    """

    def __init__(self, archive: BaseArchiveCopy, policy: Optional[BackoffPolicy] = None):
        self.archive = archive
        self.policy = policy or BackoffPolicy.from_config(archive.config.retry)

    async def fetch(self, source: str, destination: Path) -> None:
        """Copy a small descriptor object without checksum verification."""
        await self.policy.retrying(f"Fetch of {source}")(
            self.archive.copy, source, Path(destination), None
        )

    async def copy(
        self,
        source: str,
        destination: Path,
        checksum_alg: str,
        task: Optional[CopyTask] = None,
    ) -> str:
        """Copy one object and return the checksum of the bytes read from the archive.

        Any file already at ``destination`` is removed before each attempt.
        When ``task`` is given its attempt count and status are kept current.
        """
        destination = Path(destination)

        async def attempt() -> str:
            if task is not None:
                task.attempts += 1
                if task.attempts > 1:
                    task.status = CopyStatus.RETRYING
            if destination.exists():
                destination.unlink()
            return await self.archive.copy(source, destination, checksum_alg)

        return await self.policy.retrying(f"Copy of {source}")(attempt)

    async def checksum(self, path: Path, algorithm: str) -> str:
        return await self.archive.checksum(Path(path), algorithm)

    async def copy_verified(self, entry: LogFileEntry, destination: Path) -> CopyTask:
        """Copy a log segment and check it against the manifest."""
        task = CopyTask(entry=entry, destination=Path(destination))
        return await self.execute(task)

    async def execute(self, task: CopyTask) -> CopyTask:
        """Drive one task to ``verified``, or mark it ``fatal`` and raise.

        The archive checksum, the recomputed local checksum and the
        manifest checksum must all agree.
        """
        entry = task.entry
        destination = task.destination

        try:
            self.archive.validate_algorithms(entry.encryption_alg, entry.compression_alg)
            destination.parent.mkdir(parents=True, exist_ok=True)
            task.archive_checksum = (
                await self.copy(entry.file_path, destination, entry.checksum_alg, task=task)
            ).lower()

            expected = entry.checksum.lower()
            if task.archive_checksum != expected:
                raise IntegrityError(entry.file_path, expected, task.archive_checksum, "archive")

            task.local_checksum = (await self.checksum(destination, entry.checksum_alg)).lower()
            if task.local_checksum != expected:
                raise IntegrityError(str(destination), expected, task.local_checksum, "local copy")
        except Exception as e:
            task.status = CopyStatus.FATAL
            task.error = str(e)
            raise

        task.status = CopyStatus.VERIFIED
        logger.debug(f"Verified {destination} ({entry.checksum_alg} {task.local_checksum})")
        return task
