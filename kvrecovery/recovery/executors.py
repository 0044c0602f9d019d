"""Restore winner nodes' log segments into local directories.

Each unit of work (one store for admin recovery, one locally hosted node for
storage node recovery) runs in isolation: a fault is logged and recorded in
the run result and sibling units carry on. The run fails afterwards if any
unit failed.
"""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Union

from .._utils import logger, make_dir
from ..exceptions import ManifestFormatError, UnitFailedError
from .copier import RetryingFileCopier
from .models import ADMIN_SHARD, CopyTask, RequiredFilesManifest, WinnerSelection
from .placement import PlacementDescription

UnitWork = Callable[[List[CopyTask]], Awaitable[None]]


@dataclass
class UnitOutcome:
    unit_id: str
    tasks: List[CopyTask] = field(default_factory=list)
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class RecoveryRunResult:
    """Per-run aggregate of unit outcomes, in unit order."""
    outcomes: List[UnitOutcome] = field(default_factory=list)

    @property
    def failed_units(self) -> List[UnitOutcome]:
        return [o for o in self.outcomes if not o.succeeded]

    @property
    def first_error(self) -> Optional[BaseException]:
        failed = self.failed_units
        return failed[0].error if failed else None

    @property
    def succeeded(self) -> bool:
        return not self.failed_units

    @property
    def tasks(self) -> List[CopyTask]:
        return [task for outcome in self.outcomes for task in outcome.tasks]

    def raise_for_errors(self) -> None:
        failed = self.failed_units
        if failed:
            raise UnitFailedError([(o.unit_id, o.error) for o in failed]) from failed[0].error


class _UnitExecutor:
    """Runs units under a concurrency limit; 1 means strictly sequential."""

    def __init__(self, copier: RetryingFileCopier, max_concurrent: int = 1):
        if max_concurrent <= 0:
            raise ValueError(f"max_concurrent must be positive, got {max_concurrent}")
        self.copier = copier
        self.max_concurrent = max_concurrent

    async def _run_units(self, units: List[Tuple[str, UnitWork]]) -> RecoveryRunResult:
        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def run_one(unit_id: str, work: UnitWork) -> UnitOutcome:
            async with semaphore:
                outcome = UnitOutcome(unit_id=unit_id)
                try:
                    await work(outcome.tasks)
                except Exception as e:
                    logger.error(f"Recovery of {unit_id} failed: {e}")
                    outcome.error = e
                return outcome

        outcomes = await asyncio.gather(*(run_one(unit_id, work) for unit_id, work in units))
        return RecoveryRunResult(outcomes=list(outcomes))

    async def _copy_node(self, winner: WinnerSelection, directory: Path, tasks: List[CopyTask]) -> None:
        """Copy a winner's segments into ``directory`` one after another.

        Tasks are appended before they run so a failed unit still reports
        which file went fatal.
        """
        make_dir(directory)
        for entry in winner.entries:
            task = CopyTask(entry=entry, destination=directory / entry.file_name)
            tasks.append(task)
            await self.copier.execute(task)
        logger.info(f"Copied {len(tasks)} file(s) of {winner.winner_node} into {directory}")


class AdminRecoveryExecutor(_UnitExecutor):
    """Restores each store's winning admin node under ``<output>/<adminX>/``."""

    def __init__(
        self,
        copier: RetryingFileCopier,
        output_dir: Union[str, Path],
        max_concurrent: int = 1,
    ):
        super().__init__(copier, max_concurrent)
        self.output_dir = Path(output_dir)

    def _unit(self, manifest: RequiredFilesManifest) -> UnitWork:
        async def work(tasks: List[CopyTask]) -> None:
            winner = manifest.shards.get(ADMIN_SHARD)
            if winner is None:
                raise ManifestFormatError(
                    f"Required files for store {manifest.store_name} have no {ADMIN_SHARD} shard entry"
                )
            await self._copy_node(winner, self.output_dir / winner.winner_node, tasks)
        return work

    async def run(self, manifests: Iterable[RequiredFilesManifest]) -> RecoveryRunResult:
        units = [(m.store_name, self._unit(m)) for m in sorted(manifests, key=lambda m: m.store_name)]
        logger.info(f"Recovering admin nodes of {len(units)} store(s) into {self.output_dir}")
        return await self._run_units(units)


class NodeRecoveryExecutor(_UnitExecutor):
    """Restores the winners hosted on one physical host.

    Replica nodes hosted by this host's storage nodes are restored into their
    ``storageDirEnvPath`` (and get their ``logDirPath`` created), followed by
    admins placed on the same storage nodes.
    """

    def __init__(
        self,
        copier: RetryingFileCopier,
        placement: PlacementDescription,
        hostname: str,
        max_concurrent: int = 1,
    ):
        super().__init__(copier, max_concurrent)
        self.placement = placement
        self.hostname = hostname

    def _winners_by_node(self, manifest: RequiredFilesManifest) -> Dict[str, WinnerSelection]:
        return {winner.winner_node: winner for winner in manifest.shards.values()}

    def plan(self, manifest: RequiredFilesManifest) -> List[Tuple[str, WinnerSelection, Path]]:
        """Locally hosted winners as (node id, winner, destination directory)."""
        winners = self._winners_by_node(manifest)
        local_sns = self.placement.local_storage_nodes(self.hostname)
        if not local_sns:
            logger.warning(f"No storage node in the placement description is hosted on {self.hostname}")

        plan = []
        for sn in local_sns:
            for rn in sn.rns:
                make_dir(rn.storage_dir_env_path)
                if rn.log_dir_path is not None:
                    make_dir(rn.log_dir_path)
                winner = winners.get(rn.resource_id)
                if winner is not None:
                    plan.append((rn.resource_id, winner, Path(rn.storage_dir_env_path)))

        sn_ids = [sn.resource_id for sn in local_sns]
        for admin in self.placement.local_admins(sn_ids):
            make_dir(admin.storage_dir_env_path)
            winner = winners.get(admin.admin_id)
            if winner is not None:
                plan.append((admin.admin_id, winner, Path(admin.storage_dir_env_path)))
        return plan

    async def run(self, manifest: RequiredFilesManifest) -> RecoveryRunResult:
        plan = self.plan(manifest)
        logger.info(
            f"Recovering {len(plan)} winner node(s) of store {manifest.store_name} "
            f"hosted on {self.hostname}"
        )

        def unit(winner: WinnerSelection, directory: Path) -> UnitWork:
            async def work(tasks: List[CopyTask]) -> None:
                await self._copy_node(winner, directory, tasks)
            return work

        return await self._run_units([(node_id, unit(winner, directory)) for node_id, winner, directory in plan])
