"""Command line front end: ``kv-recovery <subcommand> ...``.

Exit status is 0 on success, 1 on an operational failure and 2 on a usage
or configuration error.
"""

import argparse
import asyncio
import sys
import traceback
from pathlib import Path
from typing import List, Optional

from ._utils import logger, configure_logging
from .archive import get_archive_copy
from .config import RecoveryConfig
from .exceptions import ConfigurationError, RecoveryError
from .recovery.config_regen import ConfigRegenerator, JsonExportAdminReader
from .recovery.copier import RetryingFileCopier
from .recovery.emitter import RequiredFilesEmitter, load_bundle
from .recovery.executors import AdminRecoveryExecutor, NodeRecoveryExecutor
from .recovery.models import RequiredFilesManifest
from .recovery.placement import PlacementDescription
from .recovery.scanner import BackupIndexScanner
from .recovery.selector import RecoveryPointSelector

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


def _absolute_path(label: str, suffix: Optional[str] = None):
    def convert(value: str) -> Path:
        if value == "":
            raise argparse.ArgumentTypeError(f"{label} must not be empty")
        if not value.startswith("/"):
            raise argparse.ArgumentTypeError(f"{label} must be an absolute path")
        if suffix and not value.endswith(suffix):
            raise argparse.ArgumentTypeError(f"{label} must end with '{suffix}'")
        return Path(value)
    return convert


def _non_empty(label: str):
    def convert(value: str) -> str:
        if not value.strip():
            raise argparse.ArgumentTypeError(f"{label} must not be empty")
        return value
    return convert


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-debug", action="store_true", help="Verbose logging and tracebacks")


def _add_config(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-config", required=True, type=_absolute_path("Config file path name"),
                        help="Recovery properties file")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kv-recovery",
        description="Point-in-time recovery of sharded key-value stores from archived backups",
        allow_abbrev=False,
    )
    subparsers = parser.add_subparsers(dest="command", required=True, metavar="command")

    art = subparsers.add_parser(
        "artrequiredfiles",
        aliases=["search-for-recovery-point"],
        help="Find the actual recovery time and emit the required files bundle",
        allow_abbrev=False,
    )
    art.add_argument("-targetRecoveryTime", required=True, metavar="YYMMDDHH",
                     help="Latest acceptable recovery time")
    _add_config(art)
    art.add_argument("-target", required=True, type=_absolute_path("Target path", ".zip"),
                     help="Output bundle (.zip)")
    _add_common(art)
    art.set_defaults(handler=search_for_recovery_point)

    admin = subparsers.add_parser(
        "adminrecover",
        aliases=["recover-admin-metadata"],
        help="Copy winner admin node files for every store",
        allow_abbrev=False,
    )
    _add_config(admin)
    admin.add_argument("-requiredfiles", required=True,
                       type=_absolute_path("RequiredFiles directory path"),
                       help="Directory of *_requiredfiles.json files, or the bundle zip")
    admin.add_argument("-target", required=True, type=_absolute_path("Target path"),
                       help="Output directory")
    _add_common(admin)
    admin.set_defaults(handler=recover_admin_metadata)

    sn = subparsers.add_parser(
        "snrecover",
        aliases=["recover-storage-node"],
        help="Copy winner nodes hosted on this storage node",
        allow_abbrev=False,
    )
    _add_config(sn)
    sn.add_argument("-requiredfile", required=True, type=_absolute_path("RequiredFile path"),
                    help="Required files json of one store")
    sn.add_argument("-topologyfile", required=True, type=_absolute_path("Topology output file path"),
                    help="Placement description json")
    sn.add_argument("-hostname", required=True, type=_non_empty("Hostname"),
                    help="Address of the local storage node")
    _add_common(sn)
    sn.set_defaults(handler=recover_storage_node)

    regen = subparsers.add_parser(
        "recoverconfig",
        aliases=["regenerate-config-from-admin-database"],
        help="Rebuild storage node configuration from the admin database",
        allow_abbrev=False,
    )
    regen.add_argument("-input", required=True, type=_absolute_path("Input directory"),
                       help="Admin database directory")
    regen.add_argument("-target", required=True, type=_absolute_path("Target path", ".zip"),
                       help="Output bundle (.zip)")
    _add_common(regen)
    regen.set_defaults(handler=regenerate_config)

    return parser


async def search_for_recovery_point(args: argparse.Namespace) -> str:
    config = RecoveryConfig.from_file(args.config, require_base_dir=True)
    archive = get_archive_copy(config)
    index = await BackupIndexScanner(archive).scan(config.base_dir, args.targetRecoveryTime)
    selection = await RecoveryPointSelector(RetryingFileCopier(archive)).select(index)
    target = RequiredFilesEmitter().emit(selection, args.target)
    return f"Actual recovery time {selection.art}; required files written to {target}"


async def recover_admin_metadata(args: argparse.Namespace) -> str:
    config = RecoveryConfig.from_file(args.config)
    bundle = load_bundle(args.requiredfiles)
    archive = get_archive_copy(config)
    executor = AdminRecoveryExecutor(
        RetryingFileCopier(archive), args.target, max_concurrent=config.max_concurrent_units
    )
    result = await executor.run(bundle.manifests.values())
    result.raise_for_errors()
    return f"Admin node files for {len(result.outcomes)} store(s) copied to {args.target}"


async def recover_storage_node(args: argparse.Namespace) -> str:
    config = RecoveryConfig.from_file(args.config)
    if not args.requiredfile.is_file():
        raise ConfigurationError(f"Specified required json file {args.requiredfile} does not exist")
    manifest = RequiredFilesManifest.from_file(args.requiredfile)
    placement = PlacementDescription.from_file(args.topologyfile)
    archive = get_archive_copy(config)
    executor = NodeRecoveryExecutor(
        RetryingFileCopier(archive), placement, args.hostname,
        max_concurrent=config.max_concurrent_units,
    )
    result = await executor.run(manifest)
    result.raise_for_errors()
    return f"{len(result.outcomes)} winner node(s) of store {manifest.store_name} recovered on {args.hostname}"


async def regenerate_config(args: argparse.Namespace) -> str:
    target = ConfigRegenerator(JsonExportAdminReader(args.input)).generate(args.target)
    return f"Recovered configuration written to {target}"


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return EXIT_USAGE if e.code else EXIT_OK

    configure_logging(args.debug)
    try:
        message = asyncio.run(args.handler(args))
    except ConfigurationError as e:
        print(f"{args.command}: invalid configuration: {e}", file=sys.stderr)
        if args.debug:
            traceback.print_exc()
        return EXIT_USAGE
    except (RecoveryError, OSError) as e:
        cause = e.__cause__ or e.__context__
        detail = f": {cause}" if cause is not None and str(cause) not in str(e) else ""
        print(f"{args.command} failed: {e}{detail}", file=sys.stderr)
        if args.debug:
            traceback.print_exc()
        return EXIT_FAILURE

    logger.info(message)
    print(message)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
