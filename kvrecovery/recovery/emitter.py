"""Interchange bundle: per-store required-files manifests plus the ART record."""

import json
import os
import tempfile
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import ValidationError

from .._utils import logger
from ..exceptions import ConfigurationError, ManifestFormatError
from .models import ArtRecord, RequiredFilesManifest, REQUIRED_FILES_SUFFIX
from .selector import RecoverySelection

BUNDLE_DIR = "artrequiredfiles"
ART_FILE_NAME = "art.json"

# Zip entries carry a fixed timestamp so equal content gives equal bytes
_FIXED_DATE_TIME = (1980, 1, 1, 0, 0, 0)


def validate_zip_target(target: Union[str, Path]) -> Path:
    target = Path(target)
    if not target.is_absolute():
        raise ConfigurationError(f"Target path {target} must be an absolute path")
    if target.suffix != ".zip":
        raise ConfigurationError(f"Target path {target} must end with .zip")
    return target


def write_zip_bundle(entries: Dict[str, bytes], target: Path) -> Path:
    """Atomically write ``entries`` (archive name to content) to ``target``.

    Entries are stored in name order with fixed metadata. Any existing file at
    ``target`` is replaced.
    """
    target = Path(target)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", dir=target.parent)
    try:
        with os.fdopen(fd, "wb") as f, zipfile.ZipFile(f, "w", zipfile.ZIP_DEFLATED) as bundle:
            for name in sorted(entries):
                info = zipfile.ZipInfo(name, date_time=_FIXED_DATE_TIME)
                info.compress_type = zipfile.ZIP_DEFLATED
                info.external_attr = 0o644 << 16
                bundle.writestr(info, entries[name])
        os.replace(tmp_name, target)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    return target


def _art_json(art: str) -> str:
    return json.dumps(ArtRecord(art_value=art).model_dump(by_alias=True), indent=2, sort_keys=True) + "\n"


class RequiredFilesEmitter:
    """Serializes a ``RecoverySelection`` into the interchange bundle."""

    def build_manifests(self, selection: RecoverySelection) -> List[RequiredFilesManifest]:
        return [
            RequiredFilesManifest(store_name=store_name, shards=dict(selection.winners[store_name]))
            for store_name in sorted(selection.winners)
        ]

    def render(self, selection: RecoverySelection) -> Dict[str, bytes]:
        entries = {
            f"{BUNDLE_DIR}/{manifest.store_name}{REQUIRED_FILES_SUFFIX}": manifest.to_json().encode("utf-8")
            for manifest in self.build_manifests(selection)
        }
        entries[f"{BUNDLE_DIR}/{ART_FILE_NAME}"] = _art_json(selection.art).encode("utf-8")
        return entries

    def emit(self, selection: RecoverySelection, target: Union[str, Path]) -> Path:
        """Write the bundle zip, replacing any previous bundle at ``target``."""
        target = validate_zip_target(target)
        if target.exists():
            logger.info(f"Overwriting existing bundle {target}")
        write_zip_bundle(self.render(selection), target)
        logger.info(
            f"Required files for {len(selection.winners)} store(s) at "
            f"actual recovery time {selection.art} written to {target}"
        )
        return target


@dataclass(frozen=True)
class RequiredFilesBundle:
    """A bundle read back from disk."""
    manifests: Dict[str, RequiredFilesManifest] = field(default_factory=dict)
    art: Optional[str] = None


def _parse_document(name: str, content: bytes) -> dict:
    try:
        document = json.loads(content)
    except ValueError as e:
        raise ManifestFormatError(f"Invalid JSON in {name}: {e}") from e
    if not isinstance(document, dict):
        raise ManifestFormatError(f"Expected a JSON object in {name}")
    return document


def _bundle_from_entries(source: Path, entries: Dict[str, bytes]) -> RequiredFilesBundle:
    manifests = {}
    art = None
    for name in sorted(entries):
        if name != ART_FILE_NAME and not name.endswith(REQUIRED_FILES_SUFFIX):
            continue
        document = _parse_document(name, entries[name])
        if name == ART_FILE_NAME:
            try:
                art = ArtRecord.model_validate(document).art_value
            except ValidationError as e:
                raise ManifestFormatError(f"Invalid ART record in {source}: {e}") from e
        elif name.endswith(REQUIRED_FILES_SUFFIX):
            store_name = name[:-len(REQUIRED_FILES_SUFFIX)]
            manifests[store_name] = RequiredFilesManifest.from_document(store_name, document)
    if not manifests:
        raise ConfigurationError(f"No *{REQUIRED_FILES_SUFFIX} files found in {source}")
    return RequiredFilesBundle(manifests=manifests, art=art)


def load_bundle(source: Union[str, Path]) -> RequiredFilesBundle:
    """Read a bundle zip, an extracted bundle, or a directory of manifests."""
    source = Path(source)
    if not source.exists():
        raise ConfigurationError(f"Specified required json files directory {source} does not exist")

    entries: Dict[str, bytes] = {}
    if source.is_file():
        if not zipfile.is_zipfile(source):
            raise ConfigurationError(f"{source} is neither a directory nor a zip bundle")
        with zipfile.ZipFile(source) as bundle:
            for name in bundle.namelist():
                if name.endswith("/"):
                    continue
                entries[name.rsplit("/", 1)[-1]] = bundle.read(name)
    else:
        directory = source / BUNDLE_DIR if (source / BUNDLE_DIR).is_dir() else source
        for path in sorted(directory.glob("*.json")):
            entries[path.name] = path.read_bytes()

    bundle = _bundle_from_entries(source, entries)
    logger.debug(f"Loaded required files for stores {sorted(bundle.manifests)} from {source}")
    return bundle
