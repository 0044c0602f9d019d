"""Archive path grammar.

Backups land in the archive as::

    <base>/<store>/admin<id>/<bucket>/<file>
    <base>/<store>/<rgX>/<rnY>/<bucket>/<file>

Two flat forms are also accepted, ``<base>/<store>/<id>/<bucket>/<file>`` for
admins and ``<base>/<store>/<rgX-rnY>/<bucket>/<file>`` for replica nodes.
"""

import re
from dataclasses import dataclass

from .._utils import is_valid_timestamp
from ..exceptions import ManifestFormatError
from .models import ADMIN_SHARD

_ADMIN_DIR = re.compile(r"^admin([0-9]+)$")
_ADMIN_ID = re.compile(r"^[0-9]+$")
_SHARD_DIR = re.compile(r"^rg[0-9]+$")
_NODE_DIR = re.compile(r"^rn[0-9]+$")
_FLAT_NODE_DIR = re.compile(r"^(rg[0-9]+)-(rn[0-9]+)$")


@dataclass(frozen=True)
class ArchiveLocation:
    """Structured identity of one object in the archive."""
    path: str
    store_name: str
    shard_name: str
    node_name: str
    bucket: str
    file_name: str

    @property
    def is_admin(self) -> bool:
        return self.shard_name == ADMIN_SHARD

    @property
    def shard_key(self):
        return (self.store_name, self.shard_name)


def parse_archive_path(path: str, base_dir: str) -> ArchiveLocation:
    """Split an archive path into store, shard, node, bucket and file name.

    Raises:
        ManifestFormatError: If the path is outside ``base_dir`` or does not
            follow the archive path convention
    """
    prefix = base_dir.rstrip("/") + "/"
    if not path.startswith(prefix):
        raise ManifestFormatError(f"Path {path} is not under base directory {base_dir}")

    parts = path[len(prefix):].split("/")
    if any(part == "" for part in parts):
        raise ManifestFormatError(f"Empty path component in {path}")

    if len(parts) == 4:
        store_name, node_dir, bucket, file_name = parts
        admin = _ADMIN_DIR.match(node_dir)
        flat = _FLAT_NODE_DIR.match(node_dir)
        if admin:
            shard_name, node_name = ADMIN_SHARD, node_dir
        elif _ADMIN_ID.match(node_dir):
            shard_name, node_name = ADMIN_SHARD, ADMIN_SHARD + node_dir
        elif flat:
            shard_name, node_name = flat.group(1), node_dir
        else:
            raise ManifestFormatError(f"Invalid node name {node_dir} in archive path {path}")
    elif len(parts) == 5:
        store_name, shard_dir, node_dir, bucket, file_name = parts
        if not (_SHARD_DIR.match(shard_dir) and _NODE_DIR.match(node_dir)):
            raise ManifestFormatError(
                f"Invalid replica node {shard_dir}/{node_dir} in archive path {path}"
            )
        shard_name, node_name = shard_dir, f"{shard_dir}-{node_dir}"
    else:
        raise ManifestFormatError(f"Archive path {path} does not follow the backup path convention")

    if not is_valid_timestamp(bucket):
        raise ManifestFormatError(f"Invalid bucket timestamp {bucket} in archive path {path}")

    return ArchiveLocation(
        path=path,
        store_name=store_name,
        shard_name=shard_name,
        node_name=node_name,
        bucket=bucket,
        file_name=file_name,
    )
