"""Rebuild storage node configuration from a recovered admin database.

The admin database is read through ``AdminDatabaseReader``. The bundled
reader consumes a JSON export of the database::

    parameters.json         globalParams, storageNodeParams, adminParams, repNodeParams
    topology.json           latest realized topology
    tableMetadata.json      optional, {"sequenceNumber": N}
    securityMetadata.json   optional, {"sequenceNumber": N}

The output bundle holds one ``kvroot_<snId>`` tree per storage node and the
placement description used by storage node recovery.
"""

import json
import re
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .._utils import logger
from ..exceptions import ConfigurationError
from .emitter import validate_zip_target, write_zip_bundle
from .placement import (
    AdminPlacement,
    AdminsPlacement,
    MetadataSequenceNumbers,
    PlacementDescription,
    ReplicaNodePlacement,
    ShardPlacement,
    StorageNodePlacement,
    TopologyPlacement,
    ZoneInfo,
    TOPOLOGY_OUTPUT_FILE_NAME,
)

OUTPUT_DIR = "recoverconfig"
CONFIG_FILE_NAME = "config.xml"
SECURITY_POLICY_FILE_NAME = "security.policy"
SECURITY_POLICY = "grant {\n    permission java.security.AllPermission;\n};\n"

PARAMETERS_FILE_NAME = "parameters.json"
TOPOLOGY_FILE_NAME = "topology.json"
TABLE_METADATA_FILE_NAME = "tableMetadata.json"
SECURITY_METADATA_FILE_NAME = "securityMetadata.json"

_RESOURCE_ID = re.compile(r"^([a-z]+)([0-9]+)$")


def resource_sort_key(resource_id: str):
    """Order ``sn2`` before ``sn10``."""
    match = _RESOURCE_ID.match(resource_id)
    if match:
        return (match.group(1), int(match.group(2)), "")
    return ("", 0, resource_id)


class AdminParameters(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    global_params: Dict[str, Any] = Field(default_factory=dict, alias="globalParams")
    storage_node_params: Dict[str, Dict[str, Any]] = Field(..., alias="storageNodeParams")
    admin_params: Dict[str, Dict[str, Any]] = Field(default_factory=dict, alias="adminParams")
    rep_node_params: Dict[str, Dict[str, Any]] = Field(default_factory=dict, alias="repNodeParams")


class StorageNodeRef(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    resource_id: str = Field(..., alias="resourceId")
    zone: Optional[str] = None


class TopologyExport(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    store_name: str = Field(..., alias="storeName")
    num_partitions: int = Field(0, alias="numPartitions")
    sequence_number: int = Field(0, alias="sequenceNumber")
    zns: List[ZoneInfo] = Field(default_factory=list)
    sns: List[StorageNodeRef] = Field(default_factory=list)
    shards: List[ShardPlacement] = Field(default_factory=list)


class AdminDatabaseReader(ABC):
    """Source of the parameters and topology stored by the admin service."""

    @abstractmethod
    def read_parameters(self) -> AdminParameters:
        pass

    @abstractmethod
    def read_topology(self) -> TopologyExport:
        pass

    @abstractmethod
    def read_sequence_numbers(self) -> MetadataSequenceNumbers:
        pass


class JsonExportAdminReader(AdminDatabaseReader):
    """Reads a JSON export of the admin database from a directory."""

    def __init__(self, directory: Union[str, Path]):
        directory = Path(directory)
        if not directory.is_absolute():
            raise ConfigurationError(f"Input directory {directory} must be an absolute path")
        if not directory.is_dir():
            raise ConfigurationError(f"Specified input directory {directory} does not exist")
        if not any(directory.iterdir()):
            raise ConfigurationError(f"Specified input directory {directory} is empty")
        self.directory = directory

    def _load(self, name: str, required: bool = True) -> Optional[Any]:
        path = self.directory / name
        if not path.is_file():
            if required:
                raise ConfigurationError(f"{name} not found in admin database directory {self.directory}")
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except ValueError as e:
            raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e

    def read_parameters(self) -> AdminParameters:
        try:
            return AdminParameters.model_validate(self._load(PARAMETERS_FILE_NAME))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid admin parameters in {self.directory}: {e}") from e

    def read_topology(self) -> TopologyExport:
        try:
            return TopologyExport.model_validate(self._load(TOPOLOGY_FILE_NAME))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid topology in {self.directory}: {e}") from e

    def read_sequence_numbers(self) -> MetadataSequenceNumbers:
        def sequence(name: str) -> int:
            document = self._load(name, required=False) or {}
            if not isinstance(document, dict):
                raise ConfigurationError(f"Expected a JSON object in {self.directory / name}")
            return _int_param(document.get("sequenceNumber", 0), "sequenceNumber", name)

        return MetadataSequenceNumbers(
            table_metadata=sequence(TABLE_METADATA_FILE_NAME),
            security_metadata=sequence(SECURITY_METADATA_FILE_NAME),
        )


def _int_param(value: Any, key: str, owner: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{key} of {owner} must be an integer, got {value!r}") from None


def _param_type(value: Any) -> str:
    if isinstance(value, bool):
        return "BOOLEAN"
    if isinstance(value, int):
        return "INT" if -2 ** 31 <= value < 2 ** 31 else "LONG"
    return "STRING"


def _param_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def render_config_xml(components: List[tuple]) -> bytes:
    """Serialize ``(name, type, params)`` components into a config.xml document."""
    root = ET.Element("config", {"version": "2"})
    for name, component_type, params in components:
        component = ET.SubElement(
            root, "component", {"name": name, "type": component_type, "validate": "true"}
        )
        for key in sorted(params):
            value = params[key]
            if value is None:
                continue
            ET.SubElement(component, "property", {
                "name": key,
                "value": _param_value(value),
                "type": _param_type(value),
            })
    ET.indent(root)
    return ET.tostring(root, encoding="utf-8", xml_declaration=True) + b"\n"


class ConfigRegenerator:
    """Produces the ``recoverconfig`` bundle from an admin database."""

    def __init__(self, reader: AdminDatabaseReader):
        self.reader = reader
        self.parameters = reader.read_parameters()
        self.topology = reader.read_topology()
        self.sequence_numbers = reader.read_sequence_numbers()

    def _sn_params(self, sn_id: str) -> Dict[str, Any]:
        params = self.parameters.storage_node_params.get(sn_id)
        if params is None:
            raise ConfigurationError(f"No storage node parameters for {sn_id}")
        for key in ("hostname", "rootDirPath"):
            if not params.get(key):
                raise ConfigurationError(f"Storage node parameter {key} missing for {sn_id}")
        return params

    def _sn_root(self, sn_id: str) -> str:
        return self._sn_params(sn_id)["rootDirPath"].rstrip("/")

    def _env_path(self, node_id: str, sn_id: str, storage_dir: Optional[str]) -> str:
        if storage_dir:
            return f"{storage_dir.rstrip('/')}/{node_id}/env"
        return f"{self._sn_root(sn_id)}/{self.topology.store_name}/{sn_id}/{node_id}/env"

    def _hosted_rns(self, sn_id: str) -> List[str]:
        return sorted(
            (rn.resource_id for shard in self.topology.shards for rn in shard.rns if rn.sn_id == sn_id),
            key=lambda rn_id: [resource_sort_key(part) for part in rn_id.split("-")],
        )

    def _hosted_admins(self, sn_id: str) -> List[str]:
        return sorted(
            (admin_id for admin_id, params in self.parameters.admin_params.items()
             if params.get("storageNodeId") == sn_id),
            key=resource_sort_key,
        )

    def storage_node_ids(self) -> List[str]:
        return sorted((sn.resource_id for sn in self.topology.sns), key=resource_sort_key)

    def placement(self) -> PlacementDescription:
        zones = {zone.resource_id: zone for zone in self.topology.zns}
        sns = []
        for ref in sorted(self.topology.sns, key=lambda sn: resource_sort_key(sn.resource_id)):
            params = self._sn_params(ref.resource_id)
            rns = []
            for rn_id in self._hosted_rns(ref.resource_id):
                rn_params = self.parameters.rep_node_params.get(rn_id, {})
                storage_dir = rn_params.get("storageDirPath")
                rns.append(ReplicaNodePlacement(
                    resource_id=rn_id,
                    storage_dir_path=storage_dir,
                    storage_dir_env_path=self._env_path(rn_id, ref.resource_id, storage_dir),
                    storage_dir_size=_int_param(rn_params.get("storageDirSize", 0), "storageDirSize", rn_id),
                    log_dir_path=rn_params.get("logDirPath"),
                ))
            sns.append(StorageNodePlacement(
                resource_id=ref.resource_id,
                hostname=params["hostname"],
                registry_port=str(params.get("registryPort", "")),
                zone=zones.get(ref.zone) if ref.zone else None,
                capacity=str(params.get("capacity", "1")),
                root_dir_path=params["rootDirPath"],
                rns=rns,
            ))

        admins = []
        for admin_id in sorted(self.parameters.admin_params, key=resource_sort_key):
            params = self.parameters.admin_params[admin_id]
            sn_id = params.get("storageNodeId")
            if not sn_id:
                raise ConfigurationError(f"Admin parameter storageNodeId missing for {admin_id}")
            storage_dir = params.get("storageDirPath")
            admins.append(AdminPlacement(
                admin_id=admin_id,
                storage_node_id=sn_id,
                storage_dir_path=storage_dir,
                storage_dir_env_path=self._env_path(admin_id, sn_id, storage_dir),
                storage_dir_size=_int_param(params.get("storageDirSize", 0), "storageDirSize", admin_id),
            ))

        return PlacementDescription(
            topology=TopologyPlacement(
                store_name=self.topology.store_name,
                num_partitions=self.topology.num_partitions,
                sequence_number=self.topology.sequence_number,
                zns=self.topology.zns,
                sns=sns,
                shards=self.topology.shards,
            ),
            admin=AdminsPlacement(admins=admins),
            sequence_numbers=self.sequence_numbers,
        )

    def _boot_params(self, sn_id: str) -> Dict[str, Any]:
        params = self._sn_params(sn_id)
        boot = {
            "hostName": params["hostname"],
            "registryPort": params.get("registryPort"),
            "rootDir": params["rootDirPath"],
            "storeName": self.topology.store_name,
            "storageNodeId": int(resource_sort_key(sn_id)[1]),
            "capacity": params.get("capacity", "1"),
        }
        for key in ("haPortRange", "haHostname", "servicePortRange", "softwareVersion"):
            if key in params:
                boot[key] = params[key]
        return boot

    def render(self) -> Dict[str, bytes]:
        """Bundle entries, archive name to content."""
        store_name = self.topology.store_name
        policy = SECURITY_POLICY.encode("utf-8")
        entries: Dict[str, bytes] = {}

        for sn_id in self.storage_node_ids():
            root = f"{OUTPUT_DIR}/kvroot_{sn_id}"
            components = [
                ("globalParams", "globalParams", self.parameters.global_params),
                ("storageNodeParams", "storageNodeParams", self._sn_params(sn_id)),
            ]
            for rn_id in self._hosted_rns(sn_id):
                params = dict(self.parameters.rep_node_params.get(rn_id, {}))
                params["rnId"] = rn_id
                components.append((rn_id, "repNodeParams", params))
            for admin_id in self._hosted_admins(sn_id):
                params = dict(self.parameters.admin_params[admin_id])
                params["adminId"] = admin_id
                components.append((admin_id, "adminParams", params))

            entries[f"{root}/{CONFIG_FILE_NAME}"] = render_config_xml(
                [("bootstrapParams", "bootstrapParams", self._boot_params(sn_id))]
            )
            entries[f"{root}/{SECURITY_POLICY_FILE_NAME}"] = policy
            entries[f"{root}/{store_name}/{SECURITY_POLICY_FILE_NAME}"] = policy
            entries[f"{root}/{store_name}/{sn_id}/{CONFIG_FILE_NAME}"] = render_config_xml(components)

        entries[f"{OUTPUT_DIR}/{TOPOLOGY_OUTPUT_FILE_NAME}"] = self.placement().to_json().encode("utf-8")
        return entries

    def generate(self, target: Union[str, Path]) -> Path:
        target = validate_zip_target(target)
        if not self.topology.sns:
            raise ConfigurationError(f"Topology of store {self.topology.store_name} has no storage nodes")
        write_zip_bundle(self.render(), target)
        logger.info(
            f"Configuration for {len(self.topology.sns)} storage node(s) of store "
            f"{self.topology.store_name} written to {target}"
        )
        return target
