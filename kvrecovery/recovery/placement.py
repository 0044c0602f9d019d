"""Placement description (``topologyoutput.json``).

Records which replica and admin nodes live on which storage node and where
their environments are stored. Produced by the config regeneration step and
consumed by storage node recovery.
"""

import json
from pathlib import Path
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..exceptions import ConfigurationError

TOPOLOGY_OUTPUT_FILE_NAME = "topologyoutput.json"


class _PlacementModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ZoneInfo(_PlacementModel):
    resource_id: str = Field(..., alias="resourceId")
    name: str
    rep_factor: int = Field(0, alias="repFactor")
    type: str = "PRIMARY"
    allow_arbiters: bool = Field(False, alias="allowArbiters")
    master_affinity: bool = Field(False, alias="masterAffinity")


class ReplicaNodePlacement(_PlacementModel):
    resource_id: str = Field(..., alias="resourceId")
    storage_dir_path: Optional[str] = Field(None, alias="storageDirPath")
    storage_dir_env_path: str = Field(..., alias="storageDirEnvPath")
    storage_dir_size: int = Field(0, alias="storageDirSize")
    log_dir_path: Optional[str] = Field(None, alias="logDirPath")


class StorageNodePlacement(_PlacementModel):
    resource_id: str = Field(..., alias="resourceId")
    hostname: str
    registry_port: str = Field("", alias="registryPort")
    zone: Optional[ZoneInfo] = None
    capacity: str = "1"
    root_dir_path: Optional[str] = Field(None, alias="rootDirPath")
    rns: List[ReplicaNodePlacement] = Field(default_factory=list)
    ans: List[dict] = Field(default_factory=list)


class ShardReplicaInfo(_PlacementModel):
    resource_id: str = Field(..., alias="resourceId")
    sn_id: str = Field(..., alias="snId")
    ha_port: str = Field("", alias="haPort")


class ShardPlacement(_PlacementModel):
    resource_id: str = Field(..., alias="resourceId")
    num_partitions: int = Field(0, alias="numPartitions")
    rns: List[ShardReplicaInfo] = Field(default_factory=list)
    partition: Optional[str] = None


class TopologyPlacement(_PlacementModel):
    store_name: str = Field(..., alias="storeName")
    num_partitions: int = Field(0, alias="numPartitions")
    sequence_number: int = Field(0, alias="sequenceNumber")
    zns: List[ZoneInfo] = Field(default_factory=list)
    sns: List[StorageNodePlacement] = Field(default_factory=list)
    shards: List[ShardPlacement] = Field(default_factory=list)


class AdminPlacement(_PlacementModel):
    admin_id: str = Field(..., alias="adminId")
    storage_node_id: str = Field(..., alias="storageNodeId")
    storage_dir_path: Optional[str] = Field(None, alias="storageDirPath")
    storage_dir_env_path: str = Field(..., alias="storageDirEnvPath")
    storage_dir_size: int = Field(0, alias="storageDirSize")


class AdminsPlacement(_PlacementModel):
    admins: List[AdminPlacement] = Field(default_factory=list)


class MetadataSequenceNumbers(_PlacementModel):
    security_metadata: int = Field(0, alias="securityMetadata")
    table_metadata: int = Field(0, alias="tableMetadata")


class PlacementDescription(_PlacementModel):
    topology: TopologyPlacement
    admin: AdminsPlacement = Field(default_factory=AdminsPlacement)
    sequence_numbers: MetadataSequenceNumbers = Field(
        default_factory=MetadataSequenceNumbers, alias="sequenceNumbers"
    )

    def local_storage_nodes(self, hostname: str) -> List[StorageNodePlacement]:
        return [sn for sn in self.topology.sns if sn.hostname == hostname]

    def local_admins(self, storage_node_ids: List[str]) -> List[AdminPlacement]:
        return [a for a in self.admin.admins if a.storage_node_id in storage_node_ids]

    def to_json(self) -> str:
        return json.dumps(self.model_dump(by_alias=True), indent=2, sort_keys=True) + "\n"

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> 'PlacementDescription':
        path = Path(path)
        if not path.is_file():
            raise ConfigurationError(f"Specified topology output json file {path} does not exist")
        try:
            return cls.model_validate_json(path.read_bytes())
        except ValidationError as e:
            raise ConfigurationError(f"Exception in deserializing file {path}: {e}") from e
