"""Tests for configuration regeneration and the placement description."""

import json
import xml.etree.ElementTree as ET
import zipfile
import pytest

from kvrecovery.exceptions import ConfigurationError
from kvrecovery.recovery.config_regen import (
    ConfigRegenerator,
    JsonExportAdminReader,
    render_config_xml,
    resource_sort_key,
)
from kvrecovery.recovery.placement import PlacementDescription


@pytest.fixture
def admin_db(tmp_path):
    """JSON export of a 2-node store with one admin per node."""
    directory = tmp_path / "admindb"
    directory.mkdir()
    (directory / "parameters.json").write_text(json.dumps({
        "globalParams": {"kvStoreName": "kvstore", "isLoopback": False},
        "storageNodeParams": {
            "sn1": {"hostname": "host-a", "registryPort": "5000", "rootDirPath": "/kvroot",
                    "capacity": "2", "haPortRange": "5010,5020"},
            "sn10": {"hostname": "host-b", "registryPort": "5000", "rootDirPath": "/kvroot"},
        },
        "adminParams": {
            "admin1": {"storageNodeId": "sn1"},
            "admin2": {"storageNodeId": "sn10", "storageDirPath": "/admindir", "storageDirSize": 1024},
        },
        "repNodeParams": {
            "rg1-rn1": {"storageDirPath": "/disk1", "storageDirSize": 5000000000, "logDirPath": "/logs"},
        },
    }))
    (directory / "topology.json").write_text(json.dumps({
        "storeName": "kvstore",
        "numPartitions": 10,
        "sequenceNumber": 42,
        "zns": [{"resourceId": "zn1", "name": "Boston", "repFactor": 2}],
        "sns": [{"resourceId": "sn10", "zone": "zn1"}, {"resourceId": "sn1", "zone": "zn1"}],
        "shards": [{
            "resourceId": "rg1",
            "numPartitions": 10,
            "rns": [
                {"resourceId": "rg1-rn1", "snId": "sn1", "haPort": "5011"},
                {"resourceId": "rg1-rn2", "snId": "sn10", "haPort": "5011"},
            ],
        }],
    }))
    (directory / "tableMetadata.json").write_text(json.dumps({"sequenceNumber": 7}))
    return directory


def test_resource_sort_key_is_numeric():
    assert sorted(["sn10", "sn2", "sn1"], key=resource_sort_key) == ["sn1", "sn2", "sn10"]


def test_placement_description(admin_db):
    placement = ConfigRegenerator(JsonExportAdminReader(admin_db)).placement()

    assert [sn.resource_id for sn in placement.topology.sns] == ["sn1", "sn10"]
    sn1 = placement.topology.sns[0]
    assert sn1.hostname == "host-a"
    assert sn1.zone.name == "Boston"
    rn1 = sn1.rns[0]
    assert rn1.resource_id == "rg1-rn1"
    assert rn1.storage_dir_env_path == "/disk1/rg1-rn1/env"
    assert rn1.log_dir_path == "/logs"
    rn2 = placement.topology.sns[1].rns[0]
    assert rn2.storage_dir_env_path == "/kvroot/kvstore/sn10/rg1-rn2/env"

    admins = {a.admin_id: a for a in placement.admin.admins}
    assert admins["admin1"].storage_dir_env_path == "/kvroot/kvstore/sn1/admin1/env"
    assert admins["admin2"].storage_dir_env_path == "/admindir/admin2/env"
    assert placement.sequence_numbers.table_metadata == 7
    assert placement.sequence_numbers.security_metadata == 0


def test_bundle_layout(admin_db, tmp_path):
    target = ConfigRegenerator(JsonExportAdminReader(admin_db)).generate(tmp_path / "recover.zip")

    with zipfile.ZipFile(target) as bundle:
        names = set(bundle.namelist())
        topology = json.loads(bundle.read("recoverconfig/topologyoutput.json"))
        sn_config = ET.fromstring(bundle.read("recoverconfig/kvroot_sn1/kvstore/sn1/config.xml"))
        boot = ET.fromstring(bundle.read("recoverconfig/kvroot_sn1/config.xml"))

    for sn_id in ("sn1", "sn10"):
        root = f"recoverconfig/kvroot_{sn_id}"
        assert {
            f"{root}/config.xml",
            f"{root}/security.policy",
            f"{root}/kvstore/security.policy",
            f"{root}/kvstore/{sn_id}/config.xml",
        } <= names
    assert set(topology) == {"topology", "admin", "sequenceNumbers"}
    assert topology["sequenceNumbers"] == {"securityMetadata": 0, "tableMetadata": 7}

    components = {c.get("name"): c.get("type") for c in sn_config.findall("component")}
    assert components == {
        "globalParams": "globalParams",
        "storageNodeParams": "storageNodeParams",
        "rg1-rn1": "repNodeParams",
        "admin1": "adminParams",
    }
    boot_props = {p.get("name"): p.get("value") for p in boot.iter("property")}
    assert boot_props["hostName"] == "host-a"
    assert boot_props["storageNodeId"] == "1"
    assert boot_props["haPortRange"] == "5010,5020"


def test_generated_topology_feeds_node_recovery(admin_db, tmp_path):
    target = ConfigRegenerator(JsonExportAdminReader(admin_db)).generate(tmp_path / "recover.zip")
    with zipfile.ZipFile(target) as bundle:
        bundle.extract("recoverconfig/topologyoutput.json", tmp_path)

    placement = PlacementDescription.from_file(tmp_path / "recoverconfig" / "topologyoutput.json")

    assert [sn.resource_id for sn in placement.local_storage_nodes("host-b")] == ["sn10"]
    assert [a.admin_id for a in placement.local_admins(["sn10"])] == ["admin2"]


def test_render_config_xml_types():
    document = ET.fromstring(render_config_xml([
        ("params", "globalParams", {"flag": True, "port": 5000, "size": 2 ** 40, "name": "x", "unset": None}),
    ]))

    props = {p.get("name"): (p.get("value"), p.get("type")) for p in document.iter("property")}
    assert props == {
        "flag": ("true", "BOOLEAN"),
        "port": ("5000", "INT"),
        "size": (str(2 ** 40), "LONG"),
        "name": ("x", "STRING"),
    }


class TestJsonExportAdminReader:
    """Admin database directory validation."""

    def test_relative_directory(self):
        with pytest.raises(ConfigurationError, match="absolute"):
            JsonExportAdminReader("admindb")

    def test_missing_directory(self, tmp_path):
        with pytest.raises(ConfigurationError, match="does not exist"):
            JsonExportAdminReader(tmp_path / "missing")

    def test_empty_directory(self, tmp_path):
        with pytest.raises(ConfigurationError, match="is empty"):
            JsonExportAdminReader(tmp_path)

    def test_missing_topology(self, admin_db):
        (admin_db / "topology.json").unlink()
        with pytest.raises(ConfigurationError, match="topology.json not found"):
            ConfigRegenerator(JsonExportAdminReader(admin_db))

    def test_missing_storage_node_parameters(self, admin_db, tmp_path):
        params = json.loads((admin_db / "parameters.json").read_text())
        del params["storageNodeParams"]["sn10"]
        (admin_db / "parameters.json").write_text(json.dumps(params))

        with pytest.raises(ConfigurationError, match="sn10"):
            ConfigRegenerator(JsonExportAdminReader(admin_db)).generate(tmp_path / "out.zip")


class TestPlacementDescription:
    """Loading topologyoutput.json."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="does not exist"):
            PlacementDescription.from_file(tmp_path / "topologyoutput.json")

    def test_invalid_document(self, tmp_path):
        path = tmp_path / "topologyoutput.json"
        path.write_text('{"admin": {}}')
        with pytest.raises(ConfigurationError, match="deserializing"):
            PlacementDescription.from_file(path)
