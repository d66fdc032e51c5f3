"""Tests for host inventory management."""
import pytest

from fleetcraft.errors import ParseError
from fleetcraft.inventory import HostInventory, hosts_from_snapshot
from fleetcraft.state import ResourceState, StateSnapshot
from fleetcraft.values import ResourceRef


class TestHostInventory:
    """Tests for HostInventory class."""

    @pytest.fixture
    def temp_config(self, tmp_path):
        """Create a temporary inventory file for testing."""
        config_content = """
defaults:
  user: deploy
  port: 22

hosts:
  web1:
    address: 10.0.0.5
    vars:
      role: frontend
  web2:
    address: 10.0.0.6
    port: 2222
  db1:
    address: 10.0.0.9
    groups: [backup]
  local:
    connection: local

groups:
  web:
    - web1
    - web2
  databases:
    - db1
"""
        path = tmp_path / "inventory.yaml"
        path.write_text(config_content)
        return path

    def test_load_config(self, temp_config):
        """Inventory loads hosts in file order."""
        inv = HostInventory.from_file(temp_config)
        assert inv.aliases() == ["web1", "web2", "db1", "local"]
        assert len(inv) == 4
        assert "web1" in inv

    def test_defaults_applied(self, temp_config):
        """Defaults merge into connection parameters."""
        inv = HostInventory.from_file(temp_config)
        web1 = inv.get("web1")
        assert web1.address == "10.0.0.5"
        assert web1.connection_params == {"user": "deploy", "port": 22}
        assert web1.variables == {"role": "frontend"}

    def test_host_specific_overrides_defaults(self, temp_config):
        inv = HostInventory.from_file(temp_config)
        assert inv.get("web2").connection_params["port"] == 2222

    def test_address_defaults_to_alias(self, temp_config):
        inv = HostInventory.from_file(temp_config)
        local = inv.get("local")
        assert local.address == "local"
        assert local.connection == "local"
        assert inv.get("web1").connection == "ssh"

    def test_groups(self, temp_config):
        """Group lists and per-host groups both assign membership."""
        inv = HostInventory.from_file(temp_config)
        assert inv.group_members("web") == ["web1", "web2"]
        assert inv.get("db1").groups == frozenset({"all", "databases", "backup"})
        assert "all" in inv.group_names()

    def test_get_unknown(self, temp_config):
        """Unknown host raises KeyError."""
        inv = HostInventory.from_file(temp_config)
        with pytest.raises(KeyError) as exc_info:
            inv.get("nonexistent")
        assert "Unknown host" in str(exc_info.value)

    def test_unknown_group_member_is_ignored(self):
        inv = HostInventory.from_mapping({
            "hosts": {"web1": {}},
            "groups": {"web": ["web1", "ghost"]},
        })
        assert inv.group_members("web") == ["web1"]

    def test_describe(self, temp_config):
        inv = HostInventory.from_file(temp_config)
        assert inv.get("web1").describe() == {
            "alias": "web1", "address": "10.0.0.5", "groups": ["all", "web"],
        }

    def test_missing_file(self, tmp_path):
        with pytest.raises(ParseError, match="not found"):
            HostInventory.from_file(tmp_path / "missing.yaml")

    def test_invalid_hosts_section(self):
        with pytest.raises(ParseError):
            HostInventory.from_mapping({"hosts": ["web1"]})


class TestHostPatterns:
    """Tests for pattern matching."""

    @pytest.fixture
    def inv(self):
        return HostInventory.from_mapping({
            "hosts": {"web1": {}, "web2": {}, "db1": {}, "db2": {}},
            "groups": {"web": ["web1", "web2"], "db": ["db1", "db2"], "prod": ["web1", "db1"]},
        })

    def aliases(self, hosts):
        return [h.alias for h in hosts]

    def test_all(self, inv):
        assert self.aliases(inv.match("all")) == ["web1", "web2", "db1", "db2"]

    def test_group_and_alias(self, inv):
        assert self.aliases(inv.match("web")) == ["web1", "web2"]
        assert self.aliases(inv.match("db2")) == ["db2"]

    def test_union_keeps_inventory_order(self, inv):
        assert self.aliases(inv.match("db:web1")) == ["web1", "db1", "db2"]
        assert self.aliases(inv.match("db1,web2")) == ["web2", "db1"]

    def test_exclusion(self, inv):
        assert self.aliases(inv.match("all:!db")) == ["web1", "web2"]

    def test_intersection(self, inv):
        assert self.aliases(inv.match("web:&prod")) == ["web1"]

    def test_glob(self, inv):
        assert self.aliases(inv.match("db*")) == ["db1", "db2"]

    def test_no_match(self, inv):
        assert inv.match("cache") == []

    def test_limit(self, inv):
        limited = inv.limit("prod")
        assert limited.aliases() == ["web1", "db1"]
        assert inv.limit(None) is inv


class TestHostsFromSnapshot:
    """Tests for turning recorded resources into an inventory."""

    def snapshot(self):
        return (
            StateSnapshot()
            .put(ResourceState(ResourceRef("net_vpc", "main"), "net_vpc-1", {"cidr": "10.0.0.0/16"}))
            .put(ResourceState(ResourceRef("compute_instance", "web1"), "compute_instance-1",
                               {"address": "10.0.1.1", "hostname": "web-a"}))
            .put(ResourceState(ResourceRef("compute_instance", "web2"), "compute_instance-2",
                               {"address": "10.0.1.2", "hostname": "web-b"}))
            .put(ResourceState(ResourceRef("compute_instance", "pending"), "compute_instance-3", {}))
        )

    def test_instances_become_hosts(self):
        mapping = hosts_from_snapshot(self.snapshot(), "compute_instance", groups=["web"])
        assert list(mapping["hosts"]) == ["web1", "web2"]
        assert mapping["hosts"]["web1"]["address"] == "10.0.1.1"
        assert mapping["hosts"]["web1"]["vars"]["resource"]["id"] == "compute_instance-1"
        assert mapping["groups"] == {"web": ["web1", "web2"]}

    def test_alias_attribute(self):
        mapping = hosts_from_snapshot(self.snapshot(), "compute_instance", alias_attribute="hostname")
        assert list(mapping["hosts"]) == ["web-a", "web-b"]

    def test_mapping_loads_as_inventory(self):
        """The handoff mapping is a valid inventory document."""
        mapping = hosts_from_snapshot(self.snapshot(), "compute_instance", groups=["web"],
                                      defaults={"user": "admin"})
        inv = HostInventory.from_mapping(mapping)
        assert [h.alias for h in inv.match("web")] == ["web1", "web2"]
        assert inv.get("web2").connection_params == {"user": "admin"}
        assert inv.get("web2").variables["resource"]["hostname"] == "web-b"
