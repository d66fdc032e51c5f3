"""Tests for the fleetcraft command line."""
import argparse
import json

import pytest
import yaml

from fleetcraft.cli import EXIT_CHANGES, EXIT_FAILED, EXIT_OK, main, parse_vars
from fleetcraft.state import StateStore

DESIRED = {
    "variables": {"size": {"default": "small"}},
    "resources": [
        {"type": "net_vpc", "name": "main", "attributes": {"cidr": "10.0.0.0/16"}},
        {"type": "compute_instance", "name": "web1",
         "attributes": {"vpc_id": "${net_vpc.main.id}", "size": "${var.size}", "address": "10.0.1.5"}},
    ],
    "outputs": {"vpc_id": "${net_vpc.main.id}"},
}


@pytest.fixture(autouse=True)
def workdir(tmp_path, monkeypatch):
    """Run from a directory without a fleetcraft.yaml."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    return tmp_path


@pytest.fixture
def files(write_yaml, tmp_path):
    return {
        "state": str(tmp_path / "state.json"),
        "desired": str(write_yaml("infra.yaml", DESIRED)),
    }


class TestParseVars:
    """Tests for --var parsing."""

    def test_values_are_yaml_scalars(self):
        assert parse_vars(["count=3", "debug=true", "name=web", "empty="]) == {
            "count": 3, "debug": True, "name": "web", "empty": "",
        }

    def test_missing_equals(self):
        with pytest.raises(argparse.ArgumentTypeError, match="KEY=VALUE"):
            parse_vars(["count"])


class TestPlanAndApply:
    """Tests for plan and apply exit codes and output."""

    def test_plan_apply_replan(self, files, capsys):
        """Pending changes exit 2; after apply the same plan exits 0."""
        assert main(["plan", files["state"], files["desired"]]) == EXIT_CHANGES
        out = capsys.readouterr().out
        assert "+ net_vpc.main" in out
        assert "Plan: 2 to create, 0 to update, 0 to delete (0 replacements), 0 unchanged" in out

        assert main(["apply", files["state"], files["desired"]]) == EXIT_OK
        out = capsys.readouterr().out
        assert "create:net_vpc.main: applied" in out
        assert 'vpc_id = "net_vpc-1"' in out

        assert main(["plan", files["state"], files["desired"]]) == EXIT_OK
        assert "2 unchanged" in capsys.readouterr().out

    def test_var_changes_plan(self, files, capsys):
        main(["apply", files["state"], files["desired"]])
        capsys.readouterr()
        assert main(["plan", files["state"], files["desired"], "--var", "size=large"]) == EXIT_CHANGES
        assert "~ compute_instance.web1" in capsys.readouterr().out

    def test_plan_json(self, files, capsys):
        assert main(["plan", files["state"], files["desired"], "--json"]) == EXIT_CHANGES
        plan = json.loads(capsys.readouterr().out)
        assert plan["summary"]["create"] == 2
        assert [c["key"] for c in plan["changes"]] == ["create:net_vpc.main", "create:compute_instance.web1"]

    def test_apply_json(self, files, capsys):
        assert main(["apply", files["state"], files["desired"], "--json"]) == EXIT_OK
        result = json.loads(capsys.readouterr().out)
        assert result["success"]
        assert result["outputs"] == {"vpc_id": "net_vpc-1"}

    def test_state_written(self, files):
        main(["apply", files["state"], files["desired"]])
        snapshot = StateStore(files["state"]).load()
        assert len(snapshot) == 2
        assert snapshot.serial == 2

    def test_destroy(self, files, capsys):
        main(["apply", files["state"], files["desired"]])
        assert main(["apply", files["state"], "--destroy"]) == EXIT_OK
        assert len(StateStore(files["state"]).load()) == 0
        assert "delete:compute_instance.web1: applied" in capsys.readouterr().out

    def test_apply_needs_desired(self, files, capsys):
        assert main(["apply", files["state"]]) == EXIT_FAILED
        assert "--destroy" in capsys.readouterr().err


class TestErrors:
    """Tests for error reporting."""

    def test_missing_desired_file(self, files, tmp_path, capsys):
        assert main(["plan", files["state"], str(tmp_path / "missing.yaml")]) == EXIT_FAILED
        assert "Error:" in capsys.readouterr().err

    def test_bad_var(self, files, capsys):
        assert main(["plan", files["state"], files["desired"], "--var", "size"]) == EXIT_FAILED
        assert "KEY=VALUE" in capsys.readouterr().err

    def test_cycle_reported(self, write_yaml, files, capsys):
        path = write_yaml("cycle.yaml", {"resources": [
            {"type": "net_vpc", "name": "a", "attributes": {"peer": "${net_vpc.b.id}"}},
            {"type": "net_vpc", "name": "b", "attributes": {"peer": "${net_vpc.a.id}"}},
        ]})
        assert main(["plan", files["state"], str(path)]) == EXIT_FAILED
        assert not (StateStore(files["state"]).path).exists()

    def test_invalid_setting(self, files, monkeypatch):
        monkeypatch.setenv("FLEETCRAFT_PARALLELISM", "0")
        assert main(["apply", files["state"], files["desired"]]) == EXIT_FAILED


class TestInventoryCommand:
    """Tests for building an inventory from recorded resources."""

    def test_inventory_from_state(self, files, capsys):
        main(["apply", files["state"], files["desired"]])
        capsys.readouterr()
        assert main(["inventory", files["state"], "compute_instance", "--group", "web"]) == EXIT_OK
        mapping = yaml.safe_load(capsys.readouterr().out)
        assert mapping["hosts"]["web1"]["address"] == "10.0.1.5"
        assert mapping["groups"] == {"web": ["web1"]}


class TestRunCommand:
    """Tests for running playbooks against local hosts."""

    @pytest.fixture
    def local_inventory(self, write_yaml):
        return str(write_yaml("hosts.yaml", {"hosts": {"ctl": {"connection": "local"}}}))

    def test_run_succeeds(self, write_yaml, local_inventory, tmp_path, capsys):
        target = tmp_path / "motd"
        playbook = write_yaml("site.yaml", [{
            "hosts": "all",
            "gather_facts": True,
            "actions": [
                {"name": "say hi", "module": "command", "params": {"cmd": "echo hi"}},
                {"name": "motd", "module": "file",
                 "params": {"path": str(target), "content": "${greeting}\n"}},
            ],
        }])
        code = main(["run", local_inventory, str(playbook), "--var", "greeting=hello"])
        assert code == EXIT_OK
        out = capsys.readouterr().out
        assert "RECAP" in out
        assert "changed=2" in out
        assert "failed=0" in out
        assert target.read_text() == "hello\n"

    def test_run_failure(self, write_yaml, local_inventory, capsys):
        playbook = write_yaml("site.yaml", [{
            "hosts": "all",
            "actions": [{"name": "fail", "module": "command", "params": {"cmd": "exit 4"}}],
        }])
        assert main(["run", local_inventory, str(playbook)]) == EXIT_FAILED
        out = capsys.readouterr().out
        assert "'fail' failed" in out
        assert "failed=1" in out

    def test_limit_without_match(self, write_yaml, local_inventory, capsys):
        playbook = write_yaml("site.yaml", [{"hosts": "all", "actions": [{"module": "ping"}]}])
        assert main(["run", local_inventory, str(playbook), "--limit", "nothing"]) == EXIT_OK
