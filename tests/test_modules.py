"""Tests for module kinds against scripted sessions."""
import pytest
import yaml
from conftest import FakePackageHost, FakeSession

from fleetcraft.errors import ValidationError
from fleetcraft.modules import MODULE_REGISTRY, CommandOutput, get_module


async def apply(module: str, session, **params):
    kind = get_module(module)
    return await kind.apply(session, kind.validate(params))


class TestRegistry:
    """Tests for module lookup and parameter validation."""

    def test_registered_modules(self):
        assert set(MODULE_REGISTRY) == {"ping", "command", "package", "file", "service"}

    def test_unknown_module(self):
        with pytest.raises(ValidationError, match="Unknown module"):
            get_module("apt_key")

    def test_unknown_parameter(self):
        with pytest.raises(ValidationError) as exc:
            get_module("ping").validate({"data": "x", "colour": "red"})
        assert exc.value.errors == ["ping: colour: Extra inputs are not permitted"]

    def test_one_message_per_field(self):
        with pytest.raises(ValidationError) as exc:
            get_module("package").validate({"state": "latest"})
        assert len(exc.value.errors) == 2
        assert all(e.startswith("package: ") for e in exc.value.errors)


class TestPingModule:
    """Tests for the ping module."""

    @pytest.mark.asyncio
    async def test_ping(self):
        session = FakeSession({"echo": lambda cmd: CommandOutput(0, "pong\n")})
        result = await apply("ping", session)
        assert not result.changed
        assert result.payload == {"ping": "pong"}
        assert session.commands == ["echo pong"]

    @pytest.mark.asyncio
    async def test_data_is_quoted(self):
        session = FakeSession()
        await apply("ping", session, data="hello; rm -rf /")
        assert session.commands == ["echo 'hello; rm -rf /'"]


class TestPackageModule:
    """Tests for the package module."""

    @pytest.mark.asyncio
    async def test_install_is_idempotent(self):
        """The first run installs and reports changed, the second does nothing."""
        host = FakePackageHost()
        first = await apply("package", host.session, name="nginx")
        assert first.changed
        assert first.payload == {"manager": "apt", "installed": ["nginx"]}
        assert "nginx" in host.installed

        second = await apply("package", host.session, name="nginx")
        assert not second.changed
        assert second.payload == {"manager": "apt", "installed": []}
        installs = [c for c in host.session.commands if "apt-get install" in c]
        assert installs == ["DEBIAN_FRONTEND=noninteractive apt-get install -y nginx"]

    @pytest.mark.asyncio
    async def test_only_missing_packages_are_installed(self):
        host = FakePackageHost(installed={"curl"})
        result = await apply("package", host.session, name=["curl", "nginx", "git"])
        assert result.payload["installed"] == ["nginx", "git"]
        assert host.installed == {"curl", "nginx", "git"}

    @pytest.mark.asyncio
    async def test_remove(self):
        host = FakePackageHost(installed={"telnet"})
        result = await apply("package", host.session, name="telnet", state="absent")
        assert result.changed
        assert result.payload == {"manager": "apt", "removed": ["telnet"]}
        assert host.installed == set()

        again = await apply("package", host.session, name="telnet", state="absent")
        assert not again.changed

    @pytest.mark.asyncio
    async def test_install_failure(self):
        session = FakeSession({
            "command -v apt-get": lambda cmd: 0,
            "dpkg-query": lambda cmd: 1,
            "DEBIAN_FRONTEND": lambda cmd: CommandOutput(100, "", "E: Unable to locate package bogus\n"),
        })
        result = await apply("package", session, name="bogus")
        assert result.failed
        assert result.error == "apt could not install bogus: E: Unable to locate package bogus"
        assert result.payload["rc"] == 100

    @pytest.mark.asyncio
    async def test_no_package_manager(self):
        session = FakeSession({"command -v": lambda cmd: 1})
        result = await apply("package", session, name="nginx")
        assert result.failed
        assert "no supported package manager" in result.error

    @pytest.mark.asyncio
    async def test_detects_dnf(self):
        session = FakeSession({
            "command -v apt-get": lambda cmd: 1,
            "command -v dnf": lambda cmd: 0,
            "rpm -q": lambda cmd: 1,
        })
        result = await apply("package", session, name="nginx")
        assert result.payload["manager"] == "dnf"
        assert session.commands[-1] == "dnf install -y nginx"

    @pytest.mark.asyncio
    async def test_explicit_manager_skips_detection(self):
        session = FakeSession({"rpm -q": lambda cmd: 1})
        await apply("package", session, name="nginx", manager="yum")
        assert not any(c.startswith("command -v") for c in session.commands)
        assert session.commands[-1] == "yum install -y nginx"

    def test_empty_name_rejected(self):
        with pytest.raises(ValidationError):
            get_module("package").validate({"name": []})


class TestFileModule:
    """Tests for the file module."""

    @pytest.mark.asyncio
    async def test_write_new_file(self):
        session = FakeSession({"stat -c %a": lambda cmd: CommandOutput(0, "644\n")})
        result = await apply("file", session, path="/etc/motd", content="hello\n", mode="0644")
        assert result.changed
        assert result.payload == {"path": "/etc/motd", "state": "file", "mode": "644"}
        assert session.files["/etc/motd"] == "hello\n"
        assert session.modes["/etc/motd"] == 0o644
        assert not any(c.startswith("chmod") for c in session.commands)

    @pytest.mark.asyncio
    async def test_same_content_is_unchanged(self):
        session = FakeSession(files={"/etc/motd": "hello\n"})
        result = await apply("file", session, path="/etc/motd", content="hello\n")
        assert not result.changed
        assert session.commands == []

    @pytest.mark.asyncio
    async def test_different_content_is_rewritten(self):
        session = FakeSession(files={"/etc/motd": "old\n"})
        result = await apply("file", session, path="/etc/motd", content="new\n")
        assert result.changed
        assert session.files["/etc/motd"] == "new\n"

    @pytest.mark.asyncio
    async def test_mode_only_change(self):
        session = FakeSession(
            {"stat -c %a": lambda cmd: CommandOutput(0, "600\n")},
            files={"/etc/app.conf": "x"},
        )
        result = await apply("file", session, path="/etc/app.conf", mode="640")
        assert result.changed
        assert session.files["/etc/app.conf"] == "x"
        assert session.commands[-1] == "chmod 640 /etc/app.conf"

    @pytest.mark.asyncio
    async def test_directory(self):
        session = FakeSession({"test -d": lambda cmd: 1})
        result = await apply("file", session, path="/srv/app data", state="directory")
        assert result.changed
        assert session.commands == ["test -d '/srv/app data'", "mkdir -p '/srv/app data'"]

    @pytest.mark.asyncio
    async def test_existing_directory(self):
        session = FakeSession()
        result = await apply("file", session, path="/srv/app", state="directory")
        assert not result.changed

    @pytest.mark.asyncio
    async def test_absent(self):
        session = FakeSession()
        result = await apply("file", session, path="/tmp/old", state="absent")
        assert result.changed
        assert session.commands[-1] == "rm -rf /tmp/old"

        missing = FakeSession({"test -e": lambda cmd: 1})
        result = await apply("file", missing, path="/tmp/old", state="absent")
        assert not result.changed

    def test_mode_forms(self):
        validate = get_module("file").validate
        assert validate({"path": "/a", "mode": 0o755}).mode == "755"
        assert validate({"path": "/a", "mode": "0755"}).mode == "755"
        assert validate({"path": "/a", "mode": "1777"}).mode == "1777"
        with pytest.raises(ValidationError):
            validate({"path": "/a", "mode": "999"})

    def test_yaml_integer_modes(self):
        """Unquoted YAML modes mean what was written, with or without a leading zero."""
        validate = get_module("file").validate
        for text, expected in [("755", "755"), ("0755", "755"), ("644", "644"),
                               ("0600", "600"), ("600", "600"), ("01777", "1777")]:
            params = yaml.safe_load(f"path: /etc/x\nmode: {text}")
            assert validate(params).mode == expected, text

    def test_ambiguous_integer_mode(self):
        """0644 loads as 420, which could also be mode 420; a quoted string is required."""
        validate = get_module("file").validate
        with pytest.raises(ValidationError) as exc:
            validate(yaml.safe_load("path: /etc/x\nmode: 0644"))
        assert "ambiguous" in exc.value.errors[0]
        assert "'0644'" in exc.value.errors[0]
        with pytest.raises(ValidationError):
            validate({"path": "/a", "mode": True})
        with pytest.raises(ValidationError):
            validate({"path": "/a", "mode": 99999})

    def test_content_requires_file_state(self):
        with pytest.raises(ValidationError, match="file"):
            get_module("file").validate({"path": "/a", "state": "directory", "content": "x"})


class TestServiceModule:
    """Tests for the service module."""

    @pytest.mark.asyncio
    async def test_start_inactive_service(self):
        session = FakeSession({"systemctl is-active": lambda cmd: 3})
        result = await apply("service", session, name="nginx", state="started")
        assert result.changed
        assert result.payload == {"name": "nginx", "actions": ["start"], "state": "started"}
        assert session.commands[-1] == "systemctl start nginx"

    @pytest.mark.asyncio
    async def test_running_and_enabled_is_unchanged(self):
        session = FakeSession()
        result = await apply("service", session, name="nginx", state="started", enabled=True)
        assert not result.changed
        assert result.payload["actions"] == []

    @pytest.mark.asyncio
    async def test_restart_always_changes(self):
        session = FakeSession()
        result = await apply("service", session, name="nginx", state="restarted")
        assert result.changed
        assert session.commands[-1] == "systemctl restart nginx"

    @pytest.mark.asyncio
    async def test_stop_and_disable(self):
        session = FakeSession()
        result = await apply("service", session, name="telnetd", state="stopped", enabled=False)
        assert result.payload["actions"] == ["stop", "disable"]

    @pytest.mark.asyncio
    async def test_failure(self):
        session = FakeSession({
            "systemctl is-active": lambda cmd: 3,
            "systemctl start": lambda cmd: CommandOutput(5, "", "Unit nginx.service not found.\n"),
        })
        result = await apply("service", session, name="nginx", state="started")
        assert result.failed
        assert result.error == "systemctl start nginx failed: Unit nginx.service not found."

    def test_needs_state_or_enabled(self):
        with pytest.raises(ValidationError, match="Invalid parameters"):
            get_module("service").validate({"name": "nginx"})


class TestCommandModule:
    """Tests for the command module."""

    @pytest.mark.asyncio
    async def test_runs_and_reports_changed(self):
        session = FakeSession({"cd /srv/app && make": lambda cmd: CommandOutput(0, "built\n")})
        result = await apply("command", session, cmd="make", chdir="/srv/app")
        assert result.changed
        assert result.payload == {"rc": 0, "stdout": "built\n", "stderr": ""}
        assert session.commands == ["cd /srv/app && make"]

    @pytest.mark.asyncio
    async def test_creates_guard(self):
        session = FakeSession()
        result = await apply("command", session, cmd="./install.sh", creates="/opt/app/installed")
        assert not result.changed
        assert result.payload == {"skipped_reason": "/opt/app/installed exists"}
        assert session.commands == ["test -e /opt/app/installed"]

    @pytest.mark.asyncio
    async def test_removes_guard(self):
        session = FakeSession({"test -e": lambda cmd: 1})
        result = await apply("command", session, cmd="rm /tmp/lock", removes="/tmp/lock")
        assert not result.changed
        assert len(session.commands) == 1

    @pytest.mark.asyncio
    async def test_nonzero_exit_fails(self):
        session = FakeSession({"false": lambda cmd: CommandOutput(2, "", "boom\n")})
        result = await apply("command", session, cmd="false")
        assert result.failed
        assert result.error == "command exited with 2: boom"

    @pytest.mark.asyncio
    async def test_accepted_return_codes(self):
        session = FakeSession({"grep": lambda cmd: 1})
        result = await apply("command", session, cmd="grep -q x /etc/hosts", returns=[0, 1])
        assert result.changed
        assert result.payload["rc"] == 1

    def test_empty_command_rejected(self):
        with pytest.raises(ValidationError):
            get_module("command").validate({"cmd": ""})
