"""
Tests for the container runtimes.

DockerRuntime is exercised with its CLI calls mocked out; no docker daemon is
needed.
"""

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from codebox.config import SandboxConfig
from codebox.core.errors import ContainerRuntimeError, ProvisioningError
from codebox.core.models import (
    Language,
    NetworkPolicy,
    ResourceLimits,
    SandboxSession,
)
from codebox.core.runtime import DockerRuntime, NoopLocalRuntime, create_runtime


@pytest.fixture
def session(temp_dir):
    workdir = temp_dir / "sess-1"
    workdir.mkdir()
    return SandboxSession(
        id="sess-1",
        user_id=1,
        language=Language.PYTHON,
        resource_limits=ResourceLimits(cpu="1", memory="512M", timeout=5000, disk_space="100M"),
        working_dir=workdir,
    )


@pytest.fixture
def docker():
    return DockerRuntime(docker_binary="docker", user="1000:1000", pids_limit=64)


def _flag(args, name):
    return args[args.index(name) + 1]


class TestDockerCreateArgs:
    """Tests for DockerRuntime.build_create_args."""

    def test_limits_and_hardening(self, docker, session):
        args = docker.build_create_args(session)

        assert args[0] == "create"
        assert _flag(args, "--name") == "codebox-sess-1"
        assert _flag(args, "--memory") == "512M"
        assert _flag(args, "--cpus") == "1"
        assert _flag(args, "--network") == "none"
        assert _flag(args, "--pids-limit") == "64"
        assert _flag(args, "--user") == "1000:1000"
        assert _flag(args, "--cap-drop") == "ALL"
        assert _flag(args, "--security-opt") == "no-new-privileges:true"
        assert _flag(args, "--tmpfs") == "/tmp:rw,nosuid,size=100m"
        assert "--read-only" in args
        assert "--runtime" not in args

    def test_mounts_working_dir(self, docker, session):
        args = docker.build_create_args(session)
        assert _flag(args, "-v") == f"{Path(session.working_dir).resolve()}:/sandbox:rw"
        assert _flag(args, "-w") == "/sandbox"

    def test_dormant_command(self, docker, session):
        args = docker.build_create_args(session)
        assert args[-4:] == ["python:3.11-slim", "tail", "-f", "/dev/null"]

    def test_node_image(self, docker, session):
        session.language = Language.NODE
        assert "node:20-slim" in docker.build_create_args(session)

    def test_gvisor_runtime(self, session):
        args = DockerRuntime(runtime="runsc").build_create_args(session)
        assert _flag(args, "--runtime") == "runsc"

    @pytest.mark.parametrize("policy,expected", [
        (NetworkPolicy.NONE, "none"),
        (NetworkPolicy.INTERNAL, "codebox-internal"),
        (NetworkPolicy.EXTERNAL, "bridge"),
    ])
    def test_network_modes(self, docker, policy, expected):
        assert docker.network_mode(policy) == expected


class TestDockerExec:
    """Tests for DockerRuntime.exec_spec."""

    def test_exec_argv(self, docker, session):
        session.container_id = "abc123"
        spec = docker.exec_spec(session, ["python3", "/sandbox/main.py"], {"FOO": "bar"})

        assert spec.argv[:4] == ["docker", "exec", "-w", "/sandbox"]
        assert spec.argv[-3:] == ["abc123", "python3", "/sandbox/main.py"]
        assert "FOO=bar" in spec.argv
        assert "HOME=/sandbox" in spec.argv
        assert spec.cwd is None

    def test_requires_container(self, docker, session):
        with pytest.raises(ContainerRuntimeError):
            docker.exec_spec(session, ["python3", "main.py"])

    def test_workspace_path(self, docker, session):
        assert docker.workspace_path(session, "main.py") == "/sandbox/main.py"


class TestDockerLifecycle:
    """Tests for DockerRuntime container lifecycle with the CLI mocked."""

    @pytest.mark.asyncio
    async def test_create_and_start(self, docker, session):
        cli = AsyncMock(side_effect=[(0, "cid-1\n", ""), (0, "cid-1\n", "")])
        with patch.object(docker, "_run_cli", cli):
            container_id = await docker.create_container(session)

        assert container_id == "cid-1"
        assert cli.call_args_list[0].args[0] == "create"
        assert cli.call_args_list[1].args == ("start", "cid-1")

    @pytest.mark.asyncio
    async def test_create_failure(self, docker, session):
        cli = AsyncMock(return_value=(125, "", "Unable to find image"))
        with patch.object(docker, "_run_cli", cli):
            with pytest.raises(ProvisioningError, match="Unable to find image"):
                await docker.create_container(session)

    @pytest.mark.asyncio
    async def test_start_failure_removes_container(self, docker, session):
        """A created container that fails to start is removed before raising."""
        cli = AsyncMock(side_effect=[(0, "cid-2", ""), (1, "", "OCI runtime error"), (0, "", "")])
        with patch.object(docker, "_run_cli", cli):
            with pytest.raises(ProvisioningError, match="start failed"):
                await docker.create_container(session)

        assert cli.call_args_list[2].args == ("rm", "-f", "cid-2")

    @pytest.mark.asyncio
    async def test_missing_cli_is_provisioning_error(self, session):
        runtime = DockerRuntime(docker_binary="/nonexistent/docker")
        with pytest.raises(ProvisioningError, match="Docker CLI not found"):
            await runtime.create_container(session)

    @pytest.mark.asyncio
    async def test_internal_network_created_once(self, docker, session):
        session.network_policy = NetworkPolicy.INTERNAL
        cli = AsyncMock(side_effect=[
            (1, "", "No such network"),   # network inspect
            (0, "netid", ""),             # network create
            (0, "cid-3", ""),             # create
            (0, "cid-3", ""),             # start
            (0, "cid-4", ""),             # create
            (0, "cid-4", ""),             # start
        ])
        with patch.object(docker, "_run_cli", cli):
            await docker.create_container(session)
            await docker.create_container(session)

        assert cli.call_args_list[1].args == ("network", "create", "--internal", "codebox-internal")
        assert [c.args[0] for c in cli.call_args_list].count("network") == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("stderr", [
        "Error: No such container: abc",
        "Error response from daemon: Container abc is not running",
        "removal of container abc is already in progress",
    ])
    async def test_already_clean_tolerated(self, docker, stderr):
        cli = AsyncMock(return_value=(1, "", stderr))
        with patch.object(docker, "_run_cli", cli):
            await docker.stop_container("abc")
            await docker.remove_container("abc")

    @pytest.mark.asyncio
    async def test_remove_failure_raises(self, docker):
        cli = AsyncMock(return_value=(1, "", "device or resource busy"))
        with patch.object(docker, "_run_cli", cli):
            with pytest.raises(ContainerRuntimeError, match="busy"):
                await docker.remove_container("abc")

    @pytest.mark.asyncio
    async def test_terminate_processes(self, docker, session):
        session.container_id = "abc"
        cli = AsyncMock(return_value=(0, "", ""))
        with patch.object(docker, "_run_cli", cli):
            await docker.terminate_processes(session)
        assert cli.call_args.args == ("exec", "abc", "sh", "-c", "kill -9 -1")

    @pytest.mark.asyncio
    async def test_health(self, docker):
        with patch.object(docker, "_run_cli", AsyncMock(return_value=(0, "24.0.7\n", ""))):
            healthy, message = await docker.check_health()
        assert healthy
        assert "24.0.7" in message

        unreachable = DockerRuntime(docker_binary="/nonexistent/docker")
        healthy, message = await unreachable.check_health()
        assert not healthy
        assert "not found" in message


class TestNoopLocalRuntime:
    """Tests for NoopLocalRuntime."""

    @pytest.mark.asyncio
    async def test_no_container(self, session):
        assert await NoopLocalRuntime().create_container(session) is None

    def test_minimal_environment(self, session, monkeypatch):
        monkeypatch.setenv("SECRET_TOKEN", "hunter2")
        spec = NoopLocalRuntime().exec_spec(session, ["python3", "main.py"], {"X": "1"})

        assert "SECRET_TOKEN" not in spec.env
        assert spec.env["X"] == "1"
        assert spec.env["HOME"] == str(session.working_dir)
        assert spec.cwd == session.working_dir

    def test_inherit_environment(self, session, monkeypatch):
        monkeypatch.setenv("SECRET_TOKEN", "hunter2")
        spec = NoopLocalRuntime(inherit_env=True).exec_spec(session, ["python3", "main.py"])
        assert spec.env["SECRET_TOKEN"] == "hunter2"


class TestCreateRuntime:
    """Tests for runtime selection."""

    def test_selection(self, sandbox_config):
        assert isinstance(create_runtime(sandbox_config), NoopLocalRuntime)
        sandbox_config.isolation_mode = "docker"
        assert isinstance(create_runtime(sandbox_config), DockerRuntime)

    def test_docker_settings_passed(self, test_db_path, sandbox_root):
        config = SandboxConfig(
            database_url=f"sqlite:///{test_db_path}",
            sandbox_root=sandbox_root,
            isolation_mode="docker",
            docker_runtime="runsc",
            pids_limit=32,
        )
        runtime = create_runtime(config)
        assert runtime.runtime == "runsc"
        assert runtime.pids_limit == 32
