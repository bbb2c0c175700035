"""
Container Lifecycle Management

Runtimes stand up the isolated environment a session executes in:
- DockerRuntime: one dormant container per session (``tail -f /dev/null``),
  code runs through ``docker exec`` into the already-running container
- NoopLocalRuntime: no isolation at all, the interpreter is spawned directly on
  the host (development only)

This is the only place that talks to the container CLI. Arguments are always
passed as argv lists, never through a shell.
"""

import asyncio
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from codebox.config import SandboxConfig
from codebox.core.errors import ContainerRuntimeError, ProvisioningError
from codebox.core.models import LANGUAGE_IMAGES, NetworkPolicy, SandboxSession
from codebox.monitoring.logging import get_logger

logger = get_logger(__name__)

# Mount point of the session working directory inside a container
CONTAINER_WORKDIR = "/sandbox"
DEFAULT_TMPFS_SIZE = "64m"
CLI_TIMEOUT_SECONDS = 60

# Substrings of docker CLI errors that mean "already clean"
_ALREADY_CLEAN_MARKERS = (
    "no such container",
    "is not running",
    "is already in progress",
)

_SANDBOX_ENV = {
    "PYTHONDONTWRITEBYTECODE": "1",
    "PYTHONUNBUFFERED": "1",
}


@dataclass
class ExecSpec:
    """How to spawn one command for a session."""
    argv: List[str]
    cwd: Optional[Path]
    env: Dict[str, str]


class ContainerRuntime(ABC):
    """Capability interface for session isolation backends."""

    name: str = "abstract"
    isolated: bool = False

    @abstractmethod
    async def create_container(self, session: SandboxSession) -> Optional[str]:
        """Provision and start the isolated runtime. Returns its handle, or None when not containerized."""

    @abstractmethod
    async def stop_container(self, container_id: str) -> None:
        """Stop a container. Already-stopped or missing containers are not an error."""

    @abstractmethod
    async def remove_container(self, container_id: str) -> None:
        """Remove a container. Already-removed containers are not an error."""

    @abstractmethod
    def workspace_path(self, session: SandboxSession, relative: str) -> str:
        """Path of a working-directory file as seen by the interpreter."""

    @abstractmethod
    def exec_spec(
        self,
        session: SandboxSession,
        command: Sequence[str],
        env: Optional[Dict[str, str]] = None,
    ) -> ExecSpec:
        """Build the host-side spawn spec for running ``command`` in the session."""

    async def terminate_processes(self, session: SandboxSession) -> None:
        """Kill whatever the session still runs after its exec client was killed."""
        return None

    async def check_health(self) -> Tuple[bool, str]:
        return True, f"{self.name} runtime ready"


class NoopLocalRuntime(ContainerRuntime):
    """Runs interpreters directly on the host. Offers no real isolation."""

    name = "local"
    isolated = False

    def __init__(self, inherit_env: bool = False):
        self.inherit_env = inherit_env

    async def create_container(self, session: SandboxSession) -> Optional[str]:
        return None

    async def stop_container(self, container_id: str) -> None:
        return None

    async def remove_container(self, container_id: str) -> None:
        return None

    def workspace_path(self, session: SandboxSession, relative: str) -> str:
        return str(Path(session.working_dir) / relative)  # type: ignore[arg-type]

    def exec_spec(
        self,
        session: SandboxSession,
        command: Sequence[str],
        env: Optional[Dict[str, str]] = None,
    ) -> ExecSpec:
        if self.inherit_env:
            process_env = os.environ.copy()
        else:
            process_env = {
                "PATH": os.environ.get("PATH", os.defpath),
                "LANG": os.environ.get("LANG", "C.UTF-8"),
            }
        process_env["HOME"] = str(session.working_dir)
        process_env.update(_SANDBOX_ENV)
        if env:
            process_env.update(env)
        return ExecSpec(argv=list(command), cwd=session.working_dir, env=process_env)

    async def check_health(self) -> Tuple[bool, str]:
        return True, "local runtime (no isolation)"


class DockerRuntime(ContainerRuntime):
    """Per-session dormant containers driven through the docker CLI."""

    name = "docker"
    isolated = True

    def __init__(
        self,
        docker_binary: str = "docker",
        runtime: Optional[str] = None,
        user: Optional[str] = None,
        pids_limit: int = 128,
        internal_network: str = "codebox-internal",
        images: Optional[Dict] = None,
    ):
        self.docker_binary = docker_binary
        self.runtime = runtime
        self.user = user
        self.pids_limit = pids_limit
        self.internal_network = internal_network
        self.images = dict(images or LANGUAGE_IMAGES)
        self._internal_network_ready = False
        self._network_lock = asyncio.Lock()

    # ==================== CLI plumbing ====================

    async def _run_cli(self, *args: str, timeout: float = CLI_TIMEOUT_SECONDS) -> Tuple[int, str, str]:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.docker_binary,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise ContainerRuntimeError(
                f"Docker CLI not found ({self.docker_binary}). Install Docker or set SANDBOX_MODE=local."
            ) from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise ContainerRuntimeError(f"docker {args[0]} timed out after {timeout}s")

        return (
            proc.returncode if proc.returncode is not None else -1,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )

    @staticmethod
    def _already_clean(stderr: str) -> bool:
        lowered = stderr.lower()
        return any(marker in lowered for marker in _ALREADY_CLEAN_MARKERS)

    # ==================== Provisioning ====================

    def network_mode(self, policy: NetworkPolicy) -> str:
        if policy == NetworkPolicy.NONE:
            return "none"
        if policy == NetworkPolicy.INTERNAL:
            return self.internal_network
        return "bridge"

    def container_name(self, session: SandboxSession) -> str:
        return f"codebox-{session.id}"

    def build_create_args(self, session: SandboxSession) -> List[str]:
        """Arguments for ``docker create`` of a session's dormant container."""
        limits = session.resource_limits
        workdir = Path(session.working_dir).resolve()  # type: ignore[arg-type]
        tmpfs_size = (limits.disk_space or DEFAULT_TMPFS_SIZE).lower()

        args = [
            "create",
            "--name", self.container_name(session),
            "--label", f"codebox.session={session.id}",
            "-w", CONTAINER_WORKDIR,
            "-v", f"{workdir}:{CONTAINER_WORKDIR}:rw",
            "--memory", limits.memory,
            "--cpus", limits.cpu,
            "--network", self.network_mode(session.network_policy),
            "--read-only",
            "--tmpfs", f"/tmp:rw,nosuid,size={tmpfs_size}",
            "--security-opt", "no-new-privileges:true",
            "--cap-drop", "ALL",
            "--pids-limit", str(self.pids_limit),
        ]
        if self.user:
            args.extend(["--user", self.user])
        if self.runtime:
            args.extend(["--runtime", self.runtime])

        args.extend([self.images[session.language], "tail", "-f", "/dev/null"])
        return args

    async def _ensure_internal_network(self) -> None:
        async with self._network_lock:
            if self._internal_network_ready:
                return
            rc, _, _ = await self._run_cli("network", "inspect", self.internal_network)
            if rc != 0:
                rc, _, err = await self._run_cli("network", "create", "--internal", self.internal_network)
                if rc != 0 and "already exists" not in err.lower():
                    raise ProvisioningError(f"Docker network create failed: {err.strip()}")
            self._internal_network_ready = True

    async def create_container(self, session: SandboxSession) -> Optional[str]:
        try:
            if session.network_policy == NetworkPolicy.INTERNAL:
                await self._ensure_internal_network()

            rc, out, err = await self._run_cli(*self.build_create_args(session))
            if rc != 0:
                raise ProvisioningError(f"Docker create failed: {err.strip()}")
            container_id = out.strip()

            rc, _, err = await self._run_cli("start", container_id)
            if rc != 0:
                # Never leave a created-but-dead container behind
                await self._run_cli("rm", "-f", container_id)
                raise ProvisioningError(f"Docker start failed: {err.strip()}")
        except ContainerRuntimeError as e:
            raise ProvisioningError(str(e)) from e

        logger.info("container_started", session_id=session.id, container_id=container_id[:12])
        return container_id

    async def stop_container(self, container_id: str) -> None:
        rc, _, err = await self._run_cli("stop", "-t", "1", container_id)
        if rc != 0 and not self._already_clean(err):
            raise ContainerRuntimeError(f"Docker stop failed: {err.strip()}")

    async def remove_container(self, container_id: str) -> None:
        rc, _, err = await self._run_cli("rm", "-f", container_id)
        if rc != 0 and not self._already_clean(err):
            raise ContainerRuntimeError(f"Docker rm failed: {err.strip()}")

    # ==================== Execution ====================

    def workspace_path(self, session: SandboxSession, relative: str) -> str:
        return f"{CONTAINER_WORKDIR}/{relative}"

    def exec_spec(
        self,
        session: SandboxSession,
        command: Sequence[str],
        env: Optional[Dict[str, str]] = None,
    ) -> ExecSpec:
        if not session.container_id:
            raise ContainerRuntimeError(f"Session {session.id} has no container")

        sandbox_env = {"HOME": CONTAINER_WORKDIR, **_SANDBOX_ENV, **(env or {})}
        argv = [self.docker_binary, "exec", "-w", CONTAINER_WORKDIR]
        for key, value in sorted(sandbox_env.items()):
            argv.extend(["-e", f"{key}={value}"])
        argv.append(session.container_id)
        argv.extend(command)

        # The docker client itself runs on the host with the host environment
        return ExecSpec(argv=argv, cwd=None, env=os.environ.copy())

    async def terminate_processes(self, session: SandboxSession) -> None:
        # Killing the exec client does not kill the process inside the container.
        # kill -1 signals everything except PID 1 (the placeholder) and the shell itself.
        if not session.container_id:
            return
        await self._run_cli("exec", session.container_id, "sh", "-c", "kill -9 -1", timeout=10)

    async def check_health(self) -> Tuple[bool, str]:
        try:
            rc, out, err = await self._run_cli("info", "--format", "{{.ServerVersion}}", timeout=5)
        except ContainerRuntimeError as e:
            return False, str(e)
        if rc != 0:
            return False, (err or out).strip() or "docker daemon unavailable"
        return True, f"docker daemon ready (server {out.strip() or 'unknown'})"


def create_runtime(config: SandboxConfig) -> ContainerRuntime:
    """Build the runtime selected by configuration."""
    if config.use_docker:
        return DockerRuntime(
            docker_binary=config.docker_binary,
            runtime=config.docker_runtime,
            user=config.docker_user,
            pids_limit=config.pids_limit,
            internal_network=config.internal_network,
        )
    return NoopLocalRuntime(inherit_env=config.inherit_env)
