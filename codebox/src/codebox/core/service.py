"""
Sandbox Service

The composition root for the sandbox core: wires configuration, storage, the
container runtime, the execution engine and the sweeper into a single object
that the HTTP layer and the CLI hold on to. Nothing in the core is a module-level
singleton; tests build a service around a temporary root and a fake runtime.
"""

from typing import Any, Dict, List, Optional, Sequence

from codebox.config import SandboxConfig
from codebox.core.artifacts import ArtifactCollector
from codebox.core.database import DatabaseManager
from codebox.core.engine import ExecutionEngine
from codebox.core.errors import CleanupError, SessionNotFoundError
from codebox.core.lifecycle import SessionLifecycle
from codebox.core.models import (
    Artifact,
    AuxFile,
    ExecutionRequest,
    ExecutionResult,
    Language,
    NetworkPolicy,
    ResourceLimits,
    SandboxSession,
)
from codebox.core.runtime import ContainerRuntime, create_runtime
from codebox.core.session_store import SessionStore
from codebox.core.sweeper import SessionSweeper, SweepScheduler
from codebox.core.workspace import WorkspaceFiles
from codebox.monitoring.logging import SandboxEventLogger, get_logger

logger = get_logger(__name__)


class SandboxService:
    """Code-execution sandbox with sessions, artifacts and expiry."""

    def __init__(
        self,
        config: SandboxConfig,
        db: Optional[DatabaseManager] = None,
        runtime: Optional[ContainerRuntime] = None,
        events: Optional[SandboxEventLogger] = None,
    ):
        self.config = config
        self.db = db or DatabaseManager(config.database_url)
        self.db.create_tables()

        self.runtime = runtime or create_runtime(config)
        self.events = events or SandboxEventLogger()

        default_limits = ResourceLimits(
            cpu=config.default_cpu,
            memory=config.default_memory,
            timeout=config.default_timeout_ms,
        )
        self.store = SessionStore(self.db, config.sandbox_root, default_limits)
        self.lifecycle = SessionLifecycle(self.store, self.runtime, self.events)
        self.collector = ArtifactCollector(
            max_bytes=config.max_artifact_bytes,
            recursive=config.artifact_recursive,
        )
        self.engine = ExecutionEngine(self.lifecycle, self.collector, config, self.events)
        self.sweeper = SessionSweeper(self.lifecycle, config.session_max_age_seconds)
        self.scheduler = SweepScheduler(
            self.sweeper,
            interval_seconds=config.sweep_interval_seconds,
            enabled=config.sweep_enabled,
        )

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        """Reap orphans (when enabled) and start the periodic sweep."""
        if self.config.reap_orphans_on_startup:
            await self.sweeper.reap_orphans()
        await self.scheduler.start()

    async def shutdown(self) -> None:
        """Stop the sweep and release every live session; live state does not survive a restart."""
        await self.scheduler.stop()
        for session in self.store.list_live():
            try:
                await self.lifecycle.cleanup(session.id, reason="shutdown")
            except CleanupError as e:
                logger.error("shutdown_cleanup_failed", session_id=session.id, error=str(e))

    # ==================== Sessions ====================

    async def create_session(
        self,
        user_id: int,
        language: Any,
        resource_limits: Optional[Dict[str, Any]] = None,
        network_policy: Any = None,
    ) -> SandboxSession:
        return await self.lifecycle.provision(
            user_id=user_id,
            language=Language.parse(language),
            limits=resource_limits,
            network_policy=NetworkPolicy.parse(network_policy),
        )

    def get_session(self, session_id: str) -> SandboxSession:
        """Live session, or its durable record once it is gone."""
        session = self.store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def delete_session(self, session_id: str) -> bool:
        """Force stop and clean up. Returns False when the session was already stopped."""
        self.get_session(session_id)
        return await self.lifecycle.cleanup(session_id, reason="delete")

    def list_artifacts(self, session_id: str) -> List[Artifact]:
        self.get_session(session_id)
        return self.store.list_artifacts(session_id)

    def files(self, session_id: str) -> WorkspaceFiles:
        """File-system tool for a live session's working directory."""
        session = self.lifecycle.require_live(session_id)
        return WorkspaceFiles(session.working_dir, max_read_bytes=self.config.max_artifact_bytes)  # type: ignore[arg-type]

    # ==================== Execution ====================

    async def execute(self, request: ExecutionRequest, user_id: int = 0) -> ExecutionResult:
        return await self.engine.execute(request, user_id=user_id)

    async def execute_in_session(
        self,
        session_id: str,
        code: str,
        files: Sequence[AuxFile] = (),
        timeout_ms: Optional[int] = None,
        env: Optional[Dict[str, str]] = None,
        user_id: int = 0,
    ) -> ExecutionResult:
        session = self.lifecycle.require_live(session_id)
        request = ExecutionRequest(
            language=session.language,
            code=code,
            session_id=session_id,
            files=list(files),
            timeout_ms=timeout_ms,
            env=dict(env or {}),
        )
        return await self.engine.execute(request, user_id=user_id)

    # ==================== Maintenance ====================

    async def sweep(self, max_age_seconds: Optional[int] = None) -> Dict[str, Any]:
        return await self.sweeper.sweep(max_age_seconds)

    async def reap_orphans(self) -> Dict[str, Any]:
        return await self.sweeper.reap_orphans()

    def stats(self) -> Dict[str, Any]:
        return {
            "isolation": self.runtime.name,
            "live_sessions": self.store.live_count(),
            "executions": self.engine.get_stats(),
            "sweeper_running": self.scheduler.is_running,
        }

    async def health(self) -> Dict[str, Any]:
        runtime_ok, runtime_message = await self.runtime.check_health()
        db_ok, db_message = self.db.health_check()
        return {
            "status": "healthy" if runtime_ok and db_ok else "unhealthy",
            "components": {
                "runtime": {"healthy": runtime_ok, "mode": self.runtime.name, "message": runtime_message},
                "database": {"healthy": db_ok, "message": db_message},
            },
            "live_sessions": self.store.live_count(),
        }
