"""
Session Lifecycle

Provisioning and teardown of sessions on top of a ContainerRuntime. The
teardown path here is the only one: explicit deletes, one-shot executions and
the expiry sweeper all go through ``SessionLifecycle.cleanup``.

Teardown order is stop, remove, delete directory, then evict. A crash part-way
leaves at worst an untracked container or directory (which the orphan reaper
picks up), never a tracked session pointing at deleted resources.
"""

import asyncio
from typing import Any, Dict, Optional

from codebox.core.errors import (
    CleanupError,
    ContainerRuntimeError,
    ProvisioningError,
    SessionNotFoundError,
    SessionStateError,
)
from codebox.core.models import (
    Language,
    NetworkPolicy,
    SandboxSession,
    SessionStatus,
    utc_now,
)
from codebox.core.runtime import ContainerRuntime
from codebox.core.session_store import SessionStore
from codebox.core.workspace import remove_working_dir
from codebox.monitoring.logging import SandboxEventLogger, get_logger

logger = get_logger(__name__)


class SessionLifecycle:
    """Creates and reclaims sessions. Owns the per-session locks."""

    def __init__(
        self,
        store: SessionStore,
        runtime: ContainerRuntime,
        events: Optional[SandboxEventLogger] = None,
    ):
        self.store = store
        self.runtime = runtime
        self.events = events or SandboxEventLogger()
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock_for(self, session_id: str) -> asyncio.Lock:
        """Lock serializing executions and teardown of one session."""
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    def require_live(self, session_id: str) -> SandboxSession:
        """
        Resolve a session that can still run code.

        Raises:
            SessionNotFoundError: unknown in both tiers
            SessionStateError: only the durable record is left (stopped, failed,
                or from a previous process)
        """
        session = self.store.get_live(session_id)
        if session is not None:
            return session
        record = self.store.get(session_id)
        if record is None:
            raise SessionNotFoundError(session_id)
        raise SessionStateError(f"Session {session_id} is {record.status.value} and no longer accepts work")

    async def provision(
        self,
        user_id: int,
        language: Language,
        limits: Optional[Dict[str, Any]] = None,
        network_policy: Optional[NetworkPolicy] = None,
        ephemeral: bool = False,
    ) -> SandboxSession:
        """
        Create a session and bring its runtime up.

        On failure the session is recorded with status ``error``, its working
        directory is removed and it is no longer tracked as live.

        Raises:
            ValidationError: invalid limits
            ProvisioningError: the isolated runtime could not be started
        """
        session = self.store.create(
            user_id=user_id,
            language=language,
            limits=limits,
            network_policy=network_policy,
            ephemeral=ephemeral,
        )

        container_id = None
        try:
            container_id = await self.runtime.create_container(session)
            session.container_id = container_id
            session.status = SessionStatus.RUNNING
            session.started_at = utc_now()
            self.store.update(session)
        except Exception as e:
            if container_id:
                await self._discard_container(container_id)
            self._fail(session, e)
            if isinstance(e, ProvisioningError):
                raise
            raise ProvisioningError(f"Failed to start session runtime: {e}") from e

        self.events.log_session_created(
            session_id=session.id,
            user_id=user_id,
            language=language.value,
            isolation=self.runtime.name,
            container_id=container_id,
            network_policy=session.network_policy.value,
            ephemeral=ephemeral,
        )
        return session

    async def _discard_container(self, container_id: str) -> None:
        try:
            await self.runtime.remove_container(container_id)
        except ContainerRuntimeError as e:
            logger.error("container_discard_failed", container_id=container_id, error=str(e))

    def _fail(self, session: SandboxSession, error: Exception) -> None:
        session.status = SessionStatus.ERROR
        session.container_id = None
        session.stopped_at = utc_now()
        try:
            self.store.update(session)
        except Exception as e:
            logger.error("session_status_persist_failed", session_id=session.id, error=str(e))
        try:
            remove_working_dir(session.working_dir)  # type: ignore[arg-type]
        except OSError as e:
            logger.error("working_dir_remove_failed", session_id=session.id, error=str(e))
        self.store.remove(session.id)
        self._locks.pop(session.id, None)
        self.events.log_session_failed(session.id, str(error))

    async def cleanup(self, session_id: str, reason: str = "delete") -> bool:
        """
        Stop and reclaim a live session.

        Idempotent: returns False when the session is no longer live (already
        cleaned up, or never known), True when this call reclaimed it.

        Raises:
            CleanupError: the container or directory could not be removed; the
                session stays tracked so the cleanup can be retried
        """
        if self.store.get_live(session_id) is None:
            return False

        async with self.lock_for(session_id):
            session = self.store.get_live(session_id)
            if session is None:
                # Reclaimed by a concurrent cleanup while waiting on the lock
                return False
            await self._release(session)

            session.status = SessionStatus.STOPPED
            session.container_id = None
            session.stopped_at = utc_now()
            try:
                self.store.update(session)
                self.store.delete_artifacts(session.id)
            finally:
                self.store.remove(session.id)

        self._locks.pop(session_id, None)
        self.events.log_cleanup(session_id, reason, ephemeral=session.ephemeral)
        return True

    async def _release(self, session: SandboxSession) -> None:
        if session.container_id:
            try:
                await self.runtime.stop_container(session.container_id)
            except ContainerRuntimeError as e:
                # rm -f below still kills a running container
                logger.warning("container_stop_failed", session_id=session.id, error=str(e))
            try:
                await self.runtime.remove_container(session.container_id)
            except ContainerRuntimeError as e:
                raise CleanupError(f"Failed to remove container for session {session.id}: {e}") from e

        try:
            remove_working_dir(session.working_dir)  # type: ignore[arg-type]
        except OSError as e:
            raise CleanupError(f"Failed to remove working directory for session {session.id}: {e}") from e
