"""
Expiry Sweeper

Provides:
- SessionSweeper: reclaims live sessions older than a maximum age, and reaps
  orphans left behind by a previous process
- SweepScheduler: background task running the sweep periodically
"""

import asyncio
from datetime import timedelta
from typing import Any, Dict, Optional

from codebox.core.errors import CleanupError, ContainerRuntimeError
from codebox.core.lifecycle import SessionLifecycle
from codebox.core.models import SessionStatus, utc_now
from codebox.core.workspace import remove_working_dir
from codebox.monitoring.logging import get_logger

logger = get_logger(__name__)


class SessionSweeper:
    """Reclaims sessions whose creator never stopped them."""

    def __init__(self, lifecycle: SessionLifecycle, max_age_seconds: int = 3600):
        self.lifecycle = lifecycle
        self.store = lifecycle.store
        self.runtime = lifecycle.runtime
        self.max_age_seconds = max_age_seconds

    async def sweep(self, max_age_seconds: Optional[int] = None) -> Dict[str, Any]:
        """
        Clean up every live session older than ``max_age_seconds``.

        Uses the same teardown path as an explicit delete. A session that
        fails to clean up is counted and left tracked for the next sweep.
        """
        max_age = self.max_age_seconds if max_age_seconds is None else max_age_seconds
        cutoff = utc_now() - timedelta(seconds=max_age)

        live = self.store.list_live()
        expired = [s for s in live if s.created_at <= cutoff]

        reclaimed = 0
        failed = 0
        for session in expired:
            try:
                if await self.lifecycle.cleanup(session.id, reason="expired"):
                    reclaimed += 1
            except CleanupError as e:
                failed += 1
                logger.error("sweep_cleanup_failed", session_id=session.id, error=str(e))

        self.lifecycle.events.log_sweep(scanned=len(live), reclaimed=reclaimed, failed=failed)
        return {
            "scanned": len(live),
            "expired": len(expired),
            "reclaimed": reclaimed,
            "failed": failed,
        }

    async def reap_orphans(self) -> Dict[str, Any]:
        """
        Release resources of sessions a previous process left ``creating`` or ``running``.

        Such records are not live here, so nothing else will ever clean them up.
        Their container and directory are removed and the record is marked stopped.
        """
        records = self.store.list_durable([SessionStatus.CREATING, SessionStatus.RUNNING])

        reaped = 0
        failed = 0
        for record in records:
            if self.store.get_live(record.id) is not None:
                continue
            try:
                if record.container_id:
                    await self.runtime.remove_container(record.container_id)
                if record.working_dir is not None:
                    remove_working_dir(record.working_dir)
            except (ContainerRuntimeError, OSError) as e:
                failed += 1
                logger.error("orphan_reap_failed", session_id=record.id, error=str(e))
                continue

            record.status = SessionStatus.STOPPED
            record.container_id = None
            record.stopped_at = utc_now()
            self.store.update(record)
            self.store.delete_artifacts(record.id)
            reaped += 1
            logger.info("orphan_reaped", session_id=record.id)

        return {"scanned": len(records), "reaped": reaped, "failed": failed}


class SweepScheduler:
    """Runs SessionSweeper.sweep on a fixed interval in the background."""

    def __init__(self, sweeper: SessionSweeper, interval_seconds: float = 300, enabled: bool = True):
        self.sweeper = sweeper
        self.interval_seconds = interval_seconds
        self.enabled = enabled

        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the scheduler background task."""
        if self._running:
            logger.warning("sweep_scheduler_already_running")
            return
        if not self.enabled:
            logger.info("sweep_scheduler_disabled")
            return

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info("sweep_scheduler_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Stop the scheduler."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("sweep_scheduler_stopped")

    async def _run(self) -> None:
        """Main scheduler loop."""
        while self._running:
            try:
                await asyncio.sleep(self.interval_seconds)
                await self.sweeper.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("sweep_failed", error=str(e))
