"""
Execution Engine

Runs one ExecutionRequest to completion or forced termination and turns the
outcome into an ExecutionResult.

Only validation and provisioning failures are raised out of ``execute``.
Timeouts, non-zero exits, interpreter spawn failures and artifact problems are
all reported inside the result.
"""

import asyncio
from typing import Any, Dict, Optional

from codebox.config import SandboxConfig
from codebox.core.artifacts import ArtifactCollector
from codebox.core.errors import CleanupError, ValidationError
from codebox.core.lifecycle import SessionLifecycle
from codebox.core.models import (
    ENTRYPOINT_FILES,
    INTERPRETERS,
    ExecutionRequest,
    ExecutionResult,
    Language,
    SandboxSession,
)
from codebox.core.process import ProcessOutcome, run_with_deadline
from codebox.core.workspace import check_relative_path, write_inputs
from codebox.monitoring.logging import SandboxEventLogger, get_logger

logger = get_logger(__name__)


def timeout_message(timeout_ms: int) -> str:
    return f"Execution timeout ({timeout_ms}ms)"


class ExecutionEngine:
    """Executes submitted code inside sessions."""

    def __init__(
        self,
        lifecycle: SessionLifecycle,
        collector: ArtifactCollector,
        config: SandboxConfig,
        events: Optional[SandboxEventLogger] = None,
    ):
        self.lifecycle = lifecycle
        self.store = lifecycle.store
        self.runtime = lifecycle.runtime
        self.collector = collector
        self.config = config
        self.events = events or lifecycle.events

        if self.runtime.isolated:
            self.interpreters = dict(INTERPRETERS)
        else:
            self.interpreters = {
                Language.PYTHON: config.python_command,
                Language.NODE: config.node_command,
            }

        self._stats = {
            "total_executions": 0,
            "successful": 0,
            "failed": 0,
            "timeouts": 0,
            "spawn_errors": 0,
        }

    def effective_timeout(self, session: SandboxSession, override: Optional[int]) -> int:
        """Request override or session default, clamped to the configured maximum."""
        timeout_ms = override if override is not None else session.resource_limits.timeout
        return min(timeout_ms, self.config.max_timeout_ms)

    async def execute(self, request: ExecutionRequest, user_id: int = 0) -> ExecutionResult:
        """
        Run a request.

        Without ``request.session_id`` a disposable session is created for the
        run and torn down once the result is assembled, whatever the outcome.
        With one, the session's own language is used.

        Raises:
            ValidationError: non-executable language or bad input paths
            SessionNotFoundError: unknown session
            SessionStateError: the session is no longer live
            ProvisioningError: the implicit session's runtime failed to start
        """
        for aux in request.files:
            check_relative_path(aux.path)

        implicit = request.session_id is None
        if implicit:
            self._check_executable(request.language)
            session = await self.lifecycle.provision(
                user_id=user_id,
                language=request.language,
                ephemeral=True,
            )
        else:
            session = self.lifecycle.require_live(request.session_id)  # type: ignore[arg-type]
            self._check_executable(session.language)

        try:
            async with self.lifecycle.lock_for(session.id):
                # Cleaned up while this call waited on the lock
                self.lifecycle.require_live(session.id)
                return await self._run(session, request)
        finally:
            if implicit:
                try:
                    await self.lifecycle.cleanup(session.id, reason="one-shot")
                except CleanupError as e:
                    logger.error("implicit_session_cleanup_failed", session_id=session.id, error=str(e))

    def _check_executable(self, language: Language) -> None:
        if not language.executable:
            raise ValidationError(f"Language '{language.value}' does not support code execution")

    async def _run(self, session: SandboxSession, request: ExecutionRequest) -> ExecutionResult:
        timeout_ms = self.effective_timeout(session, request.timeout_ms)
        entrypoint = ENTRYPOINT_FILES[session.language]
        loop = asyncio.get_running_loop()
        # Blocking file IO stays off the event loop
        await loop.run_in_executor(
            None, write_inputs, session.working_dir, entrypoint, request.code, request.files,
        )

        command = [
            self.interpreters[session.language],
            self.runtime.workspace_path(session, entrypoint),
        ]
        spec = self.runtime.exec_spec(session, command, request.env)

        async def terminate_in_runtime() -> None:
            await self.runtime.terminate_processes(session)

        try:
            outcome = await run_with_deadline(
                spec.argv,
                timeout_ms,
                cwd=spec.cwd,
                env=spec.env,
                max_output_bytes=self.config.max_output_bytes,
                on_timeout=terminate_in_runtime if self.runtime.isolated else None,
            )
        except OSError as e:
            self._stats["spawn_errors"] += 1
            logger.error("interpreter_spawn_failed", session_id=session.id, argv0=spec.argv[0], error=str(e))
            result = ExecutionResult(
                success=False,
                session_id=session.id,
                error=f"Failed to start {session.language.value} interpreter: {e}",
                exit_code=-1,
            )
        else:
            result = self._build_result(session, outcome, timeout_ms)

        # Failed runs still leave files behind
        result.artifacts = await loop.run_in_executor(
            None, self.collector.collect, session.id, session.working_dir,
        )
        if not session.ephemeral:
            try:
                self.store.replace_artifacts(session.id, result.artifacts)
            except Exception as e:
                logger.error("artifact_persist_failed", session_id=session.id, error=str(e))

        self._record(result)
        self.events.log_execution(
            session_id=session.id,
            language=session.language.value,
            success=result.success,
            timed_out=result.timed_out,
            exit_code=result.exit_code,
            duration_ms=result.duration_ms,
            artifact_count=len(result.artifacts),
        )
        return result

    def _build_result(self, session: SandboxSession, outcome: ProcessOutcome, timeout_ms: int) -> ExecutionResult:
        if outcome.timed_out:
            success = False
            error: Optional[str] = timeout_message(timeout_ms)
        elif outcome.exit_code == 0:
            success = True
            error = None
        else:
            success = False
            error = outcome.stderr.strip() or f"Process exited with code {outcome.exit_code}"

        return ExecutionResult(
            success=success,
            session_id=session.id,
            output=outcome.stdout,
            error=error,
            stderr=outcome.stderr,
            exit_code=outcome.exit_code,
            duration_ms=outcome.duration_ms,
            timed_out=outcome.timed_out,
        )

    def _record(self, result: ExecutionResult) -> None:
        self._stats["total_executions"] += 1
        if result.success:
            self._stats["successful"] += 1
        elif result.timed_out:
            self._stats["timeouts"] += 1
        else:
            self._stats["failed"] += 1

    def get_stats(self) -> Dict[str, Any]:
        """Get execution statistics."""
        return dict(self._stats)
