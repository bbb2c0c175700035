"""
Session Store

Two-tier store mapping session id to session state:
- a lock-guarded in-memory map of live sessions (the only structure shared by
  the create, execute, cleanup and sweep flows)
- the durable ``sessions``/``artifacts`` tables, which keep session metadata
  inspectable after a restart even though live execution state does not survive it
"""

import shutil
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from codebox.core.database import (
    ArtifactModel,
    DatabaseManager,
    SessionModel,
    artifact_from_model,
    artifact_to_model,
    session_from_model,
    session_to_model,
)
from codebox.core.models import (
    Artifact,
    Language,
    NetworkPolicy,
    ResourceLimits,
    SandboxSession,
    SessionStatus,
    new_id,
)
from codebox.monitoring.logging import get_logger

logger = get_logger(__name__)


class SessionStore:
    """Single source of truth for session id -> session state."""

    def __init__(
        self,
        db: DatabaseManager,
        sandbox_root: Path,
        default_limits: Optional[ResourceLimits] = None,
    ):
        self.db = db
        self.sandbox_root = Path(sandbox_root)
        self.sandbox_root.mkdir(parents=True, exist_ok=True)
        self.default_limits = default_limits or ResourceLimits()

        self._live: Dict[str, SandboxSession] = {}
        self._lock = threading.Lock()

    # ==================== Sessions ====================

    def create(
        self,
        user_id: int,
        language: Language,
        limits: Optional[Dict[str, Any]] = None,
        network_policy: Optional[NetworkPolicy] = None,
        ephemeral: bool = False,
    ) -> SandboxSession:
        """
        Allocate a new session in the ``creating`` state.

        Args:
            user_id: Owning user
            language: Target language
            limits: Wire-format overrides merged over the default limits
            network_policy: Network policy (defaults to ``none``)
            ephemeral: True for the implicit session of a one-shot execution

        Returns:
            The new session, already tracked as live and persisted
        """
        resource_limits = self.default_limits.merged(limits)
        session_id = new_id()
        working_dir = self.sandbox_root / session_id
        working_dir.mkdir(parents=True, exist_ok=False)

        session = SandboxSession(
            id=session_id,
            user_id=user_id,
            language=language,
            resource_limits=resource_limits,
            network_policy=network_policy or NetworkPolicy.NONE,
            status=SessionStatus.CREATING,
            working_dir=working_dir,
            ephemeral=ephemeral,
        )

        try:
            with self.db.get_session() as db:
                db.add(session_to_model(session))
        except Exception:
            shutil.rmtree(working_dir, ignore_errors=True)
            raise

        with self._lock:
            self._live[session_id] = session

        logger.debug("session_allocated", session_id=session_id, working_dir=str(working_dir))
        return session

    def get(self, session_id: str) -> Optional[SandboxSession]:
        """Look up a session: live cache first, then durable storage. None if unknown."""
        live = self.get_live(session_id)
        if live is not None:
            return live

        with self.db.get_session() as db:
            model = db.get(SessionModel, session_id)
            if model is None:
                return None
            return session_from_model(model, self.sandbox_root)

    def get_live(self, session_id: str) -> Optional[SandboxSession]:
        with self._lock:
            return self._live.get(session_id)

    def update(self, session: SandboxSession) -> None:
        """Persist status, handle and timestamp changes."""
        with self.db.get_session() as db:
            model = db.get(SessionModel, session.id)
            if model is None:
                db.add(session_to_model(session))
                return
            model.status = session.status.value
            model.container_id = session.container_id
            model.started_at = session.started_at
            model.stopped_at = session.stopped_at

    def remove(self, session_id: str) -> None:
        """Evict a session from the live cache. Call only after its resources are released."""
        with self._lock:
            self._live.pop(session_id, None)

    def list_live(self) -> List[SandboxSession]:
        with self._lock:
            return list(self._live.values())

    def live_count(self) -> int:
        with self._lock:
            return len(self._live)

    def list_durable(self, statuses: Iterable[SessionStatus]) -> List[SandboxSession]:
        """Durable records in the given states, oldest first."""
        wanted = [s.value for s in statuses]
        with self.db.get_session() as db:
            rows = (
                db.query(SessionModel)
                .filter(SessionModel.status.in_(wanted))
                .order_by(SessionModel.created_at)
                .all()
            )
            return [session_from_model(row, self.sandbox_root) for row in rows]

    # ==================== Artifacts ====================

    def replace_artifacts(self, session_id: str, artifacts: List[Artifact]) -> None:
        """Store ``artifacts`` as the session's current inventory."""
        with self.db.get_session() as db:
            db.query(ArtifactModel).filter(ArtifactModel.session_id == session_id).delete()
            for artifact in artifacts:
                db.add(artifact_to_model(artifact))

    def list_artifacts(self, session_id: str) -> List[Artifact]:
        with self.db.get_session() as db:
            rows = (
                db.query(ArtifactModel)
                .filter(ArtifactModel.session_id == session_id)
                .order_by(ArtifactModel.file_path)
                .all()
            )
            return [artifact_from_model(row) for row in rows]

    def delete_artifacts(self, session_id: str) -> int:
        with self.db.get_session() as db:
            return db.query(ArtifactModel).filter(ArtifactModel.session_id == session_id).delete()
