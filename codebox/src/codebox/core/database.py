"""
Database Models and Connection Management

Provides:
- SQLAlchemy models for sandbox sessions and artifacts
- Connection management for PostgreSQL and SQLite
- Conversions between rows and the sandbox dataclasses
"""

import json
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple

from sqlalchemy import (
    create_engine, Column, String, Integer, Text, DateTime, ForeignKey, Index, text,
)
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import QueuePool, StaticPool

from codebox.core.models import (
    Artifact,
    Language,
    NetworkPolicy,
    ResourceLimits,
    SandboxSession,
    SessionStatus,
)


Base = declarative_base()


# ============================================================================
# SQLAlchemy Models
# ============================================================================

class SessionModel(Base):  # type: ignore[valid-type,misc]
    """Sandbox session record."""
    __tablename__ = "sessions"

    id = Column(String(64), primary_key=True)
    user_id = Column(Integer, nullable=False, index=True)
    language = Column(String(20), nullable=False)
    container_id = Column(String(128), nullable=True)
    status = Column(String(20), nullable=False, default=SessionStatus.CREATING.value)
    resource_limits_json = Column(Text, default="{}")  # JSON
    network_policy = Column(String(20), nullable=False, default=NetworkPolicy.NONE.value)
    started_at = Column(DateTime(timezone=True), nullable=True)
    stopped_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)

    __table_args__ = (
        Index('ix_sessions_status_created', 'status', 'created_at'),
    )


class ArtifactModel(Base):  # type: ignore[valid-type,misc]
    """Artifact discovered after an execution."""
    __tablename__ = "artifacts"

    id = Column(String(64), primary_key=True)
    session_id = Column(String(64), ForeignKey("sessions.id"), nullable=False, index=True)
    file_path = Column(String(1024), nullable=False)
    file_type = Column(String(50), nullable=True)
    file_size = Column(Integer, nullable=False)
    checksum = Column(String(128), nullable=False)
    storage_path = Column(String(2048), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


# ============================================================================
# Database Connection Management
# ============================================================================

class DatabaseManager:
    """
    Manages database connections and sessions.

    Supports both PostgreSQL (production) and SQLite (development).
    """

    def __init__(self, database_url: Optional[str] = None):
        """
        Initialize database manager.

        Args:
            database_url: Database connection URL. If None, uses DATABASE_URL env var
                          or defaults to SQLite.
        """
        self.database_url: str = database_url or os.getenv(
            "DATABASE_URL",
            "sqlite:///./codebox_data/codebox.db"
        ) or "sqlite:///./codebox_data/codebox.db"

        echo = os.getenv("DB_ECHO", "false").lower() == "true"
        if self.database_url.startswith("sqlite"):
            self.engine = create_engine(
                self.database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool if ":memory:" in self.database_url else QueuePool,
                echo=echo,
            )
        else:
            self.engine = create_engine(
                self.database_url,
                pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
                max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
                pool_pre_ping=True,
                echo=echo,
            )

        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )

    def create_tables(self):
        """Create all tables if they don't exist."""
        Base.metadata.create_all(bind=self.engine)

    def drop_tables(self):
        """Drop all tables (use with caution!)."""
        Base.metadata.drop_all(bind=self.engine)

    @contextmanager
    def get_session(self):
        """
        Get a database session with automatic cleanup.

        Usage:
            with db.get_session() as session:
                session.query(SessionModel).all()
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def health_check(self) -> Tuple[bool, str]:
        """Return (is_healthy, message)."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True, "database reachable"
        except Exception as e:
            return False, f"database unavailable: {e}"

    def dispose(self) -> None:
        self.engine.dispose()


# ============================================================================
# Row conversions
# ============================================================================

def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def session_to_model(session: SandboxSession) -> SessionModel:
    return SessionModel(
        id=session.id,
        user_id=session.user_id,
        language=session.language.value,
        container_id=session.container_id,
        status=session.status.value,
        resource_limits_json=json.dumps(session.resource_limits.to_dict()),
        network_policy=session.network_policy.value,
        started_at=session.started_at,
        stopped_at=session.stopped_at,
        created_at=session.created_at,
    )


def session_from_model(model: SessionModel, sandbox_root: Optional[Path] = None) -> SandboxSession:
    limits_data = json.loads(model.resource_limits_json) if model.resource_limits_json else {}  # type: ignore[arg-type]
    return SandboxSession(
        id=model.id,  # type: ignore[arg-type]
        user_id=model.user_id,  # type: ignore[arg-type]
        language=Language(model.language),
        resource_limits=ResourceLimits.from_dict(limits_data),
        network_policy=NetworkPolicy(model.network_policy),
        status=SessionStatus(model.status),
        working_dir=(sandbox_root / model.id) if sandbox_root else None,  # type: ignore[operator]
        container_id=model.container_id,  # type: ignore[arg-type]
        created_at=_aware(model.created_at),  # type: ignore[arg-type]
        started_at=_aware(model.started_at),  # type: ignore[arg-type]
        stopped_at=_aware(model.stopped_at),  # type: ignore[arg-type]
        live=False,
    )


def artifact_to_model(artifact: Artifact) -> ArtifactModel:
    return ArtifactModel(
        id=artifact.id,
        session_id=artifact.session_id,
        file_path=artifact.file_path,
        file_type=artifact.file_type,
        file_size=artifact.file_size,
        checksum=artifact.checksum,
        storage_path=artifact.storage_path,
        created_at=artifact.created_at,
    )


def artifact_from_model(model: ArtifactModel) -> Artifact:
    return Artifact(
        id=model.id,  # type: ignore[arg-type]
        session_id=model.session_id,  # type: ignore[arg-type]
        file_path=model.file_path,  # type: ignore[arg-type]
        file_type=model.file_type,  # type: ignore[arg-type]
        file_size=model.file_size,  # type: ignore[arg-type]
        checksum=model.checksum,  # type: ignore[arg-type]
        storage_path=model.storage_path,  # type: ignore[arg-type]
        created_at=_aware(model.created_at),  # type: ignore[arg-type]
    )
