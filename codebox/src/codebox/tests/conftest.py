"""
Test Configuration and Fixtures

Provides:
- Temporary directories, database and configuration
- A local-mode SandboxService using the running interpreter as python3
- A fake container runtime that records lifecycle calls
"""

import shutil
import sys
import tempfile
from pathlib import Path
from typing import Generator, List, Optional, Tuple

import pytest

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from codebox.config import SandboxConfig  # noqa: E402
from codebox.core.errors import ContainerRuntimeError, ProvisioningError  # noqa: E402
from codebox.core.runtime import NoopLocalRuntime  # noqa: E402


NODE_AVAILABLE = shutil.which("node") is not None


class FakeContainerRuntime(NoopLocalRuntime):
    """
    Local execution that pretends to be containerized.

    Hands out fake container ids and records every lifecycle call so tests can
    check ordering and failure handling without a docker daemon.
    """

    name = "fake"

    def __init__(self):
        super().__init__()
        self.calls: List[Tuple[str, str]] = []
        self.fail_create: Optional[str] = None
        self.fail_stop: Optional[str] = None
        self.fail_remove: Optional[str] = None

    async def create_container(self, session):
        self.calls.append(("create", session.id))
        if self.fail_create:
            raise ProvisioningError(self.fail_create)
        return f"fake-{session.id[:12]}"

    async def stop_container(self, container_id):
        self.calls.append(("stop", container_id))
        if self.fail_stop:
            raise ContainerRuntimeError(self.fail_stop)

    async def remove_container(self, container_id):
        self.calls.append(("remove", container_id))
        if self.fail_remove:
            raise ContainerRuntimeError(self.fail_remove)

    def call_names(self) -> List[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test data."""
    with tempfile.TemporaryDirectory(ignore_cleanup_errors=True) as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_db_path(temp_dir: Path) -> Path:
    """Get test database path."""
    return temp_dir / "test.db"


@pytest.fixture
def database_manager(test_db_path: Path):
    """Create a database manager for testing."""
    from codebox.core.database import DatabaseManager
    db = DatabaseManager(database_url=f"sqlite:///{test_db_path}")
    db.create_tables()
    yield db
    db.engine.dispose()


@pytest.fixture
def sandbox_root(temp_dir: Path) -> Path:
    return temp_dir / "sandbox"


@pytest.fixture
def sandbox_config(test_db_path: Path, sandbox_root: Path) -> SandboxConfig:
    """Local-mode configuration rooted in the temp directory."""
    return SandboxConfig(
        database_url=f"sqlite:///{test_db_path}",
        sandbox_root=sandbox_root,
        isolation_mode="local",
        python_command=sys.executable,
        node_command="node",
        default_timeout_ms=15000,
        max_timeout_ms=60000,
        sweep_enabled=False,
        reap_orphans_on_startup=False,
        inherit_env=False,
        cors_origins=["http://localhost:3000"],
        log_json=False,
    )


@pytest.fixture
def session_store(database_manager, sandbox_root: Path):
    """Create a session store for testing."""
    from codebox.core.session_store import SessionStore
    return SessionStore(database_manager, sandbox_root)


@pytest.fixture
def sandbox_service(sandbox_config, database_manager):
    """SandboxService on the local runtime."""
    from codebox.core.service import SandboxService
    return SandboxService(sandbox_config, db=database_manager)


@pytest.fixture
def fake_runtime() -> FakeContainerRuntime:
    return FakeContainerRuntime()


@pytest.fixture
def fake_service(sandbox_config, database_manager, fake_runtime):
    """SandboxService on the recording fake runtime."""
    from codebox.core.service import SandboxService
    return SandboxService(sandbox_config, db=database_manager, runtime=fake_runtime)
