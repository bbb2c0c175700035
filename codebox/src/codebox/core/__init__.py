"""
Codebox Core Components

Sessions, isolation runtimes, execution and artifact collection.
"""

from codebox.core.errors import (
    SandboxError,
    ValidationError,
    PathTraversalError,
    SessionNotFoundError,
    SessionStateError,
    ProvisioningError,
    ContainerRuntimeError,
    CleanupError,
)
from codebox.core.models import (
    Language,
    NetworkPolicy,
    SessionStatus,
    ResourceLimits,
    SandboxSession,
    Artifact,
    AuxFile,
    ExecutionRequest,
    ExecutionResult,
)
from codebox.core.runtime import ContainerRuntime, DockerRuntime, NoopLocalRuntime, create_runtime
from codebox.core.service import SandboxService

__all__ = [
    # Errors
    "SandboxError",
    "ValidationError",
    "PathTraversalError",
    "SessionNotFoundError",
    "SessionStateError",
    "ProvisioningError",
    "ContainerRuntimeError",
    "CleanupError",
    # Models
    "Language",
    "NetworkPolicy",
    "SessionStatus",
    "ResourceLimits",
    "SandboxSession",
    "Artifact",
    "AuxFile",
    "ExecutionRequest",
    "ExecutionResult",
    # Runtimes
    "ContainerRuntime",
    "DockerRuntime",
    "NoopLocalRuntime",
    "create_runtime",
    # Service
    "SandboxService",
]
