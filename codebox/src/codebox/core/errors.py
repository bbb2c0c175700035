"""
Sandbox error taxonomy.

Only validation and provisioning errors are fatal to a request. Anything that
goes wrong after a process has been started is reported inside the
ExecutionResult instead.
"""


class SandboxError(Exception):
    """Base exception for sandbox errors."""
    pass


class ValidationError(SandboxError):
    """Raised when a request is rejected before any process or container is touched."""
    pass


class PathTraversalError(ValidationError):
    """Raised when a workspace-relative path resolves outside the working directory."""
    pass


class SessionNotFoundError(SandboxError):
    """Raised when a session id is unknown to the live store."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class WorkspaceFileNotFoundError(SandboxError):
    """Raised when a workspace file or directory does not exist."""

    def __init__(self, path: str):
        super().__init__(f"File not found: {path}")
        self.path = path


class SessionStateError(SandboxError):
    """Raised when a session exists but cannot accept the requested operation."""
    pass


class ProvisioningError(SandboxError):
    """Raised when an isolated runtime cannot be created or started."""
    pass


class ContainerRuntimeError(SandboxError):
    """Raised when the container runtime fails for a reason other than an already-clean state."""
    pass


class CleanupError(SandboxError):
    """Raised when a session's resources could not be reclaimed."""
    pass
