"""
Sandbox Data Model

Sessions, resource limits, execution requests/results and artifacts, plus the
per-language constants (base images and canonical entry-point filenames).
"""

import math
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from codebox.core.errors import ValidationError


# ============================================================================
# Enums
# ============================================================================

class Language(str, Enum):
    """Sandbox target language."""
    PYTHON = "python"
    NODE = "node"
    WEB = "web"

    @classmethod
    def parse(cls, value: Any) -> "Language":
        if isinstance(value, Language):
            return value
        if not isinstance(value, str) or not value.strip():
            raise ValidationError("language is required")
        normalized = LANGUAGE_ALIASES.get(value.strip().lower())
        if normalized is None:
            raise ValidationError(f"Unsupported language: {value}")
        return normalized

    @property
    def executable(self) -> bool:
        return self in ENTRYPOINT_FILES


LANGUAGE_ALIASES: Dict[str, Language] = {
    "python": Language.PYTHON,
    "py": Language.PYTHON,
    "node": Language.NODE,
    "nodejs": Language.NODE,
    "javascript": Language.NODE,
    "js": Language.NODE,
    "web": Language.WEB,
}


class SessionStatus(str, Enum):
    """Session lifecycle status."""
    CREATING = "creating"
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


class NetworkPolicy(str, Enum):
    """Network reachability of a session's runtime."""
    NONE = "none"
    INTERNAL = "internal"
    EXTERNAL = "external"

    @classmethod
    def parse(cls, value: Any) -> "NetworkPolicy":
        if value is None:
            return cls.NONE
        if isinstance(value, NetworkPolicy):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValidationError(
                f"Unsupported network policy: {value}. "
                f"Expected one of: {', '.join(p.value for p in cls)}"
            )


# ============================================================================
# Language constants
# ============================================================================

LANGUAGE_IMAGES: Dict[Language, str] = {
    Language.PYTHON: "python:3.11-slim",
    Language.NODE: "node:20-slim",
    Language.WEB: "nginx:alpine",
}

ENTRYPOINT_FILES: Dict[Language, str] = {
    Language.PYTHON: "main.py",
    Language.NODE: "main.js",
}

# Interpreter invoked inside a container; local mode takes these from config
INTERPRETERS: Dict[Language, str] = {
    Language.PYTHON: "python3",
    Language.NODE: "node",
}

# Never reported as artifacts, whatever language the session runs
ENTRYPOINT_NAMES = frozenset(ENTRYPOINT_FILES.values())

MAX_ARTIFACT_BYTES = 10 * 1024 * 1024


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# ============================================================================
# Resource Limits
# ============================================================================

_MEMORY_PATTERN = re.compile(r"^\d+(\.\d+)?[bkmg]?$", re.IGNORECASE)


def _validate_timeout(value: Any, name: str = "timeout") -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer number of milliseconds")
    if value <= 0:
        raise ValidationError(f"{name} must be positive")
    return value


def _validate_cpu(value: Any) -> str:
    if isinstance(value, bool):
        raise ValidationError(f"Invalid cpu limit: {value}")
    try:
        cpus = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid cpu limit: {value}")
    if not math.isfinite(cpus):
        raise ValidationError(f"Invalid cpu limit: {value}")
    if cpus <= 0:
        raise ValidationError("cpu limit must be positive")
    return str(value)


def _validate_size(value: Any, name: str) -> str:
    text = str(value).strip()
    if not _MEMORY_PATTERN.match(text):
        raise ValidationError(f"Invalid {name}: {value} (expected e.g. 512M)")
    # docker reads a zero size as "unlimited"
    if float(text.rstrip("bBkKmMgG")) <= 0:
        raise ValidationError(f"{name} must be positive")
    return text


def validate_env(env: Any) -> Dict[str, str]:
    """Check environment overrides before they reach a process spawn."""
    if not isinstance(env, dict):
        raise ValidationError("env must map strings to strings")
    for key, value in env.items():
        if not isinstance(key, str) or not isinstance(value, str):
            raise ValidationError("env must map strings to strings")
        if not key or "=" in key:
            raise ValidationError(f"Invalid env variable name: {key!r}")
        if "\x00" in key or "\x00" in value:
            raise ValidationError(f"env variable {key!r} contains a NUL byte")
    return dict(env)


@dataclass
class ResourceLimits:
    """Resource ceilings applied to one session."""
    cpu: str = "0.5"                 # CPU share, e.g. "0.5"
    memory: str = "256M"             # memory ceiling, e.g. "512M"
    timeout: int = 30000             # wall-clock timeout per execution, ms
    disk_space: Optional[str] = None  # e.g. "100M"

    def __post_init__(self):
        self.cpu = _validate_cpu(self.cpu)
        self.memory = _validate_size(self.memory, "memory limit")
        self.timeout = _validate_timeout(self.timeout)
        if self.disk_space is not None:
            self.disk_space = _validate_size(self.disk_space, "disk space")

    def merged(self, overrides: Optional[Dict[str, Any]]) -> "ResourceLimits":
        """Return a copy with the given wire-format overrides applied."""
        if overrides is None:
            return ResourceLimits(**self.__dict__)
        if not isinstance(overrides, dict):
            raise ValidationError("resourceLimits must be an object")
        data = dict(self.__dict__)
        for key, value in overrides.items():
            attr = _LIMIT_KEYS.get(key)
            if attr is None:
                raise ValidationError(f"Unknown resource limit: {key}")
            if value is not None:
                data[attr] = value
        return ResourceLimits(**data)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "cpu": self.cpu,
            "memory": self.memory,
            "timeout": self.timeout,
        }
        if self.disk_space is not None:
            data["diskSpace"] = self.disk_space
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourceLimits":
        return cls().merged(data)


_LIMIT_KEYS = {
    "cpu": "cpu",
    "memory": "memory",
    "timeout": "timeout",
    "diskSpace": "disk_space",
    "disk_space": "disk_space",
}


# ============================================================================
# Session
# ============================================================================

@dataclass
class SandboxSession:
    """A reusable isolation context."""
    id: str
    user_id: int
    language: Language
    resource_limits: ResourceLimits
    network_policy: NetworkPolicy = NetworkPolicy.NONE
    status: SessionStatus = SessionStatus.CREATING
    working_dir: Optional[Path] = None
    container_id: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None
    # Implicit sessions wrap a single one-shot execution
    ephemeral: bool = False
    # False when the record was loaded from durable storage only
    live: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "language": self.language.value,
            "containerId": self.container_id,
            "status": self.status.value,
            "resourceLimits": self.resource_limits.to_dict(),
            "networkPolicy": self.network_policy.value,
            "workingDir": str(self.working_dir) if self.working_dir else None,
            "startedAt": _iso(self.started_at),
            "stoppedAt": _iso(self.stopped_at),
            "createdAt": _iso(self.created_at),
            "live": self.live,
        }

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "language": self.language.value,
            "status": self.status.value,
            "networkPolicy": self.network_policy.value,
            "startedAt": _iso(self.started_at),
            "createdAt": _iso(self.created_at),
        }


# ============================================================================
# Artifacts
# ============================================================================

@dataclass
class Artifact:
    """A file left in a session's working directory after an execution."""
    id: str
    session_id: str
    file_path: str
    file_type: Optional[str]
    file_size: int
    checksum: str
    storage_path: str
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "filePath": self.file_path,
            "fileType": self.file_type,
            "fileSize": self.file_size,
            "checksum": self.checksum,
            "storagePath": self.storage_path,
            "createdAt": _iso(self.created_at),
        }


# ============================================================================
# Execution
# ============================================================================

@dataclass
class AuxFile:
    """An auxiliary input written next to the entry point."""
    path: str
    content: str


@dataclass
class ExecutionRequest:
    """One invocation of submitted code."""
    language: Language
    code: str
    session_id: Optional[str] = None
    files: List[AuxFile] = field(default_factory=list)
    timeout_ms: Optional[int] = None
    env: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not isinstance(self.code, str) or not self.code.strip():
            raise ValidationError("code is required")
        if self.timeout_ms is not None:
            _validate_timeout(self.timeout_ms)
        self.env = validate_env(self.env)


@dataclass
class ExecutionResult:
    """Outcome of one invocation."""
    success: bool
    session_id: str
    output: str = ""
    error: Optional[str] = None
    stderr: str = ""
    exit_code: Optional[int] = None
    duration_ms: int = 0
    timed_out: bool = False
    artifacts: List[Artifact] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "sessionId": self.session_id,
            "output": self.output,
            "error": self.error,
            "stderr": self.stderr,
            "exitCode": self.exit_code,
            "executionTime": self.duration_ms,
            "timedOut": self.timed_out,
            "artifacts": [a.to_dict() for a in self.artifacts],
        }
