"""
Codebox Configuration

Environment-based configuration for the sandbox service.
"""

import os
import logging
import tempfile
from pathlib import Path
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger(__name__)


ISOLATION_MODES = ("local", "docker")


class ConfigurationError(Exception):
    """Raised when configuration is invalid."""
    pass


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def _default_isolation_mode() -> str:
    mode = os.getenv("SANDBOX_MODE")
    if mode:
        return mode.lower()
    # Older deployments toggled docker with a boolean flag
    return "docker" if _env_bool("SANDBOX_USE_DOCKER") else "local"


def _default_docker_runtime() -> Optional[str]:
    runtime = os.getenv("SANDBOX_DOCKER_RUNTIME")
    if runtime:
        return runtime
    return "runsc" if _env_bool("SANDBOX_USE_GVISOR") else None


def _default_docker_user() -> Optional[str]:
    user = os.getenv("SANDBOX_DOCKER_USER")
    if user:
        return user
    if hasattr(os, "getuid"):
        return f"{os.getuid()}:{os.getgid()}"
    return None


@dataclass
class SandboxConfig:
    """Configuration for the codebox service."""

    # Database
    database_url: str = field(default_factory=lambda: os.getenv("DATABASE_URL", "sqlite:///./codebox_data/codebox.db"))
    db_path: Optional[Path] = None

    # Server
    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))  # nosec B104
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "8000")))

    # Sandbox filesystem
    sandbox_root: Path = field(default_factory=lambda: Path(
        os.getenv("SANDBOX_ROOT", os.path.join(tempfile.gettempdir(), "codebox-sandbox"))
    ))

    # Isolation
    isolation_mode: str = field(default_factory=_default_isolation_mode)
    docker_binary: str = field(default_factory=lambda: os.getenv("SANDBOX_DOCKER_BINARY", "docker"))
    docker_runtime: Optional[str] = field(default_factory=_default_docker_runtime)
    docker_user: Optional[str] = field(default_factory=_default_docker_user)
    pids_limit: int = field(default_factory=lambda: int(os.getenv("SANDBOX_PIDS_LIMIT", "128")))
    internal_network: str = field(default_factory=lambda: os.getenv("SANDBOX_INTERNAL_NETWORK", "codebox-internal"))

    # Default resource limits
    default_cpu: str = field(default_factory=lambda: os.getenv("SANDBOX_DEFAULT_CPU", "0.5"))
    default_memory: str = field(default_factory=lambda: os.getenv("SANDBOX_DEFAULT_MEMORY", "256M"))
    default_timeout_ms: int = field(default_factory=lambda: int(os.getenv("SANDBOX_DEFAULT_TIMEOUT_MS", "30000")))
    max_timeout_ms: int = field(default_factory=lambda: int(os.getenv("SANDBOX_MAX_TIMEOUT_MS", "300000")))

    # Output and artifacts
    max_output_bytes: int = field(default_factory=lambda: int(os.getenv("SANDBOX_MAX_OUTPUT_BYTES", str(1024 * 1024))))
    max_artifact_bytes: int = field(default_factory=lambda: int(os.getenv("SANDBOX_MAX_ARTIFACT_BYTES", str(10 * 1024 * 1024))))
    artifact_recursive: bool = field(default_factory=lambda: _env_bool("SANDBOX_ARTIFACT_RECURSIVE"))

    # Expiry
    session_max_age_seconds: int = field(default_factory=lambda: int(os.getenv("SANDBOX_SESSION_MAX_AGE_SECONDS", "3600")))
    sweep_interval_seconds: int = field(default_factory=lambda: int(os.getenv("SANDBOX_SWEEP_INTERVAL_SECONDS", "300")))
    sweep_enabled: bool = field(default_factory=lambda: _env_bool("SANDBOX_SWEEP_ENABLED", "true"))
    reap_orphans_on_startup: bool = field(default_factory=lambda: _env_bool("SANDBOX_REAP_ORPHANS_ON_STARTUP"))

    # Interpreters (local mode resolves these on PATH; docker mode runs them in the image)
    python_command: str = field(default_factory=lambda: os.getenv("SANDBOX_PYTHON_COMMAND", "python3"))
    node_command: str = field(default_factory=lambda: os.getenv("SANDBOX_NODE_COMMAND", "node"))
    inherit_env: bool = field(default_factory=lambda: _env_bool("SANDBOX_INHERIT_ENV"))

    # CORS
    cors_origins: List[str] = field(default_factory=list)

    # Logging
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_json: bool = field(default_factory=lambda: _env_bool("LOG_JSON", "true"))
    log_file: Optional[str] = field(default_factory=lambda: os.getenv("LOG_FILE") or None)

    def __post_init__(self):
        self.sandbox_root = Path(self.sandbox_root)
        self.isolation_mode = self.isolation_mode.lower()

        if not self.cors_origins:
            cors_env = os.getenv("CORS_ORIGINS", "http://localhost:3000")
            self.cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]

        # Set up database path
        if self.database_url.startswith("sqlite"):
            db_file = self.database_url.replace("sqlite:///", "")
            if db_file != ":memory:":
                self.db_path = Path(db_file)
                self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def use_docker(self) -> bool:
        return self.isolation_mode == "docker"

    def validate(self) -> List[str]:
        """Validate configuration and return list of warnings."""
        warnings = []

        if self.isolation_mode not in ISOLATION_MODES:
            raise ConfigurationError(
                f"Unknown SANDBOX_MODE '{self.isolation_mode}'. "
                f"Expected one of: {', '.join(ISOLATION_MODES)}"
            )

        if self.default_timeout_ms <= 0 or self.max_timeout_ms <= 0:
            raise ConfigurationError("Sandbox timeouts must be positive")
        if self.default_timeout_ms > self.max_timeout_ms:
            warnings.append(
                f"Default timeout ({self.default_timeout_ms}ms) exceeds the maximum "
                f"({self.max_timeout_ms}ms) and will be clamped."
            )
        if self.max_artifact_bytes <= 0 or self.max_output_bytes <= 0:
            raise ConfigurationError("Output and artifact ceilings must be positive")

        # Local mode runs untrusted code directly on the host
        if not self.use_docker:
            if is_production():
                if _env_bool("ALLOW_LOCAL_IN_PRODUCTION"):
                    warnings.append("Local isolation is enabled in production. Submitted code runs unconfined on the host.")
                else:
                    raise ConfigurationError(
                        "Local isolation cannot be used in production. "
                        "Set SANDBOX_MODE=docker or set ALLOW_LOCAL_IN_PRODUCTION=true to override."
                    )
            else:
                warnings.append("Local isolation mode offers no real isolation; use it for development only.")

        if "sqlite" in self.database_url and is_production():
            warnings.append("Using SQLite in production is not recommended. Use PostgreSQL.")

        if "*" in self.cors_origins and is_production():
            warnings.append("CORS allows all origins (*). Restrict this in production.")

        return warnings


_config_instance: Optional[SandboxConfig] = None


def get_config() -> SandboxConfig:
    """Get the current configuration (cached singleton)."""
    global _config_instance
    if _config_instance is None:
        _config_instance = SandboxConfig()
    return _config_instance


def is_production() -> bool:
    return os.getenv("ENVIRONMENT", "development") == "production"
