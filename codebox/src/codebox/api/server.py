"""
FastAPI Server for Codebox

HTTP API for the code-execution sandbox.
Provides endpoints for:
- One-shot execution
- Reusable sessions (create, execute, inspect, delete)
- Artifact listing
- Workspace file access
- Sweeping, health and statistics

Authentication is handled upstream; the calling user is passed in the
X-User-ID header.
"""

import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from codebox import __version__
from codebox.api.models import (
    CreateSessionBody,
    ExecuteBody,
    SessionExecuteBody,
    WriteFileBody,
)
from codebox.config import ConfigurationError, SandboxConfig, get_config, is_production
from codebox.core.errors import (
    ContainerRuntimeError,
    ProvisioningError,
    SandboxError,
    SessionNotFoundError,
    SessionStateError,
    ValidationError,
    WorkspaceFileNotFoundError,
)
from codebox.core.service import SandboxService
from codebox.monitoring.logging import RequestLogger, configure_logging, get_logger

logger = get_logger(__name__)


def _status_for(error: SandboxError) -> int:
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, (SessionNotFoundError, WorkspaceFileNotFoundError)):
        return 404
    if isinstance(error, SessionStateError):
        return 409
    if isinstance(error, (ProvisioningError, ContainerRuntimeError)):
        return 503
    # CleanupError and anything unexpected
    return 500


def create_app(
    config: Optional[SandboxConfig] = None,
    service: Optional[SandboxService] = None,
) -> Any:
    """
    Create the FastAPI application.

    Args:
        config: Service configuration (defaults to environment-based config)
        service: Pre-built service, e.g. one wired to a fake runtime in tests

    Returns:
        FastAPI application
    """
    config = config or get_config()

    try:
        for warning in config.validate():
            logger.warning("configuration_warning", warning=warning)
    except ConfigurationError as e:
        logger.error("configuration_error", error=str(e))
        raise

    logger.info(
        "codebox_configured",
        environment="production" if is_production() else "development",
        isolation=config.isolation_mode,
        sandbox_root=str(config.sandbox_root),
    )

    service = service or SandboxService(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await service.start()
        try:
            yield
        finally:
            await service.shutdown()

    app = FastAPI(
        title="Codebox",
        description="Code-execution sandbox with sessions, resource limits and artifacts",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-User-ID"],
    )

    # Store service on app.state for access in tests/cleanup
    app.state.service = service

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        with RequestLogger(logger, request.method, request.url.path, request_id) as req_log:
            response = await call_next(request)
            req_log.status_code = response.status_code
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(SandboxError)
    async def sandbox_error_handler(request: Request, exc: SandboxError):
        status_code = _status_for(exc)
        if status_code >= 500:
            logger.error("request_error", path=request.url.path, error=str(exc), error_type=type(exc).__name__)
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    async def json_body(request: Request, required: bool = True) -> Dict[str, Any]:
        raw = await request.body()
        if not raw:
            if required:
                raise HTTPException(status_code=400, detail="Request body is required")
            return {}
        try:
            data = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid JSON body")
        if not isinstance(data, dict):
            raise HTTPException(status_code=400, detail="Request body must be a JSON object")
        return data

    def user_id_of(request: Request) -> int:
        raw = request.headers.get("X-User-ID")
        if raw is None:
            return 0
        try:
            return int(raw)
        except ValueError:
            raise HTTPException(status_code=400, detail="X-User-ID must be an integer")

    # ==================== EXECUTION ====================

    @app.post("/sandbox/execute")
    async def execute(request: Request):
        """One-shot execution in a throwaway session."""
        data = await json_body(request)
        body = ExecuteBody.from_dict(data)
        result = await service.execute(body.to_request(), user_id=user_id_of(request))
        return result.to_dict()

    # ==================== SESSIONS ====================

    @app.post("/sandbox/session")
    async def create_session(request: Request):
        data = await json_body(request)
        body = CreateSessionBody.from_dict(data)
        session = await service.create_session(
            user_id=user_id_of(request),
            language=body.language,
            resource_limits=body.resource_limits,
            network_policy=body.network_policy,
        )
        return {"success": True, "session": session.summary()}

    @app.post("/sandbox/session/{session_id}/execute")
    async def execute_in_session(session_id: str, request: Request):
        data = await json_body(request)
        body = SessionExecuteBody.from_dict(data)
        result = await service.execute_in_session(
            session_id,
            code=body.code,
            files=body.files,
            timeout_ms=body.timeout,
            env=body.env,
            user_id=user_id_of(request),
        )
        return result.to_dict()

    @app.get("/sandbox/session/{session_id}")
    async def get_session(session_id: str):
        return {"session": service.get_session(session_id).to_dict()}

    @app.get("/sandbox/session/{session_id}/artifacts")
    async def list_artifacts(session_id: str):
        artifacts = service.list_artifacts(session_id)
        return {"artifacts": [a.to_dict() for a in artifacts]}

    @app.delete("/sandbox/session/{session_id}")
    async def delete_session(session_id: str):
        """Force stop and clean up. Deleting an already stopped session is acknowledged."""
        cleaned = await service.delete_session(session_id)
        return {"success": True, "sessionId": session_id, "cleaned": cleaned}

    # ==================== WORKSPACE FILES ====================

    @app.get("/sandbox/session/{session_id}/files")
    async def list_files(session_id: str, path: str = ""):
        return service.files(session_id).list_dir(path)

    @app.get("/sandbox/session/{session_id}/files/{file_path:path}")
    async def read_file(session_id: str, file_path: str):
        return service.files(session_id).read_file(file_path)

    @app.put("/sandbox/session/{session_id}/files/{file_path:path}")
    async def write_file(session_id: str, file_path: str, request: Request):
        body = WriteFileBody.from_dict(await json_body(request))
        return service.files(session_id).write_file(file_path, body.content)

    @app.delete("/sandbox/session/{session_id}/files/{file_path:path}")
    async def delete_file(session_id: str, file_path: str):
        return service.files(session_id).delete_file(file_path)

    # ==================== MAINTENANCE ====================

    @app.post("/sandbox/sweep")
    async def sweep(request: Request):
        """Reclaim sessions older than the maximum age (or ``maxAgeSeconds``)."""
        data = await json_body(request, required=False)
        max_age = data.get("maxAgeSeconds")
        if max_age is not None and (isinstance(max_age, bool) or not isinstance(max_age, int) or max_age < 0):
            raise HTTPException(status_code=400, detail="maxAgeSeconds must be a non-negative integer")
        return await service.sweep(max_age)

    @app.get("/sandbox/stats")
    async def stats():
        return service.stats()

    # ==================== HEALTH ====================

    @app.get("/health")
    async def health():
        """Health check with runtime and database status."""
        report = await service.health()
        if report["status"] != "healthy":
            return JSONResponse(status_code=503, content=report)
        return report

    @app.get("/health/live")
    async def liveness():
        """Liveness probe - checks if process is running."""
        return {"status": "alive"}

    return app


def run_server(
    host: str = "0.0.0.0",  # nosec B104
    port: int = 8000,
    reload: bool = False,
):
    """Run the Codebox server."""
    import uvicorn

    config = get_config()
    configure_logging(level=config.log_level, json_format=config.log_json, log_file=config.log_file)

    print("\n" + "=" * 60)
    print("Codebox Server Starting")
    print("=" * 60)
    print(f"Host: {host}")
    print(f"Port: {port}")
    print(f"Environment: {'PRODUCTION' if is_production() else 'DEVELOPMENT'}")
    print(f"Isolation: {config.isolation_mode}")
    print(f"Sandbox root: {config.sandbox_root}")
    print(f"Database: {config.database_url.split('?')[0]}")

    try:
        warnings = config.validate()
    except ConfigurationError as e:
        print(f"\nConfiguration Error: {e}")
        print("Server cannot start. Please fix configuration issues.")
        return
    if warnings:
        print("\nConfiguration Warnings:")
        for w in warnings:
            print(f"   {w}")
    print("=" * 60 + "\n")

    if reload:
        uvicorn.run("codebox.main:app", host=host, port=port, reload=True)
    else:
        uvicorn.run(create_app(config), host=host, port=port)
