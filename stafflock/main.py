#!/usr/bin/env python3
"""
Stafflock - Main Entry Point

This is the thin orchestration layer that:
1. Loads configuration
2. Initializes modules
3. Exposes the staff-session RPC surface over HTTP

All business logic is in the modules, following black box principles.
"""

import asyncio
import json
import logging
import logging.config as log_config
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import redis.asyncio as redis
import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from stafflock import __version__
from stafflock.config.provider import ConfigProvider, EnvConfigProvider
from stafflock.logging_config import get_logging_config
from stafflock.modules.access import AccessGuard
from stafflock.modules.api import (
    AdminCredentialRequest,
    AdminCredentialResponse,
    CheckSessionRequest,
    CheckSessionResponse,
    CreateCredentialRequest,
    CredentialRequest,
    CredentialStatusResponse,
    ErrorResponse,
    StartSessionRequest,
    StartSessionResponse,
    SuccessResponse,
    TransferSessionRequest,
    TransferSessionResponse,
    VerifyCredentialResponse,
    WriteAccessResponse,
)
from stafflock.modules.auth import AuthFactory, AuthenticationService, AuthResult

# Import modules through their black box interfaces
from stafflock.modules.config import get_config
from stafflock.modules.credentials import CredentialStore
from stafflock.modules.session import RedisRecordStore, SessionModule, SessionServiceError, Unauthenticated
from stafflock.modules.storage import StorageModule

# Get configuration
config = get_config()

log_config.dictConfig(get_logging_config(config.get("log_level")))
logger = logging.getLogger("stafflock.main")

# Configuration provider (centralized config access)
config_provider: ConfigProvider = EnvConfigProvider()

# Module instances (initialized at startup)
storage: Optional[StorageModule] = None
redis_client: Optional[redis.Redis] = None
auth_service: Optional[AuthenticationService] = None
credential_store: Optional[CredentialStore] = None
session_module: Optional[SessionModule] = None
access_guard: Optional[AccessGuard] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle - initialize and cleanup resources.
    """
    global storage, redis_client, auth_service, credential_store, session_module, access_guard

    logger.info("Starting Stafflock API...")

    storage = StorageModule(
        host=config.get("redis_host"),
        port=config.get("redis_port"),
        db=config.get("redis_db"),
        password=config.get("redis_password"),
    )
    redis_client = await storage.connect()

    auth_service = AuthFactory.build(config_provider, redis_client)
    logger.info("Authentication service initialized via factory")

    credential_store = CredentialStore(
        redis_client,
        iterations=config.get("credential_iterations"),
        min_length=config.get("min_password_length"),
        role_claims=config_provider.get_oidc_config().role_claims,
    )
    session_module = SessionModule(
        RedisRecordStore(redis_client),
        credential_store,
        ttl_seconds=config.get("session_ttl"),
        staff_roles=config.get("staff_roles"),
    )
    access_guard = AccessGuard(
        redis_client,
        session_module,
        max_failed_attempts=config.get("max_failed_attempts"),
        lockout_seconds=config.get("lockout_seconds"),
        staff_roles=config.get("staff_roles"),
    )

    logger.info(f"Stafflock API started (session TTL {config.get('session_ttl')}s)")

    yield

    logger.info("Shutting down Stafflock API...")
    await storage.disconnect()
    logger.info("Stafflock API shutdown complete")


app = FastAPI(
    title="Stafflock API",
    description="Single-device staff sessions with secure device transfer",
    version=__version__,
    lifespan=lifespan,
)

# Browser agents call the API cross-origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=config_provider.get_api_config().cors_origins,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Authorization", "Content-Type", "X-API-Key"],
)


def require_modules() -> None:
    if not (auth_service and session_module and credential_store and access_guard):
        raise HTTPException(503, "Service not initialized")


# Dependency injection helpers


async def authenticate(
    x_api_key: Optional[str] = Header(None, description="API key for authentication"),
    authorization: Optional[str] = Header(None, description="Bearer token for authentication"),
) -> AuthResult:
    """Resolve the caller from an API key or bearer token without failing."""
    require_modules()
    if not x_api_key and not authorization:
        return AuthResult.rejected("No credentials")
    return await auth_service.authenticate(api_key=x_api_key, authorization=authorization)


async def require_caller(auth: AuthResult = Depends(authenticate)) -> AuthResult:
    """Verified caller or Unauthenticated."""
    if not auth.ok:
        raise Unauthenticated("User must be authenticated")
    return auth


# Staff Session Endpoints


@app.post(
    "/staff/session/start",
    response_model=StartSessionResponse,
    responses={409: {"model": ErrorResponse}},
)
async def start_session(payload: StartSessionRequest, caller: AuthResult = Depends(require_caller)):
    """
    Start a staff session on the requesting device.

    Returns:
        200: Session started, with its fixed end time
        409: Another device owns the session; a transfer was requested
    """
    return await session_module.start(caller.identity, payload.device_id, payload.password, caller.claims)


@app.post("/staff/session/check", response_model=CheckSessionResponse, response_model_exclude_none=True)
async def check_session(payload: CheckSessionRequest, auth: AuthResult = Depends(authenticate)):
    """
    Report the session as seen from a device.

    Unauthenticated callers get ``{"active": false}``; every branch is a
    200 response.
    """
    return await session_module.check(auth.identity if auth.ok else None, payload.device_id)


@app.post("/staff/session/end", response_model=SuccessResponse)
async def end_session(payload: CredentialRequest, caller: AuthResult = Depends(require_caller)):
    return await session_module.end(caller.identity, payload.password)


@app.post("/staff/session/end-all", response_model=SuccessResponse)
async def end_all_sessions(payload: CredentialRequest, caller: AuthResult = Depends(require_caller)):
    """Revoke the session on every device."""
    return await session_module.end_all(caller.identity, payload.password)


@app.post(
    "/staff/session/transfer",
    response_model=TransferSessionResponse,
    responses={409: {"model": ErrorResponse}},
)
async def transfer_session(payload: TransferSessionRequest, caller: AuthResult = Depends(require_caller)):
    """
    Move the live session to another device, keeping its end time.

    Returns:
        200: Transferred
        409: No live session to transfer
    """
    return await session_module.transfer(caller.identity, payload.password, payload.new_device_id)


@app.get("/staff/session/stream")
async def session_stream(caller: AuthResult = Depends(require_caller)):
    """
    SSE stream of session record changes for the caller.

    A push alternative to polling Check; clients still call Check to read
    the authoritative state.
    """
    identity = caller.identity
    logger.info(f"Session event stream opened for {identity}")

    async def event_generator() -> AsyncGenerator:
        yield {"event": "connected", "data": json.dumps({"identity": identity})}
        try:
            async for event in session_module.store.listen(identity):
                yield {"event": event["type"], "data": json.dumps(event)}
        except asyncio.CancelledError:
            logger.info(f"Session event stream for {identity} disconnecting")
            raise
        finally:
            logger.info(f"Session event stream closed for {identity}")

    return EventSourceResponse(event_generator(), ping=15)


# Credential Endpoints


@app.get("/staff/credential", response_model=CredentialStatusResponse)
async def get_credential_status(caller: AuthResult = Depends(require_caller)):
    return {"hasPassword": await credential_store.has_credential(caller.identity)}


@app.post("/staff/credential", response_model=SuccessResponse, status_code=201)
async def create_credential(payload: CreateCredentialRequest, caller: AuthResult = Depends(require_caller)):
    """
    Set the caller's elevation credential.

    Replacing an existing one requires ``currentPassword``.
    """
    await credential_store.create_credential(caller.identity, payload.password, payload.current_password)
    return {"success": True}


@app.post("/staff/credential/delete", response_model=SuccessResponse)
async def delete_credential(payload: CredentialRequest, caller: AuthResult = Depends(require_caller)):
    await credential_store.delete_credential(caller.identity, payload.password)
    return {"success": True}


@app.post("/staff/credential/verify", response_model=VerifyCredentialResponse)
async def verify_credential(payload: CredentialRequest, caller: AuthResult = Depends(require_caller)):
    """Verify the caller's credential and report their highest staff role."""
    role = await credential_store.verify_for_role(caller.identity, payload.password, caller.claims)
    return {"success": True, "role": role}


@app.put("/admin/staff/{identity}/credential", response_model=AdminCredentialResponse)
async def set_admin_credential(
    identity: str,
    payload: AdminCredentialRequest,
    caller: AuthResult = Depends(require_caller),
):
    """
    Owner-only: set another identity's credential and grant staff roles.

    Returns:
        200: Credential set
        403: Caller is not an owner
    """
    roles = await credential_store.set_admin_credential(caller.identity, identity, payload.password, caller.claims)
    return {"success": True, "roles": sorted(roles)}


# Access Endpoints


@app.get("/staff/access/write", response_model=WriteAccessResponse, response_model_exclude_none=True)
async def check_write_access(
    device_id: Optional[str] = Query(None, alias="deviceId"),
    auth: AuthResult = Depends(authenticate),
):
    """Whether the caller may perform staff-only writes right now."""
    if not auth.ok:
        return {"allowed": False, "reason": "Not authenticated"}
    roles = await credential_store.get_roles(auth.identity, auth.claims)
    return await access_guard.check_write_access(auth.identity, roles, device_id)


# Health/Monitoring Endpoints


@app.get("/healthz")
async def healthz():
    """
    Minimal liveness probe.

    Returns:
        200: Service is running
    """
    return {"status": "ok"}


@app.get("/health")
async def health_check(request: Request):
    """
    Readiness check: Redis reachable and modules initialized.

    Returns:
        200: Service healthy
        503: Service unhealthy
    """
    redis_status = "connected" if storage and await storage.ping() else "disconnected"
    modules_ready = all([auth_service, credential_store, session_module, access_guard])
    environment = config.get("environment", "development")

    if environment == "production" and request.url.scheme != "https":
        logger.warning("Running in production without TLS")

    body = {
        "status": "healthy" if redis_status == "connected" and modules_ready else "unhealthy",
        "redis": redis_status,
        "modules": "initialized" if modules_ready else "not initialized",
        "environment": environment,
        "version": __version__,
    }
    if body["status"] == "healthy":
        return body
    return JSONResponse(status_code=503, content=body)


@app.get("/metrics")
async def metrics():
    """
    Prometheus-compatible metrics endpoint.
    """
    require_modules()

    active_sessions = await session_module.count_active()

    metrics_text = f"""# HELP stafflock_active_sessions Number of live staff sessions
# TYPE stafflock_active_sessions gauge
stafflock_active_sessions {active_sessions}
"""

    auth_module = getattr(auth_service, "auth_module", None)
    if hasattr(auth_module, "get_auth_stats"):
        stats = (await auth_module.get_auth_stats())["stats"]
        metrics_text += "# HELP stafflock_auth_total Authentication attempts by method\n"
        metrics_text += "# TYPE stafflock_auth_total counter\n"
        for method, count in stats.items():
            metrics_text += f'stafflock_auth_total{{method="{method}"}} {count}\n'

    return Response(content=metrics_text, media_type="text/plain")


# Error handlers


@app.exception_handler(SessionServiceError)
async def session_error_handler(request, exc: SessionServiceError):
    """Map the session error taxonomy onto HTTP statuses."""
    if exc.status_code >= 500:
        logger.error(f"{request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.url.path} rejected ({exc.code}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(redis.ConnectionError)
async def redis_error_handler(request, exc):
    """Handle Redis connection errors."""
    logger.error(f"Redis connection error: {exc}")
    return JSONResponse(
        status_code=503,
        content={"error": "unavailable", "message": "Database connection failed", "details": {}},
    )


@app.exception_handler(ValueError)
async def validation_error_handler(request, exc):
    """Handle validation errors."""
    logger.error(f"Validation error: {exc}")
    return JSONResponse(status_code=400, content={"error": "invalid_argument", "message": str(exc), "details": {}})


if __name__ == "__main__":
    uvicorn.run(
        "stafflock.main:app",
        host=config.get("host"),
        port=config.get("port"),
        log_level=config.get("log_level").lower(),
        reload=config.get("debug"),
        log_config=get_logging_config(config.get("log_level")),
    )
