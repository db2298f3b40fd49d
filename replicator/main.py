"""Entry point for the Replicator service."""

import uvicorn
import asyncio
import time
import uuid
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from common.logging_config import setup_logging
from replicator.config import (
    APPLY_TIMEOUT_SECONDS,
    AUTO_ENABLE,
    DISPATCH_QUEUE_SIZE,
    DISPATCH_WORKERS,
    ENTITY_CONFIG_PATH,
    INIT_SCHEMAS,
    LOCAL_DATABASE_PATH,
    LOCAL_IDENTITY,
    PEER_DATABASE_PATH,
    PEER_IDENTITY,
    READINESS_DELAY_SECONDS,
    READINESS_MAX_ATTEMPTS,
    RECONCILE_BATCH_SIZE,
    RECONCILE_INTERVAL_SECONDS,
    SYNC_HOST,
    SYNC_PORT,
)
from replicator.database import Store, init_local_schema, init_peer_schema
from replicator.entity_config import load_entity_config
from replicator.exceptions import SyncError, SyncNotEnabledError
from replicator.replication.sync_engine import SyncEngine
from replicator.routes.admin_routes import router as admin_router
from replicator.routes.admin_routes import get_sync_engine, set_sync_engine
from replicator.schemas.common import ErrorResponse

logger = setup_logging('replicator')

app = FastAPI(
    title="AgentPod Replicator",
    description="Bidirectional sync between the agentpod and metamcp stores",
    version="1.0.0"
)

enable_task = None


def build_sync_engine() -> SyncEngine:
    """
    Build the engine from environment configuration.
    """
    local = Store("agentpod", LOCAL_DATABASE_PATH)
    peer = Store("metamcp", PEER_DATABASE_PATH, create=False)

    if INIT_SCHEMAS:
        init_local_schema(local)
        init_peer_schema(peer)

    return SyncEngine(
        local,
        peer,
        LOCAL_IDENTITY,
        PEER_IDENTITY,
        config=load_entity_config(ENTITY_CONFIG_PATH),
        readiness_attempts=READINESS_MAX_ATTEMPTS,
        readiness_delay=READINESS_DELAY_SECONDS,
        apply_timeout=APPLY_TIMEOUT_SECONDS,
        workers=DISPATCH_WORKERS,
        queue_size=DISPATCH_QUEUE_SIZE,
        batch_size=RECONCILE_BATCH_SIZE,
        reconcile_interval=RECONCILE_INTERVAL_SECONDS
    )


async def enable_in_background(engine: SyncEngine):
    """
    Enable sync without holding up startup while the readiness gate polls.
    """
    try:
        enabled = await engine.enable()
        logger.info(f"Automatic sync enable finished [enabled={enabled}]")
    except Exception as e:
        logger.error(f"Automatic sync enable failed: {e}", exc_info=True)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Middleware to log all HTTP requests and responses.
    """
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    start_time = time.time()

    logger.info(
        f"Request started: {request.method} {request.url.path} [request_id={request_id}]"
    )

    response = await call_next(request)

    duration = time.time() - start_time

    logger.info(
        f"Request completed: {request.method} {request.url.path} "
        f"status={response.status_code} duration={duration:.3f}s [request_id={request_id}]"
    )

    response.headers["X-Request-ID"] = request_id

    return response


@app.on_event("startup")
async def startup_event():
    """
    Build the sync engine and enable it on application startup.
    """
    global enable_task

    logger.info("Replicator service starting up...")

    engine = get_sync_engine()
    if engine is None:
        engine = build_sync_engine()
        set_sync_engine(engine)
        logger.info(f"Sync engine built [local={engine.local.path}, peer={engine.peer.path}]")

    if AUTO_ENABLE:
        enable_task = asyncio.create_task(enable_in_background(engine))
        logger.info("Automatic sync enable scheduled")


@app.on_event("shutdown")
async def shutdown_event():
    """
    Stop sync on application shutdown.
    """
    global enable_task

    logger.info("Replicator service shutting down...")

    if enable_task and not enable_task.done():
        enable_task.cancel()
        try:
            await enable_task
        except asyncio.CancelledError:
            pass
    enable_task = None

    engine = get_sync_engine()
    if engine:
        await engine.shutdown()
        logger.info("Sync engine stopped")


@app.exception_handler(SyncNotEnabledError)
async def sync_not_enabled_handler(request: Request, exc: SyncNotEnabledError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Sync not enabled error: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=ErrorResponse(detail=str(exc), code="SYNC_NOT_ENABLED").model_dump()
    )


@app.exception_handler(SyncError)
async def sync_error_handler(request: Request, exc: SyncError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.error(
        f"Sync error: {exc} [request_id={request_id}] path={request.url.path}",
        exc_info=True
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(detail=str(exc), code="INTERNAL_ERROR").model_dump()
    )


app.include_router(admin_router)


@app.get("/")
async def root():
    """
    Root endpoint for health check.
    """
    return {"message": "AgentPod Replicator API", "status": "running"}


@app.get("/health")
async def health_check():
    """
    Health check endpoint for Docker healthcheck.
    Returns 200 if service is alive.
    """
    engine = get_sync_engine()
    return {
        "status": "healthy",
        "service": "replicator",
        "sync": engine.state.value if engine else "uninitialized"
    }


def main() -> None:
    """
    Start the FastAPI server with uvicorn.
    """
    uvicorn.run(
        "replicator.main:app",
        host=SYNC_HOST,
        port=SYNC_PORT,
        log_level="info"
    )


if __name__ == "__main__":
    main()
