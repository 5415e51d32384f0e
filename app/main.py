import time
import asyncio
import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

# Load environment variables from .env file before anything else
load_dotenv()

from app.core.config import settings
from app.core.logging import setup_logging, request_id_ctx
from app.core.errors import AuthzError
from app.api.router import api_router
from app.core.db import SessionLocal, init_models
from app.modules.audit.service import AuditTrailWriter
from app.modules.events.outbox import run_outbox_relay
from app.modules.policy.service import PolicyService
from app.platform.provider_registry import registry


setup_logging()
app = FastAPI(title=settings.APP_NAME)

logger = logging.getLogger(__name__)

@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("x-request-id", "-")
    request_id_ctx.set(rid)
    response = await call_next(request)
    return response

@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    response = await call_next(request)

    process_time = (time.time() - start_time) * 1000
    formatted_process_time = f"{process_time:.2f}ms"

    logger.info(
        f"Request: {request.method} {request.url.path} - Response: {response.status_code} - Time: {formatted_process_time}"
    )

    return response

@app.exception_handler(AuthzError)
async def authz_exception_handler(request: Request, exc: AuthzError):
    # the specific reason is already in the audit trail; clients get the generic message
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(level, f"{exc.__class__.__name__} for {request.method} {request.url.path}: {exc.reason}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.critical(f"Unhandled exception for request {request.method} {request.url.path}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"message": "An internal server error occurred."},
    )


@app.on_event("startup")
async def on_startup():
    await init_models()
    async with SessionLocal() as session:
        await PolicyService(session).seed_defaults()
    app.state.audit_writer = AuditTrailWriter(SessionLocal)
    app.state.outbox_task = asyncio.create_task(run_outbox_relay(SessionLocal))

@app.on_event("shutdown")
async def on_shutdown():
    task = getattr(app.state, "outbox_task", None)
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    writer = getattr(app.state, "audit_writer", None)
    if writer:
        await writer.drain()
    await registry.event_bus().close()


app.include_router(api_router, prefix=settings.API_PREFIX)
