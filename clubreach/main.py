import time
import asyncio
import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

# Load environment variables from .env file before anything else
load_dotenv()

from clubreach.core.config import settings
from clubreach.core.logging import setup_logging, request_id_ctx
from clubreach.core.db import SessionLocal, init_models
from clubreach.api.router import api_router
from clubreach.modules.events.outbox import run_outbox_relay
from clubreach.modules.outreach.router import get_scheduler
from clubreach.platform.provider_registry import registry

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
    await registry.event_bus().close()
    app.state.outbox_task = asyncio.create_task(
        run_outbox_relay(SessionLocal, bus, registry.hub(), poll_interval_seconds=settings.OUTBOX_POLL_INTERVAL_SECONDS)
    )
    app.state.scheduler_task = None
    if settings.SCHEDULER_ENABLED:
        app.state.scheduler_task = asyncio.create_task(get_scheduler().run_forever())

@app.on_event("shutdown")
async def on_shutdown():
    for name in ("scheduler_task", "outbox_task"):
        task = getattr(app.state, name, None)
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
    await registry.event_bus().close()


app.include_router(api_router, prefix=settings.API_PREFIX)
