import time
import asyncio
import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

# Load environment variables from .env file before anything else
load_dotenv()

from dental_funnel.core.config import settings
from dental_funnel.core.logging import setup_logging, request_id_ctx
from dental_funnel.core.db import init_models, SessionLocal
from dental_funnel.core.detached import detached_tasks
from dental_funnel.core.errors import ConfigurationError
from dental_funnel.core.redis import redis_manager
from dental_funnel.api.router import api_router
from dental_funnel.modules.events.outbox import run_outbox_relay
from dental_funnel.platform.provider_registry import registry

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
    logger.info(
        f"Request: {request.method} {request.url.path} - Response: {response.status_code} - Time: {process_time:.2f}ms"
    )
    return response

@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"Missing configuration for {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=503, content={"code": exc.code, "message": exc.message})

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
    await redis_manager.connect()
    app.state.outbox_task = asyncio.create_task(run_outbox_relay(SessionLocal, registry.event_bus()))

@app.on_event("shutdown")
async def on_shutdown():
    task = getattr(app.state, "outbox_task", None)
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    await detached_tasks.cancel_all()
    await redis_manager.close()


app.include_router(api_router, prefix=settings.API_PREFIX)
