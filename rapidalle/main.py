import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

# Import after dotenv is loaded
from rapidalle.core.config import settings, validate_config
from rapidalle.core.logging import configure_logging
from rapidalle.core.middleware.request_id import RequestIdMiddleware
from rapidalle.core.middleware.metrics import MetricsMiddleware
from rapidalle.core.validation import validate_env
from rapidalle.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from rapidalle.api import billing, completion, credits, generate, health, library, metrics, prompts, runs

configure_logging(settings.ENV)
validate_env()
validate_config(strict=settings.CONFIG_STRICT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("rapidalle")
    logger.info("Starting RapiDall-E backend...")
    app.state.startup_time = time.time()
    try:
        yield
    finally:
        services = getattr(app.state, "services", None)
        if services is not None:
            services.close()
        logger.info("Stopping RapiDall-E backend...")


app = FastAPI(title="RapiDall-E", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)
app.add_middleware(MetricsMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["x-request-id", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
)

app.include_router(generate.router)
app.include_router(runs.router)
app.include_router(completion.router)
app.include_router(library.router)
app.include_router(prompts.router)
app.include_router(credits.router)
app.include_router(billing.router)
app.include_router(health.router)
app.include_router(metrics.router)
