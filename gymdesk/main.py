import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

# Load env from gymdesk/.env
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

# Import after dotenv is loaded
from gymdesk.core.config import settings, validate_config
from gymdesk.core.logging import configure_logging
from gymdesk.core.middleware.request_id import RequestIdMiddleware
from gymdesk.core.validation import validate_env
from gymdesk.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from gymdesk.api import health, member, classes, attendance, admin, billing

configure_logging(settings.ENV)
validate_env()
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("gymdesk")
    logger.info("Starting gymdesk backend...")
    app.state.startup_time = time.time()
    try:
        yield
    finally:
        logging.getLogger("gymdesk").info("Stopping gymdesk backend...")


app = FastAPI(title="gymdesk - Backend", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# CORS (CORS_ORIGINS is comma-separated)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.root_router, tags=["health"])
app.include_router(member.router)
app.include_router(classes.router)
app.include_router(attendance.router)
app.include_router(admin.router)
app.include_router(billing.router)
