import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

# Load env from voicepost/.env
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

from voicepost.api import billing, health, jobs, posts  # noqa: E402
from voicepost.core.config import cors_origins, settings, validate_config  # noqa: E402
from voicepost.core.errors import (  # noqa: E402
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from voicepost.core.logging import configure_logging  # noqa: E402
from voicepost.core.middleware.request_id import RequestIdMiddleware  # noqa: E402
from voicepost.core.validation import validate_env  # noqa: E402

configure_logging(settings.ENV)
validate_env()
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("voicepost")
    logger.info("Starting voicepost backend...")
    app.state.startup_time = time.time()
    try:
        yield
    finally:
        logging.getLogger("voicepost").info("Stopping voicepost backend...")


app = FastAPI(title="voicepost", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(settings),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(billing.router)
app.include_router(posts.router)
app.include_router(jobs.router)
app.include_router(health.root_router)
