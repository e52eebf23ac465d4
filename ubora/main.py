import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

# Load env from ubora/.env
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

# Import after dotenv is loaded
from ubora.core.config import settings, validate_config  # noqa: E402
from ubora.core.database import create_all_tables  # noqa: E402
from ubora.core.logging import configure_logging  # noqa: E402
from ubora.core.middleware.request_id import RequestIdMiddleware  # noqa: E402
from ubora.core.errors import (  # noqa: E402
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from ubora.api import health, packages  # noqa: E402

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("ubora")
    logger.info("Starting Ubora package engine...")
    if settings.DATABASE_URL:
        create_all_tables()
    try:
        yield
    finally:
        logging.getLogger("ubora").info("Stopping Ubora package engine...")


app = FastAPI(title="Ubora - Package engine", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.root_router, tags=["health"])
app.include_router(packages.router, tags=["packages"])
