import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

# Load env from anonqa/.env before settings are read
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

from anonqa.core.config import settings, validate_config
from anonqa.core.logging import configure_logging
from anonqa.core.middleware.request_id import RequestIdMiddleware
from anonqa.core.middleware.metrics import MetricsMiddleware
from anonqa.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from anonqa.api import ai, answers, health, metrics, questions, realtime
from anonqa.features.ai.client import CompletionClient
from anonqa.features.ai.service import AIService
from anonqa.features.content.store import ContentStore, InMemoryContentStore
from anonqa.features.usage.service import UsageLedger, build_usage_store
from anonqa.realtime.broadcaster import Broadcaster
from anonqa.realtime.rooms import RoomRegistry

configure_logging(settings.ENV)
validate_config(strict=settings.CONFIG_STRICT)


def init_state(
    app: FastAPI,
    *,
    content_store: Optional[ContentStore] = None,
    usage_ledger: Optional[UsageLedger] = None,
    completion_client: Optional[CompletionClient] = None,
) -> None:
    """Build the per-process objects routes depend on (tests pass fakes)."""
    rooms = RoomRegistry()
    app.state.rooms = rooms
    app.state.broadcaster = Broadcaster(rooms)
    app.state.content_store = content_store or InMemoryContentStore()
    app.state.usage_ledger = usage_ledger or UsageLedger(build_usage_store())
    app.state.completion_client = completion_client or CompletionClient()
    app.state.ai_service = AIService(
        app.state.completion_client,
        app.state.usage_ledger,
        app.state.content_store,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("anonqa")
    logger.info("Starting anonqa backend...")
    app.state.startup_time = time.time()
    # Tests inject their own state before startup
    if getattr(app.state, "rooms", None) is None:
        init_state(app)
    try:
        yield
    finally:
        rooms = getattr(app.state, "rooms", None)
        if rooms is not None:
            rooms.clear()
        logging.getLogger("anonqa").info("Stopping anonqa backend...")


app = FastAPI(title="anonqa - Backend", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)
app.add_middleware(MetricsMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(questions.router, tags=["questions"])
app.include_router(answers.router, tags=["answers"])
app.include_router(ai.router, tags=["ai"])
app.include_router(realtime.router, tags=["realtime"])
app.include_router(health.router, tags=["health"])
app.include_router(metrics.router, tags=["metrics"])
