"""Request-scoped accessors for the process-wide objects built in the app lifespan."""

from typing import Optional

from fastapi import Request

from anonqa.features.ai.service import AIService
from anonqa.features.content.store import ContentStore
from anonqa.features.usage.service import UsageLedger
from anonqa.realtime.broadcaster import Broadcaster


def get_broadcaster(request: Request) -> Optional[Broadcaster]:
    # None when the live transport is not running; emitters then no-op
    return getattr(request.app.state, "broadcaster", None)


def get_content_store(request: Request) -> ContentStore:
    return request.app.state.content_store


def get_usage_ledger(request: Request) -> UsageLedger:
    return request.app.state.usage_ledger


def get_ai_service(request: Request) -> AIService:
    return request.app.state.ai_service
