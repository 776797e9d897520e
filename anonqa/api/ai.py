"""AI suggestion API.

Streaming answer/question generation, similar-question lookup and per-group
usage stats. Quota and configuration checks run before the response starts,
so 429/503 come back as ordinary JSON errors.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from anonqa.api.deps import get_ai_service, get_usage_ledger
from anonqa.core.logging import log_event
from anonqa.features.ai.service import AIService, actor_id_from_request
from anonqa.features.ai.streaming import CompletionSession, relay
from anonqa.features.usage.service import UsageLedger
from anonqa.models.content import SimilarQuestion

router = APIRouter(prefix="/v1/ai", tags=["ai"])

STREAM_HEADERS = {"X-Content-Type-Options": "nosniff", "Cache-Control": "no-cache"}


class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GenerateAnswerRequest(_Body):
    question_id: str = Field(..., min_length=1)
    additional_context: Optional[str] = Field(None, max_length=1000)


class GenerateQuestionRequest(_Body):
    group_id: str = Field(..., min_length=1)
    topic: str = Field(..., min_length=1, max_length=200)
    context: Optional[str] = Field(None, max_length=1000)
    count: int = Field(3, ge=1, le=5)


class SimilarQuestionsRequest(_Body):
    group_id: str = Field(..., min_length=1)
    question_text: str = Field(..., min_length=1)
    limit: int = Field(5, ge=1, le=10)


def _stream(session: CompletionSession) -> StreamingResponse:
    return StreamingResponse(
        relay(session),
        media_type="text/plain; charset=utf-8",
        headers=STREAM_HEADERS,
    )


@router.post("/generate-answer")
async def generate_answer(
    body: GenerateAnswerRequest,
    request: Request,
    service: AIService = Depends(get_ai_service),
):
    actor_id = actor_id_from_request(request)
    session = await service.answer_session(actor_id, body.question_id, body.additional_context)
    log_event(
        "info",
        "ai.stream_started",
        group_id=session.group_id,
        event_type="generate_answer",
        extra={"question_id": body.question_id},
    )
    return _stream(session)


@router.post("/generate-question")
async def generate_question(
    body: GenerateQuestionRequest,
    request: Request,
    service: AIService = Depends(get_ai_service),
):
    actor_id = actor_id_from_request(request)
    session = await service.question_session(actor_id, body.group_id, body.topic, body.context, body.count)
    log_event("info", "ai.stream_started", group_id=body.group_id, event_type="generate_question")
    return _stream(session)


@router.post("/similar-questions")
async def similar_questions(
    body: SimilarQuestionsRequest,
    request: Request,
    service: AIService = Depends(get_ai_service),
):
    actor_id = actor_id_from_request(request)
    matches, summary = await service.find_similar_questions(actor_id, body.group_id, body.question_text, body.limit)
    return {
        "similarQuestions": [
            SimilarQuestion.from_question(q).model_dump(mode="json", by_alias=True) for q in matches
        ],
        "usage": summary.to_wire(),
    }


@router.get("/usage/{group_id}")
async def group_usage(group_id: str, ledger: UsageLedger = Depends(get_usage_ledger)):
    return await ledger.group_stats(group_id)
