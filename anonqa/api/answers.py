"""Answer mutations; same write-then-emit shape as the question routes."""

from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from anonqa.api.deps import get_broadcaster, get_content_store
from anonqa.core.errors import NotFoundError
from anonqa.features.content.store import ContentStore
from anonqa.models.content import AnswerPublic
from anonqa.realtime.broadcaster import Broadcaster
from anonqa.realtime.emitters import (
    emit_answer_created,
    emit_answer_deleted,
    emit_answer_updated,
    emit_answer_voted,
)

router = APIRouter(prefix="/v1/answers", tags=["answers"])


class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class CreateAnswerRequest(_Body):
    question_id: str = Field(..., min_length=1)
    content: str = Field(..., min_length=5, max_length=5000)
    author_nickname: str = Field(..., min_length=2, max_length=30)
    password: str = Field(..., min_length=8, max_length=100)


class UpdateAnswerRequest(_Body):
    password: str = Field(..., min_length=1)
    content: str = Field(..., min_length=5, max_length=5000)


class PasswordRequest(_Body):
    password: str = Field(..., min_length=1)


class VoteRequest(_Body):
    vote_type: Literal["upvote"]


def _public(answer) -> dict:
    return AnswerPublic.from_answer(answer).model_dump(mode="json", by_alias=True)


@router.post("", status_code=201)
async def create_answer(
    body: CreateAnswerRequest,
    store: ContentStore = Depends(get_content_store),
    broadcaster: Optional[Broadcaster] = Depends(get_broadcaster),
):
    answer = await store.create_answer(
        question_id=body.question_id,
        content=body.content,
        author_nickname=body.author_nickname,
        password=body.password,
    )
    emit_answer_created(broadcaster, answer)
    return _public(answer)


@router.get("/question/{question_id}")
async def list_answers(question_id: str, store: ContentStore = Depends(get_content_store)):
    if await store.get_question(question_id) is None:
        raise NotFoundError("Question not found")
    answers = await store.list_answers(question_id)
    return {"answers": [_public(a) for a in answers]}


@router.patch("/{answer_id}")
async def update_answer(
    answer_id: str,
    body: UpdateAnswerRequest,
    store: ContentStore = Depends(get_content_store),
    broadcaster: Optional[Broadcaster] = Depends(get_broadcaster),
):
    answer = await store.update_answer(answer_id, body.password, body.content)
    emit_answer_updated(broadcaster, answer)
    return _public(answer)


@router.delete("/{answer_id}")
async def delete_answer(
    answer_id: str,
    body: PasswordRequest,
    store: ContentStore = Depends(get_content_store),
    broadcaster: Optional[Broadcaster] = Depends(get_broadcaster),
):
    answer = await store.delete_answer(answer_id, body.password)
    emit_answer_deleted(broadcaster, answer.group_id, answer.question_id, answer.id)
    return {"message": "Answer deleted", "id": answer.id}


@router.post("/{answer_id}/vote")
async def vote_answer(
    answer_id: str,
    body: VoteRequest,
    store: ContentStore = Depends(get_content_store),
    broadcaster: Optional[Broadcaster] = Depends(get_broadcaster),
):
    answer = await store.upvote_answer(answer_id)
    emit_answer_voted(broadcaster, answer)
    return {"id": answer.id, "upvotes": answer.upvotes}
