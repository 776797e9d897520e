"""Question mutations.

Each route writes through the content store first, then hands the committed
result to the matching emitter; broadcast failures never reach the caller.
"""

from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel

from anonqa.api.deps import get_broadcaster, get_content_store
from anonqa.core.errors import NotFoundError, ValidationError
from anonqa.features.content.store import ContentStore
from anonqa.models.content import AnswerPublic, QuestionPublic
from anonqa.realtime.broadcaster import Broadcaster
from anonqa.realtime.emitters import (
    emit_answer_accepted,
    emit_question_created,
    emit_question_deleted,
    emit_question_updated,
    emit_question_voted,
)

router = APIRouter(prefix="/v1/questions", tags=["questions"])

Tag = Annotated[str, StringConstraints(min_length=1, max_length=50)]


class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class CreateQuestionRequest(_Body):
    group_id: str = Field(..., min_length=1)
    title: Optional[str] = Field(None, min_length=5, max_length=200)
    content: str = Field(..., min_length=10, max_length=5000)
    author_nickname: str = Field(..., min_length=2, max_length=30)
    password: str = Field(..., min_length=8, max_length=100)
    tags: List[Tag] = Field(default_factory=list, max_length=10)


class UpdateQuestionRequest(_Body):
    password: str = Field(..., min_length=1)
    title: Optional[str] = Field(None, min_length=5, max_length=200)
    content: Optional[str] = Field(None, min_length=10, max_length=5000)
    tags: Optional[List[Tag]] = Field(None, max_length=10)


class PasswordRequest(_Body):
    password: str = Field(..., min_length=1)


class AcceptAnswerRequest(_Body):
    answer_id: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


def _public(question) -> dict:
    return QuestionPublic.from_question(question).model_dump(mode="json", by_alias=True)


@router.post("", status_code=201)
async def create_question(
    body: CreateQuestionRequest,
    store: ContentStore = Depends(get_content_store),
    broadcaster: Optional[Broadcaster] = Depends(get_broadcaster),
):
    question = await store.create_question(
        group_id=body.group_id,
        title=body.title,
        content=body.content,
        author_nickname=body.author_nickname,
        password=body.password,
        tags=body.tags,
    )
    emit_question_created(broadcaster, question)
    return _public(question)


@router.get("/group/{group_id}")
async def list_group_questions(group_id: str, store: ContentStore = Depends(get_content_store)):
    questions = await store.list_group_questions(group_id)
    return {"questions": [_public(q) for q in questions]}


@router.get("/{question_id}")
async def get_question(question_id: str, store: ContentStore = Depends(get_content_store)):
    question = await store.get_question(question_id)
    if question is None:
        raise NotFoundError("Question not found")
    return _public(question)


@router.patch("/{question_id}")
async def update_question(
    question_id: str,
    body: UpdateQuestionRequest,
    store: ContentStore = Depends(get_content_store),
    broadcaster: Optional[Broadcaster] = Depends(get_broadcaster),
):
    changes = body.model_dump(include=body.model_fields_set - {"password"})
    if not changes:
        raise ValidationError("No fields to update")
    if "content" in changes and changes["content"] is None:
        raise ValidationError("content cannot be null")
    if "tags" in changes and changes["tags"] is None:
        changes["tags"] = []

    question = await store.update_question(question_id, body.password, changes)
    emit_question_updated(broadcaster, question, changes.keys())
    return _public(question)


@router.delete("/{question_id}")
async def delete_question(
    question_id: str,
    body: PasswordRequest,
    store: ContentStore = Depends(get_content_store),
    broadcaster: Optional[Broadcaster] = Depends(get_broadcaster),
):
    question = await store.delete_question(question_id, body.password)
    emit_question_deleted(broadcaster, question.group_id, question.id)
    return {"message": "Question deleted", "id": question.id}


@router.post("/{question_id}/upvote")
async def upvote_question(
    question_id: str,
    store: ContentStore = Depends(get_content_store),
    broadcaster: Optional[Broadcaster] = Depends(get_broadcaster),
):
    question = await store.upvote_question(question_id)
    emit_question_voted(broadcaster, question)
    return {"id": question.id, "upvotes": question.upvotes}


@router.post("/{question_id}/accept-answer")
async def accept_answer(
    question_id: str,
    body: AcceptAnswerRequest,
    store: ContentStore = Depends(get_content_store),
    broadcaster: Optional[Broadcaster] = Depends(get_broadcaster),
):
    answer = await store.accept_answer(question_id, body.answer_id, body.password)
    emit_answer_accepted(broadcaster, answer.group_id, question_id, answer.id)
    return AnswerPublic.from_answer(answer).model_dump(mode="json", by_alias=True)
