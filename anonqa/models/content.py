"""
anonqa/models/content.py

Question and Answer records as handed back by the content store.

Stored records carry the author's password hash; anything leaving the process
goes through a public projection (QuestionPublic / AnswerPublic or the event
payload models in anonqa.realtime.events), never the record itself.
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PublicModel(BaseModel):
    """Base for outbound shapes: camelCase on the wire, unknown fields rejected."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class Question(BaseModel):
    id: str
    group_id: str
    title: Optional[str] = None
    content: str
    author_nickname: str
    tags: List[str] = Field(default_factory=list)
    upvotes: int = 0
    answer_count: int = 0
    is_answered: bool = False
    created_at: datetime
    updated_at: datetime
    author_password_hash: str = Field(repr=False)


class Answer(BaseModel):
    id: str
    question_id: str
    group_id: str
    content: str
    author_nickname: str
    upvotes: int = 0
    is_accepted: bool = False
    created_at: datetime
    updated_at: datetime
    author_password_hash: str = Field(repr=False)


class QuestionPublic(PublicModel):
    id: str
    group_id: str
    title: Optional[str] = None
    content: str
    author_nickname: str
    tags: List[str]
    upvotes: int
    answer_count: int
    is_answered: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_question(cls, question: Question) -> "QuestionPublic":
        return cls(
            id=question.id,
            group_id=question.group_id,
            title=question.title,
            content=question.content,
            author_nickname=question.author_nickname,
            tags=list(question.tags),
            upvotes=question.upvotes,
            answer_count=question.answer_count,
            is_answered=question.is_answered,
            created_at=question.created_at,
            updated_at=question.updated_at,
        )


class AnswerPublic(PublicModel):
    id: str
    question_id: str
    group_id: str
    content: str
    author_nickname: str
    upvotes: int
    is_accepted: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_answer(cls, answer: Answer) -> "AnswerPublic":
        return cls(
            id=answer.id,
            question_id=answer.question_id,
            group_id=answer.group_id,
            content=answer.content,
            author_nickname=answer.author_nickname,
            upvotes=answer.upvotes,
            is_accepted=answer.is_accepted,
            created_at=answer.created_at,
            updated_at=answer.updated_at,
        )


class SimilarQuestion(PublicModel):
    """Projection returned by the similar-questions lookup."""
    id: str
    title: Optional[str] = None
    content: str
    tags: List[str]
    answer_count: int
    upvotes: int
    created_at: datetime

    @classmethod
    def from_question(cls, question: Question) -> "SimilarQuestion":
        return cls(
            id=question.id,
            title=question.title,
            content=question.content,
            tags=list(question.tags),
            answer_count=question.answer_count,
            upvotes=question.upvotes,
            created_at=question.created_at,
        )
