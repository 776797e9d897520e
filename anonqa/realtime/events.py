"""
anonqa/realtime/events.py
Closed set of server->client domain events.

Every event kind has its own payload model. Payload models only declare public
fields and reject extras, so an entity with a password hash cannot be shipped
by accident: it has to be projected field by field first.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class EventKind(str, Enum):
    QUESTION_CREATED = "question_created"
    QUESTION_UPDATED = "question_updated"
    QUESTION_DELETED = "question_deleted"
    QUESTION_VOTED = "question_voted"
    ANSWER_CREATED = "answer_created"
    ANSWER_UPDATED = "answer_updated"
    ANSWER_DELETED = "answer_deleted"
    ANSWER_VOTED = "answer_voted"
    ANSWER_ACCEPTED = "answer_accepted"
    GROUP_ACTIVITY = "group_activity"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid", frozen=True)


class QuestionSnapshot(_Payload):
    id: str
    title: Optional[str] = None
    content: str
    author_nickname: str
    tags: List[str] = Field(default_factory=list)
    created_at: datetime


class QuestionUpdates(_Payload):
    title: Optional[str] = None
    content: Optional[str] = None
    tags: Optional[List[str]] = None
    updated_at: datetime


class AnswerSnapshot(_Payload):
    id: str
    content: str
    author_nickname: str
    created_at: datetime


class QuestionCreated(_Payload):
    kind: Literal[EventKind.QUESTION_CREATED] = Field(EventKind.QUESTION_CREATED, exclude=True)
    group_id: str
    question: QuestionSnapshot


class QuestionUpdated(_Payload):
    kind: Literal[EventKind.QUESTION_UPDATED] = Field(EventKind.QUESTION_UPDATED, exclude=True)
    group_id: str
    question_id: str
    updates: QuestionUpdates


class QuestionDeleted(_Payload):
    kind: Literal[EventKind.QUESTION_DELETED] = Field(EventKind.QUESTION_DELETED, exclude=True)
    group_id: str
    question_id: str


class QuestionVoted(_Payload):
    kind: Literal[EventKind.QUESTION_VOTED] = Field(EventKind.QUESTION_VOTED, exclude=True)
    group_id: str
    question_id: str
    upvotes: int


class AnswerCreated(_Payload):
    kind: Literal[EventKind.ANSWER_CREATED] = Field(EventKind.ANSWER_CREATED, exclude=True)
    group_id: str
    question_id: str
    answer: AnswerSnapshot


class AnswerUpdated(_Payload):
    kind: Literal[EventKind.ANSWER_UPDATED] = Field(EventKind.ANSWER_UPDATED, exclude=True)
    group_id: str
    question_id: str
    answer_id: str
    content: str
    updated_at: datetime


class AnswerDeleted(_Payload):
    kind: Literal[EventKind.ANSWER_DELETED] = Field(EventKind.ANSWER_DELETED, exclude=True)
    group_id: str
    question_id: str
    answer_id: str


class AnswerVoted(_Payload):
    kind: Literal[EventKind.ANSWER_VOTED] = Field(EventKind.ANSWER_VOTED, exclude=True)
    group_id: str
    question_id: str
    answer_id: str
    upvotes: int


class AnswerAccepted(_Payload):
    kind: Literal[EventKind.ANSWER_ACCEPTED] = Field(EventKind.ANSWER_ACCEPTED, exclude=True)
    group_id: str
    question_id: str
    answer_id: str


class GroupActivity(_Payload):
    kind: Literal[EventKind.GROUP_ACTIVITY] = Field(EventKind.GROUP_ACTIVITY, exclude=True)
    group_id: str
    type: Literal["question", "answer", "system"]
    action: Literal["created", "updated", "deleted", "joined"]
    timestamp: datetime


DomainEvent = Union[
    QuestionCreated,
    QuestionUpdated,
    QuestionDeleted,
    QuestionVoted,
    AnswerCreated,
    AnswerUpdated,
    AnswerDeleted,
    AnswerVoted,
    AnswerAccepted,
    GroupActivity,
]


def to_wire(event: DomainEvent, ts: Optional[datetime] = None) -> dict:
    """Serialize an event into the envelope sent over the socket.

    Unset optional fields are left out, so a partial QuestionUpdates only
    carries the fields that actually changed.
    """
    return {
        "type": event.kind.value,
        "groupId": event.group_id,
        "ts": (ts or utc_now()).isoformat(),
        "data": event.model_dump(mode="json", by_alias=True, exclude_unset=True),
    }
