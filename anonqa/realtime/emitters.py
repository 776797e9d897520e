"""
anonqa/realtime/emitters.py
Domain event emitters for questions and answers.

Each emitter projects a stored entity into its event payload and hands it to
the broadcaster. Call them only after the storage write has committed; they
never raise, and a None broadcaster (no live transport) makes them no-ops.
"""

import functools
from datetime import datetime
from typing import Iterable, Optional

from anonqa.core.logging import log_event
from anonqa.models.content import Answer, Question
from anonqa.realtime.broadcaster import Broadcaster
from anonqa.realtime.events import (
    AnswerAccepted,
    AnswerCreated,
    AnswerDeleted,
    AnswerSnapshot,
    AnswerUpdated,
    AnswerVoted,
    GroupActivity,
    QuestionCreated,
    QuestionDeleted,
    QuestionSnapshot,
    QuestionUpdated,
    QuestionUpdates,
    QuestionVoted,
    utc_now,
)

QUESTION_UPDATABLE_FIELDS = ("title", "content", "tags")


def best_effort(fn):
    """Log and swallow any failure so the committed write is never affected."""
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            fn(*args, **kwargs)
        except Exception as e:
            log_event(
                "error",
                "emit.failed",
                event_type=fn.__name__,
                extra={"error": str(e)},
            )
    return wrapper


def _emit(broadcaster: Optional[Broadcaster], group_id: str, event) -> None:
    if broadcaster is None:
        return
    broadcaster.broadcast(group_id, event)


def _emit_activity(broadcaster: Optional[Broadcaster], group_id: str, entity: str, action: str, at: Optional[datetime] = None) -> None:
    _emit(
        broadcaster,
        group_id,
        GroupActivity(group_id=group_id, type=entity, action=action, timestamp=at or utc_now()),
    )


# Questions

@best_effort
def emit_question_created(broadcaster: Optional[Broadcaster], question: Question) -> None:
    _emit(
        broadcaster,
        question.group_id,
        QuestionCreated(
            group_id=question.group_id,
            question=QuestionSnapshot(
                id=question.id,
                title=question.title,
                content=question.content,
                author_nickname=question.author_nickname,
                tags=list(question.tags),
                created_at=question.created_at,
            ),
        ),
    )
    _emit_activity(broadcaster, question.group_id, "question", "created")


@best_effort
def emit_question_updated(broadcaster: Optional[Broadcaster], question: Question, changed_fields: Iterable[str]) -> None:
    """Broadcast only the public fields that changed, plus updatedAt."""
    changes = {
        field: getattr(question, field)
        for field in changed_fields
        if field in QUESTION_UPDATABLE_FIELDS
    }
    _emit(
        broadcaster,
        question.group_id,
        QuestionUpdated(
            group_id=question.group_id,
            question_id=question.id,
            updates=QuestionUpdates(updated_at=question.updated_at, **changes),
        ),
    )
    _emit_activity(broadcaster, question.group_id, "question", "updated")


@best_effort
def emit_question_deleted(broadcaster: Optional[Broadcaster], group_id: str, question_id: str) -> None:
    _emit(broadcaster, group_id, QuestionDeleted(group_id=group_id, question_id=question_id))
    _emit_activity(broadcaster, group_id, "question", "deleted")


@best_effort
def emit_question_voted(broadcaster: Optional[Broadcaster], question: Question) -> None:
    _emit(
        broadcaster,
        question.group_id,
        QuestionVoted(group_id=question.group_id, question_id=question.id, upvotes=question.upvotes),
    )


# Answers

@best_effort
def emit_answer_created(broadcaster: Optional[Broadcaster], answer: Answer) -> None:
    _emit(
        broadcaster,
        answer.group_id,
        AnswerCreated(
            group_id=answer.group_id,
            question_id=answer.question_id,
            answer=AnswerSnapshot(
                id=answer.id,
                content=answer.content,
                author_nickname=answer.author_nickname,
                created_at=answer.created_at,
            ),
        ),
    )
    _emit_activity(broadcaster, answer.group_id, "answer", "created")


@best_effort
def emit_answer_updated(broadcaster: Optional[Broadcaster], answer: Answer) -> None:
    _emit(
        broadcaster,
        answer.group_id,
        AnswerUpdated(
            group_id=answer.group_id,
            question_id=answer.question_id,
            answer_id=answer.id,
            content=answer.content,
            updated_at=answer.updated_at,
        ),
    )
    _emit_activity(broadcaster, answer.group_id, "answer", "updated")


@best_effort
def emit_answer_deleted(broadcaster: Optional[Broadcaster], group_id: str, question_id: str, answer_id: str) -> None:
    _emit(
        broadcaster,
        group_id,
        AnswerDeleted(group_id=group_id, question_id=question_id, answer_id=answer_id),
    )
    _emit_activity(broadcaster, group_id, "answer", "deleted")


@best_effort
def emit_answer_voted(broadcaster: Optional[Broadcaster], answer: Answer) -> None:
    _emit(
        broadcaster,
        answer.group_id,
        AnswerVoted(
            group_id=answer.group_id,
            question_id=answer.question_id,
            answer_id=answer.id,
            upvotes=answer.upvotes,
        ),
    )


@best_effort
def emit_answer_accepted(broadcaster: Optional[Broadcaster], group_id: str, question_id: str, answer_id: str) -> None:
    """
    Announce the accepted answer for a question.

    The store has already unaccepted every sibling; clients flip the matching
    ids locally or re-fetch.
    """
    _emit(
        broadcaster,
        group_id,
        AnswerAccepted(group_id=group_id, question_id=question_id, answer_id=answer_id),
    )
