"""
anonqa/features/content/store.py

Content store interface (questions and answers) plus an in-process
implementation used in development and tests.

The real document store lives outside this service; routes depend only on the
ContentStore protocol. Author passwords are bcrypt-hashed and checked here.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol
from uuid import uuid4

import bcrypt
import pydantic
from starlette.concurrency import run_in_threadpool

from anonqa.core.errors import ConflictError, NotFoundError, PermissionError, ValidationError
from anonqa.models.content import Answer, Question


class ContentStore(Protocol):
    async def create_question(self, *, group_id: str, content: str, author_nickname: str, password: str, title: Optional[str] = None, tags: Optional[List[str]] = None) -> Question: ...
    async def get_question(self, question_id: str) -> Optional[Question]: ...
    async def list_group_questions(self, group_id: str, limit: int = 100) -> List[Question]: ...
    async def update_question(self, question_id: str, password: str, changes: Dict[str, Any]) -> Question: ...
    async def delete_question(self, question_id: str, password: str) -> Question: ...
    async def upvote_question(self, question_id: str) -> Question: ...
    async def create_answer(self, *, question_id: str, content: str, author_nickname: str, password: str) -> Answer: ...
    async def get_answer(self, answer_id: str) -> Optional[Answer]: ...
    async def list_answers(self, question_id: str) -> List[Answer]: ...
    async def update_answer(self, answer_id: str, password: str, content: str) -> Answer: ...
    async def delete_answer(self, answer_id: str, password: str) -> Answer: ...
    async def upvote_answer(self, answer_id: str) -> Answer: ...
    async def accept_answer(self, question_id: str, answer_id: str, password: str) -> Answer: ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryContentStore:
    """
    Dict-backed ContentStore.

    bcrypt runs in the threadpool. Every password check happens before the
    record is (re)read, and nothing awaits between that read and the write, so
    each mutation is atomic on the event loop (accept_answer relies on this).
    """

    def __init__(self, bcrypt_rounds: int = 12):
        self._questions: Dict[str, Question] = {}
        self._answers: Dict[str, Answer] = {}
        self._rounds = bcrypt_rounds

    def _hash_sync(self, password: str) -> str:
        return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=self._rounds)).decode("utf-8")

    @staticmethod
    def _check_sync(password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode(), password_hash.encode())
        except ValueError:
            return False

    async def _hash(self, password: str) -> str:
        return await run_in_threadpool(self._hash_sync, password)

    async def _check(self, password: str, password_hash: str) -> bool:
        return await run_in_threadpool(self._check_sync, password, password_hash)

    @staticmethod
    def _rebuild(record, changes: Dict[str, Any]):
        """Copy record with changes applied, validated so an invalid value is never stored."""
        try:
            return type(record).model_validate({**record.model_dump(), **changes})
        except pydantic.ValidationError as e:
            fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err.get("loc"))
            raise ValidationError(f"Invalid value for: {fields}") from e

    def _question_or_404(self, question_id: str) -> Question:
        question = self._questions.get(question_id)
        if question is None:
            raise NotFoundError("Question not found")
        return question

    def _answer_or_404(self, answer_id: str) -> Answer:
        answer = self._answers.get(answer_id)
        if answer is None:
            raise NotFoundError("Answer not found")
        return answer

    # Questions

    async def create_question(self, *, group_id: str, content: str, author_nickname: str, password: str, title: Optional[str] = None, tags: Optional[List[str]] = None) -> Question:
        password_hash = await self._hash(password)
        now = _now()
        question = Question(
            id=str(uuid4()),
            group_id=group_id,
            title=title,
            content=content,
            author_nickname=author_nickname,
            tags=list(tags or []),
            created_at=now,
            updated_at=now,
            author_password_hash=password_hash,
        )
        self._questions[question.id] = question
        return question

    async def get_question(self, question_id: str) -> Optional[Question]:
        return self._questions.get(question_id)

    async def list_group_questions(self, group_id: str, limit: int = 100) -> List[Question]:
        """Newest first, capped at limit."""
        questions = [q for q in self._questions.values() if q.group_id == group_id]
        questions.sort(key=lambda q: q.created_at, reverse=True)
        return questions[:limit]

    async def update_question(self, question_id: str, password: str, changes: Dict[str, Any]) -> Question:
        question = self._question_or_404(question_id)
        if not await self._check(password, question.author_password_hash):
            raise PermissionError("Invalid author password")
        question = self._question_or_404(question_id)
        allowed = {k: v for k, v in changes.items() if k in ("title", "content", "tags")}
        updated = self._rebuild(question, {**allowed, "updated_at": _now()})
        self._questions[question_id] = updated
        return updated

    async def delete_question(self, question_id: str, password: str) -> Question:
        question = self._question_or_404(question_id)
        if not await self._check(password, question.author_password_hash):
            raise PermissionError("Invalid author password")
        question = self._question_or_404(question_id)
        del self._questions[question_id]
        for answer_id in [a.id for a in self._answers.values() if a.question_id == question_id]:
            del self._answers[answer_id]
        return question

    async def upvote_question(self, question_id: str) -> Question:
        question = self._question_or_404(question_id)
        updated = question.model_copy(update={"upvotes": question.upvotes + 1})
        self._questions[question_id] = updated
        return updated

    # Answers

    async def create_answer(self, *, question_id: str, content: str, author_nickname: str, password: str) -> Answer:
        self._question_or_404(question_id)
        password_hash = await self._hash(password)
        question = self._question_or_404(question_id)
        now = _now()
        answer = Answer(
            id=str(uuid4()),
            question_id=question.id,
            group_id=question.group_id,
            content=content,
            author_nickname=author_nickname,
            created_at=now,
            updated_at=now,
            author_password_hash=password_hash,
        )
        self._answers[answer.id] = answer
        self._questions[question.id] = question.model_copy(update={"answer_count": question.answer_count + 1})
        return answer

    async def get_answer(self, answer_id: str) -> Optional[Answer]:
        return self._answers.get(answer_id)

    async def list_answers(self, question_id: str) -> List[Answer]:
        answers = [a for a in self._answers.values() if a.question_id == question_id]
        answers.sort(key=lambda a: a.created_at)
        return answers

    async def update_answer(self, answer_id: str, password: str, content: str) -> Answer:
        answer = self._answer_or_404(answer_id)
        if not await self._check(password, answer.author_password_hash):
            raise PermissionError("Invalid author password")
        answer = self._answer_or_404(answer_id)
        updated = self._rebuild(answer, {"content": content, "updated_at": _now()})
        self._answers[answer_id] = updated
        return updated

    async def delete_answer(self, answer_id: str, password: str) -> Answer:
        answer = self._answer_or_404(answer_id)
        if not await self._check(password, answer.author_password_hash):
            raise PermissionError("Invalid author password")
        answer = self._answer_or_404(answer_id)
        del self._answers[answer_id]
        question = self._questions.get(answer.question_id)
        if question is not None:
            remaining = [a for a in self._answers.values() if a.question_id == question.id]
            self._questions[question.id] = question.model_copy(update={
                "answer_count": max(0, question.answer_count - 1),
                "is_answered": any(a.is_accepted for a in remaining),
            })
        return answer

    async def upvote_answer(self, answer_id: str) -> Answer:
        answer = self._answer_or_404(answer_id)
        updated = answer.model_copy(update={"upvotes": answer.upvotes + 1})
        self._answers[answer_id] = updated
        return updated

    async def accept_answer(self, question_id: str, answer_id: str, password: str) -> Answer:
        """
        Accept answer_id for question_id; the question author's password is required.

        Unaccepts every sibling before accepting the target, so at most one
        answer per question is accepted once this returns.
        """
        question = self._question_or_404(question_id)
        if not await self._check(password, question.author_password_hash):
            raise PermissionError("Unauthorized to modify this question")

        question = self._question_or_404(question_id)
        answer = self._answers.get(answer_id)
        if answer is None or answer.question_id != question_id:
            raise NotFoundError("Answer not found or does not belong to this question")
        if answer.is_accepted:
            raise ConflictError("This answer is already accepted.")

        now = _now()
        for sibling in [a for a in self._answers.values() if a.question_id == question_id and a.id != answer_id]:
            if sibling.is_accepted:
                self._answers[sibling.id] = sibling.model_copy(update={"is_accepted": False, "updated_at": now})
        accepted = answer.model_copy(update={"is_accepted": True, "updated_at": now})
        self._answers[answer_id] = accepted
        self._questions[question_id] = question.model_copy(update={"is_answered": True, "updated_at": now})
        return accepted
