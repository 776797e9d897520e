"""
anonqa/features/ai/service.py

AI orchestration: quota gate, prompt building, streaming session setup and the
similar-questions lookup.

Every entry point checks configuration and quota before anything reaches the
upstream service; a rejected request never opens a stream and never writes a
usage record.
"""

import logging
import re
from typing import List, Optional, Sequence, Tuple

from starlette.requests import Request

from anonqa.core.config import settings
from anonqa.core.errors import NotFoundError, UpstreamError
from anonqa.core.logging import log_event
from anonqa.features.ai.client import CompletionClient
from anonqa.features.ai.prompts import (
    CANDIDATE_PREFIX_CHARS,
    build_answer_prompt,
    build_question_prompt,
    build_similar_prompt,
)
from anonqa.features.ai.streaming import CompletionSession
from anonqa.features.content.store import ContentStore
from anonqa.features.usage.service import UsageLedger
from anonqa.models.content import Question
from anonqa.models.usage_record import UsageAction, UsageSummary

logger = logging.getLogger(__name__)

ANONYMOUS_ACTOR = "anonymous"
MIN_MATCH_CHARS = 5

_NUMBERING_RE = re.compile(r"^\s*(?:\d+[.):\-\]]*\s*|[-•*]+\s*)")


def actor_id_from_request(request: Request) -> str:
    """First X-Forwarded-For hop, else the socket peer, else "anonymous"."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return ANONYMOUS_ACTOR


def _normalize(text: Optional[str]) -> str:
    if not text:
        return ""
    cleaned = _NUMBERING_RE.sub("", text.strip())
    cleaned = cleaned.strip().strip("\"'`").strip()
    return " ".join(cleaned.lower().split())


def _reply_lines(reply: str) -> List[str]:
    lines = [_normalize(line) for line in reply.splitlines()]
    return [line for line in lines if len(line) >= MIN_MATCH_CHARS]


def _candidate_keys(question: Question) -> List[str]:
    keys = [_normalize(question.title), _normalize(question.content[:CANDIDATE_PREFIX_CHARS])]
    return [k for k in keys if k]


def match_similar_questions(reply: str, candidates: Sequence[Question], limit: int) -> List[Question]:
    """
    Best-effort match of reply lines against candidate titles / content prefixes.

    A candidate matches when a reply line contains one of its keys or is
    contained in one. Results keep candidate order, not reply order, and are
    capped at limit. No matching lines gives an empty list.
    """
    lines = _reply_lines(reply or "")
    if not lines or limit <= 0:
        return []

    matched: List[Question] = []
    for question in candidates:
        keys = _candidate_keys(question)
        if any(key in line or line in key for key in keys for line in lines):
            matched.append(question)
            if len(matched) >= limit:
                break
    return matched


class AIService:
    def __init__(self, client: CompletionClient, ledger: UsageLedger, content_store: ContentStore):
        self.client = client
        self.ledger = ledger
        self.content_store = content_store

    async def answer_session(self, actor_id: str, question_id: str, additional_context: Optional[str] = None) -> CompletionSession:
        """Streamed answer suggestion for a stored question (3 per actor per question)."""
        self.client.ensure_configured()
        question = await self.content_store.get_question(question_id)
        if question is None:
            raise NotFoundError("Question not found")
        await self.ledger.check_and_reject(actor_id, UsageAction.GENERATE_ANSWER, scope_id=question.id)

        prompt = build_answer_prompt(question.content, question.title, additional_context)
        return CompletionSession(
            self.client,
            prompt,
            action=UsageAction.GENERATE_ANSWER,
            actor_id=actor_id,
            ledger=self.ledger,
            group_id=question.group_id,
            question_id=question.id,
        )

    async def question_session(self, actor_id: str, group_id: str, topic: str, context: Optional[str] = None, count: int = 3) -> CompletionSession:
        """Streamed question suggestions for a group (10 per actor per rolling day)."""
        self.client.ensure_configured()
        await self.ledger.check_and_reject(actor_id, UsageAction.GENERATE_QUESTION)

        prompt = build_question_prompt(topic, context, count)
        return CompletionSession(
            self.client,
            prompt,
            action=UsageAction.GENERATE_QUESTION,
            actor_id=actor_id,
            ledger=self.ledger,
            group_id=group_id,
        )

    async def find_similar_questions(self, actor_id: str, group_id: str, question_text: str, limit: int = 5) -> Tuple[List[Question], UsageSummary]:
        self.client.ensure_configured()
        candidates = await self.content_store.list_group_questions(group_id, limit=settings.SIMILAR_CANDIDATE_FETCH_LIMIT)
        candidates = candidates[: settings.SIMILAR_PROMPT_CANDIDATES]
        if not candidates:
            logger.debug(f"[AI] No candidate questions in group {group_id}; skipping upstream call")
            return [], UsageSummary(tokens_used=0, cost=0.0)

        prompt = build_similar_prompt(question_text, candidates, limit)
        try:
            reply = await self.client.complete(prompt)
        except Exception as e:
            log_event(
                "error",
                "ai.similar_failed",
                group_id=group_id,
                event_type=UsageAction.SIMILAR_QUESTIONS.value,
                error_code="upstream_error",
                extra={"error": str(e)},
            )
            raise UpstreamError("Failed to find similar questions") from e

        matches = match_similar_questions(reply, candidates, limit)
        summary = self.ledger.summarize(reply)
        try:
            await self.ledger.record(
                actor_id=actor_id,
                action=UsageAction.SIMILAR_QUESTIONS,
                prompt=prompt,
                response=reply,
                summary=summary,
                group_id=group_id,
            )
        except Exception as e:
            log_event(
                "error",
                "ai.usage_write_failed",
                group_id=group_id,
                event_type=UsageAction.SIMILAR_QUESTIONS.value,
                extra={"error": str(e)},
            )
        logger.debug(f"[AI] similar questions for group {group_id}: {len(matches)} of {len(candidates)} matched")
        return matches, summary
