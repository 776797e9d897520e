"""
anonqa/features/usage/service.py

AI usage ledger and quota gate.

Handles:
- Usage record persistence (one row per completed AI generation)
- Usage counting per (actor, action), optionally per question and time window
- Quota enforcement before any upstream call
- Per-group usage stats
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Protocol
from uuid import uuid4

from starlette.concurrency import run_in_threadpool
from sqlalchemy import func, insert, select

from anonqa.core.config import settings
from anonqa.core.database import ai_usage_logs, create_all_tables, get_db_session
from anonqa.core.errors import QuotaExceededError
from anonqa.core.logging import log_event
from anonqa.core.metrics import ai_quota_rejections_total
from anonqa.models.usage_record import UsageAction, UsageRecord, UsageSummary

logger = logging.getLogger(__name__)


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class UsageStore(Protocol):
    async def add(self, record: UsageRecord) -> None: ...
    async def count(self, actor_id: str, action: UsageAction, question_id: Optional[str] = None, since: Optional[datetime] = None) -> int: ...
    async def list_for_group(self, group_id: str, since: Optional[datetime] = None) -> List[UsageRecord]: ...


class InMemoryUsageStore:
    """Process-local usage store (development and tests)."""

    def __init__(self):
        self.records: List[UsageRecord] = []

    async def add(self, record: UsageRecord) -> None:
        self.records.append(record)

    async def count(self, actor_id: str, action: UsageAction, question_id: Optional[str] = None, since: Optional[datetime] = None) -> int:
        since = _utc(since)
        return sum(
            1
            for r in self.records
            if r.actor_id == actor_id
            and r.action == action
            and (question_id is None or r.question_id == question_id)
            and (since is None or r.created_at >= since)
        )

    async def list_for_group(self, group_id: str, since: Optional[datetime] = None) -> List[UsageRecord]:
        since = _utc(since)
        return [
            r for r in self.records
            if r.group_id == group_id and (since is None or r.created_at >= since)
        ]


class SqlUsageStore:
    """ai_usage_logs table via SQLAlchemy; sync sessions run in the threadpool."""

    def __init__(self, ensure_tables: bool = True):
        if ensure_tables:
            create_all_tables()

    async def add(self, record: UsageRecord) -> None:
        await run_in_threadpool(self._add, record)

    async def count(self, actor_id: str, action: UsageAction, question_id: Optional[str] = None, since: Optional[datetime] = None) -> int:
        return await run_in_threadpool(self._count, actor_id, action, question_id, _utc(since))

    async def list_for_group(self, group_id: str, since: Optional[datetime] = None) -> List[UsageRecord]:
        return await run_in_threadpool(self._list_for_group, group_id, _utc(since))

    def _add(self, record: UsageRecord) -> None:
        with get_db_session() as session:
            session.execute(
                insert(ai_usage_logs).values(
                    id=record.id,
                    actor_id=record.actor_id,
                    action=record.action.value,
                    group_id=record.group_id,
                    question_id=record.question_id,
                    prompt=record.prompt,
                    response=record.response,
                    tokens_used=record.tokens_used,
                    cost=record.cost,
                    created_at=record.created_at,
                )
            )

    def _count(self, actor_id: str, action: UsageAction, question_id: Optional[str], since: Optional[datetime]) -> int:
        with get_db_session() as session:
            query = (
                select(func.count())
                .select_from(ai_usage_logs)
                .where(ai_usage_logs.c.actor_id == actor_id)
                .where(ai_usage_logs.c.action == action.value)
            )
            if question_id:
                query = query.where(ai_usage_logs.c.question_id == question_id)
            if since:
                query = query.where(ai_usage_logs.c.created_at >= since)
            return int(session.execute(query).scalar_one())

    def _list_for_group(self, group_id: str, since: Optional[datetime]) -> List[UsageRecord]:
        with get_db_session() as session:
            query = select(ai_usage_logs).where(ai_usage_logs.c.group_id == group_id)
            if since:
                query = query.where(ai_usage_logs.c.created_at >= since)
            rows = session.execute(query.order_by(ai_usage_logs.c.created_at)).all()
            return [
                UsageRecord(
                    id=row.id,
                    actor_id=row.actor_id,
                    action=UsageAction(row.action),
                    group_id=row.group_id,
                    question_id=row.question_id,
                    prompt=row.prompt,
                    response=row.response,
                    tokens_used=row.tokens_used,
                    cost=row.cost,
                    created_at=_utc(row.created_at),
                )
                for row in rows
            ]


@dataclass(frozen=True)
class QuotaPolicy:
    """
    limit: max prior records allowed before rejecting
    window: rolling window (None = all time)
    per_scope: count only records for the same scope id (question)
    """
    limit: int
    window: Optional[timedelta] = None
    per_scope: bool = False


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    count: int
    limit: Optional[int] = None


def default_policies() -> Dict[UsageAction, QuotaPolicy]:
    """Answer generation: N per question. Question generation: N per rolling day.

    Similar-question lookup has no quota; the candidate list cap bounds its cost.
    """
    return {
        UsageAction.GENERATE_ANSWER: QuotaPolicy(limit=settings.AI_ANSWER_QUOTA_PER_QUESTION, per_scope=True),
        UsageAction.GENERATE_QUESTION: QuotaPolicy(limit=settings.AI_QUESTION_QUOTA_PER_DAY, window=timedelta(hours=24)),
    }


class UsageLedger:
    def __init__(
        self,
        store: UsageStore,
        policies: Optional[Dict[UsageAction, QuotaPolicy]] = None,
        cost_per_token: Optional[float] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.policies = policies if policies is not None else default_policies()
        self.cost_per_token = settings.AI_COST_PER_TOKEN if cost_per_token is None else cost_per_token
        self._clock = clock

    def summarize(self, text: str) -> UsageSummary:
        return UsageSummary.for_text(text, self.cost_per_token)

    async def check(
        self,
        actor_id: str,
        action: UsageAction,
        scope_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> QuotaDecision:
        """Count prior records for (actor, action[, scope][, since]) against the action's policy."""
        policy = self.policies.get(action)
        if policy is not None and since is None and policy.window is not None:
            since = self._clock() - policy.window
        question_id = scope_id if policy is None or policy.per_scope else None

        count = await self.store.count(actor_id, action, question_id=question_id, since=since)
        if policy is None:
            return QuotaDecision(allowed=True, count=count)
        return QuotaDecision(allowed=count < policy.limit, count=count, limit=policy.limit)

    async def check_and_reject(
        self,
        actor_id: str,
        action: UsageAction,
        scope_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> QuotaDecision:
        """Like check(), but raise QuotaExceededError when the caller is over quota.

        Only completed generations are counted, and the record is written when
        the stream finishes. Requests that pass this gate while earlier streams
        are still running can therefore overshoot the limit by the number in
        flight.
        """
        decision = await self.check(actor_id, action, scope_id=scope_id, since=since)
        if not decision.allowed:
            ai_quota_rejections_total.inc(labels={"action": action.value})
            log_event(
                "info",
                "usage.quota_exceeded",
                event_type="usage.quota_exceeded",
                error_code="quota_exceeded",
                extra={"action": action.value, "actor_id": actor_id, "scope_id": scope_id, "count": decision.count},
            )
            message = (
                "AI answer limit reached for this question"
                if action == UsageAction.GENERATE_ANSWER
                else "Daily usage limit exceeded"
            )
            raise QuotaExceededError(message, count=decision.count, limit=decision.limit or 0)
        return decision

    async def record(
        self,
        *,
        actor_id: str,
        action: UsageAction,
        prompt: str,
        response: str,
        summary: Optional[UsageSummary] = None,
        group_id: Optional[str] = None,
        question_id: Optional[str] = None,
    ) -> UsageRecord:
        summary = summary or self.summarize(response)
        record = UsageRecord(
            id=str(uuid4()),
            actor_id=actor_id,
            action=action,
            group_id=group_id,
            question_id=question_id,
            prompt=prompt,
            response=response,
            tokens_used=summary.tokens_used,
            cost=summary.cost,
            created_at=self._clock(),
        )
        await self.store.add(record)
        logger.debug(f"[USAGE] Recorded {action.value} for {actor_id}: {summary.tokens_used} tokens")
        return record

    async def group_stats(self, group_id: str, since: Optional[datetime] = None) -> dict:
        """
        Aggregate usage for a group.

        Returns:
            {"totalUsage": int, "totalCost": float, "byType": {action: count}}
        """
        records = await self.store.list_for_group(group_id, since=since)
        by_type: Dict[str, int] = {}
        for r in records:
            by_type[r.action.value] = by_type.get(r.action.value, 0) + 1
        return {
            "totalUsage": len(records),
            "totalCost": sum(r.cost for r in records),
            "byType": by_type,
        }


def build_usage_store() -> UsageStore:
    """SQL-backed store when DATABASE_URL is configured, in-memory otherwise."""
    if settings.DATABASE_URL:
        return SqlUsageStore()
    logger.warning("DATABASE_URL not set; AI usage ledger is in-memory and resets on restart")
    return InMemoryUsageStore()
