"""
anonqa/tests/test_usage_ledger.py
Quota gate and usage accounting.
"""

from datetime import datetime, timedelta, timezone

import pytest

from anonqa.core.errors import QuotaExceededError
from anonqa.core.metrics import METRICS, ai_quota_rejections_total
from anonqa.features.usage.service import InMemoryUsageStore, UsageLedger
from anonqa.models.usage_record import UsageAction, UsageSummary


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return Clock(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def ledger(clock):
    METRICS.reset()
    return UsageLedger(InMemoryUsageStore(), cost_per_token=0.000001, clock=clock)


async def _record(ledger, action, actor="1.2.3.4", question_id=None, group_id="g1", response="x" * 8):
    return await ledger.record(
        actor_id=actor, action=action, prompt="p", response=response, group_id=group_id, question_id=question_id
    )


@pytest.mark.parametrize(
    "length,tokens",
    [(0, 0), (1, 1), (4, 1), (5, 2), (8, 2), (401, 101)],
)
def test_token_estimate_is_ceil_of_quarter_length(length, tokens):
    summary = UsageSummary.for_text("a" * length, 0.000001)
    assert summary.tokens_used == tokens
    assert summary.cost == pytest.approx(tokens * 0.000001)


def test_empty_response_costs_nothing():
    summary = UsageSummary.for_text("", 0.5)
    assert (summary.tokens_used, summary.cost) == (0, 0.0)


@pytest.mark.asyncio
async def test_answer_quota_boundary(ledger):
    """Three answers per question are allowed, the fourth is rejected."""
    for _ in range(3):
        decision = await ledger.check_and_reject("1.2.3.4", UsageAction.GENERATE_ANSWER, scope_id="q1")
        assert decision.allowed
        await _record(ledger, UsageAction.GENERATE_ANSWER, question_id="q1")

    with pytest.raises(QuotaExceededError) as exc:
        await ledger.check_and_reject("1.2.3.4", UsageAction.GENERATE_ANSWER, scope_id="q1")
    assert exc.value.status_code == 429
    assert exc.value.count == 3
    assert ai_quota_rejections_total.value({"action": "generate_answer"}) == 1
    assert len(ledger.store.records) == 3


@pytest.mark.asyncio
async def test_answer_quota_is_per_question_and_actor(ledger):
    for _ in range(3):
        await _record(ledger, UsageAction.GENERATE_ANSWER, question_id="q1")

    assert (await ledger.check("1.2.3.4", UsageAction.GENERATE_ANSWER, scope_id="q2")).allowed
    assert (await ledger.check("5.6.7.8", UsageAction.GENERATE_ANSWER, scope_id="q1")).allowed
    assert not (await ledger.check("1.2.3.4", UsageAction.GENERATE_ANSWER, scope_id="q1")).allowed


@pytest.mark.asyncio
async def test_question_quota_uses_rolling_day(ledger, clock):
    start = clock.now
    for i in range(10):
        clock.now = start + timedelta(minutes=i)
        await _record(ledger, UsageAction.GENERATE_QUESTION)

    clock.now = start + timedelta(hours=1)
    decision = await ledger.check("1.2.3.4", UsageAction.GENERATE_QUESTION)
    assert not decision.allowed
    assert decision.count == 10
    assert decision.limit == 10

    # First record falls out of the 24h window
    clock.now = start + timedelta(hours=24, seconds=30)
    decision = await ledger.check("1.2.3.4", UsageAction.GENERATE_QUESTION)
    assert decision.allowed
    assert decision.count == 9


@pytest.mark.asyncio
async def test_similar_questions_is_uncapped(ledger):
    for _ in range(50):
        await _record(ledger, UsageAction.SIMILAR_QUESTIONS)

    decision = await ledger.check_and_reject("1.2.3.4", UsageAction.SIMILAR_QUESTIONS)
    assert decision.allowed
    assert decision.limit is None


@pytest.mark.asyncio
async def test_record_stores_estimated_usage(ledger):
    record = await _record(ledger, UsageAction.GENERATE_ANSWER, question_id="q1", response="abcdefghi")
    assert record.tokens_used == 3
    assert record.cost == pytest.approx(0.000003)
    assert record.group_id == "g1"
    assert record.question_id == "q1"


@pytest.mark.asyncio
async def test_group_stats(ledger):
    await _record(ledger, UsageAction.GENERATE_ANSWER, question_id="q1", response="a" * 40)
    await _record(ledger, UsageAction.GENERATE_QUESTION, response="a" * 4)
    await _record(ledger, UsageAction.GENERATE_QUESTION, group_id="other")

    stats = await ledger.group_stats("g1")
    assert stats["totalUsage"] == 2
    assert stats["totalCost"] == pytest.approx(11 * 0.000001)
    assert stats["byType"] == {"generate_answer": 1, "generate_question": 1}


@pytest.mark.asyncio
async def test_quota_counts_only_recorded_generations(ledger):
    # Gate passes are not reservations: streams still in flight are not counted
    for _ in range(2):
        await _record(ledger, UsageAction.GENERATE_ANSWER, question_id="q1")

    decisions = [
        await ledger.check_and_reject("1.2.3.4", UsageAction.GENERATE_ANSWER, scope_id="q1")
        for _ in range(3)
    ]
    assert all(d.allowed and d.count == 2 for d in decisions)

    await _record(ledger, UsageAction.GENERATE_ANSWER, question_id="q1")
    with pytest.raises(QuotaExceededError):
        await ledger.check_and_reject("1.2.3.4", UsageAction.GENERATE_ANSWER, scope_id="q1")
