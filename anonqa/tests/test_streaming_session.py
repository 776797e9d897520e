"""
anonqa/tests/test_streaming_session.py
Completion session state machine: completion, upstream errors, cancellation.
"""

import asyncio

import pytest

from anonqa.features.ai.streaming import CompletionSession, QueueSink, SessionState, relay
from anonqa.features.usage.service import InMemoryUsageStore, UsageLedger
from anonqa.models.usage_record import UsageAction
from anonqa.tests.mocks import FailingUsageStore, GatedStreamClient, ListSink


@pytest.fixture
def ledger():
    return UsageLedger(InMemoryUsageStore(), cost_per_token=0.000001)


def _session(client, ledger, **kwargs):
    return CompletionSession(
        client,
        "prompt",
        action=UsageAction.GENERATE_ANSWER,
        actor_id="1.2.3.4",
        ledger=ledger,
        group_id="g1",
        question_id="q1",
        **kwargs,
    )


async def _wait_for(predicate, attempts=100):
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


@pytest.mark.asyncio
async def test_completed_session_relays_text_and_records_usage(ledger):
    client = GatedStreamClient(["Hel", "lo ", "world"])
    session = _session(client, ledger)
    sink = ListSink()

    await session.run(sink)

    assert session.state is SessionState.COMPLETED
    assert "".join(sink.chunks) == "Hello world"
    assert sink.closed
    assert session.summary.tokens_used == 3  # ceil(11 / 4)
    [record] = ledger.store.records
    assert record.response == "Hello world"
    assert record.question_id == "q1"
    assert record.cost == pytest.approx(0.000003)


@pytest.mark.asyncio
async def test_empty_completion_records_zero_usage(ledger):
    session = _session(GatedStreamClient([]), ledger)
    await session.run(ListSink())

    assert session.state is SessionState.COMPLETED
    assert (session.summary.tokens_used, session.summary.cost) == (0, 0.0)


@pytest.mark.asyncio
async def test_upstream_error_appends_marker_and_skips_usage(ledger):
    class BrokenClient:
        async def stream_text(self, prompt):
            yield "partial "
            raise RuntimeError("model overloaded")

    session = _session(BrokenClient(), ledger)
    sink = ListSink()
    await session.run(sink)

    assert session.state is SessionState.ERRORED
    assert sink.chunks == ["partial ", "\n[[ERROR: model overloaded]]\n"]
    assert sink.closed
    assert ledger.store.records == []


@pytest.mark.asyncio
async def test_cancellation_stops_consumption(ledger):
    client = GatedStreamClient(["a", "b", "c", "d", "e"], pause_at=2)
    session = _session(client, ledger)
    sink = ListSink()
    task = asyncio.create_task(session.run(sink))

    await _wait_for(lambda: len(sink.chunks) == 2)
    session.cancel()
    written_at_cancel = list(sink.chunks)
    client.release.set()
    await task

    assert session.state is SessionState.CANCELLED
    assert sink.chunks == written_at_cancel == ["a", "b"]
    # At most the one in-flight chunk is pulled after the signal
    assert client.produced <= 3
    assert client.closed
    assert ledger.store.records == []


@pytest.mark.asyncio
async def test_cancel_before_run_never_touches_upstream(ledger):
    client = GatedStreamClient(["a"])
    session = _session(client, ledger)
    session.cancel()

    sink = ListSink()
    await session.run(sink)

    assert session.state is SessionState.CANCELLED
    assert client.produced == 0
    assert sink.chunks == []


@pytest.mark.asyncio
async def test_late_cancel_after_completion_is_noop(ledger):
    session = _session(GatedStreamClient(["done"]), ledger)
    await session.run(ListSink())
    session.cancel()
    session.cancel()

    assert session.state is SessionState.COMPLETED
    assert len(ledger.store.records) == 1


@pytest.mark.asyncio
async def test_failed_usage_write_does_not_error_stream():
    session = _session(GatedStreamClient(["ok"]), UsageLedger(FailingUsageStore()))
    sink = ListSink()
    await session.run(sink)

    assert session.state is SessionState.COMPLETED
    assert sink.chunks == ["ok"]


@pytest.mark.asyncio
async def test_queue_sink_ignores_writes_after_close():
    sink = QueueSink()
    assert sink.write("é")
    sink.close()
    sink.close()
    assert not sink.write("late")

    assert [chunk async for chunk in sink] == ["é".encode("utf-8")]


@pytest.mark.asyncio
async def test_relay_close_cancels_upstream(ledger):
    """Closing the response body mid-stream (client gone) cancels the session."""
    client = GatedStreamClient(["a", "b", "c"], pause_at=1)
    session = _session(client, ledger)

    body = relay(session)
    assert await body.__anext__() == b"a"
    await body.aclose()

    assert session.state is SessionState.CANCELLED
    assert client.closed
    assert client.produced == 1
    assert ledger.store.records == []


@pytest.mark.asyncio
async def test_relay_yields_full_stream(ledger):
    session = _session(GatedStreamClient(["one ", "two"]), ledger)
    chunks = [chunk async for chunk in relay(session)]

    assert b"".join(chunks) == b"one two"
    assert session.state is SessionState.COMPLETED
