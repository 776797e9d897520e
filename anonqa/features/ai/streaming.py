"""
anonqa/features/ai/streaming.py

Streaming completion proxy.

A CompletionSession relays upstream text chunks into an append-only sink and
moves through pending -> streaming -> completed | errored | cancelled. Exactly
one terminal transition happens; whichever of completion, upstream error or
cancellation comes first wins and later ones are ignored.

The HTTP layer runs the session as a producer task feeding a QueueSink and
drains the sink from the StreamingResponse body (see relay()). When the client
goes away the body iterator is closed, which cancels the session and the task,
so upstream consumption stops at the next chunk boundary.
"""

import asyncio
import contextlib
import logging
from enum import Enum
from typing import AsyncIterator, Optional

from anonqa.core.logging import log_event
from anonqa.core.metrics import ai_streams_total
from anonqa.models.usage_record import UsageAction, UsageSummary

logger = logging.getLogger(__name__)

ERROR_MARKER = "\n[[ERROR: {message}]]\n"


class SessionState(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({SessionState.COMPLETED, SessionState.ERRORED, SessionState.CANCELLED})


class CancellationToken:
    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class QueueSink:
    """Append-only text sink drained as UTF-8 bytes. Writes after close() are dropped."""

    _CLOSED = object()

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def write(self, text: str) -> bool:
        if self.closed:
            return False
        self._queue.put_nowait(text.encode("utf-8"))
        return True

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(self._CLOSED)

    async def __aiter__(self) -> AsyncIterator[bytes]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item


class CompletionSession:
    def __init__(
        self,
        client,
        prompt: str,
        *,
        action: UsageAction,
        actor_id: str,
        ledger,
        group_id: Optional[str] = None,
        question_id: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ):
        self.client = client
        self.prompt = prompt
        self.action = action
        self.actor_id = actor_id
        self.ledger = ledger
        self.group_id = group_id
        self.question_id = question_id
        self.token = token or CancellationToken()
        self.state = SessionState.PENDING
        self.summary: Optional[UsageSummary] = None
        self.error: Optional[str] = None
        self._parts: list = []
        self._sink: Optional[QueueSink] = None
        # Set once the usage write starts; from then on the session can only complete
        self._finalizing = False

    @property
    def text(self) -> str:
        return "".join(self._parts)

    @property
    def finalizing(self) -> bool:
        return self._finalizing

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def _finish(self, state: SessionState) -> bool:
        """Single terminal transition. Returns False if the session had already ended."""
        if self.done:
            return False
        self.state = state
        ai_streams_total.inc(labels={"action": self.action.value, "outcome": state.value})
        if self._sink is not None:
            self._sink.close()
        return True

    def cancel(self) -> None:
        """Client went away or aborted. Safe to call at any time, any number of times."""
        self.token.cancel()
        if self._finalizing:
            return
        if self._finish(SessionState.CANCELLED):
            logger.debug(f"[AI] {self.action.value} stream cancelled after {len(self.text)} chars")

    async def run(self, sink: QueueSink) -> None:
        self._sink = sink
        if self.token.cancelled or self.done:
            self._finish(SessionState.CANCELLED)
            sink.close()
            return
        self.state = SessionState.STREAMING

        stream = self.client.stream_text(self.prompt)
        try:
            async for chunk in stream:
                if self.state is not SessionState.STREAMING:
                    break
                self._parts.append(chunk)
                sink.write(chunk)
                if self.token.cancelled:
                    break
        except asyncio.CancelledError:
            self.cancel()
            raise
        except Exception as e:
            self._fail(e)
            return
        finally:
            await stream.aclose()

        if self.token.cancelled or self.done:
            self.cancel()
            return
        await self._complete()

    def _fail(self, error: Exception) -> None:
        if self.done:
            return
        self.error = str(error) or error.__class__.__name__
        log_event(
            "error",
            "ai.stream_failed",
            event_type=self.action.value,
            error_code="upstream_error",
            extra={"error": self.error, "chars_streamed": len(self.text)},
        )
        if self._sink is not None:
            self._sink.write(ERROR_MARKER.format(message=self.error))
        self._finish(SessionState.ERRORED)

    async def _complete(self) -> None:
        self._finalizing = True
        text = self.text
        self.summary = self.ledger.summarize(text)
        try:
            await self.ledger.record(
                actor_id=self.actor_id,
                action=self.action,
                prompt=self.prompt,
                response=text,
                summary=self.summary,
                group_id=self.group_id,
                question_id=self.question_id,
            )
        except Exception as e:
            log_event(
                "error",
                "ai.usage_write_failed",
                group_id=self.group_id,
                event_type=self.action.value,
                extra={"error": str(e), "tokens_used": self.summary.tokens_used},
            )
        self._finish(SessionState.COMPLETED)
        logger.debug(f"[AI] {self.action.value} stream completed: {self.summary.tokens_used} tokens")


async def relay(session: CompletionSession) -> AsyncIterator[bytes]:
    """StreamingResponse body: run the session in a task and yield what it writes."""
    sink = QueueSink()
    task = asyncio.create_task(session.run(sink))
    try:
        async for chunk in sink:
            yield chunk
    finally:
        session.cancel()
        # Let an in-flight usage write finish; anything earlier is abandoned
        if not task.done() and not session.finalizing:
            task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
