"""Progressive delivery of aggregation runs as discrete stream frames."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from ..errors import CatalogUnavailable, SessionTimeout
from ..models import MovieRecord, StreamError, StreamMessage
from ..utils import format_sse
from .aggregator import AggregationRun

logger = logging.getLogger(__name__)

DisconnectProbe = Callable[[], Awaitable[bool]]


class EmitterState(str, enum.Enum):
    STARTED = "started"
    FETCHING = "fetching"
    EMITTING = "emitting"
    COMPLETE = "complete"
    ERRORED = "errored"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset(
    {EmitterState.COMPLETE, EmitterState.ERRORED, EmitterState.CANCELLED}
)


@dataclass(slots=True)
class StreamFrame:
    """A named event carrying one ``StreamMessage``."""

    event: str
    message: StreamMessage

    def encode(self) -> str:
        return format_sse(self.event, self.message.to_payload())


class ProgressiveEmitter:
    """Session controller turning an aggregation run into ordered frames.

    Each pull performs at most one batch request against the run, so a new
    upstream page is only requested once the previous frame has been taken
    by the transport. The stream always ends with exactly one terminal
    frame (``complete`` or ``error``) unless the client went away first.
    """

    def __init__(
        self,
        run: AggregationRun,
        *,
        is_disconnected: DisconnectProbe | None = None,
    ) -> None:
        self._run = run
        self._is_disconnected = is_disconnected
        self.state = EmitterState.STARTED

    def __aiter__(self) -> "ProgressiveEmitter":
        return self

    async def __anext__(self) -> StreamFrame:
        if self.state in TERMINAL_STATES:
            raise StopAsyncIteration

        if await self._client_gone():
            self._cancel("client disconnected")
            raise StopAsyncIteration

        self.state = EmitterState.FETCHING
        try:
            batch = await self._run.next_batch()
        except SessionTimeout:
            self.state = EmitterState.COMPLETE
            logger.info(
                "Stream %s hit its time budget with %s records",
                self._run.state.source_label,
                self._run.state.running_total,
            )
            return self._frame("complete", [], is_complete=True, timed_out=True)
        except CatalogUnavailable as exc:
            self.state = EmitterState.ERRORED
            logger.error("Stream %s failed: %s", self._run.state.source_label, exc)
            return self._frame(
                "error",
                [],
                is_complete=True,
                error=StreamError(code="catalog_unavailable", message=str(exc)),
            )
        except Exception:
            self.state = EmitterState.ERRORED
            self._run.state.is_complete = True
            logger.exception("Stream %s aborted unexpectedly", self._run.state.source_label)
            return self._frame(
                "error",
                [],
                is_complete=True,
                error=StreamError(
                    code="internal_error", message="Movie stream stopped unexpectedly"
                ),
            )

        if batch is None:
            self.state = EmitterState.COMPLETE
            return self._frame("complete", [], is_complete=True)

        self.state = EmitterState.EMITTING
        return self._frame("batch", batch.records, page_number=batch.page_number)

    async def aclose(self) -> None:
        """Stop the session without issuing further upstream calls."""

        if self.state not in TERMINAL_STATES:
            self._cancel("stream closed")

    def sse(self) -> "SSEFrames":
        """Return an iterator of encoded Server-Sent Events frames."""

        return SSEFrames(self)

    async def _client_gone(self) -> bool:
        if self._is_disconnected is None:
            return False
        return await self._is_disconnected()

    def _cancel(self, reason: str) -> None:
        self.state = EmitterState.CANCELLED
        self._run.state.is_complete = True
        logger.info(
            "Stream %s cancelled after %s records: %s",
            self._run.state.source_label,
            self._run.state.running_total,
            reason,
        )

    def _frame(
        self,
        event: str,
        records: list[MovieRecord],
        *,
        page_number: int | None = None,
        is_complete: bool = False,
        timed_out: bool = False,
        error: StreamError | None = None,
    ) -> StreamFrame:
        state = self._run.state
        message = StreamMessage(
            batch=records,
            running_total=state.running_total,
            source_label=state.source_label,
            page_number=page_number if page_number is not None else state.last_page,
            is_complete=is_complete,
            total_available=state.total_available,
            timed_out=timed_out,
            error=error,
        )
        return StreamFrame(event=event, message=message)


class SSEFrames:
    """Adapter yielding the emitter's frames encoded for the wire."""

    def __init__(self, emitter: ProgressiveEmitter) -> None:
        self._emitter = emitter

    def __aiter__(self) -> "SSEFrames":
        return self

    async def __anext__(self) -> str:
        frame = await self._emitter.__anext__()
        return frame.encode()

    async def aclose(self) -> None:
        await self._emitter.aclose()
