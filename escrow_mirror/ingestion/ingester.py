"""
Ingestion loop: fetch ledger events by block range, merge them into causal order,
materialize them and advance the checkpoint.

Usage (example from CLI):
    from escrow_mirror.ingestion.ingester import Ingester

    ingester = Ingester.from_settings(source, store)
    asyncio.run(ingester.run(start_block=settings.start_block))

The loop has two phases sharing one routine (`sync_to`):

- backfill: from an operator-supplied block up to the current safe tip, once;
- live tailing: every `poll_interval` seconds, from checkpoint+1 to the safe tip.

Ranges are split into windows of at most `max_block_range` blocks. Each window
is fetched (one concurrent query per event kind), merged by
`(block_number, log_index)`, applied and checkpointed before the next window
starts, so there is never more than one apply in flight.

Transient failures (`EventSourceError`, `StorageError`) are retried forever with
exponential backoff plus jitter; once the mirror has made no progress for
`max_staleness` seconds every retry also logs a staleness alarm. `DecodeError`
is never retried and stops the loop.
"""

from __future__ import annotations

import asyncio
import itertools
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Iterator, List, Optional, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, wait_exponential_jitter

from escrow_mirror.config import Settings, get_settings
from escrow_mirror.domain.models import DomainEvent, EventKind
from escrow_mirror.errors import EventSourceError, StorageError
from escrow_mirror.ingestion.decoder import decode_event
from escrow_mirror.ingestion.materializer import Materializer
from escrow_mirror.ingestion.source import EventSource
from escrow_mirror.storage.base import AggregateStore
from escrow_mirror.utils.logging import get_logger

log = get_logger(__name__)

TRANSIENT_ERRORS = (EventSourceError, StorageError)

T = TypeVar("T")


@dataclass(frozen=True)
class BlockWindow:
    start: int
    end: int


def block_windows(start: int, end: int, size: int) -> Iterator[BlockWindow]:
    """Split the inclusive range `[start, end]` into windows of at most `size` blocks."""
    if size <= 0:
        raise ValueError("window size must be positive")
    lo = start
    while lo <= end:
        hi = min(lo + size - 1, end)
        yield BlockWindow(start=lo, end=hi)
        lo = hi + 1


def merge_events(*streams: Iterable[DomainEvent]) -> List[DomainEvent]:
    """
    Merge per-kind event lists into one list in ledger order.

    `(block_number, log_index)` is the only ordering authority; the order in
    which each kind's query returned is ignored.
    """
    return sorted(itertools.chain.from_iterable(streams), key=lambda event: event.order_key)


class Ingester:
    """
    Drive the fetch, merge, apply and checkpoint cycle.

    Parameters
    ----------
    source : EventSource
        Ledger log reader.
    store : AggregateStore
        Aggregate store; also the checkpoint's home.
    confirmations : int
        Blocks to stay behind the chain head. Events are only ingested once they
        are this deep, since applied ranges are never rolled back.
    max_block_range : int
        Largest block span requested per window.
    poll_interval : float
        Seconds between successful live polls; also the first retry delay.
    retry_max_backoff : float
        Cap for the retry delay.
    retry_jitter : float
        Upper bound of the random jitter added to each retry delay.
    max_staleness : float
        Seconds without progress after which retries log a staleness alarm.
    sleep, clock : callables
        Injection points for tests.
    """

    def __init__(
        self,
        source: EventSource,
        store: AggregateStore,
        confirmations: int = 0,
        max_block_range: int = 2_000,
        poll_interval: float = 4.0,
        retry_max_backoff: float = 60.0,
        retry_jitter: float = 1.0,
        max_staleness: float = 300.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_block_range <= 0:
            raise ValueError("max_block_range must be positive")
        self._source = source
        self._store = store
        self._materializer = Materializer(store)
        self.confirmations = confirmations
        self.max_block_range = max_block_range
        self.poll_interval = poll_interval
        self.retry_max_backoff = retry_max_backoff
        self.retry_jitter = retry_jitter
        self.max_staleness = max_staleness
        self._sleep = sleep
        self._clock = clock
        self.checkpoint: Optional[int] = None
        self._checkpoint_loaded = False
        self._last_progress = clock()

    @classmethod
    def from_settings(
        cls, source: EventSource, store: AggregateStore, settings: Optional[Settings] = None
    ) -> "Ingester":
        settings = settings or get_settings()
        return cls(
            source,
            store,
            confirmations=settings.confirmations,
            max_block_range=settings.max_block_range,
            poll_interval=settings.poll_interval_seconds,
            retry_max_backoff=settings.retry_max_backoff_seconds,
            retry_jitter=settings.retry_jitter_seconds,
            max_staleness=settings.max_staleness_seconds,
        )

    def seconds_since_progress(self) -> float:
        return self._clock() - self._last_progress

    def _mark_progress(self) -> None:
        self._last_progress = self._clock()

    async def _load_checkpoint(self) -> Optional[int]:
        if not self._checkpoint_loaded:
            self.checkpoint = await asyncio.to_thread(self._store.load_checkpoint)
            self._checkpoint_loaded = True
            log.info("Checkpoint loaded", extra={"checkpoint": self.checkpoint})
        return self.checkpoint

    def _record_checkpoint(self, position: Optional[int]) -> None:
        if position is None:
            return
        self.checkpoint = position if self.checkpoint is None else max(self.checkpoint, position)

    async def safe_tip(self) -> int:
        """Chain head minus the confirmation depth, floored at zero."""
        head = await self._source.get_tip()
        return max(head - self.confirmations, 0)

    async def fetch_range(self, start: int, end: int) -> List[DomainEvent]:
        """Query every event kind for `[start, end]` concurrently, decode and merge."""
        kinds = list(EventKind)
        results = await asyncio.gather(
            *(self._source.query_events(kind, start, end) for kind in kinds)
        )
        decoded = [[decode_event(raw.kind, raw.log) for raw in raws] for raws in results]
        return merge_events(*decoded)

    async def sync_to(self, start: int, end: int) -> int:
        """
        Ingest `[start, end]` window by window.

        Returns
        -------
        int
            Number of events fetched across all windows.
        """
        fetched = 0
        for window in block_windows(start, end, self.max_block_range):
            events = await self.fetch_range(window.start, window.end)
            result = await asyncio.to_thread(self._materializer.apply, events, window.end)
            self._record_checkpoint(result.get("checkpoint"))
            self._mark_progress()
            fetched += len(events)
            log.debug(
                "Window synced",
                extra={"from_block": window.start, "to_block": window.end, "events": len(events)},
            )
        return fetched

    async def backfill(self, start_block: Optional[int]) -> int:
        """One-shot catch-up from `start_block` to the safe tip. No-op without a start."""
        if start_block is None:
            return 0
        await self._load_checkpoint()
        tip = await self.safe_tip()
        if start_block > tip:
            log.warning(
                "[BACKFILL SKIPPED] start block is ahead of the safe tip",
                extra={"start_block": start_block, "tip": tip},
            )
            return 0
        log.info(
            f"[BACKFILL START] blocks {start_block}..{tip}",
            extra={"start_block": start_block, "tip": tip, "checkpoint": self.checkpoint},
        )
        fetched = await self.sync_to(start_block, tip)
        log.info(
            "[BACKFILL DONE]",
            extra={"events": fetched, "checkpoint": self.checkpoint},
        )
        return fetched

    async def poll_once(self) -> int:
        """
        One live-tailing step.

        Without any stored checkpoint the mirror starts from the current safe tip
        (history is only read through an explicit backfill).
        """
        checkpoint = await self._load_checkpoint()
        tip = await self.safe_tip()
        if checkpoint is None:
            result = await asyncio.to_thread(self._materializer.apply, [], tip)
            self._record_checkpoint(result.get("checkpoint"))
            self._mark_progress()
            log.info("[CHECKPOINT SEEDED] tailing from the current tip", extra={"tip": tip})
            return 0
        if tip <= checkpoint:
            self._mark_progress()
            return 0
        return await self.sync_to(checkpoint + 1, tip)

    def _before_retry_sleep(self, phase: str) -> Callable[[RetryCallState], None]:
        def _log(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            log.warning(
                f"[{phase.upper()} FAILED] attempt {retry_state.attempt_number}: {exc}",
                extra={
                    "phase": phase,
                    "attempt": retry_state.attempt_number,
                    "error_type": type(exc).__name__,
                    "retry_in_seconds": round(delay, 2),
                },
            )
            stale_for = self.seconds_since_progress()
            if stale_for > self.max_staleness:
                log.error(
                    f"[STALE] no ingestion progress for {stale_for:.0f}s",
                    extra={
                        "stale_seconds": round(stale_for, 1),
                        "max_staleness_seconds": self.max_staleness,
                        "checkpoint": self.checkpoint,
                    },
                )

        return _log

    async def _with_retry(self, phase: str, operation: Callable[[], Awaitable[T]]) -> T:
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            wait=wait_exponential_jitter(
                initial=self.poll_interval, max=self.retry_max_backoff, jitter=self.retry_jitter
            ),
            before_sleep=self._before_retry_sleep(phase),
            sleep=self._sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                result = await operation()
        return result

    async def run(self, start_block: Optional[int] = None, max_polls: Optional[int] = None) -> None:
        """
        Backfill once (if `start_block` is given), then tail the ledger.

        Parameters
        ----------
        start_block : int, optional
            Operator-supplied backfill start.
        max_polls : int, optional
            Stop after this many successful polls. None runs forever.

        Raises
        ------
        DecodeError
            If the source returns a log that does not match the escrow ABI.
        """
        self._mark_progress()
        await self._with_retry("backfill", lambda: self.backfill(start_block))

        polls = 0
        while max_polls is None or polls < max_polls:
            await self._with_retry("poll", self.poll_once)
            polls += 1
            if max_polls is None or polls < max_polls:
                await self._sleep(self.poll_interval)


__all__ = ["BlockWindow", "Ingester", "block_windows", "merge_events"]
