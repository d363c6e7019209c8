"""Request coalescing for expensive upstream searches.

Concurrent calls for the same normalized query share one execution: the first
caller creates a pending request, waits a short debounce window so that
duplicates can attach, runs ``execute`` once and broadcasts the outcome through
a shared future. Every waiter receives the very same result object, or the
same exception.

After a successful execution the query enters a cooldown window during which
identical calls are suppressed without executing: they receive an empty list, or
the previous result when ``reuse_in_cooldown`` is enabled.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List

from .normalization import normalize_query

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.3
DEFAULT_COOLDOWN_SECONDS = 5.0

Execute = Callable[[str], Awaitable[List[Any]]]


class CoalescedRequestCancelled(RuntimeError):
    """Raised to waiters whose shared execution was cancelled or abandoned."""


@dataclass
class PendingRequest:
    query: str
    future: asyncio.Future
    started_at: float
    waiters: int = 1


@dataclass
class CoalescerStats:
    executions: int = 0
    coalesced: int = 0
    suppressed: int = 0
    failures: int = 0


class RequestCoalescer:
    def __init__(
        self,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        reuse_in_cooldown: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.debounce_seconds = debounce_seconds
        self.cooldown_seconds = cooldown_seconds
        # False: suppressed calls get []. True: they get the last result.
        self.reuse_in_cooldown = reuse_in_cooldown
        self._clock = clock
        self._pending: Dict[str, PendingRequest] = {}
        self._completed_at: Dict[str, float] = {}
        self._last_results: Dict[str, List[Any]] = {}
        self._lock = asyncio.Lock()
        self._stats = CoalescerStats()

    def _in_cooldown(self, query: str, now: float) -> bool:
        completed = self._completed_at.get(query)
        return completed is not None and now - completed < self.cooldown_seconds

    def _sweep(self, now: float) -> None:
        """Forget queries whose cooldown has ended so state does not grow unbounded."""

        expired = [query for query, completed in self._completed_at.items() if now - completed >= self.cooldown_seconds]
        for query in expired:
            del self._completed_at[query]
            self._last_results.pop(query, None)

    async def run(self, raw_query: str, execute: Execute) -> List[Any]:
        query = normalize_query(raw_query)
        async with self._lock:
            now = self._clock()
            self._sweep(now)
            if self._in_cooldown(query, now):
                self._stats.suppressed += 1
                logger.info(
                    "coalescer suppressed q=%r (cooldown %.1fs, reuse=%s)",
                    query,
                    self.cooldown_seconds,
                    self.reuse_in_cooldown,
                )
                if self.reuse_in_cooldown:
                    return self._last_results.get(query, [])
                return []

            pending = self._pending.get(query)
            if pending is not None:
                pending.waiters += 1
                self._stats.coalesced += 1
                logger.debug("coalescer attached q=%r waiters=%s", query, pending.waiters)
                owner = False
            else:
                pending = PendingRequest(
                    query=query,
                    future=asyncio.get_running_loop().create_future(),
                    started_at=now,
                )
                self._pending[query] = pending
                owner = True

        if not owner:
            # Shield so a cancelled waiter does not cancel the shared execution.
            return await asyncio.shield(pending.future)
        return await self._execute(pending, execute)

    async def _execute(self, pending: PendingRequest, execute: Execute) -> List[Any]:
        query = pending.query
        try:
            await asyncio.sleep(self.debounce_seconds)
            self._stats.executions += 1
            result = await execute(query)
        except asyncio.CancelledError:
            self._finish(pending)
            if not pending.future.done():
                pending.future.set_exception(CoalescedRequestCancelled(f"search for {query!r} was cancelled"))
                pending.future.exception()
            raise
        except Exception as exc:
            self._stats.failures += 1
            self._finish(pending)
            if not pending.future.done():
                pending.future.set_exception(exc)
                # Mark as retrieved; the owner re-raises it below.
                pending.future.exception()
            logger.warning("coalesced execution failed q=%r waiters=%s: %s", query, pending.waiters, exc)
            raise

        self._finish(pending)
        if self.cooldown_seconds > 0:
            self._completed_at[query] = self._clock()
            if self.reuse_in_cooldown:
                self._last_results[query] = result
        if not pending.future.done():
            pending.future.set_result(result)
        logger.debug(
            "coalescer resolved q=%r waiters=%s elapsed=%.3fs",
            query,
            pending.waiters,
            self._clock() - pending.started_at,
        )
        return result

    def _finish(self, pending: PendingRequest) -> None:
        if self._pending.get(pending.query) is pending:
            del self._pending[pending.query]

    def pending_count(self) -> int:
        return len(self._pending)

    def in_cooldown(self, raw_query: str) -> bool:
        return self._in_cooldown(normalize_query(raw_query), self._clock())

    def stats(self) -> dict:
        return {
            "pending": len(self._pending),
            "cooldown": len(self._completed_at),
            "reusable_results": len(self._last_results),
            "executions": self._stats.executions,
            "coalesced": self._stats.coalesced,
            "suppressed": self._stats.suppressed,
            "failures": self._stats.failures,
        }

    def close(self) -> None:
        """Reject every still-pending request so no waiter hangs forever."""

        for pending in list(self._pending.values()):
            if not pending.future.done():
                pending.future.set_exception(CoalescedRequestCancelled("coalescer closed"))
                pending.future.exception()
        self._pending.clear()
        self._completed_at.clear()
        self._last_results.clear()
