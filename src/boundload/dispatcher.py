from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

from boundload.outcome import Outcome, print_outcome
from boundload.schemas import RunSummary
from boundload.telemetry import Telemetry

logger = structlog.get_logger(__name__)

RequestIssuer = Callable[[int], Awaitable[Outcome]]
OutcomeReporter = Callable[[Outcome], None]


@dataclass
class DispatchStats:
    admitted: int = 0
    passed: int = 0
    failed: int = 0
    abandoned: int = 0
    capacity_waits: int = 0
    peak_in_flight: int = 0


class BoundedDispatcher:
    """Issue a fixed budget of requests with at most ``max_in_flight`` unresolved.

    Admission never suspends. The loop only suspends when the in-flight set
    is full, and resumes as soon as any one of the pending requests has been
    observed. Once the budget is admitted the remaining requests are either
    awaited (``drain=True``) or cancelled and counted as abandoned.
    """

    def __init__(
        self,
        issue: RequestIssuer,
        total_requests: int,
        max_in_flight: int,
        report: OutcomeReporter = print_outcome,
        drain: bool = True,
        telemetry: Telemetry | None = None,
    ) -> None:
        if total_requests <= 0:
            raise ValueError("total_requests must be positive")
        if max_in_flight <= 0:
            raise ValueError("max_in_flight must be positive")
        self._issue = issue
        self._total_requests = total_requests
        self._max_in_flight = max_in_flight
        self._report = report
        self._drain = drain
        self._telemetry = telemetry or Telemetry()

        self._sequence = 0
        self._in_flight: dict[int, asyncio.Task[int]] = {}
        self._stats = DispatchStats()

    @property
    def sequence(self) -> int:
        return self._sequence

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    @property
    def stats(self) -> DispatchStats:
        return self._stats

    async def run(self) -> RunSummary:
        started = time.monotonic()
        logger.info(
            "dispatch_started",
            total_requests=self._total_requests,
            max_in_flight=self._max_in_flight,
        )
        try:
            while self._sequence < self._total_requests:
                if len(self._in_flight) < self._max_in_flight:
                    self._admit()
                else:
                    self._stats.capacity_waits += 1
                    self._telemetry.record_capacity_wait()
                    await self._reclaim()

            if self._drain:
                await self._drain_remaining()
            else:
                await self._abandon_remaining()
        except BaseException:
            await self._abandon_remaining()
            raise

        summary = RunSummary(
            total_requests=self._total_requests,
            max_in_flight=self._max_in_flight,
            admitted=self._stats.admitted,
            passed=self._stats.passed,
            failed=self._stats.failed,
            abandoned=self._stats.abandoned,
            capacity_waits=self._stats.capacity_waits,
            peak_in_flight=self._stats.peak_in_flight,
            drained=self._drain,
            elapsed_seconds=time.monotonic() - started,
        )
        logger.info("dispatch_finished", **summary.model_dump())
        return summary

    def _admit(self) -> None:
        self._sequence += 1
        sequence = self._sequence
        # Wrapping starts coroutine-based requests now, not on first await.
        pending = asyncio.ensure_future(self._issue(sequence))
        self._in_flight[sequence] = asyncio.ensure_future(self._observe(sequence, pending))

        self._stats.admitted += 1
        self._stats.peak_in_flight = max(self._stats.peak_in_flight, len(self._in_flight))
        self._telemetry.record_admission(in_flight=len(self._in_flight))

    async def _observe(self, sequence: int, pending: Awaitable[Outcome]) -> int:
        try:
            outcome = await pending
        except Exception as exc:
            outcome = Outcome.fail(sequence, None, str(exc) or type(exc).__name__)

        if outcome.passed:
            self._stats.passed += 1
        else:
            self._stats.failed += 1
        self._telemetry.record_outcome(outcome.passed)
        self._report(outcome)
        return sequence

    async def _reclaim(self) -> None:
        done, _ = await asyncio.wait(
            self._in_flight.values(),
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in done:
            del self._in_flight[task.result()]
        self._telemetry.set_in_flight(len(self._in_flight))

    async def _drain_remaining(self) -> None:
        if not self._in_flight:
            return
        logger.info("dispatch_draining", in_flight=len(self._in_flight))
        while self._in_flight:
            await self._reclaim()

    async def _abandon_remaining(self) -> None:
        if self._in_flight:
            # Let every admitted request take its first step before cancelling.
            await asyncio.sleep(0)
        pending = [task for task in self._in_flight.values() if not task.done()]
        for task in pending:
            task.cancel()
        if self._in_flight:
            await asyncio.gather(*self._in_flight.values(), return_exceptions=True)
        self._in_flight.clear()
        self._telemetry.set_in_flight(0)

        if pending:
            self._stats.abandoned += len(pending)
            self._telemetry.record_abandoned(len(pending))
            logger.warning("dispatch_abandoned", abandoned=len(pending))
