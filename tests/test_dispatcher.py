from __future__ import annotations

import asyncio
import unittest

from prometheus_client import REGISTRY

from boundload.dispatcher import BoundedDispatcher
from boundload.outcome import Outcome


async def settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class ControlledIssuer:
    """Hands out futures the test resolves by hand."""

    def __init__(self) -> None:
        self.calls: list[int] = []
        self.pending: dict[int, asyncio.Future] = {}
        self.in_flight_at_issue: list[int] = []
        self.dispatcher: BoundedDispatcher | None = None

    def __call__(self, sequence: int) -> asyncio.Future:
        self.calls.append(sequence)
        if self.dispatcher is not None:
            self.in_flight_at_issue.append(self.dispatcher.in_flight_count)
        future = asyncio.get_running_loop().create_future()
        self.pending[sequence] = future
        return future

    def resolve(self, sequence: int, status: int = 200) -> None:
        self.pending[sequence].set_result(Outcome.ok(sequence, status))


class BoundedDispatcherTests(unittest.IsolatedAsyncioTestCase):
    async def test_waits_for_a_free_slot_before_each_admission(self) -> None:
        reported: list[Outcome] = []
        issuer = ControlledIssuer()
        dispatcher = BoundedDispatcher(
            issue=issuer,
            total_requests=5,
            max_in_flight=2,
            report=reported.append,
        )
        issuer.dispatcher = dispatcher

        run = asyncio.create_task(dispatcher.run())
        await settle()
        self.assertEqual(issuer.calls, [1, 2])

        # Completion out of admission order still frees a slot.
        issuer.resolve(2)
        await settle()
        self.assertEqual(issuer.calls, [1, 2, 3])

        issuer.resolve(1)
        await settle()
        self.assertEqual(issuer.calls, [1, 2, 3, 4])

        issuer.resolve(3)
        await settle()
        self.assertEqual(issuer.calls, [1, 2, 3, 4, 5])

        issuer.resolve(5)
        issuer.resolve(4)
        summary = await asyncio.wait_for(run, timeout=1.0)

        self.assertEqual(summary.admitted, 5)
        self.assertEqual(summary.passed, 5)
        self.assertEqual(summary.capacity_waits, 3)
        self.assertEqual(summary.peak_in_flight, 2)
        self.assertTrue(all(count < 2 for count in issuer.in_flight_at_issue))
        self.assertEqual(sorted(outcome.sequence for outcome in reported), [1, 2, 3, 4, 5])
        self.assertEqual(dispatcher.in_flight_count, 0)

    async def test_failures_are_reported_and_do_not_stop_admission(self) -> None:
        lines: list[str] = []

        async def always_fails(sequence: int) -> Outcome:
            await asyncio.sleep(0)
            return Outcome.fail(sequence, 500, "server error")

        dispatcher = BoundedDispatcher(
            issue=always_fails,
            total_requests=10,
            max_in_flight=3,
            report=lambda outcome: lines.append(outcome.render()),
        )
        summary = await dispatcher.run()

        self.assertEqual(summary.admitted, 10)
        self.assertEqual(summary.failed, 10)
        self.assertEqual(summary.passed, 0)
        self.assertEqual(
            sorted(lines, key=lambda line: int(line.split()[2])),
            [f"FAIL - {n} [500]: server error" for n in range(1, 11)],
        )

    async def test_never_waits_when_ceiling_covers_budget(self) -> None:
        issuer = ControlledIssuer()
        dispatcher = BoundedDispatcher(
            issue=issuer,
            total_requests=4,
            max_in_flight=10,
            report=lambda outcome: None,
        )
        run = asyncio.create_task(dispatcher.run())
        await settle()
        self.assertEqual(issuer.calls, [1, 2, 3, 4])
        self.assertEqual(dispatcher.stats.capacity_waits, 0)

        for sequence in issuer.calls:
            issuer.resolve(sequence)
        summary = await asyncio.wait_for(run, timeout=1.0)

        self.assertEqual(summary.capacity_waits, 0)
        self.assertEqual(summary.peak_in_flight, 4)

    async def test_synchronous_issue_failure_aborts_the_run(self) -> None:
        reported: list[Outcome] = []
        issuer = ControlledIssuer()

        def issue(sequence: int) -> asyncio.Future:
            if sequence == 3:
                raise RuntimeError("cannot build request")
            return issuer(sequence)

        dispatcher = BoundedDispatcher(
            issue=issue,
            total_requests=5,
            max_in_flight=5,
            report=reported.append,
        )

        with self.assertRaisesRegex(RuntimeError, "cannot build request"):
            await dispatcher.run()

        self.assertEqual(issuer.calls, [1, 2])
        self.assertEqual(dispatcher.stats.abandoned, 2)
        self.assertEqual(dispatcher.in_flight_count, 0)
        self.assertEqual(reported, [])

    async def test_exception_from_pending_outcome_becomes_failure(self) -> None:
        reported: list[Outcome] = []

        async def refused(sequence: int) -> Outcome:
            raise ConnectionError("connection refused")

        dispatcher = BoundedDispatcher(
            issue=refused,
            total_requests=2,
            max_in_flight=1,
            report=reported.append,
        )
        summary = await dispatcher.run()

        self.assertEqual(summary.failed, 2)
        self.assertEqual(
            [outcome.render() for outcome in sorted(reported, key=lambda o: o.sequence)],
            ["FAIL - 1 []: connection refused", "FAIL - 2 []: connection refused"],
        )

    async def test_drain_waits_for_every_admitted_request(self) -> None:
        reported: list[Outcome] = []
        issuer = ControlledIssuer()
        dispatcher = BoundedDispatcher(
            issue=issuer,
            total_requests=3,
            max_in_flight=3,
            report=reported.append,
        )
        run = asyncio.create_task(dispatcher.run())
        await settle()
        self.assertFalse(run.done())

        for sequence in (3, 1, 2):
            issuer.resolve(sequence, status=202)
        summary = await asyncio.wait_for(run, timeout=1.0)

        self.assertTrue(summary.drained)
        self.assertEqual(summary.passed, 3)
        self.assertEqual(summary.abandoned, 0)
        self.assertEqual(len(reported), 3)

    async def test_without_drain_remaining_requests_are_abandoned(self) -> None:
        reported: list[Outcome] = []
        issuer = ControlledIssuer()
        dispatcher = BoundedDispatcher(
            issue=issuer,
            total_requests=3,
            max_in_flight=3,
            report=reported.append,
            drain=False,
        )
        summary = await asyncio.wait_for(dispatcher.run(), timeout=1.0)

        self.assertFalse(summary.drained)
        self.assertEqual(summary.admitted, 3)
        self.assertEqual(summary.abandoned, 3)
        self.assertEqual(reported, [])
        self.assertEqual(dispatcher.in_flight_count, 0)

    async def test_abandoned_coroutine_requests_were_started(self) -> None:
        started: list[int] = []

        async def never_finishes(sequence: int) -> Outcome:
            started.append(sequence)
            await asyncio.Event().wait()
            return Outcome.ok(sequence, 200)

        summary = await asyncio.wait_for(
            BoundedDispatcher(
                issue=never_finishes,
                total_requests=3,
                max_in_flight=3,
                report=lambda outcome: None,
                drain=False,
            ).run(),
            timeout=1.0,
        )

        self.assertEqual(started, [1, 2, 3])
        self.assertEqual(summary.abandoned, 3)

    async def test_records_admissions_in_prometheus(self) -> None:
        before = REGISTRY.get_sample_value("boundload_requests_admitted_total") or 0.0
        failed_before = (
            REGISTRY.get_sample_value("boundload_request_outcomes_total", {"result": "fail"})
            or 0.0
        )

        async def fails(sequence: int) -> Outcome:
            return Outcome.fail(sequence, 503, "unavailable")

        await BoundedDispatcher(
            issue=fails,
            total_requests=4,
            max_in_flight=2,
            report=lambda outcome: None,
        ).run()

        self.assertEqual(REGISTRY.get_sample_value("boundload_requests_admitted_total"), before + 4)
        self.assertEqual(
            REGISTRY.get_sample_value("boundload_request_outcomes_total", {"result": "fail"}),
            failed_before + 4,
        )

    def test_rejects_non_positive_limits(self) -> None:
        with self.assertRaises(ValueError):
            BoundedDispatcher(issue=lambda n: None, total_requests=0, max_in_flight=1)
        with self.assertRaises(ValueError):
            BoundedDispatcher(issue=lambda n: None, total_requests=1, max_in_flight=0)
