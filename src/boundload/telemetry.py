from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    generate_latest,
    start_http_server,
)

REQUESTS_ADMITTED_TOTAL = Counter(
    "boundload_requests_admitted_total",
    "Requests admitted into the in-flight set.",
)
REQUEST_OUTCOMES_TOTAL = Counter(
    "boundload_request_outcomes_total",
    "Observed request outcomes.",
    ["result"],
)
CAPACITY_WAITS_TOTAL = Counter(
    "boundload_capacity_waits_total",
    "Times the dispatcher suspended because the in-flight set was full.",
)
IN_FLIGHT = Gauge("boundload_in_flight", "Requests admitted but not yet observed.")


class Telemetry:
    def record_admission(self, in_flight: int) -> None:
        REQUESTS_ADMITTED_TOTAL.inc()
        IN_FLIGHT.set(max(0, in_flight))

    def record_outcome(self, passed: bool) -> None:
        REQUEST_OUTCOMES_TOTAL.labels(result="pass" if passed else "fail").inc()

    def record_abandoned(self, count: int) -> None:
        REQUEST_OUTCOMES_TOTAL.labels(result="abandoned").inc(max(0, count))

    def record_capacity_wait(self) -> None:
        CAPACITY_WAITS_TOTAL.inc()

    def set_in_flight(self, in_flight: int) -> None:
        IN_FLIGHT.set(max(0, in_flight))

    @staticmethod
    def serve(port: int, addr: str = "127.0.0.1") -> None:
        start_http_server(port, addr=addr)

    @staticmethod
    def scrape() -> tuple[bytes, str]:
        return generate_latest(), CONTENT_TYPE_LATEST
