from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Outcome:
    """Pass/fail result of one admitted request."""

    sequence: int
    passed: bool
    status: int | None = None
    message: str = ""

    @classmethod
    def ok(cls, sequence: int, status: int) -> "Outcome":
        return cls(sequence=sequence, passed=True, status=status)

    @classmethod
    def fail(cls, sequence: int, status: int | None, message: str) -> "Outcome":
        return cls(sequence=sequence, passed=False, status=status, message=message)

    def render(self) -> str:
        if self.passed:
            return f"PASS - {self.sequence} [{self.status}]"
        status = "" if self.status is None else str(self.status)
        return f"FAIL - {self.sequence} [{status}]: {self.message}"


def print_outcome(outcome: Outcome) -> None:
    print(outcome.render(), flush=True)
