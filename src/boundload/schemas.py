from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

PAYLOAD_MODULUS = 100


class SetPayload(BaseModel):
    x: int = Field(ge=0, lt=PAYLOAD_MODULUS)

    @classmethod
    def for_sequence(cls, sequence: int) -> "SetPayload":
        return cls(x=sequence % PAYLOAD_MODULUS)


class SetParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_address: str = Field(alias="kld-from", min_length=1)
    sync: str = Field(default="false", alias="kld-sync")


class RunSummary(BaseModel):
    total_requests: int
    max_in_flight: int
    admitted: int
    passed: int
    failed: int
    abandoned: int
    capacity_waits: int
    peak_in_flight: int
    drained: bool
    elapsed_seconds: float
