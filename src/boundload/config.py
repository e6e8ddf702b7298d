from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields

ENV_PREFIX = "BOUNDLOAD_"

_REQUIRED_FIELDS = ("base_url", "username", "password", "instance_address", "from_address")
_POSITIVE_INT_FIELDS = ("max_sockets", "max_in_flight", "total_requests")
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})
LOG_LEVELS = ("debug", "info", "warning", "error")


class ConfigError(ValueError):
    """Raised when a load run cannot be configured."""


@dataclass(frozen=True)
class LoadConfig:
    base_url: str = ""
    username: str = ""
    password: str = ""
    instance_address: str = ""
    from_address: str = ""

    max_sockets: int = 100
    max_in_flight: int = 100
    total_requests: int = 10_000
    request_timeout_seconds: float = 60.0

    drain: bool = True
    log_level: str = "info"

    @property
    def resource_path(self) -> str:
        return f"instances/{self.instance_address}/set"

    def validate(self) -> "LoadConfig":
        missing = [name for name in _REQUIRED_FIELDS if not getattr(self, name)]
        if missing:
            env_names = ", ".join(ENV_PREFIX + name.upper() for name in missing)
            raise ConfigError(f"missing required settings: {env_names}")
        for name in _POSITIVE_INT_FIELDS:
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        if self.request_timeout_seconds <= 0:
            raise ConfigError("request_timeout_seconds must be positive")
        if self.log_level.lower() not in LOG_LEVELS:
            raise ConfigError(f"log_level must be one of: {', '.join(LOG_LEVELS)}")
        return self

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "LoadConfig":
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}
        for config_field in fields(cls):
            raw = env.get(ENV_PREFIX + config_field.name.upper())
            if raw is None or raw == "":
                continue
            values[config_field.name] = _coerce(config_field.name, config_field.type, raw)
        return cls(**values)


def _coerce(name: str, type_name: object, raw: str) -> object:
    # Annotations are strings under postponed evaluation.
    try:
        if type_name == "int":
            return int(raw)
        if type_name == "float":
            return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{ENV_PREFIX}{name.upper()}={raw!r} is not a number") from exc
    if type_name == "bool":
        return raw.strip().lower() not in _FALSE_VALUES
    return raw
