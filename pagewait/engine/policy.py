from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class PollPolicy:
    timeout_ms: int
    interval_ms: int

    def __post_init__(self) -> None:
        for field_name in ("timeout_ms", "interval_ms"):
            value = getattr(self, field_name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValueError(f"{field_name} must be a positive integer, got {value!r}")
        if self.interval_ms > self.timeout_ms:
            raise ValueError(
                f"interval_ms ({self.interval_ms}) must not exceed timeout_ms ({self.timeout_ms})"
            )

    @property
    def timeout(self) -> float:
        return self.timeout_ms / 1000

    @property
    def interval(self) -> float:
        return self.interval_ms / 1000
