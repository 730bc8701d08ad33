"""Data models for systemosc."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType


class SinkKind(Enum):
    """Dissemination channels."""

    OSC = "osc"
    HTTP = "http"


class Outcome(Enum):
    """Outcome of one sink's dissemination attempt."""

    SUCCESS = "success"
    FAILURE = "failure"


class CyclePhase(Enum):
    """Scheduler states."""

    IDLE = "idle"
    COLLECTING = "collecting"
    DISSEMINATING = "disseminating"
    SHUTTING_DOWN = "shutting_down"


@dataclass(slots=True, frozen=True)
class CpuHardware:
    """Static CPU identity."""

    model: str
    core_count: int  # logical cores, >= 1
    clock_speed_ghz: float


@dataclass(slots=True, frozen=True)
class CpuUsage:
    """Aggregate CPU utilization, percentages rounded to 2 decimals."""

    total: float
    user: float
    system: float
    idle: float


@dataclass(slots=True, frozen=True)
class CoreLoad:
    """Utilization of a single logical core."""

    index: int
    load: float
    load_user: float
    load_system: float
    load_idle: float


@dataclass(slots=True, frozen=True)
class CpuSnapshot:
    """Immutable capture of CPU utilization and hardware identity."""

    captured_at: datetime  # UTC
    host_id: str
    hardware: CpuHardware
    aggregate: CpuUsage
    per_core: tuple[CoreLoad, ...]

    def __post_init__(self) -> None:
        if self.hardware.core_count < 1:
            raise ValueError("core_count must be at least 1")
        if len(self.per_core) != self.hardware.core_count:
            raise ValueError(
                f"per_core has {len(self.per_core)} entries, "
                f"expected {self.hardware.core_count}"
            )
        for position, core in enumerate(self.per_core):
            if core.index != position:
                raise ValueError(f"core at position {position} has index {core.index}")


@dataclass(slots=True, frozen=True)
class SendResult:
    """Result of one sink's dissemination in one cycle."""

    sink_kind: SinkKind
    outcome: Outcome
    detail: str
    completed_at: datetime

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    @classmethod
    def success(cls, sink_kind: SinkKind, detail: str = "OK") -> "SendResult":
        return cls(sink_kind, Outcome.SUCCESS, detail, datetime.now(timezone.utc))

    @classmethod
    def failure(cls, sink_kind: SinkKind, detail: str) -> "SendResult":
        return cls(sink_kind, Outcome.FAILURE, detail, datetime.now(timezone.utc))


def freeze_results(
    results: Mapping[SinkKind, SendResult] | None = None,
) -> Mapping[SinkKind, SendResult]:
    """Copy results into a read-only mapping."""
    return MappingProxyType(dict(results or {}))


@dataclass(slots=True, frozen=True)
class CycleState:
    """
    Scheduler-owned state.

    Never mutated: the scheduler swaps in a new instance at every update point,
    so readers always see a consistent pair of snapshot and results.
    """

    latest_snapshot: CpuSnapshot | None = None
    latest_results: Mapping[SinkKind, SendResult] = field(default_factory=freeze_results)
    last_error: str | None = None
    cycles_completed: int = 0
    ticks_skipped: int = 0
