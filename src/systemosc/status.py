"""Read-only status projection consumed by presentation layers."""

from collections.abc import Mapping
from dataclasses import dataclass

from systemosc.models import CpuSnapshot, CyclePhase, CycleState, SendResult, SinkKind

HIGH_USAGE = 80.0
WARN_USAGE = 50.0

LEVEL_COLORS = {"ok": "green", "warn": "yellow", "high": "red"}


@dataclass(slots=True, frozen=True)
class StatusProjection:
    """Latest snapshot and per-sink send results, as seen at one instant."""

    snapshot: CpuSnapshot | None
    results: Mapping[SinkKind, SendResult]
    last_error: str | None
    cycles_completed: int
    ticks_skipped: int
    phase: CyclePhase

    @classmethod
    def from_state(cls, state: CycleState, phase: CyclePhase) -> "StatusProjection":
        return cls(
            snapshot=state.latest_snapshot,
            results=state.latest_results,
            last_error=state.last_error,
            cycles_completed=state.cycles_completed,
            ticks_skipped=state.ticks_skipped,
            phase=phase,
        )

    @property
    def has_data(self) -> bool:
        return self.snapshot is not None

    @property
    def all_ok(self) -> bool:
        """True when the last cycle collected and every sink succeeded."""
        return self.last_error is None and all(r.ok for r in self.results.values())


def usage_level(value: float) -> str:
    """Advisory level for colouring: ``ok``, ``warn`` or ``high``."""
    if value >= HIGH_USAGE:
        return "high"
    if value >= WARN_USAGE:
        return "warn"
    return "ok"


def usage_bar(value: float, width: int = 10) -> str:
    filled = max(0, min(width, int(value / 100.0 * width)))
    return "█" * filled + "░" * (width - filled)


def format_status_line(status: StatusProjection) -> str:
    """One-line summary, e.g. ``cpu=46.45% [█████░░░░░] osc=OK http=OK``."""
    if status.snapshot is None:
        head = "cpu=n/a"
    else:
        total = status.snapshot.aggregate.total
        head = f"cpu={total:.2f}% [{usage_bar(total)}]"

    parts = [head]
    for kind in SinkKind:
        result = status.results.get(kind)
        if result is not None:
            parts.append(f"{kind.value}={'OK' if result.ok else 'ERROR'}")
    if status.last_error:
        parts.append(f"error={status.last_error}")
    return " ".join(parts)
