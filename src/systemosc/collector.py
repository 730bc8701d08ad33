"""CPU snapshot collection for systemosc."""

import math
import platform
import socket
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

import psutil

from systemosc.errors import CollectionError
from systemosc.logger import get_logger
from systemosc.models import CoreLoad, CpuHardware, CpuSnapshot, CpuUsage

log = get_logger(__name__)

_HUNDREDTH = Decimal("0.01")


@dataclass(slots=True, frozen=True)
class LoadReading:
    """Raw utilization percentages as reported by the host."""

    total: float
    user: float
    system: float
    idle: float


@dataclass(slots=True, frozen=True)
class HostLoad:
    """Aggregate reading plus per-core readings in stable index order."""

    aggregate: LoadReading
    cores: Sequence[LoadReading]


@dataclass(slots=True, frozen=True)
class HostCpuInfo:
    """Static CPU identity as reported by the host."""

    brand: str
    cores: int
    speed_ghz: float


class HostFacility(Protocol):
    """Query contract for the host's CPU facilities."""

    def cpu_load(self) -> HostLoad: ...

    def cpu_info(self) -> HostCpuInfo: ...

    def hostname(self) -> str: ...


def round_percent(value: float) -> float:
    """
    Round to 2 decimal places, half-up on the value's shortest decimal repr.

    ``round_percent(2.675) == 2.68`` whereas ``round(2.675, 2) == 2.67``.
    """
    return float(Decimal(repr(float(value))).quantize(_HUNDREDTH, rounding=ROUND_HALF_UP))


def _checked_percent(name: str, value: object) -> float:
    """Validate a raw percentage and clamp it into [0, 100]."""
    if value is None:
        raise CollectionError(f"Missing value for {name}")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise CollectionError(f"Non-numeric value for {name}: {value!r}")
    if not math.isfinite(value):
        raise CollectionError(f"Non-finite value for {name}: {value!r}")
    if value < 0:
        raise CollectionError(f"Negative value for {name}: {value!r}")
    return round_percent(min(float(value), 100.0))


def _reading_from_times(times) -> LoadReading:
    """Fold a psutil scputimes percentage tuple into total/user/system/idle."""
    idle = times.idle
    user = times.user + getattr(times, "nice", 0.0)
    total = max(0.0, 100.0 - idle)
    system = max(0.0, total - user)
    return LoadReading(total=total, user=user, system=system, idle=idle)


_IDLE_READING = LoadReading(total=0.0, user=0.0, system=0.0, idle=100.0)


def _reading_or_previous(times, previous: LoadReading | None) -> LoadReading:
    """All-zero percentages mean no CPU time elapsed since the last call."""
    if not any(times):
        return previous if previous is not None else _IDLE_READING
    return _reading_from_times(times)


def _detect_cpu_brand() -> str:
    """Return a human-readable CPU model string for the current platform."""
    system = platform.system()

    if system == "Darwin":
        try:
            out = subprocess.run(
                ["sysctl", "-n", "machdep.cpu.brand_string"],
                capture_output=True,
                text=True,
                timeout=2.0,
                check=True,
            ).stdout.strip()
            if out:
                return out
        except (OSError, subprocess.SubprocessError):
            pass

    elif system == "Linux":
        try:
            with open("/proc/cpuinfo", encoding="utf-8", errors="ignore") as f:
                for line in f:
                    if line.lower().startswith("model name"):
                        return line.split(":", 1)[1].strip()
        except OSError:
            pass

    elif system == "Windows":
        try:
            import winreg

            with winreg.OpenKey(
                winreg.HKEY_LOCAL_MACHINE,
                r"HARDWARE\DESCRIPTION\System\CentralProcessor\0",
            ) as key:
                value, _ = winreg.QueryValueEx(key, "ProcessorNameString")
                if isinstance(value, str) and value.strip():
                    return value.strip()
        except OSError:
            pass

    return (platform.processor() or platform.machine() or "Unknown CPU").strip()


class PsutilHostFacility:
    """
    Host facility backed by psutil.

    Percentages come from ``psutil.cpu_times_percent`` in non-blocking mode, so
    each call reports utilization since the previous call.
    """

    def __init__(self) -> None:
        # Prime both counters (the first non-blocking call returns zeros)
        psutil.cpu_times_percent(percpu=False)
        psutil.cpu_times_percent(percpu=True)
        self._brand: str | None = None
        self._last_aggregate: LoadReading | None = None
        self._last_cores: list[LoadReading] = []

    def cpu_load(self) -> HostLoad:
        # Calls closer together than the kernel tick repeat the previous reading
        aggregate = _reading_or_previous(
            psutil.cpu_times_percent(percpu=False), self._last_aggregate
        )
        per_cpu = psutil.cpu_times_percent(percpu=True)
        previous: list[LoadReading | None] = list(self._last_cores)
        if len(previous) != len(per_cpu):
            previous = [None] * len(per_cpu)
        cores = [_reading_or_previous(t, p) for t, p in zip(per_cpu, previous)]

        self._last_aggregate = aggregate
        self._last_cores = cores
        return HostLoad(aggregate=aggregate, cores=cores)

    def cpu_info(self) -> HostCpuInfo:
        if self._brand is None:
            self._brand = _detect_cpu_brand()
        return HostCpuInfo(
            brand=self._brand,
            cores=psutil.cpu_count(logical=True) or 0,
            speed_ghz=self._nominal_speed_ghz(),
        )

    def hostname(self) -> str:
        return socket.gethostname()

    @staticmethod
    def _nominal_speed_ghz() -> float:
        try:
            freq = psutil.cpu_freq()
        except (OSError, NotImplementedError, AttributeError):
            return 0.0
        if freq is None:
            return 0.0
        mhz = freq.max or freq.current or 0.0
        return round(mhz / 1000.0, 2)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SnapshotCollector:
    """Produces one validated CpuSnapshot per call from a host facility."""

    def __init__(
        self,
        facility: HostFacility | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize the SnapshotCollector.

        Args:
            facility: Host query implementation. Defaults to psutil.
            clock: Returns the capture timestamp. Defaults to UTC now.
        """
        self._facility = facility if facility is not None else PsutilHostFacility()
        self._clock = clock or _utcnow

    def collect(self) -> CpuSnapshot:
        """
        Collect a snapshot.

        Raises:
            CollectionError: The host query failed or returned malformed data.
        """
        try:
            load = self._facility.cpu_load()
            info = self._facility.cpu_info()
            host_id = self._facility.hostname()
        except CollectionError:
            raise
        except Exception as exc:
            raise CollectionError(f"Failed to collect CPU stats: {exc}") from exc

        if isinstance(info.cores, bool) or not isinstance(info.cores, int) or info.cores < 1:
            raise CollectionError(f"Invalid core count: {info.cores!r}")
        if len(load.cores) != info.cores:
            # Cores went on- or offline between the two queries
            raise CollectionError(
                f"Per-core readings ({len(load.cores)}) do not match core count ({info.cores})"
            )

        aggregate = CpuUsage(
            total=_checked_percent("total", load.aggregate.total),
            user=_checked_percent("user", load.aggregate.user),
            system=_checked_percent("system", load.aggregate.system),
            idle=_checked_percent("idle", load.aggregate.idle),
        )
        per_core = tuple(
            CoreLoad(
                index=i,
                load=_checked_percent(f"core {i} load", reading.total),
                load_user=_checked_percent(f"core {i} user", reading.user),
                load_system=_checked_percent(f"core {i} system", reading.system),
                load_idle=_checked_percent(f"core {i} idle", reading.idle),
            )
            for i, reading in enumerate(load.cores)
        )
        hardware = CpuHardware(
            model=str(info.brand or "Unknown CPU"),
            core_count=info.cores,
            clock_speed_ghz=float(info.speed_ghz or 0.0),
        )

        snapshot = CpuSnapshot(
            captured_at=self._clock(),
            host_id=str(host_id),
            hardware=hardware,
            aggregate=aggregate,
            per_core=per_core,
        )
        log.debug("snapshot_collected", total=aggregate.total, cores=hardware.core_count)
        return snapshot
