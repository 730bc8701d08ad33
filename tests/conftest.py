"""Shared fakes and fixtures for systemosc tests."""

import threading
import time
from datetime import datetime, timezone

import pytest

from systemosc.collector import HostCpuInfo, HostLoad, LoadReading
from systemosc.errors import CollectionError, SinkTransmissionError
from systemosc.models import CoreLoad, CpuHardware, CpuSnapshot, CpuUsage, SinkKind
from systemosc.sinks import Sink

CAPTURED_AT = datetime(2025, 1, 15, 12, 30, 45, 123000, tzinfo=timezone.utc)


def make_snapshot(core_count: int = 10, model: str = "Apple M1 Max") -> CpuSnapshot:
    """The 10-core Apple M1 Max example: total 46.45, user 28.44, system 18.01."""
    return CpuSnapshot(
        captured_at=CAPTURED_AT,
        host_id="studio.local",
        hardware=CpuHardware(model=model, core_count=core_count, clock_speed_ghz=3.23),
        aggregate=CpuUsage(total=46.45, user=28.44, system=18.01, idle=53.55),
        per_core=tuple(
            CoreLoad(
                index=i,
                load=float(10 * i % 100) + 0.5,
                load_user=float(5 * i % 100),
                load_system=0.5,
                load_idle=round(100.0 - (10 * i % 100) - 0.5, 2),
            )
            for i in range(core_count)
        ),
    )


class FakeHostFacility:
    """Host facility returning canned readings."""

    def __init__(
        self,
        aggregate: LoadReading | None = None,
        cores: list[LoadReading] | None = None,
        core_count: int | None = None,
        brand: str = "Apple M1 Max",
        speed_ghz: float = 3.23,
        hostname: str = "studio.local",
    ) -> None:
        self.aggregate = aggregate or LoadReading(total=46.45, user=28.44, system=18.01, idle=53.55)
        self.cores = cores if cores is not None else [
            LoadReading(total=10.0 * i, user=5.0 * i, system=5.0 * i, idle=100.0 - 10.0 * i)
            for i in range(10)
        ]
        self.core_count = core_count if core_count is not None else len(self.cores)
        self.brand = brand
        self.speed_ghz = speed_ghz
        self._hostname = hostname
        self.error: Exception | None = None
        self.calls = 0

    def cpu_load(self) -> HostLoad:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return HostLoad(aggregate=self.aggregate, cores=list(self.cores))

    def cpu_info(self) -> HostCpuInfo:
        return HostCpuInfo(brand=self.brand, cores=self.core_count, speed_ghz=self.speed_ghz)

    def hostname(self) -> str:
        return self._hostname


class FakeCollector:
    """Collector returning a fixed snapshot, or raising while ``failing`` is set."""

    def __init__(self, snapshot: CpuSnapshot | None = None) -> None:
        self.snapshot = snapshot or make_snapshot()
        self.failing = False
        self.calls = 0

    def collect(self) -> CpuSnapshot:
        self.calls += 1
        if self.failing:
            raise CollectionError("Failed to collect CPU stats: permission denied")
        return self.snapshot


class FakeSender:
    """MessageSender recording messages; optionally fails at a given address."""

    def __init__(self, fail_at: str | None = None) -> None:
        self.sent: list[tuple[str, object, str]] = []
        self.fail_at = fail_at
        self.close_calls = 0

    def send_message(self, address: str, value, type_tag: str) -> None:
        if address == self.fail_at:
            raise SinkTransmissionError("Send to 10.0.0.99:9877 failed: [Errno 65] No route to host")
        self.sent.append((address, value, type_tag))

    def close(self) -> None:
        self.close_calls += 1


class RecordingSink(Sink):
    """
    Sink that records call windows and can be slowed down or made to fail.

    ``delay`` sleeps inside the call; ``fail`` raises SinkTransmissionError;
    ``crash`` raises an unexpected exception.
    """

    def __init__(
        self,
        kind: SinkKind = SinkKind.OSC,
        delay: float = 0.0,
        fail: bool = False,
        crash: bool = False,
        timeout: float = 5.0,
    ) -> None:
        super().__init__(timeout)
        self.kind = kind
        self.delay = delay
        self.fail = fail
        self.crash = crash
        self.windows: list[tuple[float, float]] = []
        self.snapshots: list[CpuSnapshot] = []
        self.release_calls = 0
        self._windows_lock = threading.Lock()

    def describe(self) -> str:
        return f"fake://{self.kind.value}"

    def _publish(self, snapshot: CpuSnapshot) -> str:
        start = time.monotonic()
        try:
            if self.delay:
                time.sleep(self.delay)
            if self.crash:
                raise RuntimeError("boom")
            if self.fail:
                raise SinkTransmissionError("unreachable")
            self.snapshots.append(snapshot)
            return "OK"
        finally:
            with self._windows_lock:
                self.windows.append((start, time.monotonic()))

    def _release(self) -> None:
        self.release_calls += 1


@pytest.fixture
def snapshot() -> CpuSnapshot:
    return make_snapshot()


@pytest.fixture
def facility() -> FakeHostFacility:
    return FakeHostFacility()
