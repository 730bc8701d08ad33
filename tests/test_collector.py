"""Tests for the SnapshotCollector and psutil host facility."""

import math
from collections import namedtuple
from datetime import timezone

import psutil
import pytest
from conftest import CAPTURED_AT, FakeHostFacility

from systemosc.collector import (
    LoadReading,
    PsutilHostFacility,
    SnapshotCollector,
    _reading_from_times,
    _reading_or_previous,
    round_percent,
)
from systemosc.errors import CollectionError
from systemosc.models import CpuSnapshot


def _decimals(value: float) -> int:
    text = repr(value)
    return len(text.split(".")[1]) if "." in text else 0


class TestRoundPercent:
    """Tests for 2-decimal half-up rounding."""

    def test_rounds_half_up(self):
        assert round_percent(0.125) == 0.13
        assert round_percent(2.675) == 2.68
        assert round_percent(46.445) == 46.45

    def test_rounds_down_below_half(self):
        assert round_percent(46.444999) == 46.44

    def test_keeps_short_values(self):
        assert round_percent(50) == 50.0
        assert round_percent(12.3) == 12.3


class TestReadingFromTimes:
    """Tests for folding psutil scputimes into total/user/system/idle."""

    def test_folds_nice_into_user(self):
        Times = namedtuple("scputimes", "user nice system idle")
        reading = _reading_from_times(Times(user=20.0, nice=5.0, system=10.0, idle=65.0))

        assert reading.user == 25.0
        assert reading.idle == 65.0
        assert reading.total == 35.0
        assert reading.system == 10.0

    def test_system_never_negative(self):
        Times = namedtuple("scputimes", "user system idle")
        reading = _reading_from_times(Times(user=60.0, system=0.0, idle=45.0))

        assert reading.total == 55.0
        assert reading.system == 0.0

    def test_all_zero_times_repeat_previous_reading(self):
        Times = namedtuple("scputimes", "user nice system idle")
        previous = LoadReading(total=12.5, user=10.0, system=2.5, idle=87.5)

        assert _reading_or_previous(Times(0.0, 0.0, 0.0, 0.0), previous) is previous

    def test_all_zero_times_without_previous_are_idle(self):
        Times = namedtuple("scputimes", "user nice system idle")
        reading = _reading_or_previous(Times(0.0, 0.0, 0.0, 0.0), None)

        assert reading.total == 0.0
        assert reading.idle == 100.0


class TestSnapshotCollector:
    """Tests for SnapshotCollector with a fake host facility."""

    def test_collect_builds_snapshot(self, facility):
        collector = SnapshotCollector(facility, clock=lambda: CAPTURED_AT)

        snapshot = collector.collect()

        assert isinstance(snapshot, CpuSnapshot)
        assert snapshot.captured_at == CAPTURED_AT
        assert snapshot.host_id == "studio.local"
        assert snapshot.hardware.model == "Apple M1 Max"
        assert snapshot.hardware.core_count == 10
        assert snapshot.hardware.clock_speed_ghz == 3.23
        assert snapshot.aggregate.total == 46.45
        assert snapshot.aggregate.user == 28.44
        assert snapshot.aggregate.system == 18.01
        assert snapshot.aggregate.idle == 53.55

    def test_per_core_length_matches_core_count(self, facility):
        snapshot = SnapshotCollector(facility).collect()

        assert len(snapshot.per_core) == snapshot.hardware.core_count
        assert [core.index for core in snapshot.per_core] == list(range(10))
        assert snapshot.per_core[3].load == 30.0
        assert snapshot.per_core[3].load_idle == 70.0

    def test_all_values_have_at_most_two_decimals(self):
        facility = FakeHostFacility(
            aggregate=LoadReading(total=46.4549999, user=28.4412, system=18.013, idle=53.5450001),
            cores=[
                LoadReading(total=33.33333, user=11.11111, system=22.22222, idle=66.66667)
                for _ in range(4)
            ],
        )

        snapshot = SnapshotCollector(facility).collect()

        values = [
            snapshot.aggregate.total,
            snapshot.aggregate.user,
            snapshot.aggregate.system,
            snapshot.aggregate.idle,
        ]
        for core in snapshot.per_core:
            values.extend([core.load, core.load_user, core.load_system, core.load_idle])
        assert all(_decimals(v) <= 2 for v in values)
        assert snapshot.aggregate.total == 46.45
        assert snapshot.per_core[0].load == 33.33

    def test_default_clock_is_utc(self, facility):
        snapshot = SnapshotCollector(facility).collect()
        assert snapshot.captured_at.tzinfo == timezone.utc

    def test_core_count_mismatch_fails(self):
        facility = FakeHostFacility(core_count=12)

        with pytest.raises(CollectionError, match="do not match core count"):
            SnapshotCollector(facility).collect()

    def test_zero_cores_fails(self):
        facility = FakeHostFacility(cores=[], core_count=0)

        with pytest.raises(CollectionError, match="Invalid core count"):
            SnapshotCollector(facility).collect()

    def test_negative_percentage_fails(self):
        facility = FakeHostFacility(
            aggregate=LoadReading(total=-1.0, user=0.0, system=0.0, idle=101.0)
        )

        with pytest.raises(CollectionError, match="Negative value for total"):
            SnapshotCollector(facility).collect()

    def test_missing_percentage_fails(self):
        facility = FakeHostFacility(
            aggregate=LoadReading(total=10.0, user=None, system=0.0, idle=90.0)  # type: ignore[arg-type]
        )

        with pytest.raises(CollectionError, match="Missing value for user"):
            SnapshotCollector(facility).collect()

    def test_nan_percentage_fails(self):
        facility = FakeHostFacility(
            cores=[LoadReading(total=math.nan, user=0.0, system=0.0, idle=100.0)],
        )

        with pytest.raises(CollectionError, match="Non-finite value for core 0 load"):
            SnapshotCollector(facility).collect()

    def test_values_above_hundred_are_clamped(self):
        facility = FakeHostFacility(
            aggregate=LoadReading(total=100.004, user=100.2, system=0.0, idle=0.0)
        )

        snapshot = SnapshotCollector(facility).collect()

        assert snapshot.aggregate.total == 100.0
        assert snapshot.aggregate.user == 100.0

    def test_facility_error_becomes_collection_error(self, facility):
        facility.error = PermissionError("Operation not permitted")

        with pytest.raises(CollectionError, match="Operation not permitted") as excinfo:
            SnapshotCollector(facility).collect()
        assert isinstance(excinfo.value.__cause__, PermissionError)

    def test_recovers_after_failure(self, facility):
        collector = SnapshotCollector(facility)
        facility.error = OSError("facility unavailable")

        with pytest.raises(CollectionError):
            collector.collect()

        facility.error = None
        assert collector.collect().aggregate.total == 46.45


class TestPsutilHostFacility:
    """Tests against the real host via psutil."""

    def test_cpu_load_has_one_reading_per_core(self):
        facility = PsutilHostFacility()
        load = facility.cpu_load()
        info = facility.cpu_info()

        assert info.cores >= 1
        assert len(load.cores) == info.cores
        assert 0.0 <= load.aggregate.idle <= 100.0
        assert load.aggregate.system >= 0.0

    def test_cpu_info_fields(self):
        info = PsutilHostFacility().cpu_info()

        assert isinstance(info.brand, str)
        assert info.brand
        assert info.speed_ghz >= 0.0

    def test_hostname(self):
        assert PsutilHostFacility().hostname()

    def test_collect_real_snapshot(self):
        snapshot = SnapshotCollector().collect()

        assert len(snapshot.per_core) == snapshot.hardware.core_count
        assert 0.0 <= snapshot.aggregate.total <= 100.0

    def test_back_to_back_collections_are_not_saturated(self):
        collector = SnapshotCollector()
        collector.collect()
        second = collector.collect()

        # No elapsed CPU time must never read as 100% system load
        assert not (second.aggregate.idle == 0.0 and second.aggregate.user == 0.0)
        for core in second.per_core:
            assert not (core.load_idle == 0.0 and core.load_user == 0.0)

    def test_zero_elapsed_time_keeps_previous_reading(self, monkeypatch):
        Times = namedtuple("scputimes", "user nice system idle")
        busy = Times(user=20.0, nice=0.0, system=10.0, idle=70.0)
        zeros = Times(user=0.0, nice=0.0, system=0.0, idle=0.0)
        readings = {"current": busy}

        def fake_cpu_times_percent(percpu=False):
            times = readings["current"]
            return [times, times] if percpu else times

        monkeypatch.setattr(psutil, "cpu_times_percent", fake_cpu_times_percent)
        facility = PsutilHostFacility()

        first = facility.cpu_load()
        readings["current"] = zeros
        second = facility.cpu_load()

        assert first.aggregate.total == 30.0
        assert second.aggregate == first.aggregate
        assert list(second.cores) == list(first.cores)

    def test_zero_elapsed_time_before_any_reading_is_idle(self, monkeypatch):
        Times = namedtuple("scputimes", "user nice system idle")
        zeros = Times(user=0.0, nice=0.0, system=0.0, idle=0.0)
        monkeypatch.setattr(
            psutil, "cpu_times_percent", lambda percpu=False: [zeros] if percpu else zeros
        )

        load = PsutilHostFacility().cpu_load()

        assert load.aggregate.total == 0.0
        assert load.aggregate.idle == 100.0
        assert load.cores[0].system == 0.0
