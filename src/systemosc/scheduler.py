"""Collect/disseminate cycle scheduler for systemosc."""

import concurrent.futures
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import replace
from typing import Protocol

from systemosc.errors import CollectionError, ConfigurationError
from systemosc.logger import get_logger
from systemosc.models import (
    CpuSnapshot,
    CyclePhase,
    CycleState,
    SendResult,
    SinkKind,
    freeze_results,
)
from systemosc.sinks import Sink
from systemosc.status import StatusProjection, format_status_line

log = get_logger(__name__)

DEFAULT_INTERVAL_MS = 10_000


class Collector(Protocol):
    def collect(self) -> CpuSnapshot: ...


class CycleScheduler:
    """
    Drives the collect -> disseminate cycle at a fixed interval.

    The scheduler is the only writer of CycleState. Each update swaps in a new
    frozen state object, so ``state`` and ``status()`` never expose a partial
    update. Cycles never overlap: a tick arriving while a cycle is in flight is
    skipped and counted, never queued.

    Sinks run concurrently on short-lived daemon threads, each bounded by its
    own timeout. A sink that misses its timeout is recorded as failed and its
    late result is discarded; it is not called again until that call returns.
    """

    def __init__(
        self,
        collector: Collector,
        sinks: Sequence[Sink] = (),
        interval_ms: int = DEFAULT_INTERVAL_MS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the CycleScheduler.

        Args:
            collector: Produces one snapshot per cycle.
            sinks: Enabled sinks, at most one per SinkKind.
            interval_ms: Cycle interval in milliseconds, clamped to at least 1.
            clock: Monotonic clock in seconds.
        """
        kinds = [sink.kind for sink in sinks]
        if len(kinds) != len(set(kinds)):
            raise ConfigurationError(f"Duplicate sink kinds: {[k.value for k in kinds]}")

        self._collector = collector
        self._sinks = list(sinks)
        self._interval_ms = max(1, int(interval_ms))
        self._clock = clock

        self._lock = threading.Lock()
        self._state = CycleState()
        self._phase = CyclePhase.IDLE
        self._cycle_done = threading.Event()
        self._cycle_done.set()
        self._stop_event = threading.Event()
        self._wake = threading.Event()
        self._thread: threading.Thread | None = None
        self._in_flight: dict[SinkKind, concurrent.futures.Future] = {}

    @property
    def interval(self) -> float:
        """Cycle interval in seconds."""
        return self._interval_ms / 1000.0

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    @property
    def sinks(self) -> list[Sink]:
        return list(self._sinks)

    @property
    def phase(self) -> CyclePhase:
        return self._phase

    @property
    def state(self) -> CycleState:
        return self._state

    @property
    def is_running(self) -> bool:
        """Check if the scheduler thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def status(self) -> StatusProjection:
        """Read-only view of the latest snapshot and send results."""
        with self._lock:
            return StatusProjection.from_state(self._state, self._phase)

    def start(self) -> None:
        """Start the scheduler thread. The first cycle runs immediately."""
        if self.is_running or self._stop_event.is_set():
            return

        self._thread = threading.Thread(
            target=self._loop,
            daemon=True,
            name="CycleScheduler",
        )
        self._thread.start()
        log.info(
            "scheduler_started",
            interval_ms=self._interval_ms,
            sinks=[sink.describe() for sink in self._sinks],
        )

    def run_forever(self) -> None:
        """Run the scheduling loop on the calling thread until stop() is called."""
        log.info("scheduler_started", interval_ms=self._interval_ms, foreground=True)
        self._loop()

    def trigger(self) -> bool:
        """
        Ask the scheduler thread to run a cycle now.

        Returns False (and counts a skipped tick) if a cycle is already in flight.
        """
        with self._lock:
            if self._stop_event.is_set():
                return False
            if self._phase is not CyclePhase.IDLE:
                self._skip_locked(1, reason="cycle_in_flight")
                return False
        self._wake.set()
        return True

    def stop(self, timeout: float | None = None) -> None:
        """
        Shut down: no new cycles start, the in-flight cycle (if any) finishes
        within its sink timeouts, then every sink is closed exactly once.
        """
        with self._lock:
            if self._stop_event.is_set():
                return
            self._stop_event.set()
            if self._phase is CyclePhase.IDLE:
                self._phase = CyclePhase.SHUTTING_DOWN
        self._wake.set()
        log.info("scheduler_stopping")

        if timeout is None:
            timeout = self._max_sink_timeout() + 1.0
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        if not self._cycle_done.wait(timeout=timeout):
            log.warning("shutdown_abandoned_cycle")

        for sink in self._sinks:
            sink.close()
        log.info("scheduler_stopped", cycles=self._state.cycles_completed)

    def run_cycle(self) -> bool:
        """
        Run one collect -> disseminate cycle on the calling thread.

        Returns:
            True if the cycle ran, False if it was skipped because another
            cycle is in flight or shutdown was requested.
        """
        with self._lock:
            if self._stop_event.is_set():
                return False
            if self._phase is not CyclePhase.IDLE:
                self._skip_locked(1, reason="cycle_in_flight")
                return False
            self._phase = CyclePhase.COLLECTING
            self._cycle_done.clear()

        try:
            self._run_phases()
        finally:
            with self._lock:
                if self._stop_event.is_set():
                    self._phase = CyclePhase.SHUTTING_DOWN
                else:
                    self._phase = CyclePhase.IDLE
                self._cycle_done.set()
        return True

    def _loop(self) -> None:
        """Main scheduling loop running in the background thread."""
        next_tick = self._clock()
        while True:
            # A trigger that lands just before a timer tick is served by that tick
            self._wake.clear()
            if self._stop_event.is_set():
                break
            try:
                self.run_cycle()
            except Exception:
                # Keep ticking; the next cycle is the retry
                log.exception("cycle_crashed")

            next_tick += self.interval
            now = self._clock()
            if next_tick <= now:
                missed = int((now - next_tick) // self.interval) + 1
                next_tick += missed * self.interval
                with self._lock:
                    self._skip_locked(missed, reason="cycle_overran")

            if self._wake.wait(timeout=max(0.0, next_tick - now)):
                next_tick = self._clock()

    def _run_phases(self) -> None:
        started = time.perf_counter()

        try:
            snapshot = self._collector.collect()
        except CollectionError as exc:
            self._record_collection_failure(str(exc))
            return
        except Exception as exc:
            log.exception("collector_crashed")
            self._record_collection_failure(f"Unexpected collection error: {exc}")
            return

        with self._lock:
            self._state = replace(self._state, latest_snapshot=snapshot, last_error=None)
            self._phase = CyclePhase.DISSEMINATING

        results = self._disseminate(snapshot)

        with self._lock:
            merged = dict(self._state.latest_results)
            merged.update(results)
            self._state = replace(
                self._state,
                latest_results=freeze_results(merged),
                cycles_completed=self._state.cycles_completed + 1,
            )
            status = StatusProjection.from_state(self._state, self._phase)

        log.info(
            "cycle_completed",
            summary=format_status_line(status),
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )

    def _record_collection_failure(self, detail: str) -> None:
        log.warning("collection_failed", error=detail)
        with self._lock:
            self._state = replace(
                self._state,
                last_error=detail,
                cycles_completed=self._state.cycles_completed + 1,
            )

    def _disseminate(self, snapshot: CpuSnapshot) -> dict[SinkKind, SendResult]:
        """Run all sinks concurrently and wait for each within its timeout."""
        results: dict[SinkKind, SendResult] = {}
        pending: list[tuple[Sink, concurrent.futures.Future]] = []
        started = time.monotonic()

        for sink in self._sinks:
            previous = self._in_flight.get(sink.kind)
            if previous is not None and not previous.done():
                log.warning("sink_still_in_flight", sink=sink.kind.value)
                results[sink.kind] = SendResult.failure(sink.kind, "previous send still in flight")
                continue

            future: concurrent.futures.Future = concurrent.futures.Future()
            self._in_flight[sink.kind] = future
            threading.Thread(
                target=_call_sink,
                args=(sink, snapshot, future),
                daemon=True,
                name=f"Sink-{sink.kind.value}",
            ).start()
            pending.append((sink, future))

        for sink, future in pending:
            remaining = max(0.0, started + sink.timeout - time.monotonic())
            try:
                results[sink.kind] = future.result(timeout=remaining)
            except concurrent.futures.TimeoutError:
                log.warning("sink_timed_out", sink=sink.kind.value, timeout=sink.timeout)
                results[sink.kind] = SendResult.failure(
                    sink.kind, f"Timed out after {sink.timeout:g}s"
                )
            except Exception as exc:
                log.exception("sink_raised", sink=sink.kind.value)
                results[sink.kind] = SendResult.failure(sink.kind, f"Unexpected error: {exc}")

        return results

    def _skip_locked(self, count: int, reason: str) -> None:
        self._state = replace(self._state, ticks_skipped=self._state.ticks_skipped + count)
        log.warning("tick_skipped", count=count, reason=reason)

    def _max_sink_timeout(self) -> float:
        return max((sink.timeout for sink in self._sinks), default=0.0)


def _call_sink(sink: Sink, snapshot: CpuSnapshot, future: concurrent.futures.Future) -> None:
    if not future.set_running_or_notify_cancel():
        return
    try:
        future.set_result(sink.disseminate(snapshot))
    except Exception as exc:
        future.set_exception(exc)
