"""Dissemination sinks for systemosc."""

import threading
from abc import ABC, abstractmethod
from typing import Any

from systemosc.errors import SinkTransmissionError
from systemosc.logger import get_logger
from systemosc.messages import build_messages, to_json_entries
from systemosc.models import CpuSnapshot, SendResult, SinkKind
from systemosc.transport import MessageSender, OscUdpSender

log = get_logger(__name__)

DEFAULT_TIMEOUT = 5.0


class Sink(ABC):
    """
    A dissemination channel.

    ``disseminate`` never raises: every failure is captured in the returned
    SendResult. The scheduler enforces ``timeout`` around each call.
    """

    kind: SinkKind

    def __init__(self, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.timeout = timeout
        self._closed = False
        self._close_lock = threading.Lock()

    def disseminate(self, snapshot: CpuSnapshot) -> SendResult:
        """Publish one snapshot and report the outcome."""
        try:
            detail = self._publish(snapshot)
        except SinkTransmissionError as exc:
            log.warning("sink_failed", sink=self.kind.value, error=str(exc))
            return SendResult.failure(self.kind, str(exc))
        except Exception as exc:
            log.exception("sink_crashed", sink=self.kind.value)
            return SendResult.failure(self.kind, f"Unexpected error: {exc}")
        return SendResult.success(self.kind, detail)

    def close(self) -> None:
        """Release the sink's resources. Only the first call has any effect."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self._release()
        log.info("sink_closed", sink=self.kind.value)

    @property
    def closed(self) -> bool:
        return self._closed

    @abstractmethod
    def _publish(self, snapshot: CpuSnapshot) -> str:
        """Publish the snapshot, returning a status detail. Raises SinkTransmissionError."""

    def _release(self) -> None:
        """Hook for subclasses owning resources."""

    @abstractmethod
    def describe(self) -> str:
        """Human-readable target, e.g. ``udp://localhost:9877``."""


class OscSink(Sink):
    """Sends each snapshot as an ordered batch of OSC messages over UDP."""

    kind = SinkKind.OSC

    def __init__(
        self,
        sender: MessageSender,
        host: str,
        port: int,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__(timeout)
        self._sender = sender
        self.host = host
        self.port = port

    @classmethod
    def from_settings(cls, host: str, port: int, timeout: float = DEFAULT_TIMEOUT) -> "OscSink":
        return cls(OscUdpSender(host, port, timeout=timeout), host, port, timeout=timeout)

    def describe(self) -> str:
        return f"udp://{self.host}:{self.port}"

    def _publish(self, snapshot: CpuSnapshot) -> str:
        messages = build_messages(snapshot)
        for sent, message in enumerate(messages):
            try:
                self._sender.send_message(message.address, message.value, message.type_tag)
            except SinkTransmissionError as exc:
                # Remaining messages of the batch are dropped
                raise SinkTransmissionError(
                    f"{exc} (at {message.address}, {sent}/{len(messages)} sent)"
                ) from exc
        return "OK"

    def _release(self) -> None:
        self._sender.close()


class SnapshotStore:
    """Thread-safe holder of the latest HTTP body."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: list[dict[str, Any]] | None = None
        self._snapshot: CpuSnapshot | None = None
        self._closed = False

    def publish(self, snapshot: CpuSnapshot) -> None:
        entries = to_json_entries(build_messages(snapshot))
        with self._lock:
            if self._closed:
                raise SinkTransmissionError("Snapshot store is closed")
            self._entries = entries
            self._snapshot = snapshot

    def current(self) -> list[dict[str, Any]] | None:
        """Latest entries, or None before the first publish."""
        with self._lock:
            return self._entries

    @property
    def snapshot(self) -> CpuSnapshot | None:
        with self._lock:
            return self._snapshot

    def close(self) -> None:
        with self._lock:
            self._closed = True


class HttpSink(Sink):
    """
    Pull sink: each cycle only refreshes the store read by the HTTP responder.

    The responder answers requests on its own thread, independent of the cycle.
    """

    kind = SinkKind.HTTP

    def __init__(
        self,
        store: SnapshotStore,
        responder=None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__(timeout)
        self.store = store
        self._responder = responder

    @property
    def responder(self):
        return self._responder

    def describe(self) -> str:
        if self._responder is None:
            return "http (no responder)"
        return f"http://{self._responder.host}:{self._responder.port}/"

    def _publish(self, snapshot: CpuSnapshot) -> str:
        self.store.publish(snapshot)
        return "OK"

    def _release(self) -> None:
        if self._responder is not None:
            self._responder.stop()
        self.store.close()
