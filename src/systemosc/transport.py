"""UDP transport for OSC messages."""

import socket
import threading
from typing import Protocol

from pythonosc.osc_message_builder import BuildError, OscMessageBuilder

from systemosc.errors import SinkTransmissionError


class MessageSender(Protocol):
    """Sends one addressed, typed value. Raises SinkTransmissionError on failure."""

    def send_message(self, address: str, value: float | int | str, type_tag: str) -> None: ...

    def close(self) -> None: ...


class OscUdpSender:
    """
    Encodes messages with python-osc and sends each as one UDP datagram.

    The socket is bound to an ephemeral local port when the sender is created
    and released by ``close()``. The target host is resolved on every send.
    """

    def __init__(self, host: str, port: int, timeout: float = 5.0) -> None:
        self.host = host
        self.port = port
        self._lock = threading.Lock()
        self._sock: socket.socket | None = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self._sock.settimeout(timeout)
        self._sock.bind(("0.0.0.0", 0))

    @property
    def closed(self) -> bool:
        return self._sock is None

    def send_message(self, address: str, value: float | int | str, type_tag: str) -> None:
        try:
            builder = OscMessageBuilder(address=address)
            builder.add_arg(value, type_tag)
            dgram = builder.build().dgram
        except (BuildError, ValueError) as exc:
            raise SinkTransmissionError(f"Cannot encode {address}: {exc}") from exc

        with self._lock:
            sock = self._sock
        if sock is None:
            raise SinkTransmissionError("OSC socket is closed")

        # Outside the lock so close() never waits on a stuck send
        try:
            sock.sendto(dgram, (self.host, self.port))
        except OSError as exc:
            raise SinkTransmissionError(
                f"Send to {self.host}:{self.port} failed: {exc}"
            ) from exc

    def close(self) -> None:
        with self._lock:
            if self._sock is not None:
                self._sock.close()
                self._sock = None
