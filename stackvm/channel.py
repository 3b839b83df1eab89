"""
Message channel — the VM's only route to the outside world.

The engine never builds a channel itself. One is handed to it by the
embedding code (constructor or reset()), and every ``Out`` instruction
becomes a ``channel.send(port, message)`` call.

Ports are plain integers. A Message carries its source port, its
destination port and one Value payload.

Implementations here:
  QueueChannel  — in-memory TX log + per-port RX queues (tests, embedding)
  StreamChannel — writes one text line per message to a stream
The serial-port channel lives in serial_channel.py.
"""

from __future__ import annotations
import logging
import math
import sys
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional, TextIO, Tuple

from .values import Value, I32, I64, F32, F64, Char, String, Bool, to_f32

__all__ = [
    'Message', 'MessageChannel', 'QueueChannel', 'StreamChannel',
    'render_value', 'UNKNOWN_VALUE',
]

log = logging.getLogger('stackvm.channel')

UNKNOWN_VALUE = '<unknown value>'


@dataclass(frozen=True)
class Message:
    from_port: int
    to_port: int
    value: Value


# ──────────────────────────────────────────────
# Payload rendering
# ──────────────────────────────────────────────

def _f32_text(x: float) -> str:
    """Shortest decimal text that round-trips through single precision."""
    if math.isnan(x) or math.isinf(x):
        return repr(x)
    for digits in range(1, 10):
        candidate = float(f"{x:.{digits}g}")
        if to_f32(candidate) == x:
            return repr(candidate)
    return repr(x)


def render_value(value: Value) -> str:
    """Render a payload as text. Symbols, addresses and unknowns get a placeholder."""
    if isinstance(value, (I32, I64)):
        return str(value.value)
    if isinstance(value, F32):
        return _f32_text(value.value)
    if isinstance(value, F64):
        return repr(value.value)
    if isinstance(value, (Char, String)):
        return value.value
    if isinstance(value, Bool):
        return 'true' if value.value else 'false'
    return UNKNOWN_VALUE


# ──────────────────────────────────────────────
# Channel interface
# ──────────────────────────────────────────────

class MessageChannel(ABC):
    """send/receive capability over numbered ports.

    Channels that hold a transport (serial port, socket) override
    open()/close(); every channel works as a context manager.
    """

    @abstractmethod
    def send(self, port: int, message: Message) -> None:
        ...

    @abstractmethod
    def receive(self, port: int) -> Optional[Message]:
        ...

    def open(self):
        pass

    def close(self):
        pass

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class QueueChannel(MessageChannel):
    """In-memory channel.

    TX: every send() is appended to ``sent`` as (port, message).
    RX: messages queued with inject() come back out of receive(), FIFO per port.
    """

    def __init__(self):
        self.sent: List[Tuple[int, Message]] = []
        self._inbox: Dict[int, Deque[Message]] = defaultdict(deque)

    def send(self, port: int, message: Message) -> None:
        log.debug("port %d <- %s", port, render_value(message.value))
        self.sent.append((port, message))

    def receive(self, port: int) -> Optional[Message]:
        queue = self._inbox.get(port)
        if not queue:
            return None
        return queue.popleft()

    def inject(self, port: int, message: Message):
        """Queue an inbound message for receive(port)."""
        self._inbox[port].append(message)

    def pending(self, port: int) -> int:
        return len(self._inbox.get(port, ()))

    def output(self, port: int) -> List[str]:
        """Rendered payloads sent to one port, in order."""
        return [render_value(m.value) for p, m in self.sent if p == port]

    def clear(self):
        self.sent.clear()
        self._inbox.clear()


class StreamChannel(MessageChannel):
    """Writes ``[port N] text`` lines to a text stream (stdout by default)."""

    def __init__(self, stream: Optional[TextIO] = None):
        self._stream = stream

    @property
    def stream(self) -> TextIO:
        return self._stream if self._stream is not None else sys.stdout

    def send(self, port: int, message: Message) -> None:
        self.stream.write(f"[port {port}] {render_value(message.value)}\n")
        self.stream.flush()

    def receive(self, port: int) -> Optional[Message]:
        return None
