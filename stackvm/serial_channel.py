"""
Serial-port message channel (pyserial).

Wire format, one ASCII line per message:

    <port>:<rendered payload>\\r\\n

    e.g.  "1:42\\r\\n"   "3:hello\\r\\n"   "0:true\\r\\n"

The payload is whatever render_value() produces, so inbound lines come
back as String payloads; the receiver decides how to interpret them.

Any pyserial URL works: '/dev/ttyUSB0', 'COM3', 'socket://host:7000',
or 'loop://' for a local loopback (used by the tests).

Usage:
    with SerialChannel('/dev/ttyUSB0', baud=115200) as ch:
        engine = Engine(program, channel=ch)
        engine.run()
"""

from __future__ import annotations
import logging
import re
from collections import defaultdict, deque
from typing import Deque, Dict, Optional, Tuple

import serial

from .channel import Message, MessageChannel, render_value
from .errors import ChannelError
from .values import String

__all__ = ['SerialChannel', 'encode_frame', 'decode_frame']

log = logging.getLogger('stackvm.serial')

DEFAULT_BAUD = 9600
FRAME_END = b'\r\n'
_PORT_RE = re.compile(r'\s*-?\d+\s*', re.ASCII)


# ──────────────────────────────────────────────
# Frame helpers
# ──────────────────────────────────────────────

def encode_frame(port: int, message: Message, encoding: str = 'utf-8') -> bytes:
    """Message → b'<port>:<payload>\\r\\n'. CR/LF inside the payload are escaped."""
    text = render_value(message.value).replace('\\', '\\\\').replace('\r', '\\r').replace('\n', '\\n')
    return f"{port}:{text}".encode(encoding) + FRAME_END


def decode_frame(line: bytes, encoding: str = 'utf-8') -> Optional[Tuple[int, str]]:
    """b'<port>:<payload>\\r\\n' → (port, payload), or None if the line is not a frame."""
    try:
        text = line.decode(encoding)
    except UnicodeDecodeError:
        return None
    text = text.rstrip('\r\n')
    head, sep, payload = text.partition(':')
    if not sep or not _PORT_RE.fullmatch(head):
        return None
    out, chars = [], iter(payload)
    for ch in chars:
        if ch == '\\':
            esc = next(chars, '')
            out.append({'r': '\r', 'n': '\n'}.get(esc, esc))
        else:
            out.append(ch)
    return int(head), ''.join(out)


# ──────────────────────────────────────────────
# Channel
# ──────────────────────────────────────────────

class SerialChannel(MessageChannel):
    """MessageChannel over a serial line.

    Lines read for a port other than the one asked for are buffered and
    handed out by a later receive() of that port.
    """

    def __init__(self, url: str, baud: int = DEFAULT_BAUD, timeout: float = 0.1,
                 encoding: str = 'utf-8', local_port: int = 0):
        self.url = url
        self.baud = baud
        self.timeout = timeout
        self.encoding = encoding
        self.local_port = local_port    # to_port stamped on received messages
        self.ser: Optional[serial.SerialBase] = None
        self._rx: Dict[int, Deque[str]] = defaultdict(deque)

    # -------------------------------------------------------------------------
    # Port Management
    # -------------------------------------------------------------------------

    def open(self):
        if self.is_connected:
            return
        try:
            self.ser = serial.serial_for_url(
                self.url,
                baudrate=self.baud,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=self.timeout,
                write_timeout=1.0,
            )
        except (serial.SerialException, ValueError) as e:
            log.error("Failed to open %s: %s", self.url, e)
            raise ChannelError(f"cannot open {self.url}: {e}") from e
        log.info("Opened %s @ %d baud (8N1)", self.url, self.baud)

    def close(self):
        if self.ser is not None and self.ser.is_open:
            self.ser.close()
            log.info("Closed %s", self.url)
        self.ser = None

    @property
    def is_connected(self) -> bool:
        return self.ser is not None and self.ser.is_open

    # -------------------------------------------------------------------------
    # I/O
    # -------------------------------------------------------------------------

    def send(self, port: int, message: Message) -> None:
        if not self.is_connected:
            raise ChannelError(f"serial channel {self.url} is not open")
        try:
            frame = encode_frame(port, message, self.encoding)
        except UnicodeEncodeError as e:
            raise ChannelError(f"payload not representable in {self.encoding}: {e}") from e
        try:
            self.ser.write(frame)
            self.ser.flush()
        except serial.SerialException as e:
            raise ChannelError(f"write to {self.url} failed: {e}") from e
        log.debug("TX: %r", frame)

    def receive(self, port: int) -> Optional[Message]:
        """Next message for ``port``, or None once the read times out."""
        if self._rx[port]:
            return self._wrap(port, self._rx[port].popleft())
        if not self.is_connected:
            raise ChannelError(f"serial channel {self.url} is not open")

        while True:
            try:
                line = self.ser.readline()
            except serial.SerialException as e:
                raise ChannelError(f"read from {self.url} failed: {e}") from e
            if not line:
                return None
            log.debug("RX: %r", line)
            frame = decode_frame(line, self.encoding)
            if frame is None:
                log.warning("Dropping malformed line from %s: %r", self.url, line)
                continue
            src, payload = frame
            if src == port:
                return self._wrap(port, payload)
            self._rx[src].append(payload)

    def _wrap(self, port: int, payload: str) -> Message:
        return Message(port, self.local_port, String(payload))
