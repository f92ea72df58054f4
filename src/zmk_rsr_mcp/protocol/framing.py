"""Byte-stuffed frame builder and decoder for the studio serial link.

Frame layout::

    +------+-----------------------------------+------+
    | SOF  |  payload (escaped)                | EOF  |
    | 0xAB |  any SOF/ESC/EOF byte -> ESC, b   | 0xAD |
    +------+-----------------------------------+------+

- SOF: start of frame
- ESC: 0xAC, prefixes a payload byte that collides with a marker
- EOF: end of frame

The payload is a serialized ``zmk.studio.Request`` (host to device) or
``zmk.studio.Response`` (device to host).
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

SOF = 0xAB
ESC = 0xAC
EOF = 0xAD

_MARKERS = frozenset((SOF, ESC, EOF))


def build_frame(payload: bytes) -> bytes:
    """Wrap a serialized message in SOF/EOF markers, escaping as needed.

    Args:
        payload: Serialized envelope bytes.

    Returns:
        The framed bytes ready to write to the serial port.
    """
    out = bytearray([SOF])
    for b in payload:
        if b in _MARKERS:
            out.append(ESC)
        out.append(b)
    out.append(EOF)
    return bytes(out)


class FrameDecoder:
    """Incremental decoder that turns a byte stream into frame payloads.

    Bytes outside a frame are discarded. A SOF seen inside an unfinished
    frame restarts the frame, dropping what was collected so far.

    Usage::

        decoder = FrameDecoder()
        for payload in decoder.feed(port.read(64)):
            handle(payload)
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._in_frame = False
        self._escaped = False

    def reset(self) -> None:
        self._buffer.clear()
        self._in_frame = False
        self._escaped = False

    def feed(self, data: bytes) -> list[bytes]:
        """Consume raw bytes and return every frame completed by them."""
        frames: list[bytes] = []
        for b in data:
            if not self._in_frame:
                if b == SOF:
                    self._in_frame = True
                    self._buffer.clear()
                else:
                    logger.debug("Discarding byte 0x%02X outside frame", b)
                continue

            if self._escaped:
                self._buffer.append(b)
                self._escaped = False
            elif b == ESC:
                self._escaped = True
            elif b == SOF:
                logger.debug("SOF inside frame, dropping %d bytes", len(self._buffer))
                self._buffer.clear()
            elif b == EOF:
                frames.append(bytes(self._buffer))
                self.reset()
            else:
                self._buffer.append(b)
        return frames
