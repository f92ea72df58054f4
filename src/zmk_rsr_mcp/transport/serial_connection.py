"""Serial (USB CDC ACM) connection to a ZMK keyboard running studio RPC.

Envelopes are byte-stuffed with :mod:`..protocol.framing`. The device may
interleave notifications with replies; those are skipped while waiting
for the response that carries our request id.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

import serial
from serial.serialutil import SerialException

from ..errors import TransportError
from ..protocol.framing import FrameDecoder, build_frame
from ..protocol.parser import decode_studio_response
from .connection import StudioConnection

logger = logging.getLogger(__name__)

DEFAULT_BAUDRATE = 115200
DEFAULT_TIMEOUT = 2.0
READ_CHUNK = 256
POLL_INTERVAL = 0.05


@dataclass
class PortInfo:
    """Identification of the opened serial port."""

    port: str = ""
    baudrate: int = DEFAULT_BAUDRATE
    description: str = ""


class SerialConnection(StudioConnection):
    """Manages the serial link to the keyboard.

    Usage::

        conn = SerialConnection("/dev/ttyACM0")
        await conn.open()
        payload = await conn.call_subsystem(index, request_bytes)
        await conn.close()
    """

    def __init__(
        self,
        port: str,
        baudrate: int = DEFAULT_BAUDRATE,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__()
        self._port = port
        self._baudrate = baudrate
        self._timeout = timeout
        self._serial: serial.Serial | None = None
        self._decoder = FrameDecoder()
        self._lock = asyncio.Lock()
        self._port_info = PortInfo(port=port, baudrate=baudrate)

    @property
    def port_info(self) -> PortInfo:
        return self._port_info

    async def open(self) -> PortInfo:
        """Open the serial port and read the advertised subsystems.

        Raises:
            TransportError: If the port cannot be opened or the device
                does not answer.
        """
        try:
            self._serial = await asyncio.to_thread(
                serial.Serial, self._port, self._baudrate, timeout=POLL_INTERVAL
            )
            self._serial.reset_input_buffer()
        except SerialException as e:
            raise TransportError(
                f"Could not open serial port {self._port}. "
                f"Ensure the keyboard is connected with studio enabled. "
                f"Last error: {e}"
            ) from e

        self._decoder.reset()
        self._mark_connected()
        logger.info("Connected via serial: %s @ %d", self._port, self._baudrate)

        try:
            await self.refresh_subsystems()
        except Exception:
            await self.close()
            raise
        return self._port_info

    async def close(self) -> None:
        """Close the serial port."""
        if self._serial is None:
            self._mark_closed()
            return

        try:
            self._serial.close()
        except SerialException as e:
            logger.warning("Error closing port: %s", e)
        finally:
            self._serial = None
            self._mark_closed()
            logger.info("Disconnected")

    async def _exchange(self, request):
        async with self._lock:
            if self._serial is None:
                raise TransportError("Not connected to device")
            frame = build_frame(request.SerializeToString())
            return await asyncio.to_thread(self._write_and_wait, frame, request.request_id)

    def _write_and_wait(self, frame: bytes, request_id: int):
        try:
            self._serial.write(frame)
            self._serial.flush()
        except SerialException as e:
            self._mark_closed()
            raise TransportError(f"Write failed: {e}") from e

        deadline = time.monotonic() + self._timeout
        while time.monotonic() < deadline:
            try:
                data = self._serial.read(READ_CHUNK)
            except SerialException as e:
                self._mark_closed()
                raise TransportError(f"Read failed: {e}") from e

            for payload in self._decoder.feed(data):
                response = decode_studio_response(payload)
                kind = response.WhichOneof("type")
                if kind == "notification":
                    logger.debug("Skipping notification")
                    continue
                if kind != "request_response":
                    logger.debug("Skipping empty studio response")
                    continue
                if response.request_response.request_id != request_id:
                    logger.debug(
                        "Skipping response %d while waiting for %d",
                        response.request_response.request_id,
                        request_id,
                    )
                    continue
                return response.request_response

        raise TransportError(
            f"No response to request {request_id} within {self._timeout:.1f}s"
        )
