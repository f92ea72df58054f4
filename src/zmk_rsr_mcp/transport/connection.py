"""Connection contract shared by every studio transport.

A :class:`StudioConnection` carries typed ``zmk.studio`` envelopes to the
device and back, one exchange at a time. Subclasses supply the raw
exchange; this base class assigns request ids, checks correlation, and
implements the custom-subsystem call and the capability listing on top.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from ..errors import ProtocolError, TransportError
from ..protocol.commands import build_custom_call, build_list_custom_subsystems
from ..protocol.parser import SubsystemInfo, parse_custom_call, parse_custom_subsystems

logger = logging.getLogger(__name__)


class StudioConnection(ABC):
    """Base class for a duplex request/response channel to the device."""

    def __init__(self) -> None:
        self._connected = False
        self._generation = 0
        self._request_id = 0
        self._subsystems: list[SubsystemInfo] = []

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def generation(self) -> int:
        """Counter bumped on every (re)connect; identifies the connection lifetime."""
        return self._generation

    @property
    def subsystems(self) -> list[SubsystemInfo]:
        """Custom subsystems advertised during the current connection."""
        return list(self._subsystems)

    def _mark_connected(self) -> None:
        self._connected = True
        self._generation += 1
        self._subsystems = []

    def _mark_closed(self) -> None:
        self._connected = False
        self._subsystems = []

    def _next_request_id(self) -> int:
        self._request_id = (self._request_id + 1) & 0xFFFFFFFF
        return self._request_id

    @abstractmethod
    async def _exchange(self, request):
        """Send one ``zmk.studio.Request`` and return the matching ``RequestResponse``."""

    async def call_rpc(self, request):
        """Send a studio request and return its ``RequestResponse``.

        Raises:
            TransportError: If the connection is closed or the exchange fails.
            ProtocolError: If the reply is not correlated with the request.
        """
        if not self._connected:
            raise TransportError("Not connected to device")

        request.request_id = self._next_request_id()
        subsystem = request.WhichOneof("subsystem")
        logger.debug("-> request %d (%s)", request.request_id, subsystem)

        response = await self._exchange(request)

        if response.request_id != request.request_id:
            raise ProtocolError(
                f"Response id {response.request_id} does not match request "
                f"{request.request_id}"
            )
        logger.debug("<- response %d (%s)", response.request_id, response.WhichOneof("subsystem"))
        return response

    async def call_subsystem(self, subsystem_index: int, payload: bytes) -> bytes:
        """Carry an opaque payload to a custom subsystem and return its reply payload."""
        response = await self.call_rpc(build_custom_call(subsystem_index, payload))
        return parse_custom_call(response, subsystem_index)

    async def refresh_subsystems(self) -> list[SubsystemInfo]:
        """Re-read the custom subsystem list advertised by the firmware."""
        response = await self.call_rpc(build_list_custom_subsystems())
        self._subsystems = parse_custom_subsystems(response)
        logger.info(
            "Device advertises subsystems: %s",
            ", ".join(f"{s.identifier}@{s.index}" for s in self._subsystems) or "(none)",
        )
        return self.subsystems

    async def close(self) -> None:
        self._mark_closed()
