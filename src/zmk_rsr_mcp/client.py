"""Binding configuration client for the runtime sensor-rotate subsystem.

Every operation is one correlated exchange: encode the request, make a
single subsystem call, decode the reply and dispatch on its variant.
Failures raise; nothing is retried.

Writes follow the reload discipline: :meth:`BindingConfigClient.save_layer`
runs the firmware's write strategy and, only when every write succeeded,
chains exactly one :meth:`~BindingConfigClient.get_all_layer_bindings`.
"""

from __future__ import annotations

import logging
from typing import Iterable

from .errors import DeviceError, ProtocolError, StaleHandleError
from .locator import SubsystemHandle
from .models.binding import (
    AnyBinding,
    Binding,
    Direction,
    LayerBindings,
    LegacyBinding,
    SensorInfo,
)
from .protocol.commands import (
    ProtocolRevision,
    build_get_all_layer_bindings,
    build_get_sensors,
    build_save_pending_changes,
    build_set_layer_bindings,
    build_set_layer_ccw_binding,
    build_set_layer_cw_binding,
)
from .protocol.parser import WriteResult, parse_all_layer_bindings, parse_sensors, parse_write
from .transport.connection import StudioConnection

logger = logging.getLogger(__name__)


class WriteStrategy:
    """How a layer's bindings are written on a given protocol revision."""

    binding_type: type = Binding

    async def write(
        self,
        client: BindingConfigClient,
        sensor_index: int,
        layer: int,
        cw_binding: AnyBinding,
        ccw_binding: AnyBinding,
        directions: Iterable[Direction],
    ) -> None:
        raise NotImplementedError


class PerDirectionWrites(WriteStrategy):
    """One independent write per changed direction, clockwise first."""

    binding_type = Binding

    async def write(self, client, sensor_index, layer, cw_binding, ccw_binding, directions):
        if Direction.CW in directions:
            _require_success(
                await client.set_layer_cw_binding(sensor_index, layer, cw_binding),
                "clockwise",
                layer,
            )
        if Direction.CCW in directions:
            _require_success(
                await client.set_layer_ccw_binding(sensor_index, layer, ccw_binding),
                "counter-clockwise",
                layer,
            )


class CombinedWrite(WriteStrategy):
    """Both directions written atomically in one legacy request."""

    binding_type = LegacyBinding

    async def write(self, client, sensor_index, layer, cw_binding, ccw_binding, directions):
        _require_success(
            await client.set_layer_bindings(sensor_index, layer, cw_binding, ccw_binding),
            "combined",
            layer,
        )


WRITE_STRATEGIES: dict[ProtocolRevision, WriteStrategy] = {
    ProtocolRevision.PER_DIRECTION: PerDirectionWrites(),
    ProtocolRevision.COMBINED: CombinedWrite(),
}


def _require_success(success: bool, what: str, layer: int) -> None:
    if not success:
        raise DeviceError(f"Device rejected {what} binding write for layer {layer}")


class BindingConfigClient:
    """Typed requests against the rotate subsystem of one connection.

    Args:
        connection: The open studio connection.
        handle: The subsystem handle located on that connection. Its
            revision selects the write strategy for the client's lifetime.
    """

    def __init__(self, connection: StudioConnection, handle: SubsystemHandle) -> None:
        self._connection = connection
        self._handle = handle
        self._strategy = WRITE_STRATEGIES[handle.revision]
        self.has_pending_changes = False

    @property
    def handle(self) -> SubsystemHandle:
        return self._handle

    @property
    def revision(self) -> ProtocolRevision:
        return self._handle.revision

    @property
    def binding_type(self) -> type:
        """Binding dataclass spoken by the connected firmware."""
        return self._strategy.binding_type

    async def _call(self, payload: bytes) -> bytes:
        if not self._handle.is_valid_for(self._connection):
            raise StaleHandleError(
                f"Subsystem handle for {self._handle.identifier} belongs to a "
                f"previous connection; locate it again"
            )
        return await self._connection.call_subsystem(self._handle.index, payload)

    def _require_revision(self, revision: ProtocolRevision, operation: str) -> None:
        if self.revision is not revision:
            raise ProtocolError(
                f"{operation} is not available on {self.revision.value} firmware"
            )

    def _track(self, result: WriteResult) -> bool:
        self.has_pending_changes = result.has_pending_changes
        return result.success

    async def get_sensors(self) -> list[SensorInfo]:
        """List the rotary sensors of the keymap."""
        data = await self._call(build_get_sensors(self.revision))
        sensors = parse_sensors(self.revision, data)
        logger.debug("Device reports %d sensors", len(sensors))
        return sensors

    async def get_all_layer_bindings(self, sensor_index: int) -> list[LayerBindings]:
        """Read every layer's bindings for a sensor; index ``i`` is layer ``i``."""
        data = await self._call(build_get_all_layer_bindings(self.revision, sensor_index))
        result = parse_all_layer_bindings(self.revision, data)
        self.has_pending_changes = result.has_pending_changes
        logger.debug("Sensor %d has %d layers", sensor_index, len(result.bindings))
        return result.bindings

    async def set_layer_cw_binding(
        self, sensor_index: int, layer: int, binding: Binding, skip_save: bool = False
    ) -> bool:
        self._require_revision(ProtocolRevision.PER_DIRECTION, "set_layer_cw_binding")
        data = await self._call(
            build_set_layer_cw_binding(sensor_index, layer, binding, skip_save)
        )
        return self._track(parse_write(self.revision, data, "set_layer_cw_binding"))

    async def set_layer_ccw_binding(
        self, sensor_index: int, layer: int, binding: Binding, skip_save: bool = False
    ) -> bool:
        self._require_revision(ProtocolRevision.PER_DIRECTION, "set_layer_ccw_binding")
        data = await self._call(
            build_set_layer_ccw_binding(sensor_index, layer, binding, skip_save)
        )
        return self._track(parse_write(self.revision, data, "set_layer_ccw_binding"))

    async def set_layer_bindings(
        self,
        sensor_index: int,
        layer: int,
        cw_binding: LegacyBinding,
        ccw_binding: LegacyBinding,
    ) -> bool:
        self._require_revision(ProtocolRevision.COMBINED, "set_layer_bindings")
        data = await self._call(
            build_set_layer_bindings(sensor_index, layer, cw_binding, ccw_binding)
        )
        return parse_write(self.revision, data, "set_layer_bindings").success

    async def save_pending_changes(self) -> bool:
        """Persist writes that were made with ``skip_save``."""
        self._require_revision(ProtocolRevision.PER_DIRECTION, "save_pending_changes")
        data = await self._call(build_save_pending_changes())
        result = parse_write(self.revision, data, "save_pending_changes")
        if result.success:
            self.has_pending_changes = False
        return result.success

    async def save_layer(
        self,
        sensor_index: int,
        layer: int,
        cw_binding: AnyBinding,
        ccw_binding: AnyBinding,
        directions: Iterable[Direction] = (Direction.CW, Direction.CCW),
    ) -> list[LayerBindings]:
        """Write a layer's bindings, then reload every layer from the device.

        Returns:
            The reloaded bindings of all layers.

        Raises:
            ValueError: If ``directions`` is empty.
            DeviceError: If a write is rejected; no reload is issued.
        """
        directions = set(directions)
        if not directions:
            raise ValueError("save_layer needs at least one direction to write")
        await self._strategy.write(
            self, sensor_index, layer, cw_binding, ccw_binding, directions
        )
        logger.info("Saved layer %d of sensor %d, reloading", layer, sensor_index)
        return await self.get_all_layer_bindings(sensor_index)
