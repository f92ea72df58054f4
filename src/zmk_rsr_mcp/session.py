"""Binding session: the operation boundary between callers and the device.

A :class:`BindingSession` owns the :class:`SessionState` an operator sees
and runs every device operation so that it never raises. Failures land in
``state.last_error``; device state is only replaced by what the device
reports.

Callers keep to one operation at a time (``state.loading`` is true while
any runs); overlapping calls are not queued.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from .catalog import BehaviorCatalog
from .client import BindingConfigClient
from .errors import DeviceError, RsrError
from .locator import locate
from .models.binding import AnyBinding, Direction
from .models.session import BindingDraft, SessionState
from .transport.connection import StudioConnection

logger = logging.getLogger(__name__)

MODULE_MISSING = (
    "Rotate subsystem not found. Make sure your firmware includes the "
    "runtime-sensor-rotate module."
)


class BindingSession:
    """Session context threaded through locator, catalog and client.

    Usage::

        session = BindingSession()
        session.attach(connection)
        await session.load_behaviors()
        await session.load_sensors()
        await session.load_all_layer_bindings()
        session.select_layer(2)
        session.edit(Direction.CCW, Binding(behavior_id=7, tap_ms=150))
        await session.save()
    """

    def __init__(self, identifier: str | None = None) -> None:
        self._identifier = identifier
        self._connection: StudioConnection | None = None
        self._client: BindingConfigClient | None = None
        self._catalog = BehaviorCatalog()
        self._reload_seq = 0
        self._in_flight = 0
        self.state = SessionState()

    @property
    def client(self) -> BindingConfigClient | None:
        return self._client

    @property
    def catalog(self) -> BehaviorCatalog:
        return self._catalog

    # ─── CONNECTION LIFECYCLE ────────────────────────────────────────

    def attach(self, connection: StudioConnection) -> bool:
        """Bind the session to a freshly opened connection.

        Returns:
            ``True`` if the rotate subsystem was located.
        """
        self.detach()
        self._connection = connection
        handle = locate(connection, self._identifier)
        self.state.module_present = handle is not None
        if handle is None:
            return False
        self._client = BindingConfigClient(connection, handle)
        return True

    def detach(self) -> None:
        """Drop the connection and everything learned from it."""
        self._connection = None
        self._client = None
        self._catalog.invalidate()
        self._reload_seq += 1
        self.state.clear_device_state()
        self.state.module_present = False
        self.state.loading = self._in_flight > 0
        self.state.last_error = None

    # ─── OPERATION BOUNDARY ──────────────────────────────────────────

    @asynccontextmanager
    async def _operation(self, action: str):
        self._in_flight += 1
        self.state.loading = True
        self.state.last_error = None
        try:
            yield
        except DeviceError as e:
            logger.error("Device error while trying to %s: %s", action, e.message)
            self.state.last_error = f"Error: {e.message}"
        except RsrError as e:
            logger.error("Failed to %s: %s", action, e)
            self.state.last_error = f"Failed to {action}: {e}"
        except Exception as e:
            logger.exception("Failed to %s", action)
            self.state.last_error = f"Failed to {action}: {e or type(e).__name__}"
        finally:
            self._in_flight -= 1
            self.state.loading = self._in_flight > 0

    def _require_client(self) -> BindingConfigClient | None:
        if self._client is None:
            self.state.last_error = MODULE_MISSING
        return self._client

    async def load_behaviors(self) -> bool:
        """Load the behavior catalog once for the current connection."""
        if self._connection is None:
            self.state.last_error = "Not connected to device"
            return False
        ok = False
        async with self._operation("load behaviors"):
            self.state.behaviors = await self._catalog.get(self._connection)
            ok = True
        return ok

    async def load_sensors(self) -> bool:
        client = self._require_client()
        if client is None:
            return False
        ok = False
        async with self._operation("load sensors"):
            self.state.sensors = tuple(await client.get_sensors())
            ok = True
        return ok

    async def load_all_layer_bindings(self) -> bool:
        """Replace every layer's bindings for the selected sensor with device truth.

        Returns ``False`` on failure, and also when a newer load started
        while this one was in flight; that result is discarded.
        """
        client = self._require_client()
        if client is None:
            return False
        ok = False
        async with self._operation("load"):
            self._reload_seq += 1
            seq = self._reload_seq
            sensor_index = self.state.sensor_index
            bindings = await client.get_all_layer_bindings(sensor_index)
            ok = self._apply_reload(seq, sensor_index, bindings)
        return ok

    async def save(self) -> bool:
        """Write the draft of the selected layer, then reload from the device.

        Only dirty directions are written on per-direction firmware; legacy
        firmware always writes both. ``all_layer_bindings`` changes only
        through the reload.
        """
        client = self._require_client()
        if client is None:
            return False
        if self.state.loaded_sensor_index != self.state.sensor_index:
            self.state.last_error = (
                f"Load bindings for sensor {self.state.sensor_index} first"
            )
            return False
        draft = self.state.draft
        if draft is None:
            self.state.last_error = "No layer selected"
            return False
        if not draft.is_dirty:
            return True

        ok = False
        async with self._operation("save"):
            self._reload_seq += 1
            seq = self._reload_seq
            sensor_index = self.state.sensor_index
            bindings = await client.save_layer(
                sensor_index,
                draft.layer,
                draft.cw,
                draft.ccw,
                directions=set(draft.dirty),
            )
            ok = self._apply_reload(seq, sensor_index, bindings)
        return ok

    async def save_pending_changes(self) -> bool:
        client = self._require_client()
        if client is None:
            return False
        ok = False
        async with self._operation("save pending changes"):
            ok = await client.save_pending_changes()
            self.state.has_pending_changes = client.has_pending_changes
            if not ok:
                self.state.last_error = "Error: device could not save pending changes"
        return ok

    def _apply_reload(self, seq: int, sensor_index: int, bindings) -> bool:
        if seq != self._reload_seq:
            logger.debug("Discarding reload %d, superseded by %d", seq, self._reload_seq)
            return False
        self.state.all_layer_bindings = tuple(bindings)
        self.state.loaded_sensor_index = sensor_index
        self.state.has_pending_changes = self._client.has_pending_changes
        self._seed_draft()
        return True

    # ─── SELECTION AND EDITING ───────────────────────────────────────

    def select_sensor(self, sensor_index: int) -> None:
        """Change the selected sensor; its bindings are loaded on request.

        Until they are, no draft is seeded and :meth:`save` refuses to write.
        """
        if sensor_index != self.state.sensor_index:
            self.state.sensor_index = sensor_index
            self.state.draft = None

    def select_layer(self, layer: int) -> None:
        """Change the selected layer and reseed the draft from loaded bindings."""
        self.state.selected_layer = layer
        self.state.draft = None
        self._seed_draft()

    def _seed_draft(self) -> None:
        layers = self.state.all_layer_bindings
        layer = self.state.selected_layer
        if self.state.loaded_sensor_index != self.state.sensor_index:
            self.state.draft = None
        elif 0 <= layer < len(layers):
            self.state.draft = BindingDraft.from_layer(layers[layer])
        else:
            self.state.draft = None

    def edit(self, direction: Direction, binding: AnyBinding) -> None:
        """Replace one direction's drafted binding.

        Raises:
            ValueError: If no layer with loaded bindings is selected.
            TypeError: If the binding shape does not match the firmware.
        """
        if self.state.draft is None:
            raise ValueError("Load bindings and select a layer before editing")
        if self._client is not None and not isinstance(binding, self._client.binding_type):
            raise TypeError(
                f"Connected firmware expects {self._client.binding_type.__name__}, "
                f"got {type(binding).__name__}"
            )
        self.state.draft.edit(direction, binding)

    def behavior_label(self, behavior_id: int) -> str:
        return self._catalog.label(behavior_id)
