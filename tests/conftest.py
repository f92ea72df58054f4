"""Shared fixtures: an in-memory keyboard speaking the real studio schema."""

from __future__ import annotations

import asyncio

import pytest

from zmk_rsr_mcp.models.binding import Binding, LegacyBinding
from zmk_rsr_mcp.protocol.commands import ProtocolRevision
from zmk_rsr_mcp.protocol.schema import (
    RequestResponse,
    RsrMessages,
    StudioRequest,
    TemplateMessages,
)
from zmk_rsr_mcp.transport.connection import StudioConnection

SENSORS = ["Left Encoder", "Right Encoder"]
BEHAVIORS = {1: "Key Press", 5: "Mouse Scroll", 7: "Key Toggle", 9: "Bluetooth", 12: "Layer Tap"}


class FakeKeyboard:
    """Rotate subsystem and behavior catalog of a keyboard, held in memory.

    Failure knobs:
        error_for: rotate request name -> error message answered by the device
        raise_for: rotate request name -> exception raised by the transport
        reject_writes: write request names answered with ``success=False``
        failing_details: behavior ids whose detail request fails
        misreported_details: behavior ids answered with another id's details
        fail_behavior_list: make the behavior enumeration fail
    """

    def __init__(self, revision=ProtocolRevision.PER_DIRECTION, layers=4):
        self.revision = revision
        self.sensors = list(SENSORS)
        empty = Binding() if revision is ProtocolRevision.PER_DIRECTION else LegacyBinding()
        self.bindings = {
            s: [[empty, empty] for _ in range(layers)] for s in range(len(self.sensors))
        }
        self.behaviors = dict(BEHAVIORS)
        self.pending = False
        self.requests: list[str] = []
        self.error_for: dict[str, str] = {}
        self.raise_for: dict[str, Exception] = {}
        self.reject_writes: set[str] = set()
        self.failing_details: set[int] = set()
        self.misreported_details: set[int] = set()
        self.fail_behavior_list = False

    @property
    def _messages(self):
        if self.revision is ProtocolRevision.PER_DIRECTION:
            return RsrMessages
        return TemplateMessages

    def _binding_message(self, binding):
        if isinstance(binding, Binding):
            return RsrMessages.Binding(
                behavior_id=binding.behavior_id,
                param1=binding.param1,
                param2=binding.param2,
                tap_ms=binding.tap_ms,
            )
        return TemplateMessages.Binding(
            behavior=binding.behavior, param1=binding.param1, param2=binding.param2
        )

    def _from_message(self, msg):
        if self.revision is ProtocolRevision.PER_DIRECTION:
            return Binding.from_message(msg)
        return LegacyBinding.from_message(msg)

    def handle(self, payload: bytes) -> bytes:
        msgs = self._messages
        request = msgs.Request.FromString(payload)
        which = request.WhichOneof("request_type")
        self.requests.append(which)

        if which in self.raise_for:
            raise self.raise_for[which]

        response = msgs.Response()
        if which in self.error_for:
            response.error.message = self.error_for[which]
            return response.SerializeToString()

        if which == "get_sensors":
            body = response.get_sensors
            body.SetInParent()
            for index, name in enumerate(self.sensors):
                body.sensors.add(index=index, name=name)

        elif which == "get_all_layer_bindings":
            sensor = request.get_all_layer_bindings.sensor_index
            if sensor not in self.bindings:
                response.error.message = "Failed to process request"
                return response.SerializeToString()
            body = response.get_all_layer_bindings
            body.SetInParent()
            for layer, (cw, ccw) in enumerate(self.bindings[sensor]):
                lb = body.bindings.add(layer=layer)
                lb.cw_binding.CopyFrom(self._binding_message(cw))
                lb.ccw_binding.CopyFrom(self._binding_message(ccw))
            if self.revision is ProtocolRevision.PER_DIRECTION:
                body.has_pending_changes = self.pending

        elif which in ("set_layer_cw_binding", "set_layer_ccw_binding"):
            req = getattr(request, which)
            accepted = which not in self.reject_writes
            if accepted:
                slot = 0 if which == "set_layer_cw_binding" else 1
                self.bindings[req.sensor_index][req.layer][slot] = self._from_message(req.binding)
                if req.skip_save:
                    self.pending = True
            result = getattr(response, which)
            result.SetInParent()
            result.success = accepted
            result.has_pending_changes = self.pending

        elif which == "set_layer_bindings":
            req = request.set_layer_bindings
            accepted = which not in self.reject_writes
            if accepted:
                self.bindings[req.sensor_index][req.layer] = [
                    self._from_message(req.cw_binding),
                    self._from_message(req.ccw_binding),
                ]
            response.set_layer_bindings.SetInParent()
            response.set_layer_bindings.success = accepted

        elif which == "save_pending_changes":
            self.pending = False
            response.save_pending_changes.SetInParent()
            response.save_pending_changes.success = True

        return response.SerializeToString()


class FakeConnection(StudioConnection):
    """Studio connection routed to a :class:`FakeKeyboard`.

    Every envelope goes through serialization in both directions.
    """

    def __init__(self, keyboard: FakeKeyboard, identifier: str | None = None, index: int = 3):
        super().__init__()
        self.keyboard = keyboard
        if identifier is None:
            identifier = (
                "cormoran_rsr"
                if keyboard.revision is ProtocolRevision.PER_DIRECTION
                else "zmk__template"
            )
        self.advertised = [("other__feature", 0)]
        if identifier:
            self.advertised.append((identifier, index))
        self.studio_requests: list[str] = []

    async def open(self) -> None:
        self._mark_connected()
        await self.refresh_subsystems()

    async def _exchange(self, request):
        request = StudioRequest.FromString(request.SerializeToString())
        response = RequestResponse(request_id=request.request_id)
        await asyncio.sleep(0)

        if request.WhichOneof("subsystem") == "custom":
            kind = request.custom.WhichOneof("request_type")
            self.studio_requests.append(f"custom.{kind}")
            if kind == "list_custom_subsystems":
                listing = response.custom.list_custom_subsystems
                listing.SetInParent()
                for identifier, index in self.advertised:
                    listing.subsystems.add(index=index, identifier=identifier)
            else:
                call = response.custom.call
                call.SetInParent()
                call.subsystem_index = request.custom.call.subsystem_index
                call.payload = self.keyboard.handle(request.custom.call.payload)
        else:
            kind = request.behaviors.WhichOneof("request_type")
            self.studio_requests.append(f"behaviors.{kind}")
            if kind == "list_all_behaviors":
                if self.keyboard.fail_behavior_list:
                    response.meta.simple_error = 0
                else:
                    listing = response.behaviors.list_all_behaviors
                    listing.SetInParent()
                    listing.behaviors.extend(sorted(self.keyboard.behaviors))
            else:
                behavior_id = request.behaviors.get_behavior_details.behavior_id
                if behavior_id in self.keyboard.failing_details:
                    response.meta.simple_error = 2
                else:
                    details = response.behaviors.get_behavior_details
                    details.SetInParent()
                    details.id = behavior_id
                    if behavior_id in self.keyboard.misreported_details:
                        details.id = behavior_id + 1000
                    details.display_name = self.keyboard.behaviors[behavior_id]

        return RequestResponse.FromString(response.SerializeToString())


def open_connection(keyboard: FakeKeyboard, **kwargs) -> FakeConnection:
    conn = FakeConnection(keyboard, **kwargs)
    asyncio.run(conn.open())
    return conn


@pytest.fixture
def keyboard():
    return FakeKeyboard()


@pytest.fixture
def legacy_keyboard():
    return FakeKeyboard(revision=ProtocolRevision.COMBINED)


@pytest.fixture
def connection(keyboard):
    return open_connection(keyboard)


@pytest.fixture
def legacy_connection(legacy_keyboard):
    return open_connection(legacy_keyboard)
