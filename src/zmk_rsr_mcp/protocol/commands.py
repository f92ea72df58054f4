"""Request builders for the rotate subsystem and the studio envelope.

Subsystem requests are returned as serialized bytes, ready to be carried
as the payload of a custom-subsystem call. Studio requests are returned
as typed envelopes; the connection assigns the request id.
"""

from __future__ import annotations

from enum import Enum

from ..models.binding import Binding, LegacyBinding
from .schema import (
    BehaviorsRequest,
    CustomRequest,
    RsrMessages,
    StudioRequest,
    TemplateMessages,
)

U32_MAX = 0xFFFFFFFF
I32_MIN = -(2**31)
I32_MAX = 2**31 - 1


class ProtocolRevision(str, Enum):
    """Write shape spoken by the firmware's rotate subsystem."""

    PER_DIRECTION = "per_direction"
    COMBINED = "combined"


def _messages(revision: ProtocolRevision):
    if revision is ProtocolRevision.PER_DIRECTION:
        return RsrMessages
    return TemplateMessages


def _check_u32(name: str, value: int) -> int:
    if not 0 <= value <= U32_MAX:
        raise ValueError(f"{name} must be 0-{U32_MAX}, got {value}")
    return value


def _check_i32(name: str, value: int) -> int:
    if not I32_MIN <= value <= I32_MAX:
        raise ValueError(f"{name} must be {I32_MIN}-{I32_MAX}, got {value}")
    return value


def _binding_message(binding: Binding):
    if not isinstance(binding, Binding):
        raise TypeError(
            f"Per-direction firmware expects Binding, got {type(binding).__name__}"
        )
    return RsrMessages.Binding(
        behavior_id=_check_u32("behavior_id", binding.behavior_id),
        param1=_check_u32("param1", binding.param1),
        param2=_check_u32("param2", binding.param2),
        tap_ms=_check_u32("tap_ms", binding.tap_ms),
    )


def _legacy_binding_message(binding: LegacyBinding):
    if not isinstance(binding, LegacyBinding):
        raise TypeError(
            f"Combined-write firmware expects LegacyBinding, got {type(binding).__name__}"
        )
    return TemplateMessages.Binding(
        behavior=binding.behavior,
        param1=_check_i32("param1", binding.param1),
        param2=_check_i32("param2", binding.param2),
    )


# ─── ROTATE SUBSYSTEM REQUESTS ───────────────────────────────────────

def build_get_sensors(revision: ProtocolRevision) -> bytes:
    """Build a request listing the rotary sensors of the keymap."""
    request = _messages(revision).Request()
    request.get_sensors.SetInParent()
    return request.SerializeToString()


def build_get_all_layer_bindings(revision: ProtocolRevision, sensor_index: int) -> bytes:
    """Build a request for every layer's bindings of one sensor.

    Args:
        revision: Protocol revision of the connected firmware.
        sensor_index: Index reported by a previous get-sensors call.
    """
    request = _messages(revision).Request()
    request.get_all_layer_bindings.sensor_index = _check_u32("sensor_index", sensor_index)
    return request.SerializeToString()


def _build_set_direction(
    field_name: str,
    sensor_index: int,
    layer: int,
    binding: Binding,
    skip_save: bool,
) -> bytes:
    request = RsrMessages.Request()
    body = getattr(request, field_name)
    body.sensor_index = _check_u32("sensor_index", sensor_index)
    body.layer = _check_u32("layer", layer)
    body.binding.CopyFrom(_binding_message(binding))
    body.skip_save = skip_save
    return request.SerializeToString()


def build_set_layer_cw_binding(
    sensor_index: int, layer: int, binding: Binding, skip_save: bool = False
) -> bytes:
    """Build a clockwise-binding write for one layer.

    Args:
        sensor_index: Target sensor.
        layer: Target layer.
        binding: New clockwise binding.
        skip_save: Keep the change pending instead of persisting it.
    """
    return _build_set_direction("set_layer_cw_binding", sensor_index, layer, binding, skip_save)


def build_set_layer_ccw_binding(
    sensor_index: int, layer: int, binding: Binding, skip_save: bool = False
) -> bytes:
    """Build a counter-clockwise-binding write for one layer."""
    return _build_set_direction("set_layer_ccw_binding", sensor_index, layer, binding, skip_save)


def build_set_layer_bindings(
    sensor_index: int, layer: int, cw_binding: LegacyBinding, ccw_binding: LegacyBinding
) -> bytes:
    """Build the legacy combined write of both directions of a layer."""
    request = TemplateMessages.Request()
    body = request.set_layer_bindings
    body.sensor_index = _check_u32("sensor_index", sensor_index)
    body.layer = _check_u32("layer", layer)
    body.cw_binding.CopyFrom(_legacy_binding_message(cw_binding))
    body.ccw_binding.CopyFrom(_legacy_binding_message(ccw_binding))
    return request.SerializeToString()


def build_save_pending_changes() -> bytes:
    """Build a request persisting writes made with ``skip_save``."""
    request = RsrMessages.Request()
    request.save_pending_changes.SetInParent()
    return request.SerializeToString()


# ─── STUDIO ENVELOPE REQUESTS ────────────────────────────────────────

def build_list_all_behaviors():
    """Build a studio request enumerating every behavior id."""
    return StudioRequest(behaviors=BehaviorsRequest(list_all_behaviors=True))


def build_get_behavior_details(behavior_id: int):
    """Build a studio request for one behavior's display metadata."""
    request = StudioRequest()
    request.behaviors.get_behavior_details.behavior_id = _check_u32(
        "behavior_id", behavior_id
    )
    return request


def build_list_custom_subsystems():
    """Build a studio request listing the custom subsystems of the firmware."""
    return StudioRequest(custom=CustomRequest(list_custom_subsystems=True))


def build_custom_call(subsystem_index: int, payload: bytes):
    """Build a studio request carrying an opaque payload to a custom subsystem."""
    request = StudioRequest()
    request.custom.call.subsystem_index = _check_u32("subsystem_index", subsystem_index)
    request.custom.call.payload = payload
    return request
