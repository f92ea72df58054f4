"""Response parsing for studio envelopes and rotate subsystem replies.

Every parser checks which member of the response oneof is populated.
The expected variant is converted to model dataclasses, the error
variant raises :class:`DeviceError`, and anything else raises
:class:`ProtocolError`.
"""

from __future__ import annotations

from dataclasses import dataclass

from google.protobuf.message import DecodeError

from ..errors import DeviceError, ProtocolError
from ..models.binding import (
    BehaviorDetail,
    Binding,
    LayerBindings,
    LegacyBinding,
    SensorInfo,
)
from .commands import ProtocolRevision
from .schema import RsrMessages, StudioResponse, TemplateMessages

# zmk.meta simple_error condition codes
META_ERRORS = {
    0: "generic error",
    1: "unlock required",
    2: "RPC not found",
    3: "message decode failed",
    4: "message encode failed",
}


@dataclass
class SubsystemInfo:
    """A custom subsystem advertised by the firmware."""

    index: int
    identifier: str
    ui_urls: tuple[str, ...] = ()


@dataclass
class LayerBindingsResult:
    """Parsed get-all-layer-bindings response."""

    bindings: list[LayerBindings]
    has_pending_changes: bool = False


@dataclass
class WriteResult:
    """Parsed response to a binding write or a save."""

    success: bool
    has_pending_changes: bool = False


# ─── STUDIO ENVELOPE ─────────────────────────────────────────────────

def decode_studio_response(data: bytes):
    """Decode a framed payload into a ``zmk.studio.Response``."""
    response = StudioResponse()
    try:
        response.ParseFromString(data)
    except DecodeError as e:
        raise ProtocolError(f"Malformed studio response: {e}") from e
    return response


def _subsystem_body(request_response, expected: str):
    which = request_response.WhichOneof("subsystem")
    if which == expected:
        return getattr(request_response, expected)
    if which == "meta":
        meta = request_response.meta
        if meta.WhichOneof("response_type") == "simple_error":
            code = meta.simple_error
            raise DeviceError(META_ERRORS.get(code, f"error condition {code}"))
        raise ProtocolError(f"Device sent no response for {expected} request")
    raise ProtocolError(f"Expected {expected} response, got {which or 'nothing'}")


def _behaviors_body(request_response, expected: str):
    body = _subsystem_body(request_response, "behaviors")
    which = body.WhichOneof("response_type")
    if which != expected:
        raise ProtocolError(f"Expected behaviors.{expected}, got {which or 'nothing'}")
    return getattr(body, expected)


def _custom_body(request_response, expected: str):
    body = _subsystem_body(request_response, "custom")
    which = body.WhichOneof("response_type")
    if which != expected:
        raise ProtocolError(f"Expected custom.{expected}, got {which or 'nothing'}")
    return getattr(body, expected)


def parse_behavior_list(request_response) -> list[int]:
    """Parse a list-all-behaviors reply into behavior ids."""
    return list(_behaviors_body(request_response, "list_all_behaviors").behaviors)


def parse_behavior_details(request_response) -> BehaviorDetail:
    """Parse a get-behavior-details reply."""
    details = _behaviors_body(request_response, "get_behavior_details")
    return BehaviorDetail(id=details.id, display_name=details.display_name)


def parse_custom_subsystems(request_response) -> list[SubsystemInfo]:
    """Parse a list-custom-subsystems reply."""
    body = _custom_body(request_response, "list_custom_subsystems")
    return [
        SubsystemInfo(index=s.index, identifier=s.identifier, ui_urls=tuple(s.ui_urls))
        for s in body.subsystems
    ]


def parse_custom_call(request_response, subsystem_index: int) -> bytes:
    """Extract the opaque payload of a custom-subsystem call reply."""
    body = _custom_body(request_response, "call")
    if body.subsystem_index != subsystem_index:
        raise ProtocolError(
            f"Reply for subsystem {body.subsystem_index}, expected {subsystem_index}"
        )
    return body.payload


# ─── ROTATE SUBSYSTEM ────────────────────────────────────────────────

def decode_response(revision: ProtocolRevision, data: bytes):
    """Decode a subsystem payload into the revision's ``Response`` message."""
    if not data:
        raise ProtocolError("Empty response from rotate subsystem")
    if revision is ProtocolRevision.PER_DIRECTION:
        response = RsrMessages.Response()
    else:
        response = TemplateMessages.Response()
    try:
        response.ParseFromString(data)
    except DecodeError as e:
        raise ProtocolError(f"Malformed rotate subsystem response: {e}") from e
    return response


def expect_variant(response, expected: str):
    """Return the populated ``expected`` variant or raise.

    Raises:
        DeviceError: If the error variant is populated.
        ProtocolError: If any other variant, or none, is populated.
    """
    which = response.WhichOneof("response_type")
    if which == expected:
        return getattr(response, expected)
    if which == "error":
        raise DeviceError(response.error.message)
    raise ProtocolError(f"Expected {expected} response, got {which or 'nothing'}")


def parse_sensors(revision: ProtocolRevision, data: bytes) -> list[SensorInfo]:
    body = expect_variant(decode_response(revision, data), "get_sensors")
    return [SensorInfo(index=s.index, name=s.name) for s in body.sensors]


def parse_all_layer_bindings(revision: ProtocolRevision, data: bytes) -> LayerBindingsResult:
    """Parse every layer's bindings.

    The result is ordered by layer number so that ``bindings[i]`` is layer
    ``i``; a reply whose layer numbers are not exactly ``0..n-1`` is
    rejected.
    """
    body = expect_variant(decode_response(revision, data), "get_all_layer_bindings")
    binding_cls = Binding if revision is ProtocolRevision.PER_DIRECTION else LegacyBinding

    layers = sorted(body.bindings, key=lambda lb: lb.layer)
    if [lb.layer for lb in layers] != list(range(len(layers))):
        raise ProtocolError(
            f"Layer numbers are not contiguous: {[lb.layer for lb in body.bindings]}"
        )

    bindings = [
        LayerBindings(
            layer=lb.layer,
            cw_binding=binding_cls.from_message(lb.cw_binding),
            ccw_binding=binding_cls.from_message(lb.ccw_binding),
        )
        for lb in layers
    ]
    pending = getattr(body, "has_pending_changes", False)
    return LayerBindingsResult(bindings=bindings, has_pending_changes=pending)


def parse_write(revision: ProtocolRevision, data: bytes, variant: str) -> WriteResult:
    """Parse the reply to a write request whose response variant is ``variant``."""
    body = expect_variant(decode_response(revision, data), variant)
    return WriteResult(
        success=body.success,
        has_pending_changes=getattr(body, "has_pending_changes", False),
    )
