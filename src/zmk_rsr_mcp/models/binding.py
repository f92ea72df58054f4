"""Binding data model: rotation-direction assignments per layer and sensor.

Two wire shapes exist. Firmware with per-direction writes uses
:class:`Binding` (behavior referenced by numeric id, with a tap duration);
the legacy combined-write firmware uses :class:`LegacyBinding` (behavior
referenced by name). A connection speaks exactly one of them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

# Default tap duration used by the firmware when none is configured
DEFAULT_TAP_MS = 5


class Direction(str, Enum):
    """Rotation direction of a sensor."""

    CW = "cw"
    CCW = "ccw"


@dataclass(frozen=True)
class Binding:
    """A behavior assignment for one rotation direction (current revision)."""

    behavior_id: int = 0
    param1: int = 0
    param2: int = 0
    tap_ms: int = DEFAULT_TAP_MS

    def to_dict(self) -> dict:
        return {
            "behavior_id": self.behavior_id,
            "param1": self.param1,
            "param2": self.param2,
            "tap_ms": self.tap_ms,
        }

    @classmethod
    def from_message(cls, msg) -> Binding:
        return cls(
            behavior_id=msg.behavior_id,
            param1=msg.param1,
            param2=msg.param2,
            tap_ms=msg.tap_ms,
        )


@dataclass(frozen=True)
class LegacyBinding:
    """A behavior assignment for one rotation direction (legacy revision)."""

    behavior: str = ""
    param1: int = 0
    param2: int = 0

    def to_dict(self) -> dict:
        return {
            "behavior": self.behavior,
            "param1": self.param1,
            "param2": self.param2,
        }

    @classmethod
    def from_message(cls, msg) -> LegacyBinding:
        return cls(behavior=msg.behavior, param1=msg.param1, param2=msg.param2)


AnyBinding = Union[Binding, LegacyBinding]


@dataclass(frozen=True)
class LayerBindings:
    """Both rotation-direction bindings of one layer for one sensor."""

    layer: int
    cw_binding: AnyBinding = field(default_factory=Binding)
    ccw_binding: AnyBinding = field(default_factory=Binding)

    def to_dict(self) -> dict:
        return {
            "layer": self.layer,
            "cw_binding": self.cw_binding.to_dict(),
            "ccw_binding": self.ccw_binding.to_dict(),
        }

    def __repr__(self) -> str:
        return (
            f"LayerBindings(layer={self.layer}, cw={self.cw_binding!r}, "
            f"ccw={self.ccw_binding!r})"
        )


@dataclass(frozen=True)
class SensorInfo:
    """A rotary input advertised by the device."""

    index: int
    name: str

    def to_dict(self) -> dict:
        return {"index": self.index, "name": self.name}


@dataclass(frozen=True)
class BehaviorDetail:
    """A device behavior and its human-readable name."""

    id: int
    display_name: str

    def to_dict(self) -> dict:
        return {"id": self.id, "display_name": self.display_name}


def behavior_label(behaviors: dict[int, BehaviorDetail], behavior_id: int) -> str:
    """Display name for a behavior id, falling back to ``Behavior {id}``."""
    detail = behaviors.get(behavior_id)
    if detail is None or not detail.display_name:
        return f"Behavior {behavior_id}"
    return detail.display_name
