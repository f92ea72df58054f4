"""Session state and the editable draft of one layer's bindings."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Optional

from .binding import AnyBinding, BehaviorDetail, Direction, LayerBindings, SensorInfo


@dataclass
class BindingDraft:
    """Drafted values for the two directions of the selected layer.

    Seeded from the last loaded :class:`LayerBindings`; edits only touch
    the draft. ``dirty`` holds the directions changed since seeding.
    """

    layer: int
    cw: AnyBinding
    ccw: AnyBinding
    dirty: set[Direction] = field(default_factory=set)

    @classmethod
    def from_layer(cls, bindings: LayerBindings) -> BindingDraft:
        return cls(layer=bindings.layer, cw=bindings.cw_binding, ccw=bindings.ccw_binding)

    def get(self, direction: Direction) -> AnyBinding:
        return self.cw if direction is Direction.CW else self.ccw

    def edit(self, direction: Direction, binding: AnyBinding) -> None:
        if type(binding) is not type(self.get(direction)):
            raise TypeError(
                f"Draft holds {type(self.get(direction)).__name__} bindings, "
                f"got {type(binding).__name__}"
            )
        if direction is Direction.CW:
            self.cw = binding
        else:
            self.ccw = binding
        self.dirty.add(direction)

    def update(self, direction: Direction, **changes) -> AnyBinding:
        """Edit individual fields of one direction, e.g. ``tap_ms=150``."""
        binding = replace(self.get(direction), **changes)
        self.edit(direction, binding)
        return binding

    @property
    def is_dirty(self) -> bool:
        return bool(self.dirty)

    def to_dict(self) -> dict:
        return {
            "layer": self.layer,
            "cw_binding": self.cw.to_dict(),
            "ccw_binding": self.ccw.to_dict(),
            "dirty": sorted(d.value for d in self.dirty),
        }


@dataclass
class SessionState:
    """What the operator sees: selection, device truth and operation status.

    ``all_layer_bindings[i]`` is layer ``i`` of sensor ``loaded_sensor_index``.
    It is only ever replaced wholesale by a load from the device.
    """

    sensor_index: int = 0
    selected_layer: int = 0
    sensors: tuple[SensorInfo, ...] = ()
    all_layer_bindings: tuple[LayerBindings, ...] = ()
    loaded_sensor_index: Optional[int] = None
    behaviors: dict[int, BehaviorDetail] = field(default_factory=dict)
    loading: bool = False
    last_error: Optional[str] = None
    module_present: bool = False
    has_pending_changes: bool = False
    draft: Optional[BindingDraft] = None

    def clear_device_state(self) -> None:
        """Forget everything learned from the current connection."""
        self.sensors = ()
        self.all_layer_bindings = ()
        self.loaded_sensor_index = None
        self.behaviors = {}
        self.has_pending_changes = False
        self.draft = None

    def to_dict(self) -> dict:
        return {
            "sensor_index": self.sensor_index,
            "selected_layer": self.selected_layer,
            "sensors": [s.to_dict() for s in self.sensors],
            "loaded_sensor_index": self.loaded_sensor_index,
            "layer_count": len(self.all_layer_bindings),
            "all_layer_bindings": [lb.to_dict() for lb in self.all_layer_bindings],
            "behavior_count": len(self.behaviors),
            "loading": self.loading,
            "last_error": self.last_error,
            "module_present": self.module_present,
            "has_pending_changes": self.has_pending_changes,
            "draft": self.draft.to_dict() if self.draft else None,
        }
