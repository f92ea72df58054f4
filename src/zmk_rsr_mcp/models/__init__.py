"""Data models for bindings, sensors, behaviors and session state."""

from .binding import (
    Binding,
    LegacyBinding,
    LayerBindings,
    SensorInfo,
    BehaviorDetail,
    Direction,
)
from .session import BindingDraft, SessionState
