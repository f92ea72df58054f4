"""MCP server entry point for runtime sensor-rotate binding configuration.

Exposes tools, resources, and prompts via the Model Context Protocol
using the official Python MCP SDK with stdio transport. The tools drive a
single :class:`BindingSession` over a serial studio connection.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from mcp.server.fastmcp import FastMCP

from .config import Settings
from .errors import RsrError
from .models.binding import DEFAULT_TAP_MS, Binding, Direction, LegacyBinding, behavior_label
from .session import MODULE_MISSING, BindingSession
from .transport.serial_connection import SerialConnection

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "zmk-rsr",
    instructions="MCP server for configuring ZMK runtime sensor-rotate encoder bindings",
)

# Global connection state
_settings = Settings.from_env()
_connection: SerialConnection | None = None
_session = BindingSession(identifier=_settings.subsystem)


def _get_session() -> BindingSession:
    """Get the session of the active connection, raising if not connected."""
    if _connection is None or not _connection.connected:
        raise RuntimeError(
            "Not connected to device. Use the 'connect' tool first."
        )
    return _session


def _busy(session: BindingSession) -> dict[str, Any] | None:
    if session.state.loading:
        return {"error": "Another device operation is in progress"}
    return None


def _failure(session: BindingSession) -> dict[str, Any]:
    return {"error": session.state.last_error or "Unknown error"}


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
async def connect(port: str | None = None) -> dict[str, Any]:
    """Open a serial studio connection to the keyboard.

    Locates the rotate subsystem and loads the behavior catalog.

    Args:
        port: Serial port (e.g. /dev/ttyACM0 or COM5). Defaults to
              the RSR_SERIAL_PORT environment variable.
    """
    global _connection
    if _connection is not None and _connection.connected:
        return {
            "connected": True,
            "message": "Already connected",
            "port": _connection.port_info.port,
        }

    port = port or _settings.serial_port
    if not port:
        return {"error": "No serial port given and RSR_SERIAL_PORT is not set"}

    connection = SerialConnection(port, _settings.baudrate, _settings.timeout)
    try:
        info = await connection.open()
    except RsrError as e:
        return {"error": str(e)}
    _connection = connection

    result: dict[str, Any] = {
        "connected": True,
        "port": info.port,
        "subsystems": [s.identifier for s in connection.subsystems],
    }

    if not _session.attach(connection):
        result["module_present"] = False
        result["warning"] = MODULE_MISSING
        return result

    result["module_present"] = True
    result["protocol"] = _session.client.revision.value
    if await _session.load_behaviors():
        result["behavior_count"] = len(_session.state.behaviors)
    else:
        result["warning"] = _session.state.last_error
    return result


@mcp.tool()
async def disconnect() -> dict[str, bool]:
    """Close the serial connection to the keyboard."""
    global _connection
    _session.detach()
    if _connection is None:
        return {"disconnected": True}
    await _connection.close()
    _connection = None
    return {"disconnected": True}


@mcp.tool()
def get_status() -> dict[str, Any]:
    """Report connection state, selection, and the last error."""
    connected = _connection is not None and _connection.connected
    result = _session.state.to_dict()
    result["connected"] = connected
    if _session.client is not None:
        result["subsystem"] = _session.client.handle.identifier
        result["protocol"] = _session.client.revision.value
    return result


# ─── SENSOR AND BINDING TOOLS ─────────────────────────────────────────

@mcp.tool()
async def list_sensors() -> dict[str, Any]:
    """List the rotary encoders defined in the keymap."""
    session = _get_session()
    busy = _busy(session)
    if busy:
        return busy
    if not await session.load_sensors():
        return _failure(session)
    return {"sensors": [s.to_dict() for s in session.state.sensors]}


@mcp.tool()
async def load_layer_bindings(sensor_index: int = 0) -> dict[str, Any]:
    """Read every layer's bindings for a sensor from the device.

    Args:
        sensor_index: Sensor index as reported by list_sensors.
    """
    session = _get_session()
    busy = _busy(session)
    if busy:
        return busy
    session.select_sensor(sensor_index)
    if not await session.load_all_layer_bindings():
        return _failure(session)
    return {
        "sensor_index": sensor_index,
        "layers": [_describe_layer(lb) for lb in session.state.all_layer_bindings],
        "has_pending_changes": session.state.has_pending_changes,
    }


@mcp.tool()
def get_layer_bindings(layer: int) -> dict[str, Any]:
    """Show the last loaded bindings of one layer.

    Args:
        layer: Layer number.
    """
    layers = _session.state.all_layer_bindings
    if not layers:
        return {"error": "No bindings loaded. Use load_layer_bindings first."}
    if not 0 <= layer < len(layers):
        return {"error": f"Layer must be 0-{len(layers) - 1}"}
    return _describe_layer(layers[layer])


@mcp.tool()
async def set_layer_binding(
    layer: int,
    direction: str,
    behavior_id: int = 0,
    param1: int = 0,
    param2: int = 0,
    tap_ms: int = DEFAULT_TAP_MS,
    behavior: str = "",
) -> dict[str, Any]:
    """Assign a behavior to one rotation direction of a layer, then reload.

    Args:
        layer: Layer number.
        direction: "cw" (clockwise) or "ccw" (counter-clockwise).
        behavior_id: Behavior id from list_behaviors.
        param1: First behavior parameter (e.g. a keycode).
        param2: Second behavior parameter.
        tap_ms: Delay between press and release in milliseconds.
        behavior: Behavior name, used instead of behavior_id on legacy firmware.
    """
    session = _get_session()
    busy = _busy(session)
    if busy:
        return busy
    try:
        rotation = Direction(direction.lower())
    except ValueError:
        return {"error": f"Direction must be 'cw' or 'ccw', got '{direction}'"}

    state = session.state
    if state.loaded_sensor_index != state.sensor_index:
        if not await session.load_all_layer_bindings():
            return _failure(session)

    layers = session.state.all_layer_bindings
    if not 0 <= layer < len(layers):
        return {"error": f"Layer must be 0-{len(layers) - 1}"}

    session.select_layer(layer)
    if session.client.binding_type is LegacyBinding:
        binding = LegacyBinding(behavior=behavior, param1=param1, param2=param2)
    else:
        binding = Binding(
            behavior_id=behavior_id, param1=param1, param2=param2, tap_ms=tap_ms
        )

    try:
        session.edit(rotation, binding)
    except (TypeError, ValueError) as e:
        return {"error": str(e)}

    if not await session.save():
        return _failure(session)

    return {
        "saved": True,
        "sensor_index": session.state.sensor_index,
        **_describe_layer(session.state.all_layer_bindings[layer]),
        "has_pending_changes": session.state.has_pending_changes,
    }


@mcp.tool()
async def save_pending_changes() -> dict[str, Any]:
    """Persist binding changes the device is holding in memory."""
    session = _get_session()
    busy = _busy(session)
    if busy:
        return busy
    if not await session.save_pending_changes():
        return _failure(session)
    return {"saved": True, "has_pending_changes": session.state.has_pending_changes}


@mcp.tool()
async def list_behaviors() -> dict[str, Any]:
    """List the behaviors the device can invoke from a binding."""
    session = _get_session()
    busy = _busy(session)
    if busy:
        return busy
    if not await session.load_behaviors():
        return _failure(session)
    behaviors = sorted(session.state.behaviors.values(), key=lambda b: b.id)
    return {"behaviors": [b.to_dict() for b in behaviors]}


def _describe_layer(layer_bindings) -> dict[str, Any]:
    result = layer_bindings.to_dict()
    for key in ("cw_binding", "ccw_binding"):
        binding = result[key]
        if "behavior_id" in binding:
            binding["behavior_name"] = behavior_label(
                _session.state.behaviors, binding["behavior_id"]
            )
    return result


# ─── MCP RESOURCES ───────────────────────────────────────────────────

@mcp.resource("rsr://session/state")
def resource_session_state() -> str:
    """Selection, loaded bindings, and operation status."""
    return json.dumps(get_status())


@mcp.resource("rsr://catalog/behaviors")
def resource_behavior_catalog() -> str:
    """Behaviors loaded for the current connection."""
    behaviors = sorted(_session.state.behaviors.values(), key=lambda b: b.id)
    return json.dumps({
        "behaviors": [b.to_dict() for b in behaviors],
        "count": len(behaviors),
    })


# ─── MCP PROMPTS ─────────────────────────────────────────────────────

@mcp.prompt()
def configure_encoder(goal: str) -> str:
    """Guide the AI through assigning encoder actions per layer.

    Args:
        goal: What the encoder should do, e.g. "volume on layer 0, scroll on layer 1".
    """
    return f"""Configure the rotary encoder bindings for: {goal}

Steps:
- Use list_sensors to find the encoder, then load_layer_bindings for it
- Use list_behaviors to find behavior ids (e.g. key press, mouse scroll)
- Use set_layer_binding once per layer and direction
- Check the returned bindings: they are re-read from the device after each save
- If has_pending_changes is true, call save_pending_changes"""


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(
        level=_settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
