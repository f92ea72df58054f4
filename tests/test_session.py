"""Tests for the binding session: selection, editing and device truth."""

import asyncio

import pytest

from conftest import FakeConnection, FakeKeyboard, open_connection

from zmk_rsr_mcp.errors import TransportError
from zmk_rsr_mcp.models.binding import Binding, Direction, LayerBindings, LegacyBinding
from zmk_rsr_mcp.session import MODULE_MISSING, BindingSession


def _attached(conn):
    session = BindingSession()
    assert session.attach(conn) is True
    return session


def _loaded(conn):
    session = _attached(conn)
    assert asyncio.run(session.load_all_layer_bindings()) is True
    return session


def test_attach_locates_subsystem(connection):
    session = _attached(connection)
    assert session.state.module_present is True
    assert session.client.handle.identifier == "cormoran_rsr"


def test_attach_without_module():
    conn = open_connection(FakeKeyboard(), identifier="")
    session = BindingSession()

    assert session.attach(conn) is False
    assert session.state.module_present is False
    assert asyncio.run(session.load_sensors()) is False
    assert session.state.last_error == MODULE_MISSING


def test_load_behaviors(connection):
    session = _attached(connection)
    assert asyncio.run(session.load_behaviors()) is True
    assert session.state.behaviors[5].display_name == "Mouse Scroll"
    assert session.behavior_label(99) == "Behavior 99"


def test_load_sensors(connection):
    session = _attached(connection)
    assert asyncio.run(session.load_sensors()) is True
    assert [s.name for s in session.state.sensors] == ["Left Encoder", "Right Encoder"]
    assert session.state.loading is False


def test_load_replaces_all_layers(connection, keyboard):
    """Every load replaces the whole list with what the device reports."""
    session = _loaded(connection)
    assert len(session.state.all_layer_bindings) == 4

    keyboard.bindings[0] = keyboard.bindings[0][:2]
    keyboard.bindings[0][1][0] = Binding(behavior_id=9)
    asyncio.run(session.load_all_layer_bindings())

    layers = session.state.all_layer_bindings
    assert [lb.layer for lb in layers] == [0, 1]
    assert layers[1].cw_binding == Binding(behavior_id=9)


def test_select_does_no_io(connection, keyboard):
    session = _loaded(connection)
    keyboard.requests.clear()
    connection.studio_requests.clear()

    session.select_sensor(1)
    session.select_layer(2)
    session.select_sensor(0)
    session.select_layer(3)

    assert keyboard.requests == []
    assert connection.studio_requests == []


def test_select_layer_seeds_draft(connection, keyboard):
    keyboard.bindings[0][2][1] = Binding(behavior_id=12, param1=1)
    session = _loaded(connection)

    session.select_layer(2)

    draft = session.state.draft
    assert draft.layer == 2
    assert draft.ccw == Binding(behavior_id=12, param1=1)
    assert not draft.is_dirty


def test_edit_then_save_survives_reload(connection, keyboard):
    """A saved ccw binding is what the reload reports, and only ccw is written."""
    session = _loaded(connection)
    session.select_layer(2)
    session.edit(Direction.CCW, Binding(behavior_id=7, param1=0, param2=0, tap_ms=150))
    keyboard.requests.clear()

    assert asyncio.run(session.save()) is True

    assert keyboard.requests == ["set_layer_ccw_binding", "get_all_layer_bindings"]
    layer = session.state.all_layer_bindings[2]
    assert layer.ccw_binding == Binding(behavior_id=7, param1=0, param2=0, tap_ms=150)
    assert layer.cw_binding == Binding()
    assert session.state.draft.ccw == layer.ccw_binding
    assert not session.state.draft.is_dirty
    assert session.state.last_error is None


def test_edit_is_local_until_save(connection, keyboard):
    session = _loaded(connection)
    session.select_layer(1)
    keyboard.requests.clear()

    session.edit(Direction.CW, Binding(behavior_id=1, param1=4))

    assert keyboard.requests == []
    assert session.state.all_layer_bindings[1].cw_binding == Binding()


def test_save_without_changes_does_nothing(connection, keyboard):
    session = _loaded(connection)
    session.select_layer(0)
    keyboard.requests.clear()

    assert asyncio.run(session.save()) is True
    assert keyboard.requests == []


def test_save_rejected_keeps_bindings(connection, keyboard):
    session = _loaded(connection)
    session.select_layer(0)
    session.edit(Direction.CW, Binding(behavior_id=1))
    keyboard.reject_writes.add("set_layer_cw_binding")
    keyboard.requests.clear()

    assert asyncio.run(session.save()) is False

    assert keyboard.requests == ["set_layer_cw_binding"]
    assert session.state.last_error.startswith("Error: ")
    assert session.state.all_layer_bindings[0].cw_binding == Binding()
    assert session.state.loading is False


def test_transport_failure_during_load(connection, keyboard):
    """A failed load leaves no bindings and reports the failure."""
    keyboard.raise_for["get_all_layer_bindings"] = TransportError("device unplugged")
    session = _attached(connection)

    assert asyncio.run(session.load_all_layer_bindings()) is False

    assert session.state.loading is False
    assert session.state.last_error == "Failed to load: device unplugged"
    assert session.state.all_layer_bindings == ()


def test_device_error_is_verbatim(connection, keyboard):
    keyboard.error_for["get_sensors"] = "Sensor table unavailable"
    session = _attached(connection)

    assert asyncio.run(session.load_sensors()) is False
    assert session.state.last_error == "Error: Sensor table unavailable"


def test_unexpected_exception_is_contained(connection, keyboard):
    keyboard.raise_for["get_sensors"] = KeyError("boom")
    session = _attached(connection)

    assert asyncio.run(session.load_sensors()) is False
    assert session.state.last_error.startswith("Failed to load sensors")
    assert session.state.loading is False


def test_stale_reload_is_discarded(connection, keyboard):
    """A reload superseded by a later one never lands in state."""
    session = _attached(connection)
    keyboard.bindings[1][0][0] = Binding(behavior_id=9)

    async def overlapping():
        first = asyncio.ensure_future(session.load_all_layer_bindings())
        await asyncio.sleep(0)
        session.select_sensor(1)
        second = await session.load_all_layer_bindings()
        return await first, second

    first, second = asyncio.run(overlapping())

    assert first is False
    assert second is True
    assert session.state.all_layer_bindings[0].cw_binding == Binding(behavior_id=9)


def test_detach_clears_device_state(connection):
    session = _loaded(connection)
    session.select_layer(1)

    session.detach()

    assert session.client is None
    assert session.state.all_layer_bindings == ()
    assert session.state.draft is None
    assert session.state.module_present is False


def test_reattach_after_reconnect(keyboard):
    conn = FakeConnection(keyboard)
    asyncio.run(conn.open())
    session = _loaded(conn)
    first_handle = session.client.handle

    asyncio.run(conn.close())
    asyncio.run(conn.open())
    session.attach(conn)

    assert session.client.handle != first_handle
    assert asyncio.run(session.load_all_layer_bindings()) is True


def test_pending_changes_saved(connection, keyboard):
    keyboard.pending = True
    session = _loaded(connection)
    assert session.state.has_pending_changes is True

    assert asyncio.run(session.save_pending_changes()) is True
    assert session.state.has_pending_changes is False


def test_legacy_session_edits_legacy_bindings(legacy_connection, legacy_keyboard):
    session = _loaded(legacy_connection)
    session.select_layer(0)
    session.edit(Direction.CW, LegacyBinding(behavior="&kp", param1=4))
    legacy_keyboard.requests.clear()

    assert asyncio.run(session.save()) is True

    assert legacy_keyboard.requests == ["set_layer_bindings", "get_all_layer_bindings"]
    assert session.state.all_layer_bindings[0] == LayerBindings(
        layer=0,
        cw_binding=LegacyBinding(behavior="&kp", param1=4),
        ccw_binding=LegacyBinding(),
    )


def test_edit_wrong_shape_rejected(legacy_connection):
    session = _loaded(legacy_connection)
    session.select_layer(0)
    with pytest.raises(TypeError):
        session.edit(Direction.CW, Binding(behavior_id=1))
    assert not session.state.draft.is_dirty


def test_switching_sensor_does_not_write_other_sensor_bindings(legacy_connection, legacy_keyboard):
    """Bindings loaded for one sensor are never saved onto another."""
    legacy_keyboard.bindings[0][2] = [LegacyBinding(behavior="&s0cw"), LegacyBinding(behavior="&s0ccw")]
    legacy_keyboard.bindings[1][2] = [LegacyBinding(behavior="&s1cw"), LegacyBinding(behavior="&s1ccw")]
    session = _loaded(legacy_connection)

    session.select_sensor(1)
    session.select_layer(2)
    assert session.state.draft is None
    with pytest.raises(ValueError):
        session.edit(Direction.CCW, LegacyBinding(behavior="&new"))
    legacy_keyboard.requests.clear()

    assert asyncio.run(session.save()) is False

    assert session.state.last_error == "Load bindings for sensor 1 first"
    assert legacy_keyboard.requests == []
    assert legacy_keyboard.bindings[1][2] == [
        LegacyBinding(behavior="&s1cw"),
        LegacyBinding(behavior="&s1ccw"),
    ]


def test_draft_follows_loaded_sensor(legacy_connection, legacy_keyboard):
    legacy_keyboard.bindings[1][2] = [LegacyBinding(behavior="&s1cw"), LegacyBinding(behavior="&s1ccw")]
    session = _loaded(legacy_connection)

    session.select_sensor(1)
    assert asyncio.run(session.load_all_layer_bindings()) is True
    session.select_layer(2)
    session.edit(Direction.CCW, LegacyBinding(behavior="&new"))

    assert asyncio.run(session.save()) is True
    assert session.state.loaded_sensor_index == 1
    assert legacy_keyboard.bindings[1][2] == [
        LegacyBinding(behavior="&s1cw"),
        LegacyBinding(behavior="&new"),
    ]


def test_loading_stays_set_while_another_load_runs(connection):
    """Finishing one operation does not clear loading while another is in flight."""
    session = _attached(connection)

    async def overlapping():
        first = asyncio.ensure_future(session.load_all_layer_bindings())
        await asyncio.sleep(0)
        session.select_sensor(1)
        second = asyncio.ensure_future(session.load_all_layer_bindings())
        await first
        still_loading = session.state.loading
        await second
        return still_loading

    assert asyncio.run(overlapping()) is True
    assert session.state.loading is False
    assert session.state.loaded_sensor_index == 1
