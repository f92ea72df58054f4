"""Protobuf message classes for the studio envelope and the rotate subsystem.

The descriptors are declared in Python and registered in a private
:class:`~google.protobuf.descriptor_pool.DescriptorPool`, so no ``protoc``
step is needed. Field numbers must stay in sync with the firmware's
``.proto`` files.

Files registered (in dependency order)::

    zmk/meta.proto        zmk.meta       error conditions for studio requests
    zmk/behaviors.proto   zmk.behaviors  behavior enumeration and details
    zmk/custom.proto      zmk.custom     custom subsystem listing and calls
    zmk/studio.proto      zmk.studio     request/response envelope
    cormoran/rsr.proto    cormoran.rsr   rotate subsystem, per-direction writes
    zmk/template.proto    zmk.template   rotate subsystem, legacy combined write
"""

from __future__ import annotations

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

_FDP = descriptor_pb2.FieldDescriptorProto

_SCALARS = {
    "uint32": _FDP.TYPE_UINT32,
    "int32": _FDP.TYPE_INT32,
    "bool": _FDP.TYPE_BOOL,
    "string": _FDP.TYPE_STRING,
    "bytes": _FDP.TYPE_BYTES,
}

# (field name, number, type, options); message types are fully qualified
_FILES: list[tuple[str, str, list[str], dict[str, list[tuple]]]] = [
    (
        "zmk/meta.proto",
        "zmk.meta",
        [],
        {
            "Response": [
                ("no_response", 1, "bool", {"oneof": "response_type"}),
                ("simple_error", 2, "uint32", {"oneof": "response_type"}),
            ],
        },
    ),
    (
        "zmk/behaviors.proto",
        "zmk.behaviors",
        [],
        {
            "Request": [
                ("list_all_behaviors", 1, "bool", {"oneof": "request_type"}),
                ("get_behavior_details", 2, ".zmk.behaviors.GetBehaviorDetailsRequest",
                 {"oneof": "request_type"}),
            ],
            "GetBehaviorDetailsRequest": [
                ("behavior_id", 1, "uint32", {}),
            ],
            "Response": [
                ("list_all_behaviors", 1, ".zmk.behaviors.ListAllBehaviorsResponse",
                 {"oneof": "response_type"}),
                ("get_behavior_details", 2, ".zmk.behaviors.GetBehaviorDetailsResponse",
                 {"oneof": "response_type"}),
            ],
            "ListAllBehaviorsResponse": [
                ("behaviors", 1, "uint32", {"repeated": True}),
            ],
            "GetBehaviorDetailsResponse": [
                ("id", 1, "uint32", {}),
                ("display_name", 2, "string", {}),
            ],
        },
    ),
    (
        "zmk/custom.proto",
        "zmk.custom",
        [],
        {
            "Request": [
                ("list_custom_subsystems", 1, "bool", {"oneof": "request_type"}),
                ("call", 2, ".zmk.custom.CallRequest", {"oneof": "request_type"}),
            ],
            "CallRequest": [
                ("subsystem_index", 1, "uint32", {}),
                ("payload", 2, "bytes", {}),
            ],
            "Response": [
                ("list_custom_subsystems", 1, ".zmk.custom.ListCustomSubsystemsResponse",
                 {"oneof": "response_type"}),
                ("call", 2, ".zmk.custom.CallResponse", {"oneof": "response_type"}),
            ],
            "SubsystemInfo": [
                ("index", 1, "uint32", {}),
                ("identifier", 2, "string", {}),
                ("ui_urls", 3, "string", {"repeated": True}),
            ],
            "ListCustomSubsystemsResponse": [
                ("subsystems", 1, ".zmk.custom.SubsystemInfo", {"repeated": True}),
            ],
            "CallResponse": [
                ("subsystem_index", 1, "uint32", {}),
                ("payload", 2, "bytes", {}),
            ],
        },
    ),
    (
        "zmk/studio.proto",
        "zmk.studio",
        ["zmk/meta.proto", "zmk/behaviors.proto", "zmk/custom.proto"],
        {
            "Request": [
                ("request_id", 1, "uint32", {}),
                ("behaviors", 4, ".zmk.behaviors.Request", {"oneof": "subsystem"}),
                ("custom", 7, ".zmk.custom.Request", {"oneof": "subsystem"}),
            ],
            "Response": [
                ("request_response", 1, ".zmk.studio.RequestResponse", {"oneof": "type"}),
                ("notification", 2, ".zmk.studio.Notification", {"oneof": "type"}),
            ],
            "RequestResponse": [
                ("request_id", 1, "uint32", {}),
                ("meta", 2, ".zmk.meta.Response", {"oneof": "subsystem"}),
                ("behaviors", 4, ".zmk.behaviors.Response", {"oneof": "subsystem"}),
                ("custom", 7, ".zmk.custom.Response", {"oneof": "subsystem"}),
            ],
            "Notification": [],
        },
    ),
    (
        "cormoran/rsr.proto",
        "cormoran.rsr",
        [],
        {
            "Binding": [
                ("behavior_id", 1, "uint32", {}),
                ("param1", 2, "uint32", {}),
                ("param2", 3, "uint32", {}),
                ("tap_ms", 4, "uint32", {}),
            ],
            "LayerBindings": [
                ("layer", 1, "uint32", {}),
                ("cw_binding", 2, ".cormoran.rsr.Binding", {}),
                ("ccw_binding", 3, ".cormoran.rsr.Binding", {}),
            ],
            "SensorInfo": [
                ("index", 1, "uint32", {}),
                ("name", 2, "string", {}),
            ],
            "Request": [
                ("get_sensors", 1, ".cormoran.rsr.GetSensorsRequest",
                 {"oneof": "request_type"}),
                ("get_all_layer_bindings", 2, ".cormoran.rsr.GetAllLayerBindingsRequest",
                 {"oneof": "request_type"}),
                ("set_layer_cw_binding", 3, ".cormoran.rsr.SetLayerCwBindingRequest",
                 {"oneof": "request_type"}),
                ("set_layer_ccw_binding", 4, ".cormoran.rsr.SetLayerCcwBindingRequest",
                 {"oneof": "request_type"}),
                ("save_pending_changes", 5, ".cormoran.rsr.SavePendingChangesRequest",
                 {"oneof": "request_type"}),
            ],
            "GetSensorsRequest": [],
            "GetAllLayerBindingsRequest": [
                ("sensor_index", 1, "uint32", {}),
            ],
            "SetLayerCwBindingRequest": [
                ("sensor_index", 1, "uint32", {}),
                ("layer", 2, "uint32", {}),
                ("binding", 3, ".cormoran.rsr.Binding", {}),
                ("skip_save", 4, "bool", {}),
            ],
            "SetLayerCcwBindingRequest": [
                ("sensor_index", 1, "uint32", {}),
                ("layer", 2, "uint32", {}),
                ("binding", 3, ".cormoran.rsr.Binding", {}),
                ("skip_save", 4, "bool", {}),
            ],
            "SavePendingChangesRequest": [],
            "Response": [
                ("error", 1, ".cormoran.rsr.ErrorResponse", {"oneof": "response_type"}),
                ("get_sensors", 2, ".cormoran.rsr.GetSensorsResponse",
                 {"oneof": "response_type"}),
                ("get_all_layer_bindings", 3, ".cormoran.rsr.GetAllLayerBindingsResponse",
                 {"oneof": "response_type"}),
                ("set_layer_cw_binding", 4, ".cormoran.rsr.SetLayerCwBindingResponse",
                 {"oneof": "response_type"}),
                ("set_layer_ccw_binding", 5, ".cormoran.rsr.SetLayerCcwBindingResponse",
                 {"oneof": "response_type"}),
                ("save_pending_changes", 6, ".cormoran.rsr.SavePendingChangesResponse",
                 {"oneof": "response_type"}),
            ],
            "ErrorResponse": [
                ("message", 1, "string", {}),
            ],
            "GetSensorsResponse": [
                ("sensors", 1, ".cormoran.rsr.SensorInfo", {"repeated": True}),
            ],
            "GetAllLayerBindingsResponse": [
                ("bindings", 1, ".cormoran.rsr.LayerBindings", {"repeated": True}),
                ("has_pending_changes", 2, "bool", {}),
            ],
            "SetLayerCwBindingResponse": [
                ("success", 1, "bool", {}),
                ("has_pending_changes", 2, "bool", {}),
            ],
            "SetLayerCcwBindingResponse": [
                ("success", 1, "bool", {}),
                ("has_pending_changes", 2, "bool", {}),
            ],
            "SavePendingChangesResponse": [
                ("success", 1, "bool", {}),
            ],
        },
    ),
    (
        "zmk/template.proto",
        "zmk.template",
        [],
        {
            "Binding": [
                ("behavior", 1, "string", {}),
                ("param1", 2, "int32", {}),
                ("param2", 3, "int32", {}),
            ],
            "LayerBindings": [
                ("layer", 1, "uint32", {}),
                ("cw_binding", 2, ".zmk.template.Binding", {}),
                ("ccw_binding", 3, ".zmk.template.Binding", {}),
            ],
            "SensorInfo": [
                ("index", 1, "uint32", {}),
                ("name", 2, "string", {}),
            ],
            "Request": [
                ("get_all_layer_bindings", 1, ".zmk.template.GetAllLayerBindingsRequest",
                 {"oneof": "request_type"}),
                ("set_layer_bindings", 2, ".zmk.template.SetLayerBindingsRequest",
                 {"oneof": "request_type"}),
                ("get_sensors", 3, ".zmk.template.GetSensorsRequest",
                 {"oneof": "request_type"}),
            ],
            "GetSensorsRequest": [],
            "GetAllLayerBindingsRequest": [
                ("sensor_index", 1, "uint32", {}),
            ],
            "SetLayerBindingsRequest": [
                ("sensor_index", 1, "uint32", {}),
                ("layer", 2, "uint32", {}),
                ("cw_binding", 3, ".zmk.template.Binding", {}),
                ("ccw_binding", 4, ".zmk.template.Binding", {}),
            ],
            "Response": [
                ("error", 1, ".zmk.template.ErrorResponse", {"oneof": "response_type"}),
                ("get_all_layer_bindings", 2, ".zmk.template.GetAllLayerBindingsResponse",
                 {"oneof": "response_type"}),
                ("set_layer_bindings", 3, ".zmk.template.SetLayerBindingsResponse",
                 {"oneof": "response_type"}),
                ("get_sensors", 4, ".zmk.template.GetSensorsResponse",
                 {"oneof": "response_type"}),
            ],
            "ErrorResponse": [
                ("message", 1, "string", {}),
            ],
            "GetSensorsResponse": [
                ("sensors", 1, ".zmk.template.SensorInfo", {"repeated": True}),
            ],
            "GetAllLayerBindingsResponse": [
                ("bindings", 1, ".zmk.template.LayerBindings", {"repeated": True}),
            ],
            "SetLayerBindingsResponse": [
                ("success", 1, "bool", {}),
            ],
        },
    ),
]


def _build_file(
    name: str,
    package: str,
    dependencies: list[str],
    messages: dict[str, list[tuple]],
) -> descriptor_pb2.FileDescriptorProto:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name=name, package=package, syntax="proto3"
    )
    file_proto.dependency.extend(dependencies)

    for message_name, fields in messages.items():
        message = file_proto.message_type.add(name=message_name)
        oneofs: dict[str, int] = {}
        for field_name, number, field_type, options in fields:
            field = message.field.add(name=field_name, number=number)
            field.label = (
                _FDP.LABEL_REPEATED if options.get("repeated") else _FDP.LABEL_OPTIONAL
            )
            if field_type in _SCALARS:
                field.type = _SCALARS[field_type]
            else:
                field.type = _FDP.TYPE_MESSAGE
                field.type_name = field_type

            oneof = options.get("oneof")
            if oneof is not None:
                if oneof not in oneofs:
                    oneofs[oneof] = len(message.oneof_decl)
                    message.oneof_decl.add(name=oneof)
                field.oneof_index = oneofs[oneof]

    return file_proto


def _build_pool() -> descriptor_pool.DescriptorPool:
    pool = descriptor_pool.DescriptorPool()
    for name, package, dependencies, messages in _FILES:
        file_proto = _build_file(name, package, dependencies, messages)
        pool.AddSerializedFile(file_proto.SerializeToString())
    return pool


POOL = _build_pool()


def message_class(full_name: str) -> type:
    """Return the generated message class for a fully qualified type name."""
    return message_factory.GetMessageClass(POOL.FindMessageTypeByName(full_name))


# Studio envelope
StudioRequest = message_class("zmk.studio.Request")
StudioResponse = message_class("zmk.studio.Response")
RequestResponse = message_class("zmk.studio.RequestResponse")
BehaviorsRequest = message_class("zmk.behaviors.Request")
CustomRequest = message_class("zmk.custom.Request")


class RsrMessages:
    """Message classes for the per-direction (current) revision."""

    Binding = message_class("cormoran.rsr.Binding")
    LayerBindings = message_class("cormoran.rsr.LayerBindings")
    SensorInfo = message_class("cormoran.rsr.SensorInfo")
    Request = message_class("cormoran.rsr.Request")
    Response = message_class("cormoran.rsr.Response")


class TemplateMessages:
    """Message classes for the legacy combined-write revision."""

    Binding = message_class("zmk.template.Binding")
    LayerBindings = message_class("zmk.template.LayerBindings")
    SensorInfo = message_class("zmk.template.SensorInfo")
    Request = message_class("zmk.template.Request")
    Response = message_class("zmk.template.Response")
