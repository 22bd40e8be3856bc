"""Protobuf message classes for ``/api/devices/vitals``.

The gateway ships no ``.proto`` file, so the schema is declared here as a
``FileDescriptorProto`` and registered in a private descriptor pool. Only
the fields the collector reads are declared; unknown fields are skipped by
the protobuf runtime.
"""

from __future__ import annotations

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory, timestamp_pb2, wrappers_pb2

_FIELD = descriptor_pb2.FieldDescriptorProto
_PACKAGE = "tesla"
_STRING_VALUE = ".google.protobuf.StringValue"
_TIMESTAMP = ".google.protobuf.Timestamp"


def _add_field(message, name, number, field_type, type_name=None, repeated=False, oneof_index=None):
    field = message.field.add()
    field.name = name
    field.json_name = name
    field.number = number
    field.type = field_type
    field.label = _FIELD.LABEL_REPEATED if repeated else _FIELD.LABEL_OPTIONAL
    if type_name is not None:
        field.type_name = type_name
    if oneof_index is not None:
        field.oneof_index = oneof_index
    return field


def _build_file() -> descriptor_pb2.FileDescriptorProto:
    file_proto = descriptor_pb2.FileDescriptorProto()
    file_proto.name = "teg_service/vitals.proto"
    file_proto.package = _PACKAGE
    file_proto.syntax = "proto3"
    file_proto.dependency.extend(
        [wrappers_pb2.DESCRIPTOR.name, timestamp_pb2.DESCRIPTOR.name]
    )

    ecu = file_proto.message_type.add(name="TeslaEnergyEcuAttributes")
    _add_field(ecu, "ecuType", 1, _FIELD.TYPE_INT32)

    attributes = file_proto.message_type.add(name="DeviceAttributes")
    attributes.oneof_decl.add(name="attributes")
    _add_field(
        attributes,
        "teslaEnergyEcuAttributes",
        1,
        _FIELD.TYPE_MESSAGE,
        f".{_PACKAGE}.TeslaEnergyEcuAttributes",
        oneof_index=0,
    )

    info = file_proto.message_type.add(name="DeviceInfo")
    for number, name in enumerate(
        (
            "din",
            "partNumber",
            "serialNumber",
            "manufacturer",
            "siteLabel",
            "componentParentDin",
            "firmwareVersion",
        ),
        start=1,
    ):
        _add_field(info, name, number, _FIELD.TYPE_MESSAGE, _STRING_VALUE)
    _add_field(info, "firstCommunicationTime", 8, _FIELD.TYPE_MESSAGE, _TIMESTAMP)
    _add_field(info, "lastCommunicationTime", 9, _FIELD.TYPE_MESSAGE, _TIMESTAMP)
    _add_field(
        info,
        "deviceAttributes",
        11,
        _FIELD.TYPE_MESSAGE,
        f".{_PACKAGE}.DeviceAttributes",
        repeated=True,
    )

    device = file_proto.message_type.add(name="Device")
    _add_field(device, "device", 1, _FIELD.TYPE_MESSAGE, f".{_PACKAGE}.DeviceInfo")

    vital = file_proto.message_type.add(name="Vital")
    vital.oneof_decl.add(name="value")
    _add_field(vital, "name", 1, _FIELD.TYPE_STRING)
    _add_field(vital, "intValue", 3, _FIELD.TYPE_INT64, oneof_index=0)
    _add_field(vital, "floatValue", 4, _FIELD.TYPE_DOUBLE, oneof_index=0)
    _add_field(vital, "stringValue", 5, _FIELD.TYPE_STRING, oneof_index=0)
    _add_field(vital, "boolValue", 6, _FIELD.TYPE_BOOL, oneof_index=0)

    with_vitals = file_proto.message_type.add(name="DeviceWithVitals")
    _add_field(with_vitals, "device", 1, _FIELD.TYPE_MESSAGE, f".{_PACKAGE}.Device")
    _add_field(with_vitals, "vitals", 2, _FIELD.TYPE_MESSAGE, f".{_PACKAGE}.Vital", repeated=True)
    _add_field(with_vitals, "alerts", 3, _FIELD.TYPE_STRING, repeated=True)

    devices = file_proto.message_type.add(name="DevicesWithVitals")
    _add_field(
        devices,
        "devices",
        1,
        _FIELD.TYPE_MESSAGE,
        f".{_PACKAGE}.DeviceWithVitals",
        repeated=True,
    )
    return file_proto


_POOL = descriptor_pool.DescriptorPool()
_POOL.AddSerializedFile(wrappers_pb2.DESCRIPTOR.serialized_pb)
_POOL.AddSerializedFile(timestamp_pb2.DESCRIPTOR.serialized_pb)
_POOL.AddSerializedFile(_build_file().SerializeToString())


def _message(name: str):
    return message_factory.GetMessageClass(_POOL.FindMessageTypeByName(f"{_PACKAGE}.{name}"))


TeslaEnergyEcuAttributes = _message("TeslaEnergyEcuAttributes")
DeviceAttributes = _message("DeviceAttributes")
DeviceInfo = _message("DeviceInfo")
Device = _message("Device")
Vital = _message("Vital")
DeviceWithVitals = _message("DeviceWithVitals")
DevicesWithVitals = _message("DevicesWithVitals")


__all__ = [
    "Device",
    "DeviceAttributes",
    "DeviceInfo",
    "DeviceWithVitals",
    "DevicesWithVitals",
    "TeslaEnergyEcuAttributes",
    "Vital",
]
