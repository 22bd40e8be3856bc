"""Normalization of the ``/api/devices/vitals`` protobuf payload.

Every device in the payload is routed by the ECU type code found in its
attributes:

* ``EcuType.PVAC`` (296) is the solar inverter; its string channel vitals
  become an :class:`InverterRecord`.
* ``EcuType.TETHC`` (224) is the thermal controller; its state and ambient
  temperature become a :class:`TemperatureRecord`.

Any device, whatever its ECU type, that reports at least one alert also
yields a single :class:`DeviceAlertRecord`.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple, Union

from google.protobuf.message import Message

from . import vitals_proto
from .decoders import NANOS_PER_SECOND, Instant
from .metrics import to_float

LOGGER = logging.getLogger("teg_service.vitals")


class EcuType(enum.IntEnum):
    TETHC = 224
    PVAC = 296

    @classmethod
    def lookup(cls, code: Optional[int]) -> Optional["EcuType"]:
        """Return the member for ``code`` or ``None`` for unknown hardware."""
        if code is None:
            return None
        try:
            return cls(code)
        except ValueError:
            return None


@dataclass(frozen=True)
class DeviceIdentity:
    din: str = ""
    part_number: str = ""
    serial_number: str = ""
    manufacturer: str = ""
    site_label: str = ""
    component_parent_din: str = ""
    firmware_version: str = ""
    last_communication: Optional[Instant] = None
    ecu_type: Optional[int] = None


@dataclass
class InverterRecord:
    identity: DeviceIdentity
    captured_at: Optional[Instant] = None
    pv_current_a: Optional[float] = None
    pv_current_b: Optional[float] = None
    pv_current_c: Optional[float] = None
    pv_current_d: Optional[float] = None
    pv_measured_voltage_a: Optional[float] = None
    pv_measured_voltage_b: Optional[float] = None
    pv_measured_voltage_c: Optional[float] = None
    pv_measured_voltage_d: Optional[float] = None
    pv_measured_power_a: Optional[float] = None
    pv_measured_power_b: Optional[float] = None
    pv_measured_power_c: Optional[float] = None
    pv_measured_power_d: Optional[float] = None
    pv_state_a: Optional[str] = None
    pv_state_b: Optional[str] = None
    pv_state_c: Optional[str] = None
    pv_state_d: Optional[str] = None
    pvac_state: Optional[str] = None
    pvac_grid_state: Optional[str] = None
    pvac_inv_state: Optional[str] = None
    pvac_vout: Optional[float] = None
    pvac_fout: Optional[float] = None
    pvac_pout: Optional[float] = None
    pvac_iout: Optional[float] = None
    pvac_vl1_ground: Optional[float] = None
    pvac_vl2_ground: Optional[float] = None
    pvac_vhv_minus_chassis_dc: Optional[float] = None


@dataclass
class TemperatureRecord:
    identity: DeviceIdentity
    captured_at: Optional[Instant] = None
    thc_state: Optional[str] = None
    thc_ambient_temp: Optional[float] = None


@dataclass
class DeviceAlertRecord:
    identity: DeviceIdentity
    alerts: List[str]
    captured_at: Optional[Instant] = None


@dataclass
class VitalsReport:
    captured_at: Optional[Instant] = None
    inverters: List[InverterRecord] = field(default_factory=list)
    temperatures: List[TemperatureRecord] = field(default_factory=list)
    alerts: List[DeviceAlertRecord] = field(default_factory=list)


VitalValue = Union[int, float, str, bool]


def _as_text(value: VitalValue) -> str:
    return value if isinstance(value, str) else str(value)


def _as_number(value: VitalValue) -> Optional[float]:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    return to_float(value)


def _channel_table() -> Dict[str, Tuple[str, Callable[[VitalValue], object]]]:
    table: Dict[str, Tuple[str, Callable[[VitalValue], object]]] = {}
    for channel in "ABCD":
        suffix = channel.lower()
        table[f"PVAC_PVCurrent_{channel}"] = (f"pv_current_{suffix}", _as_number)
        table[f"PVAC_PVMeasuredVoltage_{channel}"] = (f"pv_measured_voltage_{suffix}", _as_number)
        table[f"PVAC_PVMeasuredPower_{channel}"] = (f"pv_measured_power_{suffix}", _as_number)
        table[f"PVAC_PvState_{channel}"] = (f"pv_state_{suffix}", _as_text)
    return table


INVERTER_VITALS: Dict[str, Tuple[str, Callable[[VitalValue], object]]] = {
    **_channel_table(),
    "PVAC_State": ("pvac_state", _as_text),
    "PVAC_GridState": ("pvac_grid_state", _as_text),
    "PVAC_InvState": ("pvac_inv_state", _as_text),
    "PVAC_Vout": ("pvac_vout", _as_number),
    "PVAC_Fout": ("pvac_fout", _as_number),
    "PVAC_Pout": ("pvac_pout", _as_number),
    "PVAC_Iout": ("pvac_iout", _as_number),
    "PVAC_VL1Ground": ("pvac_vl1_ground", _as_number),
    "PVAC_VL2Ground": ("pvac_vl2_ground", _as_number),
    "PVAC_VHvMinusChassisDC": ("pvac_vhv_minus_chassis_dc", _as_number),
}

TEMPERATURE_VITALS: Dict[str, Tuple[str, Callable[[VitalValue], object]]] = {
    "THC_State": ("thc_state", _as_text),
    "THC_AmbientTemp": ("thc_ambient_temp", _as_number),
}


def _string_value(info: Message, name: str) -> str:
    if info.HasField(name):
        return getattr(info, name).value
    return ""


def _ecu_type(info: Message) -> Optional[int]:
    for attribute in info.deviceAttributes:
        if attribute.WhichOneof("attributes") == "teslaEnergyEcuAttributes":
            return attribute.teslaEnergyEcuAttributes.ecuType
    return None


def device_identity(entry: Message) -> DeviceIdentity:
    """Flatten the descriptor of one ``DeviceWithVitals`` entry."""
    info = entry.device.device
    last_communication = None
    if info.HasField("lastCommunicationTime"):
        stamp = info.lastCommunicationTime
        last_communication = Instant(stamp.seconds * NANOS_PER_SECOND + stamp.nanos)
    return DeviceIdentity(
        din=_string_value(info, "din"),
        part_number=_string_value(info, "partNumber"),
        serial_number=_string_value(info, "serialNumber"),
        manufacturer=_string_value(info, "manufacturer"),
        site_label=_string_value(info, "siteLabel"),
        component_parent_din=_string_value(info, "componentParentDin"),
        firmware_version=_string_value(info, "firmwareVersion"),
        last_communication=last_communication,
        ecu_type=_ecu_type(info),
    )


def _vital_value(vital: Message) -> Optional[VitalValue]:
    kind = vital.WhichOneof("value")
    if kind is None:
        return None
    return getattr(vital, kind)


def _apply_vitals(record: object, entry: Message, table: Dict[str, Tuple[str, Callable[[VitalValue], object]]]) -> None:
    for vital in entry.vitals:
        target = table.get(vital.name)
        if target is None:
            continue
        value = _vital_value(vital)
        if value is None:
            continue
        attribute, convert = target
        setattr(record, attribute, convert(value))


def normalize_vitals(
    payload: Union[bytes, Message],
    captured_at: Optional[Instant] = None,
) -> VitalsReport:
    """Route every device in ``payload`` into inverter, temperature and alert records."""

    if isinstance(payload, (bytes, bytearray)):
        message = vitals_proto.DevicesWithVitals()
        message.ParseFromString(bytes(payload))
    else:
        message = payload

    report = VitalsReport(captured_at=captured_at)
    for entry in message.devices:
        identity = device_identity(entry)
        ecu_type = EcuType.lookup(identity.ecu_type)

        if ecu_type is EcuType.PVAC:
            inverter = InverterRecord(identity=identity, captured_at=captured_at)
            _apply_vitals(inverter, entry, INVERTER_VITALS)
            report.inverters.append(inverter)
        elif ecu_type is EcuType.TETHC:
            temperature = TemperatureRecord(identity=identity, captured_at=captured_at)
            _apply_vitals(temperature, entry, TEMPERATURE_VITALS)
            report.temperatures.append(temperature)

        if len(entry.alerts) > 0:
            report.alerts.append(
                DeviceAlertRecord(identity=identity, alerts=list(entry.alerts), captured_at=captured_at)
            )

    LOGGER.debug(
        "Normalized %d devices: %d inverters, %d temperature sensors, %d with alerts",
        len(message.devices),
        len(report.inverters),
        len(report.temperatures),
        len(report.alerts),
    )
    return report


__all__ = [
    "DeviceAlertRecord",
    "DeviceIdentity",
    "EcuType",
    "INVERTER_VITALS",
    "InverterRecord",
    "TEMPERATURE_VITALS",
    "TemperatureRecord",
    "VitalsReport",
    "device_identity",
    "normalize_vitals",
]
