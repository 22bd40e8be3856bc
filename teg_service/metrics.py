"""Mapping of a collected snapshot onto labelled metric points."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

from .decoders import FaultValue, Instant, NumberValue

if TYPE_CHECKING:
    from .collector import Snapshot
    from .models import AlertFlags, Diagnostic, DiagnosticCheck
    from .vitals import DeviceIdentity


def to_float(value: object, default: Optional[float] = None) -> Optional[float]:
    """Convert a value to float.

    Args:
        value: The value to convert to float
        default: Value to return if conversion fails (defaults to None)

    Returns:
        Float value, or default if conversion fails or value is None
    """
    if value is None:
        return default
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def unix_nano(value: Optional[Instant]) -> Optional[int]:
    """Integer Unix nanoseconds, or ``None`` when the gateway did not report the instant."""
    return value.unix_nano() if value is not None else None


@dataclass
class Point:
    """One time series point: measurement, tags, fields and a timestamp."""

    measurement: str
    tags: Dict[str, str]
    fields: Dict[str, object]
    timestamp: Instant = field(default_factory=Instant.now)

    def as_dict(self) -> Dict[str, object]:
        return {
            "measurement": self.measurement,
            "tags": dict(self.tags),
            "fields": dict(self.fields),
            "timestamp": self.timestamp.unix_nano(),
        }


def common_tags(snapshot: "Snapshot") -> Dict[str, str]:
    """Tags attached to every point: gateway identity and site location."""
    grid_code = snapshot.site_info.grid_code
    return {
        "gateway_id": snapshot.status.din,
        "firmware_version": snapshot.status.version,
        "firmware_git_hash": snapshot.status.git_hash,
        "sync_type": snapshot.status.sync_type,
        "site_name": snapshot.site_info.site_name,
        "site_grid_code": grid_code.grid_code,
        "site_country": grid_code.country,
        "site_state": grid_code.state,
        "site_utility": grid_code.utility,
    }


def alert_flag_fields(prefix: str, flags: "AlertFlags") -> Dict[str, object]:
    """Flatten an alert flag block, e.g. ``PVAC_a001_inv_L1_HW_overcurrent`` to ``pvac_alerts_a001_inv_l1_hw_overcurrent``."""
    fields: Dict[str, object] = {
        f"{prefix}_alerts_last_rx_time": unix_nano(flags.last_received),
        f"{prefix}_alerts_receive_mux_bitmask": flags.received_mux_bitmask,
    }
    for name, active in flags.flags().items():
        _, _, suffix = name.partition("_")
        fields[f"{prefix}_alerts_{(suffix or name).lower()}"] = active
    return fields


def fault_value_text(value: FaultValue) -> str:
    """Fault values are written as text; numbers use six decimal places."""
    if isinstance(value, NumberValue):
        return f"{value.value:f}"
    return value.value


def _identity_tags(identity: "DeviceIdentity") -> Dict[str, str]:
    return {
        "din": identity.din,
        "part_number": identity.part_number,
        "serial_number": identity.serial_number,
        "site_label": identity.site_label,
        "component_parent_din": identity.component_parent_din,
    }


def _check_points(
    measurement: str,
    tags: Dict[str, str],
    diagnostic: "Diagnostic",
    checks: Iterable["DiagnosticCheck"],
    timestamp: Instant,
    include_message: bool,
) -> List[Point]:
    points = []
    for check in checks:
        fields: Dict[str, object] = {
            "check_status": check.status,
            "check_start_time": unix_nano(check.started_at),
            "check_end_time": unix_nano(check.ended_at),
        }
        if include_message:
            fields["check_message"] = check.message
        points.append(
            Point(
                measurement,
                {**tags, "check_name": check.name, "diagnostic": diagnostic.name, "category": diagnostic.category},
                fields,
                timestamp,
            )
        )
    return points


def _meter_points(snapshot: "Snapshot", name: str, tags: Dict[str, str]) -> List[Point]:
    meters = snapshot.meters
    site_info = snapshot.site_info
    fields: Dict[str, object] = {
        "measured_frequency": site_info.measured_frequency,
        "max_system_energy_kwh": site_info.max_system_energy_kwh,
        "max_system_power_kw": site_info.max_system_power_kw,
        "max_site_meter_power_kw": site_info.max_site_meter_power_kw,
        "min_site_meter_power_kw": site_info.min_site_meter_power_kw,
        "nominal_system_energy_kwh": site_info.nominal_system_energy_kwh,
        "nominal_system_power_kw": site_info.nominal_system_power_kw,
        "panel_max_current": site_info.panel_max_current,
        "grid_voltage_setting": site_info.grid_code.grid_voltage_setting,
        "grid_frequency_setting": site_info.grid_code.grid_freq_setting,
        "meter_status": snapshot.meters_status.status,
    }
    for label, aggregate in meters.items():
        fields.update(
            {
                f"{label}_last_comm_time": unix_nano(aggregate.last_communication),
                f"{label}_instant_power": aggregate.instant_power,
                f"{label}_instant_reactive_power": aggregate.instant_reactive_power,
                f"{label}_instant_apparent_power": aggregate.instant_apparent_power,
                f"{label}_frequency": aggregate.frequency,
                f"{label}_energy_exported": aggregate.energy_exported,
                f"{label}_energy_imported": aggregate.energy_imported,
                f"{label}_instant_average_voltage": aggregate.instant_average_voltage,
                f"{label}_instant_average_current": aggregate.instant_average_current,
                f"{label}_instant_total_current": aggregate.instant_total_current,
            }
        )
    meter_tags = {**tags, "meter_serial": snapshot.meters_status.serial}
    return [Point(name, meter_tags, fields, meters.captured_at)]


def _powerwall_points(snapshot: "Snapshot", name: str, tags: Dict[str, str]) -> List[Point]:
    powerwalls = snapshot.powerwalls
    system = snapshot.system_status
    points = [
        Point(
            name,
            tags,
            {
                "enumerating": powerwalls.enumerating,
                "updating": powerwalls.updating,
                "checking_if_offgrid": powerwalls.checking_if_offgrid,
                "running_phase_detection": powerwalls.running_phase_detection,
                "bubble_shedding": powerwalls.bubble_shedding,
                "grid_qualifying": powerwalls.grid_qualifying,
                "grid_code_validating": powerwalls.grid_code_validating,
                "phase_detection_not_available": powerwalls.phase_detection_not_available,
                "on_grid_check_error": powerwalls.on_grid_check_error,
                "phase_detection_last_error": powerwalls.phase_detection_last_error,
                "sync_updating": powerwalls.sync.updating,
                "charge_percent": snapshot.soe.percentage,
            },
            powerwalls.captured_at,
        )
    ]

    for diagnostic in (powerwalls.sync.commissioning_diagnostic, powerwalls.sync.update_diagnostic):
        points.append(
            Point(
                name,
                {**tags, "diagnostic": diagnostic.name, "category": diagnostic.category},
                {"disruptive": diagnostic.disruptive, "alert": diagnostic.alert},
                powerwalls.captured_at,
            )
        )
        points.extend(
            _check_points(name, tags, diagnostic, diagnostic.checks, powerwalls.captured_at, include_message=True)
        )

    points.append(
        Point(
            name,
            tags,
            {
                "battery_target_power": system.battery_target_power,
                "battery_target_reactive_power": system.battery_target_reactive_power,
                "nominal_full_pack_energy": system.nominal_full_pack_energy,
                "nominal_energy_remaining_watt_hours": system.nominal_energy_remaining,
                "max_power_energy_remaining": system.max_power_energy_remaining,
                "max_power_energy_to_be_charged": system.max_power_energy_to_be_charged,
                "max_charge_power": system.max_charge_power,
                "max_discharge_power": system.max_discharge_power,
                "max_apparent_power": system.max_apparent_power,
                "instantaneous_max_discharge_power": system.instantaneous_max_discharge_power,
                "instantaneous_max_charge_power": system.instantaneous_max_charge_power,
                "grid_services_power": system.grid_services_power,
                "system_island_state": system.system_island_state,
                "available_blocks": system.available_blocks,
                "ffr_power_availability_high": system.ffr_power_availability_high,
                "ffr_power_availability_low": system.ffr_power_availability_low,
                "load_charge_constraint": system.load_charge_constraint,
                "max_sustained_ramp_rate": system.max_sustained_ramp_rate,
                "can_reboot": system.can_reboot,
                "smart_inv_delta_p": system.smart_inv_delta_p,
                "smart_inv_delta_q": system.smart_inv_delta_q,
                "last_toggle_timestamp": unix_nano(system.last_toggled_at),
                "solar_real_power_limit": system.solar_real_power_limit,
                "score": system.score,
                "blocks_controlled": system.blocks_controlled,
                "primary": system.primary,
                "auxiliary_load": system.auxiliary_load,
                "all_enable_lines_high": system.all_enable_lines_high,
                "inverter_nominal_usable_power": system.inverter_nominal_usable_power,
                "expected_energy_remaining": system.expected_energy_remaining,
            },
            system.captured_at,
        )
    )

    for block in system.battery_blocks:
        reasons = block.disabled_reasons if isinstance(block.disabled_reasons, list) else []
        points.append(
            Point(
                name,
                {
                    **tags,
                    "powerwall_part_number": block.package_part_number,
                    "powerwall_serial_number": block.package_serial_number,
                },
                {
                    "powerwall_pinv_state": block.pinv_state,
                    "powerwall_pinv_grid_state": block.pinv_grid_state,
                    "powerwall_nominal_energy_remaining": block.nominal_energy_remaining,
                    "powerwall_nominal_full_pack_energy": block.nominal_full_pack_energy,
                    "powerwall_charge_percent": block.charge_percent,
                    "powerwall_p_out": block.p_out,
                    "powerwall_q_out": block.q_out,
                    "powerwall_v_out": block.v_out,
                    "powerwall_f_out": block.f_out,
                    "powerwall_i_out": block.i_out,
                    "powerwall_energy_charged": block.energy_charged,
                    "powerwall_energy_discharged": block.energy_discharged,
                    "powerwall_off_grid": block.off_grid,
                    "powerwall_vf_mode": block.vf_mode,
                    "powerwall_wobble_detected": block.wobble_detected,
                    "powerwall_charge_power_clamped": block.charge_power_clamped,
                    "powerwall_backup_ready": block.backup_ready,
                    "powerwall_op_seq_state": block.op_seq_state,
                    "powerwall_disabled_reasons": ",".join(str(reason) for reason in reasons),
                },
                system.captured_at,
            )
        )
    return points


def _configuration_point(snapshot: "Snapshot", name: str, tags: Dict[str, str]) -> Point:
    operation = snapshot.operation
    sitemaster = snapshot.sitemaster
    return Point(
        name,
        tags,
        {
            "mode": operation.real_mode,
            "backup_reserve_percent": operation.backup_reserve_percent,
            "freq_shift_load_shed_soe": operation.freq_shift_load_shed_soe,
            "freq_shift_load_shed_delta_f": operation.freq_shift_load_shed_delta_f,
            "net_meter_mode": snapshot.site_info.net_meter_mode,
            "sitemaster_status": sitemaster.status,
            "sitemaster_running": sitemaster.running,
            "sitemaster_connected_to_tesla": sitemaster.connected_to_tesla,
            "sitemaster_power_supply_mode": sitemaster.power_supply_mode,
            "sitemaster_can_reboot": sitemaster.can_reboot,
            "grid_status": snapshot.grid_status.grid_status,
            "grid_services_active": snapshot.grid_status.grid_services_active,
        },
        operation.captured_at,
    )


def _network_points(snapshot: "Snapshot", name: str, tags: Dict[str, str]) -> List[Point]:
    tests = snapshot.network_tests
    points = [
        Point(
            name,
            {**tags, "diagnostic": tests.name, "category": tests.category},
            {"disruptive": tests.disruptive, "alert": tests.alert},
            tests.captured_at,
        )
    ]
    points.extend(_check_points(name, tags, tests, tests.checks, tests.captured_at, include_message=False))
    return points


def _pv_points(snapshot: "Snapshot", name: str, tags: Dict[str, str]) -> List[Point]:
    solar = snapshot.solar_powerwall
    pvac = solar.pvac_status
    pvs = solar.pvs_status
    fields: Dict[str, object] = {
        "pv_power_limit": solar.pv_power_limit,
        "power_status_setpoint": solar.power_status_setpoint,
        "pvac_state": pvac.state,
        "pvac_disabled": pvac.disabled,
        "pvac_disabled_reasons": ",".join(pvac.disabled_reasons),
        "pvac_grid_state": pvac.grid_state,
        "pvac_inv_state": pvac.inv_state,
        "pvac_v_out": pvac.v_out,
        "pvac_f_out": pvac.f_out,
        "pvac_p_out": pvac.p_out,
        "pvac_q_out": pvac.q_out,
        "pvac_i_out": pvac.i_out,
        "pvs_state": pvs.state,
        "pvs_disabled": pvs.disabled,
        "pvs_enable_output": pvs.enable_output,
        "pvs_v_ll": pvs.v_ll,
        "pvs_self_test_state": pvs.self_test_state,
    }
    fields.update(alert_flag_fields("pvac", solar.pvac_alerts))
    fields.update(alert_flag_fields("pvs", solar.pvs_alerts))
    points = [Point(name, tags, fields, solar.captured_at)]

    for string in pvac.string_vitals:
        points.append(
            Point(
                name,
                {**tags, "string_id": str(string.string_id)},
                {
                    "string_connected": string.connected,
                    "string_measured_voltage": string.measured_voltage,
                    "string_current": string.current,
                    "string_measured_power": string.measured_power,
                },
                solar.captured_at,
            )
        )
    return points


def _fault_points(snapshot: "Snapshot", name: str, tags: Dict[str, str]) -> List[Point]:
    system = snapshot.system_status
    points = []
    for fault in system.grid_faults:
        for alert in fault.alerts:
            points.append(
                Point(
                    name,
                    {
                        **tags,
                        "fault_name": fault.alert_name,
                        "fault_subname": alert.name,
                        "fault_units": alert.units,
                    },
                    {
                        "grid_fault_ts": fault.timestamp,
                        "grid_fault_isfault": fault.alert_is_fault,
                        "grid_fault_alert_raw": fault.alert_raw,
                        "grid_fault_ecu_type": fault.ecu_type,
                        "grid_fault_ecu_part_number": fault.ecu_package_part_number,
                        "grid_fault_ecu_serial_number": fault.ecu_package_serial_number,
                        "grid_fault_decoded_alert_value": fault_value_text(alert.value),
                    },
                    system.captured_at,
                )
            )
    return points


def _status_point(snapshot: "Snapshot", name: str, tags: Dict[str, str]) -> Point:
    status = snapshot.status
    update = snapshot.update_status
    testing = snapshot.system_testing
    uptime_seconds = status.uptime_ns / 1_000_000_000 if status.uptime_ns is not None else None
    return Point(
        name,
        {**tags, "device_type": status.device_type},
        {
            "start_time": unix_nano(status.started_at),
            "uptime_seconds": uptime_seconds,
            "is_new": status.is_new,
            "commission_count": status.commission_count,
            "update_state": update.state,
            "update_version": update.version,
            "offline_updating": update.offline_updating,
            "offline_update_error": update.offline_update_error,
            "system_testing_running": testing.running,
            "system_testing_status": testing.status,
            "solar_count": len(snapshot.solars.solars),
            "solar_power_rating_watts": sum(solar.power_rating_watts for solar in snapshot.solars.solars),
        },
        status.captured_at,
    )


def _vitals_points(snapshot: "Snapshot", prefix: str, tags: Dict[str, str]) -> List[Point]:
    report = snapshot.vitals
    timestamp = report.captured_at or Instant.now()
    points = []
    for inverter in report.inverters:
        fields = {
            key: value
            for key, value in vars(inverter).items()
            if key not in ("identity", "captured_at")
        }
        fields["last_comm_time"] = unix_nano(inverter.identity.last_communication)
        points.append(Point(f"{prefix}energy_inverters", {**tags, **_identity_tags(inverter.identity)}, fields, timestamp))
    for sensor in report.temperatures:
        points.append(
            Point(
                f"{prefix}energy_temperatures",
                {**tags, **_identity_tags(sensor.identity)},
                {
                    "thc_state": sensor.thc_state,
                    "thc_ambient_temp": sensor.thc_ambient_temp,
                    "last_comm_time": unix_nano(sensor.identity.last_communication),
                },
                timestamp,
            )
        )
    for record in report.alerts:
        points.append(
            Point(
                f"{prefix}energy_alerts",
                {**tags, **_identity_tags(record.identity), "ecu_type": str(record.identity.ecu_type or "")},
                {"alert_count": len(record.alerts), "alerts": ",".join(record.alerts)},
                timestamp,
            )
        )
    return points


def snapshot_points(snapshot: "Snapshot", prefix: str = "") -> List[Point]:
    """Return every metric point for ``snapshot``.

    Args:
        snapshot: A complete snapshot from :meth:`Collector.collect_all`
        prefix: Prepended to every measurement name

    Returns:
        Points timestamped with the capture instant of their source endpoint
    """
    tags = common_tags(snapshot)
    points: List[Point] = []
    points.extend(_meter_points(snapshot, f"{prefix}energy_meters", tags))
    points.extend(_powerwall_points(snapshot, f"{prefix}energy_powerwalls", tags))
    points.append(_configuration_point(snapshot, f"{prefix}energy_configuration", tags))
    points.extend(_network_points(snapshot, f"{prefix}energy_network", tags))
    points.extend(_pv_points(snapshot, f"{prefix}energy_pv", tags))
    points.extend(_fault_points(snapshot, f"{prefix}energy_faults", tags))
    points.append(_status_point(snapshot, f"{prefix}energy_status", tags))
    points.extend(_vitals_points(snapshot, prefix, tags))
    for point in points:
        if point.timestamp is None:
            point.timestamp = Instant.now()
    return points


__all__ = ["Point", "common_tags", "fault_value_text", "snapshot_points", "to_float", "unix_nano"]
