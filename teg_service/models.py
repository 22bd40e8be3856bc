"""Typed records for the gateway's JSON endpoints.

Each top level record is parsed straight from the response body with
``model_validate_json``. Fields the gateway reports as raw text (timestamps,
durations, the nested fault JSON) are kept verbatim; :meth:`finalize` fills
in the parsed counterparts once the collector has stamped the record.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .decoders import (
    DecodedAlert,
    Instant,
    parse_duration,
    parse_duration_ns,
    parse_legacy_instant,
    parse_micro_instant,
    parse_nano_instant,
    parse_optional,
    unwrap_fault_alerts,
)
from .errors import FaultDecodeError

LOGGER = logging.getLogger("teg_service.models")


class _Record(BaseModel):
    """Shared parsing rules: unknown keys are ignored and ``null`` means "not reported"."""

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class GatewayRecord(_Record):
    """A top level endpoint response."""

    captured_at: Optional[Instant] = None

    def finalize(self) -> None:
        """Parse raw text fields; raises ``ValueError`` on malformed input."""


# ----------------------------------------------------------------------
# /api/meters/aggregates


class MeterAggregate(_Record):
    last_communication_time: str = ""
    instant_power: float = 0.0
    instant_reactive_power: float = 0.0
    instant_apparent_power: float = 0.0
    frequency: float = 0.0
    energy_exported: float = 0.0
    energy_imported: float = 0.0
    instant_average_voltage: float = 0.0
    instant_average_current: float = 0.0
    i_a_current: float = 0.0
    i_b_current: float = 0.0
    i_c_current: float = 0.0
    last_phase_voltage_communication_time: str = ""
    last_phase_power_communication_time: str = ""
    timeout: int = 0
    num_meters_aggregated: int = 0
    instant_total_current: float = 0.0

    last_communication: Optional[Instant] = None
    last_phase_voltage_communication: Optional[Instant] = None
    last_phase_power_communication: Optional[Instant] = None

    def parse_times(self) -> None:
        self.last_communication = parse_optional(parse_nano_instant, self.last_communication_time)
        self.last_phase_voltage_communication = parse_optional(
            parse_nano_instant, self.last_phase_voltage_communication_time
        )
        self.last_phase_power_communication = parse_optional(
            parse_nano_instant, self.last_phase_power_communication_time
        )


class MeterAggregates(GatewayRecord):
    site: MeterAggregate = Field(default_factory=MeterAggregate)
    battery: MeterAggregate = Field(default_factory=MeterAggregate)
    load: MeterAggregate = Field(default_factory=MeterAggregate)
    solar: MeterAggregate = Field(default_factory=MeterAggregate)

    def items(self) -> List[tuple[str, MeterAggregate]]:
        return [("site", self.site), ("battery", self.battery), ("load", self.load), ("solar", self.solar)]

    def finalize(self) -> None:
        for _, aggregate in self.items():
            aggregate.parse_times()


class MetersStatus(GatewayRecord):
    status: str = ""
    errors: Any = None
    serial: str = ""


class Operation(GatewayRecord):
    real_mode: str = ""
    backup_reserve_percent: float = 0.0
    freq_shift_load_shed_soe: float = 0.0
    freq_shift_load_shed_delta_f: float = 0.0


# ----------------------------------------------------------------------
# Diagnostics shared by /api/powerwalls and /api/system/networks/conn_tests


class DiagnosticCheck(_Record):
    name: str = ""
    status: str = ""
    start_time: str = ""
    end_time: str = ""
    message: str = ""
    progress: int = 0
    results: Any = None
    debug: Any = None
    checks: Any = None

    started_at: Optional[Instant] = None
    ended_at: Optional[Instant] = None

    def parse_times(self) -> None:
        self.started_at = parse_optional(parse_nano_instant, self.start_time)
        self.ended_at = parse_optional(parse_nano_instant, self.end_time)


class Diagnostic(_Record):
    name: str = ""
    category: str = ""
    disruptive: bool = False
    inputs: Any = None
    checks: List[DiagnosticCheck] = Field(default_factory=list)
    alert: bool = False

    def parse_times(self) -> None:
        for check in self.checks:
            check.parse_times()


class Powerwall(_Record):
    part_type: str = Field("", alias="Type")
    package_part_number: str = Field("", alias="PackagePartNumber")
    package_serial_number: str = Field("", alias="PackageSerialNumber")
    subtype: str = Field("", alias="type")
    grid_state: str = ""
    grid_reconnection_time_seconds: float = 0.0
    under_phase_detection: bool = False
    updating: bool = False
    commissioning_diagnostic: Diagnostic = Field(default_factory=Diagnostic)
    update_diagnostic: Diagnostic = Field(default_factory=Diagnostic)
    bc_type: Any = None
    in_config: bool = False


class PowerwallsSync(_Record):
    updating: bool = False
    commissioning_diagnostic: Diagnostic = Field(default_factory=Diagnostic)
    update_diagnostic: Diagnostic = Field(default_factory=Diagnostic)


class Powerwalls(GatewayRecord):
    enumerating: bool = False
    updating: bool = False
    checking_if_offgrid: bool = False
    running_phase_detection: bool = False
    phase_detection_last_error: str = ""
    bubble_shedding: bool = False
    on_grid_check_error: str = ""
    grid_qualifying: bool = False
    grid_code_validating: bool = False
    phase_detection_not_available: bool = False
    powerwalls: List[Powerwall] = Field(default_factory=list)
    gateway_din: str = ""
    sync: PowerwallsSync = Field(default_factory=PowerwallsSync)
    msa: Any = None
    states: Any = None

    def finalize(self) -> None:
        for powerwall in self.powerwalls:
            powerwall.commissioning_diagnostic.parse_times()
            powerwall.update_diagnostic.parse_times()
        self.sync.commissioning_diagnostic.parse_times()
        self.sync.update_diagnostic.parse_times()


# ----------------------------------------------------------------------
# /api/site_info and /api/sitemaster


class GridCode(_Record):
    grid_code: str = ""
    grid_voltage_setting: float = 0.0
    grid_freq_setting: float = 0.0
    grid_phase_setting: str = ""
    country: str = ""
    state: str = ""
    utility: str = ""


class SiteInfo(GatewayRecord):
    measured_frequency: float = 0.0
    max_system_energy_kwh: float = Field(0.0, alias="max_system_energy_kWh")
    max_system_power_kw: float = Field(0.0, alias="max_system_power_kW")
    site_name: str = ""
    timezone: str = ""
    net_meter_mode: str = ""
    max_site_meter_power_kw: float = Field(0.0, alias="max_site_meter_power_kW")
    min_site_meter_power_kw: float = Field(0.0, alias="min_site_meter_power_kW")
    nominal_system_energy_kwh: float = Field(0.0, alias="nominal_system_energy_kWh")
    nominal_system_power_kw: float = Field(0.0, alias="nominal_system_power_kW")
    panel_max_current: float = 0.0
    grid_code: GridCode = Field(default_factory=GridCode)


class Sitemaster(GatewayRecord):
    status: str = ""
    running: bool = False
    connected_to_tesla: bool = False
    power_supply_mode: bool = False
    can_reboot: str = ""


# ----------------------------------------------------------------------
# /api/solars and /api/solar_powerwall


class Solar(_Record):
    brand: str = ""
    model: str = ""
    power_rating_watts: float = 0.0


class SolarList(GatewayRecord):
    """``/api/solars`` answers with a bare JSON list."""

    solars: List[Solar] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _wrap_list(cls, data: Any) -> Any:
        if isinstance(data, list):
            return {"solars": data}
        return data


class StringVitals(_Record):
    string_id: int = 0
    connected: bool = False
    measured_voltage: float = 0.0
    current: float = 0.0
    measured_power: float = 0.0


class PvacStatus(_Record):
    state: str = ""
    disabled: bool = False
    disabled_reasons: List[str] = Field(default_factory=list)
    grid_state: str = ""
    inv_state: str = ""
    v_out: float = 0.0
    f_out: float = 0.0
    p_out: float = 0.0
    q_out: float = 0.0
    i_out: float = 0.0
    string_vitals: List[StringVitals] = Field(default_factory=list)


class PvsStatus(_Record):
    state: str = ""
    disabled: bool = False
    enable_output: bool = False
    v_ll: float = 0.0
    self_test_state: str = ""


class AlertFlags(_Record):
    """A block of ``<prefix>_aNNN_<name>`` boolean alert flags.

    The flag set differs between firmware versions, so every flag is kept as
    an extra field rather than a declared one.
    """

    model_config = ConfigDict(extra="allow")

    last_rx_time: str = Field("", alias="LastRxTime")
    received_mux_bitmask: int = Field(0, alias="ReceivedMuxBitmask")

    last_received: Optional[Instant] = None

    def flags(self) -> Dict[str, bool]:
        return {
            name: value
            for name, value in (self.model_extra or {}).items()
            if isinstance(value, bool)
        }

    def parse_times(self) -> None:
        self.last_received = parse_optional(parse_micro_instant, self.last_rx_time)


class SolarPowerwall(GatewayRecord):
    pvac_status: PvacStatus = Field(default_factory=PvacStatus)
    pvs_status: PvsStatus = Field(default_factory=PvsStatus)
    pv_power_limit: float = 0.0
    power_status_setpoint: str = ""
    pvac_alerts: AlertFlags = Field(default_factory=AlertFlags)
    pvs_alerts: AlertFlags = Field(default_factory=AlertFlags)

    def finalize(self) -> None:
        self.pvac_alerts.parse_times()
        self.pvs_alerts.parse_times()


# ----------------------------------------------------------------------
# /api/system/networks/conn_tests, /api/status, /api/system/*


class NetworkConnectionTests(GatewayRecord):
    name: str = ""
    category: str = ""
    disruptive: bool = False
    inputs: Any = None
    checks: List[DiagnosticCheck] = Field(default_factory=list)
    alert: bool = False

    def finalize(self) -> None:
        for check in self.checks:
            check.parse_times()


class Status(GatewayRecord):
    din: str = ""
    start_time: str = ""
    up_time_seconds: str = ""
    is_new: bool = False
    version: str = ""
    git_hash: str = ""
    commission_count: int = 0
    device_type: str = ""
    sync_type: str = ""
    leader: Any = None
    followers: Any = None

    started_at: Optional[Instant] = None
    uptime: Optional[timedelta] = None
    uptime_ns: Optional[int] = None

    def finalize(self) -> None:
        self.started_at = parse_optional(parse_legacy_instant, self.start_time)
        if self.up_time_seconds.strip():
            self.uptime_ns = parse_duration_ns(self.up_time_seconds)
            self.uptime = parse_duration(self.up_time_seconds)
        else:
            self.uptime_ns = None
            self.uptime = None


class SystemTesting(GatewayRecord):
    running: bool = False
    status: str = ""
    charge_tests: Any = None
    meter_results: Any = None
    inverter_results: Any = None
    hysteresis: float = 0.0
    error: str = ""
    errors: Any = None
    tests: Any = None


class UpdateInfo(_Record):
    status: List[str] = Field(default_factory=list)


class UpdateStatus(GatewayRecord):
    state: str = ""
    info: UpdateInfo = Field(default_factory=UpdateInfo)
    current_time: int = 0
    last_status_time: int = 0
    version: str = ""
    offline_updating: bool = False
    offline_update_error: str = ""
    estimated_bytes_per_second: Any = None


# ----------------------------------------------------------------------
# /api/system_status and its children


class BatteryBlock(_Record):
    part_type: str = Field("", alias="Type")
    package_part_number: str = Field("", alias="PackagePartNumber")
    package_serial_number: str = Field("", alias="PackageSerialNumber")
    disabled_reasons: Any = None
    pinv_state: str = ""
    pinv_grid_state: str = ""
    nominal_energy_remaining: float = 0.0
    nominal_full_pack_energy: float = 0.0
    p_out: float = 0.0
    q_out: float = 0.0
    v_out: float = 0.0
    f_out: float = 0.0
    i_out: float = 0.0
    energy_charged: float = 0.0
    energy_discharged: float = 0.0
    off_grid: bool = False
    vf_mode: bool = False
    wobble_detected: bool = False
    charge_power_clamped: bool = False
    backup_ready: bool = False
    op_seq_state: str = Field("", alias="OpSeqState")
    version: str = ""

    @property
    def charge_percent(self) -> Optional[float]:
        if self.nominal_full_pack_energy <= 0:
            return None
        return self.nominal_energy_remaining / self.nominal_full_pack_energy * 100.0


class GridFault(_Record):
    timestamp: int = 0
    alert_name: str = ""
    alert_is_fault: bool = False
    decoded_alert: str = ""
    alert_raw: int = 0
    git_hash: str = ""
    site_uid: str = ""
    ecu_type: str = ""
    ecu_package_part_number: str = ""
    ecu_package_serial_number: str = ""

    alerts: List[DecodedAlert] = Field(default_factory=list)
    decode_error: Optional[str] = None

    def unwrap(self) -> None:
        """Decode ``decoded_alert``; a malformed payload only affects this fault."""
        try:
            self.alerts = unwrap_fault_alerts(self.decoded_alert)
            self.decode_error = None
        except FaultDecodeError as exc:
            LOGGER.warning("Could not decode alerts of grid fault %s: %s", self.alert_name or "<unnamed>", exc)
            self.alerts = []
            self.decode_error = str(exc)


class SystemStatus(GatewayRecord):
    command_source: str = ""
    battery_target_power: float = 0.0
    battery_target_reactive_power: float = 0.0
    nominal_full_pack_energy: float = 0.0
    nominal_energy_remaining: float = 0.0
    max_power_energy_remaining: float = 0.0
    max_power_energy_to_be_charged: float = 0.0
    max_charge_power: float = 0.0
    max_discharge_power: float = 0.0
    max_apparent_power: float = 0.0
    instantaneous_max_discharge_power: float = 0.0
    instantaneous_max_charge_power: float = 0.0
    grid_services_power: float = 0.0
    system_island_state: str = ""
    available_blocks: int = 0
    battery_blocks: List[BatteryBlock] = Field(default_factory=list)
    ffr_power_availability_high: float = 0.0
    ffr_power_availability_low: float = 0.0
    load_charge_constraint: float = 0.0
    max_sustained_ramp_rate: float = 0.0
    grid_faults: List[GridFault] = Field(default_factory=list)
    can_reboot: str = ""
    smart_inv_delta_p: float = 0.0
    smart_inv_delta_q: float = 0.0
    last_toggle_timestamp: str = ""
    solar_real_power_limit: float = 0.0
    score: float = 0.0
    blocks_controlled: int = 0
    primary: bool = False
    auxiliary_load: float = 0.0
    all_enable_lines_high: bool = False
    inverter_nominal_usable_power: float = 0.0
    expected_energy_remaining: float = 0.0

    last_toggled_at: Optional[Instant] = None

    def finalize(self) -> None:
        self.last_toggled_at = parse_optional(parse_nano_instant, self.last_toggle_timestamp)
        for fault in self.grid_faults:
            fault.unwrap()


class GridStatus(GatewayRecord):
    grid_status: str = ""
    grid_services_active: bool = False


class StateOfEnergy(GatewayRecord):
    percentage: float = 0.0


__all__ = [
    "AlertFlags",
    "BatteryBlock",
    "Diagnostic",
    "DiagnosticCheck",
    "GatewayRecord",
    "GridCode",
    "GridFault",
    "GridStatus",
    "MeterAggregate",
    "MeterAggregates",
    "MetersStatus",
    "NetworkConnectionTests",
    "Operation",
    "Powerwall",
    "Powerwalls",
    "PowerwallsSync",
    "PvacStatus",
    "PvsStatus",
    "SiteInfo",
    "Sitemaster",
    "Solar",
    "SolarList",
    "SolarPowerwall",
    "StateOfEnergy",
    "Status",
    "StringVitals",
    "SystemStatus",
    "SystemTesting",
    "UpdateInfo",
    "UpdateStatus",
]
