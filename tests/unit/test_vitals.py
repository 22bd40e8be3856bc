"""Tests for routing the vitals protobuf into inverter, temperature and alert records."""

import unittest

from teg_service import vitals_proto
from teg_service.decoders import Instant
from teg_service.vitals import EcuType, device_identity, normalize_vitals


def make_device(ecu_type=None, vitals=(), alerts=(), din="1538000-25-F--TG0123456789AB"):
    """Build one DeviceWithVitals entry.

    ``vitals`` is a sequence of ``(name, value)``; the value's Python type
    selects the protobuf oneof member.
    """
    entry = vitals_proto.DeviceWithVitals()
    info = entry.device.device
    info.din.value = din
    if ecu_type is not None:
        attribute = info.deviceAttributes.add()
        attribute.teslaEnergyEcuAttributes.ecuType = int(ecu_type)
    for name, value in vitals:
        vital = entry.vitals.add()
        vital.name = name
        if isinstance(value, bool):
            vital.boolValue = value
        elif isinstance(value, int):
            vital.intValue = value
        elif isinstance(value, float):
            vital.floatValue = value
        else:
            vital.stringValue = value
    entry.alerts.extend(alerts)
    return entry


def make_payload(*entries):
    message = vitals_proto.DevicesWithVitals()
    for entry in entries:
        message.devices.add().CopyFrom(entry)
    return message


class TestNormalizeVitals(unittest.TestCase):
    """Each device is routed by its ECU type; alerts are independent of type."""

    def test_inverter_output_power(self):
        """A PVAC device with PVAC_Pout becomes exactly one inverter record."""
        payload = make_payload(make_device(EcuType.PVAC, vitals=[("PVAC_Pout", 1234.5)]))

        report = normalize_vitals(payload)

        self.assertEqual(len(report.inverters), 1)
        self.assertEqual(report.inverters[0].pvac_pout, 1234.5)
        self.assertEqual(report.temperatures, [])
        self.assertEqual(report.alerts, [])

    def test_inverter_with_alerts_yields_one_alert_record(self):
        payload = make_payload(
            make_device(
                EcuType.PVAC,
                vitals=[("PVAC_Pout", 1234.5)],
                alerts=["PVAC_a019_ambient_overtemperature", "PVAC_a024_PVArcLockout"],
            )
        )

        report = normalize_vitals(payload)

        self.assertEqual(len(report.inverters), 1)
        self.assertEqual(len(report.alerts), 1)
        self.assertEqual(
            report.alerts[0].alerts,
            ["PVAC_a019_ambient_overtemperature", "PVAC_a024_PVArcLockout"],
        )

    def test_channel_vitals(self):
        """String channel A-D vitals map onto their lower-case attributes."""
        payload = make_payload(
            make_device(
                EcuType.PVAC,
                vitals=[
                    ("PVAC_PVCurrent_A", 4.75),
                    ("PVAC_PVMeasuredVoltage_B", 388.5),
                    ("PVAC_PVMeasuredPower_C", 500),
                    ("PVAC_PvState_D", "PV_Active"),
                    ("PVAC_State", "PVAC_Active"),
                    ("PVAC_VHvMinusChassisDC", -190.25),
                ],
            )
        )

        inverter = normalize_vitals(payload).inverters[0]

        self.assertEqual(inverter.pv_current_a, 4.75)
        self.assertEqual(inverter.pv_measured_voltage_b, 388.5)
        self.assertEqual(inverter.pv_measured_power_c, 500.0)
        self.assertIsInstance(inverter.pv_measured_power_c, float)
        self.assertEqual(inverter.pv_state_d, "PV_Active")
        self.assertEqual(inverter.pvac_state, "PVAC_Active")
        self.assertEqual(inverter.pvac_vhv_minus_chassis_dc, -190.25)
        self.assertIsNone(inverter.pv_current_b)

    def test_unknown_vitals_are_ignored(self):
        payload = make_payload(make_device(EcuType.PVAC, vitals=[("PVAC_Fan_Speed_Actual_RPM", 1200)]))

        inverter = normalize_vitals(payload).inverters[0]

        self.assertIsNone(inverter.pvac_pout)

    def test_thermal_controller(self):
        payload = make_payload(
            make_device(
                EcuType.TETHC,
                vitals=[("THC_AmbientTemp", 23.5), ("THC_State", "THC_STATE_AUTONOMOUSCONTROL")],
            )
        )

        report = normalize_vitals(payload)

        self.assertEqual(report.inverters, [])
        self.assertEqual(len(report.temperatures), 1)
        self.assertEqual(report.temperatures[0].thc_ambient_temp, 23.5)
        self.assertEqual(report.temperatures[0].thc_state, "THC_STATE_AUTONOMOUSCONTROL")

    def test_unknown_ecu_type_only_reports_alerts(self):
        """Hardware without a record type still surfaces its alerts."""
        quiet = make_device(999, vitals=[("PVAC_Pout", 1.0)])
        noisy = make_device(999, alerts=["SYNC_a001_SW_App_Boot"], din="1152100-13-J--CN0000000000AB")
        no_attributes = make_device(alerts=["METER_a001"], din="meter")

        report = normalize_vitals(make_payload(quiet, noisy, no_attributes))

        self.assertEqual(report.inverters, [])
        self.assertEqual(report.temperatures, [])
        self.assertEqual([record.identity.din for record in report.alerts], ["1152100-13-J--CN0000000000AB", "meter"])

    def test_serialized_bytes_are_accepted(self):
        payload = make_payload(make_device(EcuType.PVAC, vitals=[("PVAC_Pout", 1234.5)]))

        report = normalize_vitals(payload.SerializeToString())

        self.assertEqual(report.inverters[0].pvac_pout, 1234.5)

    def test_captured_at_is_stamped_on_every_record(self):
        captured_at = Instant(1635289262123456789)
        payload = make_payload(
            make_device(EcuType.PVAC, alerts=["a"]),
            make_device(EcuType.TETHC),
        )

        report = normalize_vitals(payload, captured_at=captured_at)

        self.assertEqual(report.captured_at, captured_at)
        self.assertEqual(report.inverters[0].captured_at, captured_at)
        self.assertEqual(report.temperatures[0].captured_at, captured_at)
        self.assertEqual(report.alerts[0].captured_at, captured_at)

    def test_empty_payload(self):
        report = normalize_vitals(b"")

        self.assertEqual((report.inverters, report.temperatures, report.alerts), ([], [], []))


class TestDeviceIdentity(unittest.TestCase):
    def test_identity_fields(self):
        entry = make_device(EcuType.PVAC, din="1538000-25-F--TG0123456789AB")
        info = entry.device.device
        info.partNumber.value = "1538000-25-F"
        info.serialNumber.value = "TG0123456789AB"
        info.componentParentDin.value = "1232100-00-E--TG1234567890AB"
        info.lastCommunicationTime.seconds = 1635289262
        info.lastCommunicationTime.nanos = 5

        identity = device_identity(entry)

        self.assertEqual(identity.din, "1538000-25-F--TG0123456789AB")
        self.assertEqual(identity.part_number, "1538000-25-F")
        self.assertEqual(identity.serial_number, "TG0123456789AB")
        self.assertEqual(identity.component_parent_din, "1232100-00-E--TG1234567890AB")
        self.assertEqual(identity.manufacturer, "")
        self.assertEqual(identity.ecu_type, 296)
        self.assertEqual(identity.last_communication, Instant(1635289262000000005))

    def test_missing_last_communication(self):
        identity = device_identity(make_device(EcuType.TETHC))

        self.assertIsNone(identity.last_communication)


class TestEcuType(unittest.TestCase):
    def test_lookup(self):
        self.assertIs(EcuType.lookup(296), EcuType.PVAC)
        self.assertIs(EcuType.lookup(224), EcuType.TETHC)
        self.assertIsNone(EcuType.lookup(999))
        self.assertIsNone(EcuType.lookup(None))


if __name__ == '__main__':
    unittest.main()
