"""Tests for timestamp, duration and grid fault decoding."""

import unittest
from datetime import datetime, timedelta, timezone

from teg_service.decoders import (
    DecodedAlert,
    Instant,
    NumberValue,
    TextValue,
    format_nano_instant,
    parse_duration,
    parse_duration_ns,
    parse_legacy_instant,
    parse_micro_instant,
    parse_nano_instant,
    parse_optional,
    unwrap_fault_alerts,
)
from teg_service.errors import FaultDecodeError


def epoch_ns(value: datetime, nanos: int = 0) -> int:
    """Whole-second datetime to Unix nanoseconds plus a sub-second part."""
    return int(value.timestamp()) * 1_000_000_000 + nanos


class TestNanoInstants(unittest.TestCase):
    """The RFC 3339 nanosecond format used by device and diagnostic timestamps."""

    def test_round_trip_keeps_nanoseconds_and_offset(self):
        """Parsing then formatting reproduces the gateway's text exactly."""
        text = "2021-10-26T16:01:02.123456789-07:00"

        self.assertEqual(format_nano_instant(parse_nano_instant(text)), text)

    def test_parse_resolves_to_utc_moment(self):
        """The offset is applied when computing the epoch value."""
        instant = parse_nano_instant("2021-10-26T16:01:02.123456789-07:00")

        expected = epoch_ns(datetime(2021, 10, 26, 23, 1, 2, tzinfo=timezone.utc), 123456789)
        self.assertEqual(instant.unix_nano(), expected)
        self.assertEqual(instant.nanosecond, 123456789)
        self.assertEqual(instant.utc_offset, timedelta(hours=-7))

    def test_equal_moments_compare_equal_across_offsets(self):
        """Equality ignores the offset the gateway happened to use."""
        local = parse_nano_instant("2021-10-26T16:01:02.5-07:00")
        utc = parse_nano_instant("2021-10-26T23:01:02.500Z")

        self.assertEqual(local, utc)
        self.assertEqual(hash(local), hash(utc))

    def test_utc_is_formatted_with_z(self):
        """A zero offset is written as ``Z`` with nine fractional digits."""
        instant = parse_nano_instant("2021-10-26T16:01:02+00:00")

        self.assertEqual(format_nano_instant(instant), "2021-10-26T16:01:02.000000000Z")
        self.assertEqual(str(instant), "2021-10-26T16:01:02.000000000Z")

    def test_short_fraction_is_right_padded(self):
        """``.5`` means half a second, not five nanoseconds."""
        instant = parse_nano_instant("2021-10-26T16:01:00.5-07:00")

        self.assertEqual(instant.nanosecond, 500_000_000)

    def test_ordering(self):
        earlier = parse_nano_instant("2021-10-26T16:01:02.000000001-07:00")
        later = parse_nano_instant("2021-10-26T16:01:02.000000002-07:00")

        self.assertLess(earlier, later)
        self.assertGreaterEqual(later, earlier)

    def test_too_many_fraction_digits_rejected(self):
        with self.assertRaises(ValueError):
            parse_nano_instant("2021-10-26T16:01:02.1234567890-07:00")

    def test_garbage_rejected(self):
        with self.assertRaises(ValueError):
            parse_nano_instant("yesterday")

    def test_add_timedelta_is_exact(self):
        """Adding the session lifetime keeps the nanosecond part untouched."""
        start = parse_nano_instant("2021-10-26T16:01:02.123456789-07:00")

        later = start + timedelta(hours=23, minutes=55)

        self.assertEqual(later.unix_nano() - start.unix_nano(), 86_100 * 1_000_000_000)
        self.assertEqual(later.nanosecond, 123456789)
        self.assertEqual(later.offset_seconds, start.offset_seconds)

    def test_subtracting_instants_gives_timedelta(self):
        start = parse_nano_instant("2021-10-26T16:01:02.123456789-07:00")
        end = parse_nano_instant("2021-10-26T16:01:02.223456789-07:00")

        self.assertEqual(end - start, timedelta(milliseconds=100))

    def test_to_datetime_truncates_to_microseconds(self):
        instant = parse_nano_instant("2021-10-26T16:01:02.123456789-07:00")

        value = instant.to_datetime()

        self.assertEqual(value.microsecond, 123456)
        self.assertEqual(value.utcoffset(), timedelta(hours=-7))
        self.assertEqual(value.hour, 16)


class TestOtherTimestampFormats(unittest.TestCase):
    """Microsecond alert timestamps and the legacy status start time."""

    def test_micro_instant(self):
        instant = parse_micro_instant("2021-10-26T16:00:59.123456-07:00")

        expected = epoch_ns(datetime(2021, 10, 26, 23, 0, 59, tzinfo=timezone.utc), 123456000)
        self.assertEqual(instant.unix_nano(), expected)

    def test_micro_instant_rejects_nanoseconds(self):
        with self.assertRaises(ValueError):
            parse_micro_instant("2021-10-26T16:00:59.1234567-07:00")

    def test_legacy_instant(self):
        """``/api/status`` start time: space separated with a compact offset."""
        instant = parse_legacy_instant("2021-10-23 02:09:28 +0800")

        self.assertEqual(instant, Instant.from_datetime(datetime(2021, 10, 22, 18, 9, 28, tzinfo=timezone.utc)))
        self.assertEqual(instant.offset_seconds, 8 * 3600)

    def test_legacy_instant_rejects_rfc3339(self):
        with self.assertRaises(ValueError):
            parse_legacy_instant("2021-10-23T02:09:28+08:00")

    def test_parse_optional_treats_empty_as_missing(self):
        self.assertIsNone(parse_optional(parse_nano_instant, ""))
        self.assertIsNone(parse_optional(parse_nano_instant, "   "))
        self.assertIsNone(parse_optional(parse_nano_instant, None))
        self.assertIsNotNone(parse_optional(parse_nano_instant, "2021-10-26T16:01:02Z"))

    def test_from_datetime_requires_offset(self):
        with self.assertRaises(ValueError):
            Instant.from_datetime(datetime(2021, 10, 26, 16, 1, 2))


class TestDurations(unittest.TestCase):
    """Uptime strings such as ``89h51m33.77086138s``."""

    def test_uptime_is_exact_in_nanoseconds(self):
        self.assertEqual(parse_duration_ns("89h51m33.77086138s"), 323493770861380)

    def test_uptime_as_timedelta(self):
        self.assertEqual(
            parse_duration("89h51m33.77086138s"),
            timedelta(seconds=323493, microseconds=770861),
        )

    def test_units(self):
        self.assertEqual(parse_duration_ns("1h30m"), 5400 * 1_000_000_000)
        self.assertEqual(parse_duration_ns("250ms"), 250_000_000)
        self.assertEqual(parse_duration_ns("1.5µs"), 1500)
        self.assertEqual(parse_duration_ns("2us"), 2000)
        self.assertEqual(parse_duration_ns("7ns"), 7)

    def test_sign_and_zero(self):
        self.assertEqual(parse_duration_ns("-1.5h"), -5400 * 1_000_000_000)
        self.assertEqual(parse_duration_ns("0"), 0)
        self.assertEqual(parse_duration("-1.5h"), timedelta(hours=-1.5))

    def test_invalid_durations(self):
        for text in ("", "5", "1x", "h", "1h 2m"):
            with self.subTest(text=text):
                with self.assertRaises(ValueError):
                    parse_duration_ns(text)


class TestFaultUnwrapping(unittest.TestCase):
    """The JSON list a grid fault carries as a string in ``decoded_alert``."""

    def test_number_value_with_units(self):
        alerts = unwrap_fault_alerts('[{"name":"x","value":1.5,"units":"V"}]')

        self.assertEqual(alerts, [DecodedAlert("x", NumberValue(1.5), "V")])

    def test_text_value_without_units(self):
        alerts = unwrap_fault_alerts('[{"name":"PINV_alertType","value":"Warning"}]')

        self.assertEqual(len(alerts), 1)
        self.assertEqual(alerts[0].value, TextValue("Warning"))
        self.assertEqual(alerts[0].units, "")

    def test_mixed_values_keep_order(self):
        """One text entry and one number entry decode to one variant each."""
        alerts = unwrap_fault_alerts(
            '[{"name":"PINV_alertID","value":"PINV_a067_overvoltageNeutralChassis"},'
            '{"name":"PINV_a067_fValue","value":12,"units":"V"}]'
        )

        self.assertEqual(
            alerts,
            [
                DecodedAlert("PINV_alertID", TextValue("PINV_a067_overvoltageNeutralChassis")),
                DecodedAlert("PINV_a067_fValue", NumberValue(12.0), "V"),
            ],
        )
        self.assertIsInstance(alerts[1].value.value, float)

    def test_empty_document_has_no_alerts(self):
        self.assertEqual(unwrap_fault_alerts(""), [])
        self.assertEqual(unwrap_fault_alerts("[]"), [])

    def test_invalid_json_raises(self):
        with self.assertRaises(FaultDecodeError) as ctx:
            unwrap_fault_alerts("{not json")

        self.assertEqual(ctx.exception.raw, "{not json")

    def test_non_list_raises(self):
        with self.assertRaises(FaultDecodeError):
            unwrap_fault_alerts('{"name":"x","value":1}')

    def test_unsupported_values_raise(self):
        for document in (
            '[{"name":"x","value":true}]',
            '[{"name":"x","value":null}]',
            '[{"name":"x","value":[1,2]}]',
            '[{"value":1}]',
            '["x"]',
        ):
            with self.subTest(document=document):
                with self.assertRaises(FaultDecodeError):
                    unwrap_fault_alerts(document)


if __name__ == '__main__':
    unittest.main()
