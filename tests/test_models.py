from datetime import datetime

import pytest

from incubator_monitor.exceptions import MalformedPayloadError
from incubator_monitor.models import Reading

NOW = datetime(2026, 1, 1, 12, 0, 0)


@pytest.mark.parametrize("payload, value", [("36.5", 36.5), (b"36.5", 36.5), (" -2 ", -2.0), ("1e2", 100.0), (".5", 0.5)])
def test_from_payload_accepts_decimal_numbers(payload, value) -> None:
    reading = Reading.from_payload(payload, NOW)
    assert reading.value == value
    assert reading.received_at == NOW


@pytest.mark.parametrize("payload", ["", "abc", "36.5C", "nan", "inf", "1_000", b"\xff\xfe", "1e999"])
def test_from_payload_rejects_non_numeric(payload) -> None:
    with pytest.raises(MalformedPayloadError):
        Reading.from_payload(payload, NOW)


def test_reading_dict_round_trip() -> None:
    reading = Reading(value=37.25, received_at=NOW)
    assert Reading.from_dict(reading.to_dict()) == reading
