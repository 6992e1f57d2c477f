"""
Unit tests for the payload normalizer
"""

import pytest
from core.exceptions import MissingImeiError, NormalizationError, ValidationError
from ingestion.transformers.normalizer import DeviceNormalizer, classify_token
from models.base import WorkingStatus


@pytest.fixture
def normalizer():
    return DeviceNormalizer()


def test_normalize_resolves_aliases(normalizer, phone_payload):
    record = normalizer.normalize(phone_payload)

    assert record.imei == "356789012345678"
    assert record.brand == "Apple"
    assert record.model == "iPhone 13"
    assert record.storage == "128GB"
    assert record.condition_grade == "A"
    assert record.battery_health == 91
    assert record.working_status == WorkingStatus.YES


def test_alias_order_and_placeholders(normalizer):
    record = normalizer.normalize({
        "serialNumber": " 3567 8901 2345 678 ",
        "model": "N/A",
        "deviceModel": "Galaxy S21",
        "memory": "unknown",
        "capacity": "128GB",
        "colour": "Phantom Black",
    })

    assert record.imei == "356789012345678"
    assert record.model == "Galaxy S21"
    assert record.storage == "128GB"
    assert record.color == "Phantom Black"


def test_keys_are_case_insensitive(normalizer):
    record = normalizer.normalize({"Imei": "111", "MODEL": "Pixel 7", "Carrier": "Verizon"})

    assert record.imei == "111"
    assert record.model == "Pixel 7"
    assert record.carrier == "Verizon"


def test_missing_imei_raises(normalizer):
    with pytest.raises(MissingImeiError) as exc_info:
        normalizer.normalize({"model": "iPhone 13", "imei": "  "})

    # still a validation error for callers that only know the broad type
    assert isinstance(exc_info.value, ValidationError)


def test_non_mapping_payload_raises(normalizer):
    with pytest.raises(NormalizationError):
        normalizer.normalize(["356789012345678"])


def test_extract_imei(normalizer):
    assert normalizer.extract_imei({"IMEI": "35 67"}) == "3567"
    assert normalizer.extract_imei({"imei": "N/A"}) is None
    assert normalizer.extract_imei("not a dict") is None


def test_timestamps_are_collected(normalizer):
    record = normalizer.normalize({
        "imei": "1",
        "deviceCreatedDate": "2024-01-15 10:00:00",
        "lastUpdate": "2024-01-16 09:30:00",
    })

    assert record.source_timestamps == {
        "created": "2024-01-15 10:00:00",
        "updated": "2024-01-16 09:30:00",
    }


@pytest.mark.parametrize("value, expected", [
    ("87%", 87),
    (87.6, 88),
    ("92", 92),
    ("150", None),
    ("n/a", None),
    (None, None),
])
def test_parse_battery(value, expected):
    assert DeviceNormalizer.parse_battery(value) == expected


@pytest.mark.parametrize("value, expected", [
    ("Yes", True),
    ("pass", True),
    (True, True),
    ("0", False),
    ("FAILED", False),
    ("maybe", None),
    (None, None),
])
def test_classify_token(value, expected):
    assert classify_token(value) is expected


# ============================================================================
# Working status precedence
# ============================================================================

def test_working_flag_beats_status_field(normalizer):
    record = normalizer.normalize({"imei": "1", "working": "No", "status": "PASS"})
    assert record.working_status == WorkingStatus.NO


def test_failed_flag_is_inverted(normalizer):
    assert normalizer.normalize({"imei": "1", "failed": "true"}).working_status == WorkingStatus.NO
    assert normalizer.normalize({"imei": "1", "failed": False}).working_status == WorkingStatus.YES


def test_unknown_failed_text_is_ignored(normalizer):
    record = normalizer.normalize({"imei": "1", "failed": "Face ID", "workingStatus": "Yes"})
    assert record.working_status == WorkingStatus.YES


def test_battery_heuristic(normalizer):
    assert normalizer.normalize({"imei": "1", "batteryHealth": 85}).working_status == WorkingStatus.YES
    assert normalizer.normalize({"imei": "1", "batteryHealth": 40}).working_status == WorkingStatus.NO
    # between the thresholds with no other signal
    assert normalizer.normalize({"imei": "1", "batteryHealth": 65}).working_status == WorkingStatus.YES


def test_indeterminate_status_is_pending(normalizer):
    record = normalizer.normalize({"imei": "1", "status": "In Progress", "batteryHealth": 65})
    assert record.working_status == WorkingStatus.PENDING


def test_no_signals_defaults_to_working(normalizer):
    assert normalizer.normalize({"imei": "1"}).working_status == WorkingStatus.YES
