"""
Transform raw inspection payloads into the canonical DeviceRecord
"""

from typing import Dict, Any, Optional, Tuple
from pydantic import ValidationError as PydanticValidationError
from schemas.device import DeviceRecord
from models.base import WorkingStatus
from core.exceptions import MissingImeiError, NormalizationError
import logging
import re

logger = logging.getLogger(__name__)


# Ordered fallback keys per logical field; first non-empty value wins.
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "imei": ("imei", "IMEI", "serialNumber", "serial_number"),
    "brand": ("brand", "make", "manufacturer"),
    "model": ("model", "deviceModel", "device_model", "deviceName", "name", "title"),
    "model_number": ("modelNumber", "model_number", "modelNo", "Model#"),
    "storage": ("storage", "memory", "capacity"),
    "color": ("color", "deviceColor", "colour"),
    "carrier": ("carrier", "network"),
    "condition_grade": ("grade", "condition", "conditionGrade", "bodyCondition"),
    "battery_health": ("batteryHealth", "battery_health", "BatteryHealthPercentage", "battery"),
    "notes": ("notes", "comments", "repairNotes", "Custom1"),
    "description": ("description", "deviceName", "title"),
    "size": ("size", "caseSize"),
}

TIMESTAMP_ALIASES: Dict[str, Tuple[str, ...]] = {
    "created": ("deviceCreatedDate", "firstReceived", "createdDate"),
    "updated": ("deviceUpdatedDate", "lastUpdate", "updatedDate"),
}

WORKING_FLAG_KEYS = ("working",)
FAILED_FLAG_KEYS = ("failed",)
STATUS_FIELD_KEYS = ("workingStatus", "working_status", "status")

PASS_TOKENS = {"YES", "PASS", "PASSED", "TRUE", "Y", "1"}
FAIL_TOKENS = {"NO", "FAIL", "FAILED", "FALSE", "N", "0"}

EMPTY_VALUES = {"", "N/A", "NA", "UNKNOWN", "NULL", "NONE", "-"}

BATTERY_WORKING_MIN = 80
BATTERY_BROKEN_BELOW = 50


def classify_token(value: Any) -> Optional[bool]:
    """
    Map a status value to True (pass), False (fail) or None (indeterminate).
    """
    if isinstance(value, bool):
        return value
    if value is None:
        return None
    token = str(value).strip().upper()
    if token in PASS_TOKENS:
        return True
    if token in FAIL_TOKENS:
        return False
    return None


class DeviceNormalizer:
    """
    Normalize heterogeneous provider payloads into DeviceRecord.

    Handles:
    - Field aliasing with ordered, case-insensitive fallbacks
    - Placeholder values ("N/A", "Unknown") treated as empty
    - Working status resolution from several competing signals
    - Battery health parsing ("87%", 87.0, "87")
    """

    def __init__(self, field_aliases: Dict[str, Tuple[str, ...]] = None):
        self.field_aliases = field_aliases or FIELD_ALIASES

    # ------------------------------------------------------------------
    # Lookup helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _index(payload: Dict[str, Any]) -> Dict[str, Any]:
        """Lower-cased key index; the first spelling of a key wins."""
        index: Dict[str, Any] = {}
        for key, value in payload.items():
            index.setdefault(str(key).lower(), value)
        return index

    @staticmethod
    def _is_empty(value: Any) -> bool:
        if value is None:
            return True
        if isinstance(value, (list, dict)):
            return len(value) == 0
        if isinstance(value, bool):
            return False
        return str(value).strip().upper() in EMPTY_VALUES

    def _first(self, index: Dict[str, Any], keys) -> Optional[Any]:
        for key in keys:
            value = index.get(key.lower())
            if not self._is_empty(value):
                return value
        return None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def extract_imei(self, payload: Dict[str, Any]) -> Optional[str]:
        """Return the stripped IMEI of a payload, or None if it has none."""
        if not isinstance(payload, dict):
            return None
        value = self._first(self._index(payload), self.field_aliases["imei"])
        if value is None:
            return None
        imei = re.sub(r"\s+", "", str(value))
        return imei or None

    def resolve(self, payload: Dict[str, Any], field: str) -> Optional[Any]:
        """First non-empty value for a logical field, or None."""
        return self._first(self._index(payload), self.field_aliases[field])

    def normalize(self, payload: Dict[str, Any]) -> DeviceRecord:
        """
        Normalize a raw payload.

        Raises:
            MissingImeiError: no IMEI under any known key
            NormalizationError: the payload is not a mapping or fails validation
        """
        if not isinstance(payload, dict):
            raise NormalizationError(
                "Payload must be a JSON object",
                context={"payload_type": type(payload).__name__}
            )

        imei = self.extract_imei(payload)
        if not imei:
            raise MissingImeiError(
                "Payload has no IMEI",
                context={"field_name": "imei", "keys": sorted(payload.keys())[:20]}
            )

        index = self._index(payload)
        values = {
            field: self._first(index, keys)
            for field, keys in self.field_aliases.items()
            if field not in ("imei", "battery_health")
        }

        battery = self.parse_battery(self._first(index, self.field_aliases["battery_health"]))

        try:
            return DeviceRecord(
                imei=imei,
                battery_health=battery,
                working_status=self.resolve_working_status(index, battery),
                source_timestamps=self._timestamps(index),
                **values,
            )
        except PydanticValidationError as e:
            raise NormalizationError(
                f"Normalized record failed validation for IMEI {imei}",
                context={"imei": imei, "field_errors": [err["loc"] for err in e.errors()]},
                original_exception=e
            )

    # ------------------------------------------------------------------
    # Field parsers
    # ------------------------------------------------------------------

    @staticmethod
    def parse_battery(value: Any) -> Optional[int]:
        """Parse a battery health percentage; out-of-range values are dropped."""
        if value is None or isinstance(value, bool):
            return None
        match = re.search(r"\d+(?:\.\d+)?", str(value))
        if not match:
            return None
        health = int(round(float(match.group(0))))
        if 0 <= health <= 100:
            return health
        logger.debug(f"Ignoring out-of-range battery health {value!r}")
        return None

    def resolve_working_status(self, index: Dict[str, Any], battery: Optional[int]) -> WorkingStatus:
        """
        Resolve working status, most authoritative signal first.

        1. explicit pass/fail flags (``working``, then inverted ``failed``)
        2. named working status field
        3. battery heuristic
        4. yes, unless a status field was present but indeterminate
        """
        indeterminate = False

        working = self._first(index, WORKING_FLAG_KEYS)
        if working is not None:
            verdict = classify_token(working)
            if verdict is not None:
                return WorkingStatus.YES if verdict else WorkingStatus.NO
            indeterminate = True

        failed = self._first(index, FAILED_FLAG_KEYS)
        if failed is not None:
            verdict = classify_token(failed)
            if verdict is not None:
                # a true "failed" flag means the unit does not work
                return WorkingStatus.NO if verdict else WorkingStatus.YES

        status = self._first(index, STATUS_FIELD_KEYS)
        if status is not None:
            verdict = classify_token(status)
            if verdict is not None:
                return WorkingStatus.YES if verdict else WorkingStatus.NO
            indeterminate = True

        if battery is not None:
            if battery >= BATTERY_WORKING_MIN:
                return WorkingStatus.YES
            if battery < BATTERY_BROKEN_BELOW:
                return WorkingStatus.NO

        return WorkingStatus.PENDING if indeterminate else WorkingStatus.YES

    def _timestamps(self, index: Dict[str, Any]) -> Dict[str, Any]:
        stamps = {}
        for name, keys in TIMESTAMP_ALIASES.items():
            value = self._first(index, keys)
            if value is not None:
                stamps[name] = str(value)
        return stamps

