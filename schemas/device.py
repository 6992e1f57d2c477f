"""
Pydantic schema for the canonical device record produced by the normalizer
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, Dict, Any
from models.base import WorkingStatus


class DeviceRecord(BaseModel):
    """
    Canonical form of one inspected unit.

    Ensures:
    - IMEI is present and stripped
    - Battery health is an integer percentage (0-100)
    - Text fields are stripped, empty strings become None
    """

    model_config = ConfigDict(use_enum_values=False, str_strip_whitespace=True, protected_namespaces=())

    imei: str = Field(..., min_length=1, max_length=32)

    brand: Optional[str] = None
    model: Optional[str] = None
    model_number: Optional[str] = None
    storage: Optional[str] = None
    color: Optional[str] = None
    carrier: Optional[str] = None
    description: Optional[str] = None
    size: Optional[str] = None

    working_status: WorkingStatus = WorkingStatus.YES
    battery_health: Optional[int] = Field(None, ge=0, le=100)
    condition_grade: Optional[str] = None
    notes: Optional[str] = None

    source_timestamps: Dict[str, Any] = Field(default_factory=dict)

    @field_validator(
        "brand", "model", "model_number", "storage", "color", "carrier",
        "description", "size", "condition_grade", "notes",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    def to_unit_values(self) -> Dict[str, Any]:
        """Column values for the device_records upsert."""
        data = self.model_dump(exclude={"size"})
        data["working_status"] = self.working_status
        return data
