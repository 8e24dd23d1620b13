"""Reading domain models.

A Reading is one typed sample produced by a sensor. Two reserved modes,
SYNC_START and SYNC_STOP, mark synchronization events rather than data and
carry a correlation id in place of a physical value.

CSV Schema:
-----------
timestamp,sensor_id,mode,value,TempC,Vin
2025-11-18T12:00:01.123456+00:00,SN12345,freerun,123.456789,21.34,12.345

Usage:
------
>>> from seasync.domain import Reading
>>> reading = Reading(time=utc_now(), sensor_id="SN12345", mode="freerun", value=1.5)
>>> reading.to_csv_fields()
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from seasync.utils import format_timestamp

__all__ = [
    "CSV_HEADER",
    "CSV_COLUMNS",
    "SYNC_START_MODE",
    "SYNC_STOP_MODE",
    "MarkerType",
    "SensorRole",
    "Reading",
]

CSV_COLUMNS = ["timestamp", "sensor_id", "mode", "value", "TempC", "Vin"]
CSV_HEADER = ",".join(CSV_COLUMNS)

SYNC_START_MODE = "SYNC_START"
SYNC_STOP_MODE = "SYNC_STOP"


class MarkerType(str, Enum):
    """Synchronization marker kind."""

    START = "START"
    STOP = "STOP"

    @property
    def mode(self) -> str:
        """Reserved reading mode for this marker."""
        return f"SYNC_{self.value}"


class SensorRole(str, Enum):
    """Which side of the sensor pair a stream belongs to.

    The in-water sensor is remote (tethered to the vehicle, replicated over
    HTTP); the surface sensor is local.
    """

    IN_WATER = "in_water"
    SURFACE = "surface"

    @property
    def directory_prefix(self) -> str:
        """Prefix of the per-sensor directory inside a session root."""
        return "in-water" if self is SensorRole.IN_WATER else "surface"

    @property
    def column_prefix(self) -> str:
        """Prefix of this sensor's columns in the unified output."""
        return "inwater" if self is SensorRole.IN_WATER else "surface"


class Reading(BaseModel):
    """One immutable sensor reading.

    Attributes:
        time: Timezone-aware acquisition time
        sensor_id: Sensor serial number
        mode: Acquisition mode ("freerun", "polled") or a reserved marker mode
        value: Physical value (None for markers)
        temp_c: Optional temperature in Celsius
        vin: Optional supply voltage
        sync_id: Correlation id (markers only)
    """

    model_config = {"frozen": True, "extra": "forbid"}

    time: datetime = Field(..., description="Acquisition time (timezone-aware)")
    sensor_id: str = Field(..., description="Sensor serial number")
    mode: str = Field(..., description="Acquisition mode or SYNC_START/SYNC_STOP")
    value: Optional[float] = Field(None, description="Physical value; None for markers")
    temp_c: Optional[float] = Field(None, description="Temperature (C)")
    vin: Optional[float] = Field(None, description="Supply voltage (V)")
    sync_id: Optional[str] = Field(None, description="Marker correlation id")

    @model_validator(mode="after")
    def _check_marker_fields(self) -> "Reading":
        if self.is_marker:
            if not self.sync_id:
                raise ValueError(f"{self.mode} reading requires a sync_id")
        elif self.value is None:
            raise ValueError("data reading requires a value")
        return self

    @classmethod
    def marker(cls, marker_type: MarkerType, sensor_id: str, sync_id: str, time: datetime) -> "Reading":
        """Build a SYNC_START/SYNC_STOP marker reading."""
        return cls(time=time, sensor_id=sensor_id, mode=marker_type.mode, sync_id=sync_id)

    @property
    def is_marker(self) -> bool:
        return self.mode in (SYNC_START_MODE, SYNC_STOP_MODE)

    def to_csv_fields(self) -> List[str]:
        """Render as the six CSV columns (empty string for missing values)."""
        value = self.sync_id if self.is_marker else _format_number(self.value)
        return [
            format_timestamp(self.time),
            self.sensor_id,
            self.mode,
            value or "",
            _format_number(self.temp_c),
            _format_number(self.vin),
        ]


def _format_number(value: Optional[float]) -> str:
    if value is None:
        return ""
    return repr(float(value))
