"""Fusion output models.

A WideRow is one time point of the unified dataset. Each sensor's five
columns are either all populated (the sensor contributed a reading) or all
empty. Values are carried as the exact strings from the input session files.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel

from seasync.domain.reading import SensorRole
from seasync.domain.sync import DriftModel, SyncMarker
from seasync.utils import format_timestamp

__all__ = ["SENSOR_FIELDS", "WIDE_COLUMNS", "WIDE_HEADER", "SensorValues", "WideRow", "FusionResult"]

SENSOR_FIELDS = ["sensor_id", "mode", "value", "TempC", "Vin"]

WIDE_COLUMNS = ["timestamp"] + [
    f"{role.column_prefix}_{field}" for role in (SensorRole.IN_WATER, SensorRole.SURFACE) for field in SENSOR_FIELDS
]
WIDE_HEADER = ",".join(WIDE_COLUMNS)


class SensorValues(BaseModel):
    """Raw column values contributed by one sensor reading."""

    model_config = {"frozen": True, "extra": "forbid"}

    sensor_id: str
    mode: str
    value: str
    temp_c: str = ""
    vin: str = ""

    def as_fields(self) -> List[str]:
        return [self.sensor_id, self.mode, self.value, self.temp_c, self.vin]


class WideRow(BaseModel):
    """One row of the unified output."""

    model_config = {"frozen": True, "extra": "forbid"}

    timestamp: datetime
    in_water: Optional[SensorValues] = None
    surface: Optional[SensorValues] = None

    @property
    def has_both(self) -> bool:
        return self.in_water is not None and self.surface is not None

    def to_csv_fields(self) -> List[str]:
        empty = [""] * len(SENSOR_FIELDS)
        fields = [format_timestamp(self.timestamp)]
        fields.extend(self.in_water.as_fields() if self.in_water else empty)
        fields.extend(self.surface.as_fields() if self.surface else empty)
        return fields


class FusionResult(BaseModel):
    """Summary of one fusion run.

    Attributes:
        output_path: Unified CSV path
        row_count: Rows written (header excluded)
        in_water_rows: Rows with only the in-water sensor populated
        surface_rows: Rows with only the surface sensor populated
        both_rows: Rows with both sensors populated
        skipped_rows: Input rows dropped for unparseable timestamps
        markers: Paired synchronization markers
        drift_model: Drift model applied to in-water timestamps (None = raw)
    """

    model_config = {"frozen": True, "extra": "forbid"}

    output_path: Path
    row_count: int
    in_water_rows: int
    surface_rows: int
    both_rows: int
    skipped_rows: int = 0
    markers: List[SyncMarker] = []
    drift_model: Optional[DriftModel] = None
