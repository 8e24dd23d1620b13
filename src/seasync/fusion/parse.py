"""Session file parsing for fusion.

Marker rows (SYNC_START / SYNC_STOP) are separated from data rows. Rows
whose timestamp cannot be parsed are skipped and counted. Column values are
kept as the exact strings from the file so fusion can only copy, never
reformat, input values.
"""

from __future__ import annotations

import csv
from dataclasses import dataclass, field
from datetime import datetime
import logging
from pathlib import Path
from typing import List

from seasync.domain import CSV_COLUMNS, SYNC_START_MODE, SYNC_STOP_MODE, MarkerType, SensorValues
from seasync.exceptions import FusionError, MissingInputError
from seasync.sync.markers import MarkerObservation, SensorMarkers
from seasync.utils import parse_timestamp, to_epoch_ms

logger = logging.getLogger(__name__)

__all__ = ["ParsedReading", "ParsedSession", "parse_session_file"]


@dataclass(frozen=True)
class ParsedReading:
    time: datetime
    time_ms: float
    values: SensorValues


@dataclass
class ParsedSession:
    path: Path
    readings: List[ParsedReading] = field(default_factory=list)
    markers: SensorMarkers = field(default_factory=SensorMarkers)
    skipped_rows: int = 0

    @property
    def times_ms(self) -> List[float]:
        return [reading.time_ms for reading in self.readings]


def parse_session_file(path: Path) -> ParsedSession:
    """Parse a session.csv into time-ordered readings plus markers.

    Raises:
        MissingInputError: If the file does not exist
        FusionError: If the header does not match the CSV schema
    """
    path = Path(path)
    if not path.exists():
        raise MissingInputError(f"Session file not found: {path}", context={"path": str(path)})

    parsed = ParsedSession(path=path)
    with open(path, "r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        if reader.fieldnames != CSV_COLUMNS:
            raise FusionError(
                f"Unexpected header in {path}: {reader.fieldnames}",
                context={"path": str(path), "expected": CSV_COLUMNS},
            )

        for row in reader:
            try:
                time = parse_timestamp(row["timestamp"] or "")
            except ValueError:
                parsed.skipped_rows += 1
                continue

            mode = row["mode"] or ""
            if mode in (SYNC_START_MODE, SYNC_STOP_MODE):
                marker_type = MarkerType.START if mode == SYNC_START_MODE else MarkerType.STOP
                parsed.markers = parsed.markers.with_marker(
                    MarkerObservation(sync_id=row["value"] or "unknown", type=marker_type, time=time)
                )
                continue

            parsed.readings.append(
                ParsedReading(
                    time=time,
                    time_ms=to_epoch_ms(time),
                    values=SensorValues(
                        sensor_id=row["sensor_id"] or "",
                        mode=mode,
                        value=row["value"] or "",
                        temp_c=row["TempC"] or "",
                        vin=row["Vin"] or "",
                    ),
                )
            )

    parsed.readings.sort(key=lambda reading: reading.time_ms)
    if parsed.skipped_rows:
        logger.warning(f"Skipped {parsed.skipped_rows} rows with unparseable timestamps in {path}")
    logger.debug(f"Parsed {len(parsed.readings)} readings from {path} (markers: {parsed.markers.describe()})")
    return parsed
