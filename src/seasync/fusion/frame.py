"""pandas views of session and unified CSV files for analysis."""

from __future__ import annotations

from pathlib import Path

import pandas as pd

from seasync.domain import CSV_COLUMNS, SYNC_START_MODE, SYNC_STOP_MODE, WIDE_COLUMNS
from seasync.exceptions import FusionError, MissingInputError

__all__ = ["load_unified_frame", "load_session_frame"]


def load_unified_frame(path: Path | str) -> pd.DataFrame:
    """Load unified_session.csv with a UTC DatetimeIndex.

    Sensor columns stay strings (empty cells become NaN) so values can be
    compared verbatim against the input session files. Numeric analysis can
    call ``pd.to_numeric`` on the columns it needs.

    Raises:
        MissingInputError: If the file does not exist
        FusionError: If the header is not the unified schema
    """
    path = Path(path)
    if not path.exists():
        raise MissingInputError(f"Unified file not found: {path}")

    frame = pd.read_csv(path, dtype=str, keep_default_na=False, na_values=[""])
    if list(frame.columns) != WIDE_COLUMNS:
        raise FusionError(f"Unexpected unified header in {path}: {list(frame.columns)}")

    frame["timestamp"] = pd.to_datetime(frame["timestamp"], utc=True, format="ISO8601")
    return frame.set_index("timestamp")


def load_session_frame(path: Path | str, include_markers: bool = False) -> pd.DataFrame:
    """Load a sensor session.csv; marker rows are dropped unless requested."""
    path = Path(path)
    if not path.exists():
        raise MissingInputError(f"Session file not found: {path}")

    frame = pd.read_csv(path, dtype=str, keep_default_na=False, na_values=[""])
    if list(frame.columns) != CSV_COLUMNS:
        raise FusionError(f"Unexpected session header in {path}: {list(frame.columns)}")

    if not include_markers:
        frame = frame[~frame["mode"].isin([SYNC_START_MODE, SYNC_STOP_MODE])]
    frame["timestamp"] = pd.to_datetime(frame["timestamp"], utc=True, format="ISO8601")
    return frame.set_index("timestamp")
