"""Fusion of the in-water and surface session files into a unified dataset.

Example:
    >>> from seasync.fusion import run_fusion, load_unified_frame
    >>> status = run_fusion(session_root)
    >>> frame = load_unified_frame(session_root / status.unified_csv)
"""

from seasync.fusion.align import DEFAULT_GAP_FACTOR, Match, NearestUnusedMatcher, align
from seasync.fusion.axis import AxisPoint, build_axis
from seasync.fusion.engine import UNIFIED_CSV_FILENAME, fuse_session, run_fusion, write_unified_csv
from seasync.fusion.frame import load_session_frame, load_unified_frame
from seasync.fusion.parse import ParsedReading, ParsedSession, parse_session_file

__all__ = [
    # Parsing
    "ParsedReading",
    "ParsedSession",
    "parse_session_file",
    # Axis
    "AxisPoint",
    "build_axis",
    # Alignment
    "DEFAULT_GAP_FACTOR",
    "Match",
    "NearestUnusedMatcher",
    "align",
    # Engine
    "UNIFIED_CSV_FILENAME",
    "fuse_session",
    "write_unified_csv",
    "run_fusion",
    # Analysis
    "load_unified_frame",
    "load_session_frame",
]
