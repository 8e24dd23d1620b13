"""Pytest configuration and shared fixtures for seasync tests.

Provides:
- Temporary storage roots and fast settings
- Fake remote peer and its httpx transport
- Session pair builders backed by the synthetic package
"""

from pathlib import Path
from typing import Any, Dict

import pytest

from seasync.config import Settings
from synthetic import DEFAULT_START_TIME, FakeRemotePeer, build_session_pair, readings_at

PEER_URL = "http://vehicle.test:9150"

# ============================================================================
# Temporary Working Directories
# ============================================================================


@pytest.fixture
def storage_root(tmp_path: Path) -> Path:
    """Empty storage root for recordings.

    Structure:
        tmp_path/
        └── sessions/
    """
    root = tmp_path / "sessions"
    root.mkdir()
    return root


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def settings_dict(storage_root: Path) -> Dict[str, Any]:
    """Settings with short intervals so async tests finish quickly."""
    return {
        "storage": {"root": str(storage_root)},
        "recorder": {"flush_interval_ms": 10, "roll_interval_s": 3600.0, "max_buffer_size": 1000},
        "mirror": {
            "cadence_s": 0.05,
            "full_bandwidth_cadence_s": 0.02,
            "catalog_timeout_s": 1.0,
            "download_timeout_s": 1.0,
            "marker_timeout_s": 1.0,
            "stop_grace_s": 0.0,
        },
        "time_sync": {"timeout_s": 1.0, "max_rtt_ms": 1000.0},
        "fusion": {"tolerance_ms": 50.0, "consolidation_ms": 25.0, "drift_threshold_ms": 2.0},
        "logging": {"level": "DEBUG"},
    }


@pytest.fixture
def settings(settings_dict: Dict[str, Any]) -> Settings:
    return Settings(**settings_dict)


@pytest.fixture
def config_toml(tmp_path: Path, storage_root: Path) -> Path:
    """Minimal TOML configuration file."""
    path = tmp_path / "seasync.toml"
    path.write_text(
        f"""
[storage]
root = "{storage_root.as_posix()}"

[fusion]
tolerance_ms = 40.0

[logging]
level = "WARNING"
""",
        encoding="utf-8",
    )
    return path


# ============================================================================
# Remote Peer Fixtures
# ============================================================================


@pytest.fixture
def peer_url() -> str:
    return PEER_URL


@pytest.fixture
def fake_peer() -> FakeRemotePeer:
    return FakeRemotePeer(sensor_id="SN10001")


@pytest.fixture
def peer_transport(fake_peer: FakeRemotePeer):
    return fake_peer.transport()


# ============================================================================
# Session Pair Fixtures
# ============================================================================


@pytest.fixture
def start_time():
    return DEFAULT_START_TIME


@pytest.fixture
def simple_pair(storage_root: Path):
    """Stopped session pair: in-water at 0/60/120 ms, surface at 0/61/119 ms."""
    return build_session_pair(
        storage_root,
        in_water=readings_at([0, 60, 120], sensor_id="SN10001", value_base=1.0),
        surface=readings_at([0, 61, 119], sensor_id="SN20001", value_base=100.0),
    )


@pytest.fixture
def surface_only_pair(storage_root: Path):
    """Stopped session root where only the surface sensor recorded."""
    return build_session_pair(
        storage_root,
        in_water=None,
        surface=readings_at([0, 100, 200], sensor_id="SN20001"),
    )
