"""Integration tests using synthetic data with seasync.

These tests verify that synthetically generated session pairs and the
bundled example run through fusion end to end.
"""

import importlib.util
from pathlib import Path

import pytest

pytestmark = pytest.mark.integration

EXAMPLE = Path(__file__).resolve().parents[2] / "examples" / "01_mirrored_session_fusion.py"


def load_example():
    spec = importlib.util.spec_from_file_location("mirrored_session_example", EXAMPLE)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class TestSyntheticIntegration:
    """Integration tests using synthetic data with fusion."""

    def test_drifting_pair_fuses_completely(self, storage_root: Path):
        """A pair with offset, drift and jitter fuses into dual rows only."""
        from seasync.domain import FusionState
        from seasync.fusion import run_fusion
        from synthetic import build_session_pair, generate_readings

        pair = build_session_pair(
            storage_root,
            in_water=generate_readings(
                count=120, rate_hz=2.0, sensor_id="SN10001", clock_offset_ms=300.0, drift_ppm=150.0, jitter_ms=3.0, sync_id="s"
            ),
            surface=generate_readings(count=120, rate_hz=2.0, sensor_id="SN20001", seed=7, jitter_ms=3.0, sync_id="s"),
            rows_per_chunk=17,
            coarse_offset_ms=300.0,
        )

        status = run_fusion(pair.session_root)

        assert status.status is FusionState.COMPLETE
        assert status.both_rows == 120
        assert status.in_water_rows == 0 and status.surface_rows == 0

    def test_example_runs_end_to_end(self, tmp_path: Path, monkeypatch):
        """The bundled example records, mirrors and fuses a session pair."""
        example = load_example()
        monkeypatch.setenv("OUTPUT_ROOT", str(tmp_path / "example"))
        monkeypatch.setenv("N_READINGS", "12")
        monkeypatch.setenv("INTERVAL_S", "0.06")

        settings = example.ExampleSettings()
        artifacts = example.run_pipeline(settings)

        assert settings.n_readings == 12
        assert artifacts["unified_csv"].exists()
        assert artifacts["sync_metadata"].exists()
