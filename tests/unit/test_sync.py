"""Unit tests for synchronization: markers, drift models and the clock probe."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from seasync.config import RecorderConfig, TimeSyncConfig
from seasync.domain import ConstantDrift, LinearDrift, MarkerQuality, MarkerType, Reading
from seasync.mirror import RemotePeerClient
from seasync.store import SESSION_CSV, ChunkedSessionStore
from seasync.sync import (
    SYNCED_METHOD,
    UNSYNCED_METHOD,
    MarkerObservation,
    SensorMarkers,
    SyncMarkerCoordinator,
    correct,
    correct_datetime,
    estimate_drift,
    estimate_drift_model,
    extract_markers,
    measure_clock_offset,
)
from seasync.utils import from_epoch_ms

pytestmark = pytest.mark.unit

BASE_MS = 1_763_467_200_000.0


def observed(marker_type: MarkerType, ms: float, sync_id: str = "sync-1") -> MarkerObservation:
    return MarkerObservation(sync_id=sync_id, type=marker_type, time=from_epoch_ms(BASE_MS + ms))


def markers(start_ms=None, stop_ms=None) -> SensorMarkers:
    result = SensorMarkers()
    if start_ms is not None:
        result = result.with_marker(observed(MarkerType.START, start_ms))
    if stop_ms is not None:
        result = result.with_marker(observed(MarkerType.STOP, stop_ms))
    return result


class TestMarkerExtraction:
    """Test recovering markers from a reading stream."""

    def test_Should_FindStartAndStop_When_Present(self):
        t0 = datetime(2025, 11, 18, 12, tzinfo=timezone.utc)
        readings = [
            Reading.marker(MarkerType.START, "SN1", "abc", t0),
            Reading(time=t0 + timedelta(seconds=1), sensor_id="SN1", mode="freerun", value=1.0),
            Reading.marker(MarkerType.STOP, "SN1", "abc", t0 + timedelta(seconds=2)),
        ]

        found = extract_markers(readings)

        assert found.start.time == t0
        assert found.stop.time == t0 + timedelta(seconds=2)
        assert found.describe() == "START+STOP"

    def test_Should_KeepFirst_When_MarkerRepeated(self):
        first = observed(MarkerType.START, 0)
        later = observed(MarkerType.START, 500)

        found = SensorMarkers().with_marker(first).with_marker(later)

        assert found.start == first

    def test_Should_DescribeNone_When_Empty(self):
        assert SensorMarkers().describe() == "none"


class TestDriftEstimation:
    """Test drift model selection."""

    def test_Should_ChooseLinear_When_OffsetGrowsBeyondThreshold(self):
        """Should fit a linear model to a 50 ms drift over 100 s."""
        remote = markers(start_ms=0, stop_ms=100_050)
        local = markers(start_ms=0, stop_ms=100_000)

        model = estimate_drift_model(remote, local)

        assert isinstance(model, LinearDrift)
        assert model.start_offset_ms == pytest.approx(0.0)
        assert model.end_offset_ms == pytest.approx(50.0)
        assert model.drift_rate_per_ms == pytest.approx(0.0005)

    def test_Should_ChooseConstant_When_DriftBelowThreshold(self):
        """Should average the offsets when they differ by less than 2 ms."""
        remote = markers(start_ms=10, stop_ms=100_011)
        local = markers(start_ms=0, stop_ms=100_000)

        model = estimate_drift_model(remote, local)

        assert isinstance(model, ConstantDrift)
        assert model.offset_ms == pytest.approx(10.5)

    def test_Should_ChooseConstant_When_DurationNotPositive(self):
        remote = markers(start_ms=0, stop_ms=30)
        local = markers(start_ms=0, stop_ms=0)

        assert isinstance(estimate_drift_model(remote, local), ConstantDrift)

    def test_Should_UseStartOffset_When_StopMissing(self):
        remote = markers(start_ms=25)
        local = markers(start_ms=0)

        model = estimate_drift_model(remote, local)

        assert model == ConstantDrift(offset_ms=25.0)

    def test_Should_SynthesizeEndpoint_When_OneSideMissing(self):
        """Should fill a one-sided STOP from the coarse offset and mark it synthetic."""
        remote = markers(start_ms=20, stop_ms=100_080)
        local = markers(start_ms=0)

        estimate = estimate_drift(remote, local, coarse_offset_ms=80.0)

        assert isinstance(estimate.model, LinearDrift)
        assert estimate.model.end_offset_ms == pytest.approx(80.0)
        stop = [m for m in estimate.markers if m.type is MarkerType.STOP][0]
        assert stop.quality is MarkerQuality.SYNTHETIC
        start = [m for m in estimate.markers if m.type is MarkerType.START][0]
        assert start.quality is MarkerQuality.MEASURED

    def test_Should_UseCoarseOffset_When_NoMarkers(self):
        model = estimate_drift_model(SensorMarkers(), SensorMarkers(), coarse_offset_ms=-12.0)

        assert model == ConstantDrift(offset_ms=-12.0)

    def test_Should_ReturnNone_When_NothingKnown(self):
        assert estimate_drift_model(SensorMarkers(), SensorMarkers()) is None


class TestCorrection:
    """Test applying drift models."""

    def test_Should_SubtractOffset_When_Constant(self):
        assert correct(1000.0, ConstantDrift(offset_ms=40.0)) == 960.0

    def test_Should_PassThrough_When_NoModel(self):
        assert correct(1000.0, None) == 1000.0

    def test_Should_InterpolateOffset_When_Linear(self):
        """Should map the remote STOP time onto the local STOP time."""
        model = estimate_drift_model(markers(start_ms=0, stop_ms=100_050), markers(start_ms=0, stop_ms=100_000))

        assert correct(BASE_MS + 100_050, model) == pytest.approx(BASE_MS + 100_000, abs=0.1)
        assert correct(BASE_MS, model) == pytest.approx(BASE_MS)

    def test_Should_ShiftDatetime_When_Corrected(self):
        t = datetime(2025, 11, 18, 12, 0, 0, 40000, tzinfo=timezone.utc)

        assert correct_datetime(t, ConstantDrift(offset_ms=40.0)) == datetime(2025, 11, 18, 12, tzinfo=timezone.utc)


class TestClockProbe:
    """Test the one-round-trip clock offset probe."""

    @staticmethod
    def _clock(*values):
        it = iter(values)
        return lambda: next(it)

    @pytest.mark.asyncio
    async def test_Should_ComputeMidpointOffset_When_ResponseValid(self, peer_url):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"remote_unix_ms": 10_070.0, "remote_iso": "x"})
        )

        async with RemotePeerClient(peer_url, transport=transport) as client:
            result = await measure_clock_offset(client, TimeSyncConfig(), clock_ms=self._clock(10_000.0, 10_040.0))

        assert result.ok
        assert result.method == SYNCED_METHOD
        assert result.offset_ms == pytest.approx(50.0)
        assert result.uncertainty_ms == pytest.approx(20.0)

    @pytest.mark.asyncio
    async def test_Should_ReportHighRtt_When_RoundTripTooSlow(self, peer_url):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"remote_unix_ms": 10_000.0, "remote_iso": "x"})
        )

        async with RemotePeerClient(peer_url, transport=transport) as client:
            result = await measure_clock_offset(
                client, TimeSyncConfig(max_rtt_ms=200.0), clock_ms=self._clock(0.0, 500.0)
            )

        assert not result.ok
        assert result.error == "high_rtt"
        assert result.method == UNSYNCED_METHOD
        assert result.offset_ms is None

    @pytest.mark.asyncio
    async def test_Should_ReportInvalidRemoteTime_When_FieldMissing(self, peer_url):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"remote_iso": "x"}))

        async with RemotePeerClient(peer_url, transport=transport) as client:
            result = await measure_clock_offset(client)

        assert result.error == "invalid_remote_time"

    @pytest.mark.asyncio
    async def test_Should_ReportTimeout_When_PeerSlow(self, peer_url):
        def handler(request):
            raise httpx.ConnectTimeout("slow", request=request)

        async with RemotePeerClient(peer_url, transport=httpx.MockTransport(handler)) as client:
            result = await measure_clock_offset(client)

        assert result.error == "timeout"

    @pytest.mark.asyncio
    async def test_Should_ReportNetworkError_When_Unreachable(self, fake_peer, peer_url):
        fake_peer.unreachable = True

        async with RemotePeerClient(peer_url, transport=fake_peer.transport()) as client:
            result = await measure_clock_offset(client)

        assert result.error == "network_error"

    @pytest.mark.asyncio
    async def test_Should_MeasurePeerOffset_When_FakePeerAhead(self, fake_peer, peer_url):
        fake_peer.clock_offset_ms = 250.0

        async with RemotePeerClient(peer_url, transport=fake_peer.transport()) as client:
            result = await measure_clock_offset(client)

        assert result.ok
        assert result.offset_ms == pytest.approx(250.0, abs=50.0)


class TestCoordinator:
    """Test paired marker stamping."""

    @pytest.mark.asyncio
    async def test_Should_StampBothStreams_When_PeerReachable(self, storage_root, fake_peer, peer_url):
        store = ChunkedSessionStore(RecorderConfig(flush_interval_ms=60_000), storage_root)
        async with RemotePeerClient(peer_url, transport=fake_peer.transport()) as client:
            coordinator = SyncMarkerCoordinator(store, client)
            handle = await coordinator.start("SN20001", "m", remote_session_id="remote-1", sync_id="sync-7")
            await coordinator.stop(handle, remote_session_id="remote-1")

        assert [(r["type"], r["sync_id"]) for r in fake_peer.marker_requests] == [("START", "sync-7"), ("STOP", "sync-7")]
        lines = (handle.root_path / SESSION_CSV).read_text(encoding="utf-8").splitlines()[1:]
        assert [line.split(",")[2] for line in lines] == ["SYNC_START", "SYNC_STOP"]

    @pytest.mark.asyncio
    async def test_Should_KeepRecording_When_RemoteMarkerFails(self, storage_root, fake_peer, peer_url):
        """Should log and continue when the peer cannot take the marker."""
        fake_peer.unreachable = True
        store = ChunkedSessionStore(RecorderConfig(flush_interval_ms=60_000), storage_root)
        async with RemotePeerClient(peer_url, transport=fake_peer.transport()) as client:
            coordinator = SyncMarkerCoordinator(store, client)
            handle = await coordinator.start("SN20001", "m", remote_session_id="remote-1")

            assert handle.session_id in store.active_sessions
            assert await coordinator.notify_remote("remote-1", handle.sync_id, MarkerType.STOP) is False
            summary = await coordinator.stop(handle, remote_session_id="remote-1")

        assert summary.verified
        assert summary.total_rows == 2

    @pytest.mark.asyncio
    async def test_Should_RecordLocally_When_NoPeer(self, storage_root):
        store = ChunkedSessionStore(RecorderConfig(flush_interval_ms=60_000), storage_root)
        coordinator = SyncMarkerCoordinator(store)

        handle = await coordinator.start("SN20001", "m", remote_session_id="ignored")
        summary = await coordinator.stop(handle)

        assert handle.sync_id
        assert summary.total_rows == 2
