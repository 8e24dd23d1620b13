"""Unit tests for the remote peer client and the replication agent.

The remote peer is the in-memory FakeRemotePeer served through
httpx.MockTransport.
"""

import asyncio
import json
from pathlib import Path

import httpx
import pytest

from seasync.config import MirrorConfig
from seasync.domain import MarkerType, SensorRole
from seasync.exceptions import SessionNotFoundError, SessionStateError, TransportError
from seasync.metadata import SyncMetadataStore, build_session_root
from seasync.mirror import RemotePeerClient, ReplicationAgent, load_mirror_state
from seasync.mirror import progress as progress_module
from seasync.store import MIRROR_PROGRESS_FILENAME, SESSION_CSV, count_data_rows, read_manifest, read_mirror_progress
from synthetic import FakeRemotePeer, generate_readings

pytestmark = pytest.mark.unit

FAST = MirrorConfig(cadence_s=3600.0, stop_grace_s=0.0, catalog_timeout_s=1.0, download_timeout_s=1.0)


@pytest.fixture
def session_root(storage_root: Path) -> Path:
    return build_session_root(storage_root, "m", "2025-11-18T12-00-00-000Z")


@pytest.fixture
def published_peer(fake_peer: FakeRemotePeer) -> FakeRemotePeer:
    """Peer advertising 3 chunks (10 + 10 + 5 rows) for session remote-1."""
    fake_peer.publish("remote-1", generate_readings(count=25, sensor_id="SN10001"), rows_per_chunk=10)
    return fake_peer


class TestRemotePeerClient:
    """Test request mapping and error classification."""

    @pytest.mark.asyncio
    async def test_Should_ReturnSortedEntries_When_CatalogRequested(self, published_peer, peer_url):
        async with RemotePeerClient(peer_url, FAST, transport=published_peer.transport()) as client:
            entries = await client.catalog("remote-1")

        assert [e.index for e in entries] == [0, 1, 2]
        assert entries[0].name == "chunk_00000.csv"

    @pytest.mark.asyncio
    async def test_Should_ReturnEmpty_When_SessionUnknown(self, fake_peer, peer_url):
        async with RemotePeerClient(peer_url, FAST, transport=fake_peer.transport()) as client:
            assert await client.catalog("nothing") == []

    @pytest.mark.asyncio
    async def test_Should_ClassifyHttpStatus_When_PeerReturns503(self, published_peer, peer_url):
        published_peer.fail_catalog = 1

        async with RemotePeerClient(peer_url, FAST, transport=published_peer.transport()) as client:
            with pytest.raises(TransportError) as exc_info:
                await client.catalog("remote-1")

        assert exc_info.value.context["kind"] == "http_status"
        assert exc_info.value.context["status"] == 503

    @pytest.mark.asyncio
    async def test_Should_ClassifyNetworkError_When_PeerUnreachable(self, fake_peer, peer_url):
        fake_peer.unreachable = True

        async with RemotePeerClient(peer_url, FAST, transport=fake_peer.transport()) as client:
            with pytest.raises(TransportError) as exc_info:
                await client.catalog("remote-1")

        assert exc_info.value.context["kind"] == "network_error"

    @pytest.mark.asyncio
    async def test_Should_ClassifyTimeout_When_RequestTimesOut(self, peer_url):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        async with RemotePeerClient(peer_url, FAST, transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(TransportError) as exc_info:
                await client.fetch_chunk("remote-1", "chunk_00000.csv")

        assert exc_info.value.context["kind"] == "timeout"

    @pytest.mark.asyncio
    async def test_Should_ClassifyInvalidResponse_When_CatalogMalformed(self, peer_url):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"chunks": "nope"}))

        async with RemotePeerClient(peer_url, FAST, transport=transport) as client:
            with pytest.raises(TransportError) as exc_info:
                await client.catalog("remote-1")

        assert exc_info.value.context["kind"] == "invalid_response"

    @pytest.mark.asyncio
    async def test_Should_PostMarkerBody_When_MarkerSent(self, fake_peer, peer_url):
        async with RemotePeerClient(peer_url, FAST, transport=fake_peer.transport()) as client:
            await client.post_marker("remote-1", "sync-9", MarkerType.START)

        assert fake_peer.marker_requests == [{"session_id": "remote-1", "sync_id": "sync-9", "type": "START"}]


class TestPoll:
    """Test single poll behaviour."""

    @pytest.mark.asyncio
    async def test_Should_MirrorAllChunks_When_FirstPoll(self, published_peer, peer_url, session_root):
        """Should download, verify and record every advertised chunk."""
        agent = ReplicationAgent(FAST, transport=published_peer.transport())

        root = await agent.start("remote-1", peer_url, session_root=session_root, mission="m")

        manifest = read_manifest(root)
        progress = read_mirror_progress(root)
        assert [c.index for c in manifest.chunks] == [0, 1, 2]
        assert manifest.total_rows == 25
        assert progress.last_chunk_index == 2
        assert progress.bytes_mirrored == manifest.total_bytes
        await agent.stop("remote-1")

    @pytest.mark.asyncio
    async def test_Should_WriteNothing_When_NoNewChunks(self, published_peer, peer_url, session_root):
        """Should leave manifest and cursor untouched when the catalog has nothing new."""
        agent = ReplicationAgent(FAST, transport=published_peer.transport())
        root = await agent.start("remote-1", peer_url, session_root=session_root, mission="m")
        before = {name: (root / name).stat().st_mtime_ns for name in ("manifest.json", MIRROR_PROGRESS_FILENAME)}

        accepted = await agent.poll("remote-1")

        assert accepted == 0
        assert {name: (root / name).stat().st_mtime_ns for name in before} == before
        await agent.stop("remote-1")

    @pytest.mark.asyncio
    async def test_Should_PickUpNewChunks_When_PeerRolls(self, published_peer, peer_url, session_root):
        agent = ReplicationAgent(FAST, transport=published_peer.transport())
        root = await agent.start("remote-1", peer_url, session_root=session_root, mission="m")
        published_peer.publish("remote-1", generate_readings(count=7, sensor_id="SN10001", seed=7), rows_per_chunk=10)

        accepted = await agent.poll("remote-1")

        assert accepted == 1
        assert read_manifest(root).total_rows == 32
        await agent.stop("remote-1")

    @pytest.mark.asyncio
    async def test_Should_NotAdvanceCursor_When_ChunkCorrupted(self, published_peer, peer_url, session_root):
        """Should stop at the first hash mismatch and retry that chunk next poll."""
        published_peer.corrupt_chunks.add("chunk_00001.csv")
        agent = ReplicationAgent(FAST, transport=published_peer.transport())

        root = await agent.start("remote-1", peer_url, session_root=session_root, mission="m")

        assert read_mirror_progress(root).last_chunk_index == 0
        assert [c.index for c in read_manifest(root).chunks] == [0]
        assert not (root / "chunk_00001.csv").exists()
        assert not (root / "chunk_00001.csv.tmp").exists()
        assert "SHA-256 mismatch" in agent.get_stats("remote-1").last_error

        published_peer.corrupt_chunks.clear()
        assert await agent.poll("remote-1") == 2
        assert read_mirror_progress(root).last_chunk_index == 2
        await agent.stop("remote-1")

    @pytest.mark.asyncio
    async def test_Should_KeepRunning_When_CatalogFails(self, published_peer, peer_url, session_root):
        """Should treat a failed catalog request as transient."""
        published_peer.fail_catalog = 1
        agent = ReplicationAgent(FAST, transport=published_peer.transport())

        root = await agent.start("remote-1", peer_url, session_root=session_root, mission="m")

        assert read_mirror_progress(root) is None or read_mirror_progress(root).last_chunk_index == -1
        assert agent.get_stats("remote-1").last_error is not None
        assert await agent.poll("remote-1") == 3
        await agent.stop("remote-1")


class TestSchedule:
    """Test the polling schedule and stop sequence."""

    @pytest.mark.asyncio
    async def test_Should_PollOnCadence_When_Running(self, fake_peer, peer_url, session_root):
        agent = ReplicationAgent(MirrorConfig(cadence_s=0.02, stop_grace_s=0.0), transport=fake_peer.transport())
        root = await agent.start("remote-1", peer_url, session_root=session_root, mission="m")

        fake_peer.publish("remote-1", generate_readings(count=5, sensor_id="SN10001"), rows_per_chunk=5)
        await asyncio.sleep(0.15)

        assert read_manifest(root).total_rows == 5
        assert agent.get_stats("remote-1").polls >= 2
        await agent.stop("remote-1")

    @pytest.mark.asyncio
    async def test_Should_UseFullBandwidthCadence_When_Requested(self, fake_peer, peer_url, session_root):
        config = MirrorConfig(cadence_s=3600.0, full_bandwidth_cadence_s=0.02, stop_grace_s=0.0)
        agent = ReplicationAgent(config, transport=fake_peer.transport())
        await agent.start("remote-1", peer_url, session_root=session_root, mission="m", full_bandwidth=True)

        await asyncio.sleep(0.1)

        assert agent.get_stats("remote-1").polls >= 2
        await agent.stop("remote-1")

    @pytest.mark.asyncio
    async def test_Should_FinalizeAndComplete_When_Stopped(self, published_peer, peer_url, session_root):
        """Should do one final poll, combine, verify and mark the in-water sensor complete."""
        agent = ReplicationAgent(FAST, transport=published_peer.transport())
        root = await agent.start("remote-1", peer_url, session_root=session_root, mission="m")
        published_peer.publish("remote-1", generate_readings(count=4, sensor_id="SN10001", seed=3), rows_per_chunk=10)

        summary = await agent.stop("remote-1")

        assert summary.verified
        assert summary.total_rows == 29
        assert count_data_rows(root / SESSION_CSV) == 29
        assert list(root.glob("chunk_*")) == []
        info = SyncMetadataStore(session_root).read().sensor(SensorRole.IN_WATER)
        assert info.complete
        assert info.session_csv == "in-water_remote-1/session.csv"
        assert info.bytes_mirrored == summary.total_bytes
        assert agent.active_sessions == []

    @pytest.mark.asyncio
    async def test_Should_RejectSecondStart_When_AlreadyMirroring(self, fake_peer, peer_url, session_root):
        agent = ReplicationAgent(FAST, transport=fake_peer.transport())
        await agent.start("remote-1", peer_url, session_root=session_root, mission="m")

        with pytest.raises(SessionStateError):
            await agent.start("remote-1", peer_url, session_root=session_root, mission="m")
        await agent.stop("remote-1")

    @pytest.mark.asyncio
    async def test_Should_RaiseNotFound_When_StoppingUnknown(self):
        agent = ReplicationAgent(FAST)

        with pytest.raises(SessionNotFoundError):
            await agent.stop("nope")


class TestResume:
    """Test resumable mirror state."""

    @pytest.mark.asyncio
    async def test_Should_ResumeFromCursor_When_Restarted(self, published_peer, peer_url, session_root):
        """Should not re-download chunks recorded before a restart."""
        first = ReplicationAgent(FAST, transport=published_peer.transport())
        root = await first.start("remote-1", peer_url, session_root=session_root, mission="m")
        first._sessions["remote-1"].stop_event.set()
        await first._sessions["remote-1"].client.aclose()

        published_peer.requests.clear()
        second = ReplicationAgent(FAST, transport=published_peer.transport())
        await second.start("remote-1", peer_url, session_root=session_root, mission="m")

        assert not any(r.startswith("GET /files/") for r in published_peer.requests)
        assert read_mirror_progress(root).last_chunk_index == 2
        await second.stop("remote-1")

    def test_Should_AdvanceCursor_When_ManifestAhead(self, tmp_path: Path):
        """Should reconcile a cursor left one chunk behind by a crash."""
        from seasync.domain import MirrorProgress
        from seasync.store import write_mirror_progress
        from synthetic import write_chunk_set

        root = tmp_path / "in-water_r1"
        manifest = write_chunk_set(root, generate_readings(count=20), rows_per_chunk=10, session_id="r1")
        write_mirror_progress(root, MirrorProgress(session_id="r1", last_chunk_index=0))

        _, progress = load_mirror_state(root, "r1", "m")

        assert progress.last_chunk_index == 1
        assert progress.bytes_mirrored == manifest.total_bytes
        assert json.loads((root / MIRROR_PROGRESS_FILENAME).read_text())["last_chunk_index"] == 1


def disk_full_once(real):
    """Wrap a writer so its first call fails with ENOSPC."""
    calls = []

    def writer(*args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            raise OSError(28, "No space left on device")
        return real(*args, **kwargs)

    return writer


class TestLocalWriteFailures:
    """Test recovery from local write failures while mirroring."""

    @pytest.mark.asyncio
    async def test_Should_KeepCursor_When_ProgressWriteFails(self, published_peer, peer_url, session_root, monkeypatch):
        """Should leave the cursor unmoved and fetch the chunk again on the next poll."""
        monkeypatch.setattr(progress_module, "write_mirror_progress", disk_full_once(progress_module.write_mirror_progress))
        agent = ReplicationAgent(FAST, transport=published_peer.transport())

        root = await agent.start("remote-1", peer_url, session_root=session_root, mission="m")

        stats = agent.get_stats("remote-1")
        assert stats.last_chunk_index == -1
        assert "No space left" in stats.last_error
        assert read_mirror_progress(root) is None

        assert await agent.poll("remote-1") == 3
        assert [c.index for c in read_manifest(root).chunks] == [0, 1, 2]
        assert read_mirror_progress(root).last_chunk_index == 2

        summary = await agent.stop("remote-1")
        assert summary.verified and summary.total_rows == 25

    @pytest.mark.asyncio
    async def test_Should_KeepPolling_When_ManifestWriteFails(self, fake_peer, peer_url, session_root, monkeypatch):
        """Should keep the schedule alive and still finalize and complete at stop."""
        agent = ReplicationAgent(MirrorConfig(cadence_s=0.02, stop_grace_s=0.0), transport=fake_peer.transport())
        root = await agent.start("remote-1", peer_url, session_root=session_root, mission="m")
        monkeypatch.setattr(progress_module, "write_manifest", disk_full_once(progress_module.write_manifest))

        fake_peer.publish("remote-1", generate_readings(count=5, sensor_id="SN10001"), rows_per_chunk=5)
        await asyncio.sleep(0.15)

        assert agent.get_stats("remote-1").running
        assert read_manifest(root).total_rows == 5
        assert read_mirror_progress(root).last_chunk_index == 0

        summary = await agent.stop("remote-1")
        assert summary.verified and summary.total_rows == 5
        assert SyncMetadataStore(session_root).read().sensor(SensorRole.IN_WATER).complete

    @pytest.mark.asyncio
    async def test_Should_KeepPolling_When_PollRaisesUnexpectedly(self, fake_peer, peer_url, session_root, monkeypatch):
        """Should log a failed cycle and poll again on the next one."""
        agent = ReplicationAgent(MirrorConfig(cadence_s=0.02, stop_grace_s=0.0), transport=fake_peer.transport())
        root = await agent.start("remote-1", peer_url, session_root=session_root, mission="m")
        real_poll = agent.poll
        calls = []

        async def crash_once(session_id):
            calls.append(session_id)
            if len(calls) == 1:
                raise RuntimeError("catalog handler crashed")
            return await real_poll(session_id)

        monkeypatch.setattr(agent, "poll", crash_once)
        fake_peer.publish("remote-1", generate_readings(count=5, sensor_id="SN10001"), rows_per_chunk=5)
        await asyncio.sleep(0.15)

        assert len(calls) >= 2
        assert agent.get_stats("remote-1").running
        assert read_manifest(root).total_rows == 5

        monkeypatch.undo()
        summary = await agent.stop("remote-1")
        assert summary.verified
