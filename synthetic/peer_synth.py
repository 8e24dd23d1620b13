"""In-memory fake of the vehicle-side sensor API.

`FakeRemotePeer` keeps chunked sessions in memory and answers the four
endpoints seasync talks to through an ``httpx.MockTransport``. It is meant
for tests and demos that exercise the mirror, marker and clock-probe code
paths without a network.

Endpoints served:
- GET  /record/snapshots?session_id=ID
- GET  /files/{session_id}/{name}
- POST /record/sync-marker
- GET  /api/sync/time

Failure injection:
- `fail_catalog`: next N catalog requests answer HTTP 503
- `corrupt_chunks`: chunk names served with altered bytes (hash mismatch)
- `unreachable`: every request raises a connection error
- `time_payload`: replaces the time endpoint body

Example:
        peer = FakeRemotePeer(clock_offset_ms=40.0)
        peer.publish("remote-1", generate_readings(count=30), rows_per_chunk=10)
        agent = ReplicationAgent(settings.mirror, transport=peer.transport())
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import json
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

import httpx

from seasync.domain import MarkerType, Reading
from seasync.store import chunk_name
from seasync.utils import to_epoch_ms, utc_now
from synthetic.readings_synth import render_csv, split_chunks
from synthetic.utils import sha256_bytes


@dataclass
class PeerSession:
    """Chunks and pending readings of one remote recording."""

    session_id: str
    sensor_id: str
    chunks: List[bytes] = field(default_factory=list)
    pending: List[Reading] = field(default_factory=list)

    def catalog(self) -> List[Dict[str, Any]]:
        return [
            {"index": i, "name": chunk_name(i), "sha256": sha256_bytes(data), "size_bytes": len(data)}
            for i, data in enumerate(self.chunks)
        ]


class FakeRemotePeer:
    """In-memory remote peer.

    Args:
        sensor_id: Serial number stamped on marker readings
        clock_offset_ms: Peer clock minus local clock
        now: Local wall clock (aware datetime)
        roll_on_stop: Finalize pending readings into a chunk on a STOP marker
    """

    def __init__(
        self,
        sensor_id: str = "SN10001",
        clock_offset_ms: float = 0.0,
        now: Callable[[], datetime] = utc_now,
        roll_on_stop: bool = True,
    ):
        self.sensor_id = sensor_id
        self.clock_offset_ms = clock_offset_ms
        self.now = now
        self.roll_on_stop = roll_on_stop

        self.sessions: Dict[str, PeerSession] = {}
        self.marker_requests: List[Dict[str, Any]] = []
        self.requests: List[str] = []

        self.fail_catalog = 0
        self.corrupt_chunks: Set[str] = set()
        self.unreachable = False
        self.time_payload: Optional[Dict[str, Any]] = None

    # ------------------------------------------------------------------
    # Session content
    # ------------------------------------------------------------------

    def session(self, session_id: str) -> PeerSession:
        if session_id not in self.sessions:
            self.sessions[session_id] = PeerSession(session_id=session_id, sensor_id=self.sensor_id)
        return self.sessions[session_id]

    def record(self, session_id: str, readings: Sequence[Reading]) -> None:
        """Append readings to the open (not yet advertised) chunk."""
        self.session(session_id).pending.extend(readings)

    def roll(self, session_id: str) -> Optional[str]:
        """Finalize pending readings into the next chunk; returns its name."""
        session = self.session(session_id)
        if not session.pending:
            return None
        session.pending.sort(key=lambda r: r.time)
        session.chunks.append(render_csv(session.pending))
        session.pending = []
        return chunk_name(len(session.chunks) - 1)

    def publish(self, session_id: str, readings: Sequence[Reading], rows_per_chunk: int = 25) -> List[str]:
        """Advertise readings as finalized chunks of ``rows_per_chunk`` rows."""
        names = []
        for group in split_chunks(readings, rows_per_chunk):
            self.record(session_id, group)
            names.append(self.roll(session_id))
        return names

    def peer_time(self) -> datetime:
        return self.now() + timedelta(milliseconds=self.clock_offset_ms)

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append(f"{request.method} {path}")
        if self.unreachable:
            raise httpx.ConnectError("peer unreachable", request=request)

        if request.method == "GET" and path == "/record/snapshots":
            return self._catalog(request)
        if request.method == "GET" and path.startswith("/files/"):
            return self._file(path)
        if request.method == "POST" and path == "/record/sync-marker":
            return self._marker(request)
        if request.method == "GET" and path == "/api/sync/time":
            return self._time()
        return httpx.Response(404, json={"error": f"no route {request.method} {path}"})

    def _catalog(self, request: httpx.Request) -> httpx.Response:
        if self.fail_catalog > 0:
            self.fail_catalog -= 1
            return httpx.Response(503, json={"error": "busy"})
        session_id = request.url.params.get("session_id", "")
        if session_id not in self.sessions:
            return httpx.Response(200, json=[])
        return httpx.Response(200, json=self.sessions[session_id].catalog())

    def _file(self, path: str) -> httpx.Response:
        parts = path.split("/")
        if len(parts) != 4:
            return httpx.Response(404)
        _, _, session_id, name = parts
        session = self.sessions.get(session_id)
        entries = {entry["name"]: entry["index"] for entry in session.catalog()} if session else {}
        if name not in entries:
            return httpx.Response(404)

        data = session.chunks[entries[name]]
        if name in self.corrupt_chunks:
            data = data + b"corrupted\n"
        return httpx.Response(200, content=data)

    def _marker(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.marker_requests.append(body)
        marker_type = MarkerType(body["type"])
        session = self.session(body["session_id"])
        session.pending.append(Reading.marker(marker_type, self.sensor_id, body["sync_id"], self.peer_time()))
        if marker_type is MarkerType.STOP and self.roll_on_stop:
            self.roll(session.session_id)
        return httpx.Response(200, json={"ok": True})

    def _time(self) -> httpx.Response:
        if self.time_payload is not None:
            return httpx.Response(200, json=self.time_payload)
        remote = self.peer_time()
        return httpx.Response(200, json={"remote_unix_ms": to_epoch_ms(remote), "remote_iso": remote.isoformat()})
