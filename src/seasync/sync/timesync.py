"""Coarse clock-offset probe over one HTTP round trip.

Algorithm:
----------
- t1: local time before the request
- GET /api/sync/time -> remote_unix_ms
- t4: local time after the response
- rtt = t4 - t1
- offset = remote_unix_ms - (t1 + rtt / 2)
- uncertainty = rtt / 2

A round trip slower than ``max_rtt_ms`` is reported as ``high_rtt``; the
probe never raises, failures are carried in ``TimeSyncResult.error``.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from seasync.config import TimeSyncConfig
from seasync.domain import TimeSyncResult
from seasync.exceptions import TransportError
from seasync.mirror.client import RemotePeerClient
from seasync.utils import from_epoch_ms, utc_now

logger = logging.getLogger(__name__)

__all__ = ["SYNCED_METHOD", "UNSYNCED_METHOD", "measure_clock_offset"]

SYNCED_METHOD = "ntp_handshake_v1"
UNSYNCED_METHOD = "unsynced"


async def measure_clock_offset(
    client: RemotePeerClient,
    config: Optional[TimeSyncConfig] = None,
    clock_ms: Callable[[], float] = lambda: time.time() * 1000.0,
) -> TimeSyncResult:
    """Measure remote - local clock offset against the peer.

    Args:
        client: Peer client
        config: Timeout and RTT ceiling (defaults: 5 s, 200 ms)
        clock_ms: Local wall clock in epoch milliseconds

    Returns:
        TimeSyncResult; ``error`` is one of timeout, network_error, high_rtt,
        invalid_remote_time on failure
    """
    config = config or TimeSyncConfig()
    t1 = clock_ms()
    request_started_at = from_epoch_ms(t1)

    def failed(error: str, remote_time: Optional[str] = None) -> TimeSyncResult:
        logger.warning(f"Clock offset probe against {client.base_url} failed: {error}")
        return TimeSyncResult(
            method=UNSYNCED_METHOD,
            request_started_at=request_started_at,
            remote_response_time=remote_time,
            response_received_at=utc_now(),
            error=error,
        )

    try:
        body = await client.server_time(timeout=config.timeout_s)
    except TransportError as e:
        return failed("timeout" if e.context.get("kind") == "timeout" else "network_error")

    t4 = clock_ms()
    remote_ms = body.get("remote_unix_ms")
    remote_iso = body.get("remote_iso")
    if isinstance(remote_ms, bool) or not isinstance(remote_ms, (int, float)) or not remote_iso:
        return failed("invalid_remote_time")

    rtt = t4 - t1
    if rtt > config.max_rtt_ms:
        return failed("high_rtt", remote_iso)

    offset = remote_ms - (t1 + rtt / 2.0)
    logger.info(f"Clock offset {offset:.1f}ms +/- {rtt / 2.0:.1f}ms (rtt {rtt:.1f}ms)")
    return TimeSyncResult(
        method=SYNCED_METHOD,
        offset_ms=offset,
        uncertainty_ms=rtt / 2.0,
        request_started_at=request_started_at,
        remote_response_time=remote_iso,
        response_received_at=from_epoch_ms(t4),
    )
