"""Remote session mirroring over HTTP.

Example:
    >>> from seasync.mirror import ReplicationAgent, RemotePeerClient
"""

from seasync.mirror.agent import MirrorStats, ReplicationAgent
from seasync.mirror.client import CatalogEntry, RemotePeerClient
from seasync.mirror.progress import load_mirror_state, record_mirrored_chunk

__all__ = [
    "ReplicationAgent",
    "MirrorStats",
    "RemotePeerClient",
    "CatalogEntry",
    "load_mirror_state",
    "record_mirrored_chunk",
]
