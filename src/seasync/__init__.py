"""seasync: dual-sensor recording, mirroring and fusion.

Layers:
-------
- Foundation: exceptions, utils, config, domain
- Storage: store (chunked recorder), metadata (sync_metadata.json)
- Replication: mirror (HTTP peer client and replication agent)
- Synchronization: sync (markers, clock probe, drift models)
- Fusion: fusion (axis, alignment, unified CSV)
- Orchestration: pipeline, cli
"""

__version__ = "0.1.0"
