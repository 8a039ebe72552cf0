"""Import pipeline stages: normalization, state preload, resolution,
materialization, ordered writes and result aggregation.

Each stage is callable on its own; ``ingest`` wires them into runs.
"""
