"""Run monitor: read-only projection over the run ledger.

Modules
-------
projection
    ``MonitorProjection`` reads the ledger and produces ``RunSnapshot``
    models, a frozen point-in-time view of one run.
renderer
    ``MonitorRenderer`` turns snapshots into Rich renderables.
"""
