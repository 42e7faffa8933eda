"""
Workflows
=========

End-to-end runs for each data source:

    - acoustic: "AV Bnet" from BirdNET detections and validated calls
    - point_count: "PC HDS" from distance-sampling point counts

Each module exposes prepare(settings) -> PreparedRun and
run(settings, engine) -> RunOutcome.
"""

from nobo_abundance.workflows.common import PreparedRun, RunOutcome, execute

__all__ = ["PreparedRun", "RunOutcome", "execute"]
