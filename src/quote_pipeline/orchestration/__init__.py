"""
Orchestration layer: cycle coordination, periodic triggers and wiring.
"""

from quote_pipeline.orchestration.coordinator import PipelineCoordinator
from quote_pipeline.orchestration.dependency_container import PipelineContainer
from quote_pipeline.orchestration.ports import CycleRun, CycleStatus, RunState
from quote_pipeline.orchestration.scheduling import PeriodicTrigger

__all__ = [
    "CycleRun",
    "CycleStatus",
    "PeriodicTrigger",
    "PipelineContainer",
    "PipelineCoordinator",
    "RunState",
]
