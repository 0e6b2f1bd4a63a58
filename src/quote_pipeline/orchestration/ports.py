"""Cycle bookkeeping types shared by the coordinator and its triggers."""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


class CycleStatus(str, enum.Enum):
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"  # a source, per-source transform or non-critical sink failed
    FAILED = "failed"  # critical sink failure or unexpected error
    SKIPPED = "skipped"  # trigger arrived while a cycle was running; never recorded


class RunState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class CycleRun:
    """Metadata of one ingestion cycle."""

    cycle_id: int | None
    started_at: datetime
    finished_at: datetime | None = None
    status: CycleStatus = CycleStatus.RUNNING
    stage_counts: dict[str, int | float] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float | None:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "status": self.status.value,
            "stage_counts": dict(self.stage_counts),
            "errors": list(self.errors),
        }
