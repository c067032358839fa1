"""
Pipeline Results

Run log, run stages and per-entity batch results.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, Iterable, List, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")

MAX_REPORTED_ERRORS = 10


class RunStatus(str, Enum):
    """ETL run status"""
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class PipelineStage(str, Enum):
    """States of one source run, in execution order"""
    IDLE = "idle"
    CONNECTING = "connecting"
    DETERMINING_WATERMARK = "determining_watermark"
    EXTRACTING = "extracting"
    TRANSFORMING = "transforming"
    LOADING = "loading"
    COMPUTING_METRICS = "computing_metrics"
    SUCCESS = "success"
    FAILED = "failed"


class ETLRunLog(BaseModel):
    """
    Record of one orchestrator run for one source.

    Held in memory while the run is in progress and persisted once, when
    the run reaches SUCCESS or FAILED.
    """
    id: Optional[int] = None
    pipeline_name: str
    source_type: str
    status: RunStatus = RunStatus.RUNNING
    records_extracted: int = 0
    records_transformed: int = 0
    records_loaded: int = 0
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: float = 0
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status == RunStatus.SUCCESS


@dataclass
class LoadFailure(Generic[T]):
    """An entity that could not be persisted"""
    entity: T
    error: str


@dataclass
class BatchResult(Generic[T]):
    """Outcome of persisting a batch entity by entity"""
    inserted: List[T] = field(default_factory=list)
    failed: List[LoadFailure[T]] = field(default_factory=list)

    def extend(self, other: "BatchResult[T]") -> None:
        self.inserted.extend(other.inserted)
        self.failed.extend(other.failed)

    def fail_all(self, entities: Iterable[T], error: str) -> None:
        self.failed.extend(LoadFailure(entity=entity, error=error) for entity in entities)

    def summary(self) -> Dict[str, Any]:
        return {
            "inserted": len(self.inserted),
            "failed": len(self.failed),
            "errors": [failure.error for failure in self.failed[:MAX_REPORTED_ERRORS]],
        }
