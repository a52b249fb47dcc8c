"""
Warming run state.

A single WarmingRun record lives in the cache store under `warming:status`.
It is created when a cycle starts, mutated only by that run, and left in
`idle` with final counters when the run ends.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WarmingState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class WarmingTrigger(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class WarmingRun(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: WarmingState = WarmingState.IDLE
    run_id: Optional[str] = None
    trigger: Optional[WarmingTrigger] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    items_warmed: int = 0
    categories_processed: int = 0
    failed_categories: List[str] = Field(default_factory=list)
    last_error: Optional[str] = None
    duration_ms: Optional[int] = None

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class WarmingResult(BaseModel):
    """Outcome of a trigger call."""
    success: bool
    message: str
    run: Optional[WarmingRun] = None
