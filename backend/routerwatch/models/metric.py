"""Metric sample model."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class MetricSample(BaseModel):
    """One health sample per successful collection cycle. Never mutated."""

    model_config = ConfigDict(frozen=True)

    device_id: int
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    cpu_load: int = 0  # percent
    memory_used: int = 0  # bytes
    total_memory: int = 0  # bytes
    uptime: Optional[str] = None
    temperature: float = 0.0  # celsius, 0 when the board has no sensor
