"""Alert models for RouterWatch."""

from datetime import datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class Alert(BaseModel):
    """Append-only alert event."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    device_id: int
    severity: AlertSeverity
    message: str
    source: str  # short label, e.g. "Interface Down"
    timestamp: datetime = Field(default_factory=datetime.utcnow)
