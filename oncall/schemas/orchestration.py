"""Orchestration status schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from oncall.models.orchestration import OrchestrationStatus


class OrchestrationStatusResponse(BaseModel):
    """Current state of an orchestration instance."""

    model_config = ConfigDict(from_attributes=True)

    instance_id: str
    name: str
    status: OrchestrationStatus
    output: Any = None
    error: str | None = None
    wake_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
