from datetime import datetime
from typing import Dict, Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ScheduleCreate(BaseModel):
    """Recurring job definition, upserted by name"""

    name: str = Field(..., min_length=1, max_length=100)
    cadence: str = Field(..., description="Five-field crontab expression, evaluated in UTC")
    job_type: str = Field(..., min_length=1, max_length=100)
    payload_template: Dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    max_retries: int = Field(3, ge=0, le=100)
    enabled: bool = True


class ScheduleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    cadence: str
    job_type: str
    payload_template: Dict[str, Any]
    priority: int
    max_retries: int
    enabled: bool
    last_fired_at: Optional[datetime] = None
    last_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime
