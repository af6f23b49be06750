from datetime import datetime
from typing import Dict, Any, Optional, List

from pydantic import BaseModel, ConfigDict, Field

from jobqueue.constants.queue_status import JobStatus


class JobCreate(BaseModel):
    """Schema for Job Creation"""

    job_type: str = Field(..., min_length=1, max_length=100)
    payload: Dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    max_retries: int = Field(3, ge=0, le=100)
    tenant_id: Optional[str] = Field(None, max_length=64)
    user_id: Optional[str] = Field(None, max_length=64)
    available_at: Optional[datetime] = None


class JobResponse(BaseModel):
    """Schema for job response."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    job_type: str
    payload: Dict[str, Any]
    priority: int
    status: str
    attempt_count: int
    max_retries: int
    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    lease_owner: Optional[str] = None
    lease_expires_at: Optional[datetime] = None
    available_at: datetime
    last_error: Optional[str] = None
    result: Optional[Any] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


class JobLogResponse(BaseModel):
    """One entry of a job's activity log."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    job_id: int
    event: str
    level: str
    attempt: int
    message: str
    details: Dict[str, Any]
    created_at: datetime


class JobStats(BaseModel):
    """Stats snapshot, computed on read."""
    counts: Dict[str, int]
    total: int
    type_counts: Dict[str, int]
    avg_completion_seconds: Optional[float] = None
    completed_in_window: int
    oldest_pending_age_seconds: Optional[float] = None
    window_hours: float
    tenant_id: Optional[str] = None
    generated_at: datetime



def get_valid_statuses() -> List[str]:
    """Get list of valid statuses for validation."""
    return [status.value for status in JobStatus]
