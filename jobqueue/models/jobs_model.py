from sqlalchemy.sql.schema import Column, Index
from sqlalchemy.sql.sqltypes import String, Integer, JSON, Text

from jobqueue.constants.queue_status import JobStatus
from jobqueue.models.base_model import BaseModel, UTCDateTime, utcnow


class Job(BaseModel):
    __tablename__ = "jobs"

    # core
    job_type = Column(String(100), nullable=False, index=True)
    payload = Column(JSON, nullable=False, default=dict)
    priority = Column(Integer, nullable=False, default=0)

    # status and scheduling
    status = Column(String(20), nullable=False, default=JobStatus.pending.value, index=True)
    available_at = Column(UTCDateTime(), nullable=False, default=utcnow)
    completed_at = Column(UTCDateTime(), nullable=True)

    # retry logic
    attempt_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    last_error = Column(Text, nullable=True)

    # lease, set only while leased
    lease_owner = Column(String(255), nullable=True)
    lease_expires_at = Column(UTCDateTime(), nullable=True, index=True)

    # scoping, carried through untouched
    tenant_id = Column(String(64), nullable=True, index=True)
    user_id = Column(String(64), nullable=True, index=True)

    result = Column(JSON, nullable=True)

    __table_args__ = (
        Index("ix_jobs_claim", "status", "priority", "created_at"),
    )

    @property
    def attempt_ceiling(self) -> int:
        """Total number of leases this job may receive; every job gets at least one."""
        return max(self.max_retries or 0, 1)

    def __repr__(self):
        return f"<Job id={self.id} type={self.job_type} status={self.status} attempts={self.attempt_count}>"
