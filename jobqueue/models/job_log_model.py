from sqlalchemy.sql.schema import Column, ForeignKey, Index
from sqlalchemy.sql.sqltypes import String, Integer, JSON, Text

from jobqueue.constants.queue_status import LogLevel
from jobqueue.models.base_model import BaseModel


class JobLog(BaseModel):
    """
    Append-only activity record of a job: one row per claim, outcome,
    reclaim or manual requeue. last_error on the job only keeps the latest
    failure; this keeps every attempt.
    """
    __tablename__ = "job_logs"

    job_id = Column(Integer, ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    event = Column(String(30), nullable=False)
    level = Column(String(10), nullable=False, default=LogLevel.info.value, index=True)
    attempt = Column(Integer, nullable=False, default=0)
    message = Column(Text, nullable=False)
    details = Column(JSON, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_job_logs_job_created", "job_id", "created_at"),
    )

    def __repr__(self):
        return f"<JobLog job={self.job_id} event={self.event} attempt={self.attempt}>"
