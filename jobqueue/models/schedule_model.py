from sqlalchemy.sql.schema import Column
from sqlalchemy.sql.sqltypes import String, Integer, JSON, Boolean, Text

from jobqueue.models.base_model import BaseModel, UTCDateTime


class Schedule(BaseModel):
    __tablename__ = "schedules"

    name = Column(String(100), nullable=False, unique=True, index=True)
    cadence = Column(String(100), nullable=False)

    # job template
    job_type = Column(String(100), nullable=False)
    payload_template = Column(JSON, nullable=False, default=dict)
    priority = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)

    enabled = Column(Boolean, nullable=False, default=True, index=True)
    last_fired_at = Column(UTCDateTime(), nullable=True)

    # set when the schedule was disabled as misconfigured
    last_error = Column(Text, nullable=True)

    def __repr__(self):
        return f"<Schedule name={self.name} cadence='{self.cadence}' enabled={self.enabled}>"
