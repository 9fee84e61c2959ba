# delayqueue/models/task.py
import calendar
import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import Column, DateTime, Index, Integer, String, Text

from ..config import settings
from ..lifecycle.state_machine import TaskState
from .database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in every datetime column"""
    return datetime.utcnow()


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_epoch_millis(value: datetime) -> int:
    """Claim queue score for a run time. Naive datetimes are read as UTC."""
    return calendar.timegm(value.utctimetuple()) * 1000 + value.microsecond // 1000


class DelayTask(Base):
    """Scheduled task record - the system of record for the claim queue

    run_at is immutable after submission and doubles as the queue score.
    result holds the capability's return value, the timeout diagnostic, the
    failure description or the cancellation reason, depending on the final state.
    """
    __tablename__ = settings.TASK_TABLE
    __table_args__ = (
        Index(f"ix_{settings.TASK_TABLE}_state_run_at", "state", "run_at"),
    )

    task_id = Column(String(64), primary_key=True, index=True)
    task_name = Column(String(128), nullable=True)
    task_service = Column(String(128), nullable=False)
    params_json = Column(Text, nullable=True)
    run_at = Column(DateTime, nullable=False)
    timeout = Column(Integer, nullable=False, default=0)  # Seconds, <= 0 runs unbounded
    state = Column(String(16), nullable=False, default=TaskState.READY.value)
    result = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    start_time = Column(DateTime, nullable=True)
    end_time = Column(DateTime, nullable=True)

    @property
    def params(self) -> Dict[str, Any]:
        return json.loads(self.params_json) if self.params_json else {}

    @property
    def score(self) -> int:
        return to_epoch_millis(self.run_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "task_name": self.task_name,
            "task_service": self.task_service,
            "params": self.params,
            "run_at": self.run_at.isoformat(),
            "timeout": self.timeout,
            "state": self.state,
            "result": self.result,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
        }

    def __repr__(self) -> str:
        return (
            f"DelayTask(task_id={self.task_id!r}, task_name={self.task_name!r}, "
            f"service={self.task_service!r}, state={self.state!r}, run_at={self.run_at})"
        )


class TaskSubmission(BaseModel):
    """Validated task submission"""
    model_config = ConfigDict(extra="forbid")  # Reject unknown fields

    task_id: Optional[str] = Field(default=None, min_length=1, max_length=64, description="Caller-assigned id")
    task_name: Optional[str] = Field(default=None, max_length=128, description="Human readable label")
    task_service: str = Field(..., min_length=1, max_length=128, description="Registered taskable name")
    params: Dict[str, Any] = Field(default_factory=dict, description="Payload passed to the taskable")
    run_at: Optional[datetime] = Field(default=None, description="Scheduled run time, now when omitted")
    timeout: int = Field(default=0, description="Execution bound in seconds, <= 0 runs unbounded")

    @field_validator("task_service")
    @classmethod
    def service_not_blank(cls, v):
        if not v.strip():
            raise ValueError("task_service must not be blank")
        return v.strip()

    @field_validator("params", mode="before")
    @classmethod
    def params_default(cls, v):
        if v is None:
            return {}
        return v

    def create_task(self) -> DelayTask:
        """Build the ready record persisted by Dispatcher.submit"""
        now = utcnow()
        return DelayTask(
            task_id=self.task_id or uuid.uuid4().hex,
            task_name=self.task_name,
            task_service=self.task_service,
            params_json=json.dumps(self.params),
            run_at=to_naive_utc(self.run_at) if self.run_at else now,
            timeout=self.timeout,
            state=TaskState.READY.value,
            created_at=now,
            updated_at=now,
        )
