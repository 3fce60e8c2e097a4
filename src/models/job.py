import enum
from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, text

from src.utils.exceptions import InvalidJobTarget, JobIntegrityError
from src.utils.time import utcnow
from .base import Base, value_enum


class JobStatus(enum.Enum):
    PENDING = "pending"
    QUEUED = "queued"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.DONE, JobStatus.FAILED)


ACTIVE_JOB_STATUSES = (JobStatus.PENDING, JobStatus.QUEUED)


@dataclass(frozen=True)
class TokenTarget:
    token_id: int


@dataclass(frozen=True)
class ContractTarget:
    smart_contract_id: int


JobTarget = Union[TokenTarget, ContractTarget]


def job_target(token_id: Optional[int] = None, smart_contract_id: Optional[int] = None) -> JobTarget:
    """Build a job target from raw ids, exactly one of which must be given."""
    if (token_id is None) == (smart_contract_id is None):
        raise InvalidJobTarget(
            f"A job targets exactly one of token or contract (token_id={token_id}, "
            f"smart_contract_id={smart_contract_id})"
        )
    if token_id is not None:
        return TokenTarget(token_id)
    return ContractTarget(smart_contract_id)


class Job(Base):
    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    token_id = Column(Integer, ForeignKey("tokens.id", ondelete="CASCADE"), nullable=True)
    smart_contract_id = Column(Integer, ForeignKey("smart_contracts.id", ondelete="CASCADE"), nullable=True)
    status = Column(value_enum(JobStatus, "job_status"), nullable=False, default=JobStatus.PENDING)
    retry_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, nullable=True, comment="Claim time while queued, not-before time while pending")

    __table_args__ = (
        CheckConstraint("(token_id IS NULL) <> (smart_contract_id IS NULL)", name="jobs_job_type_check"),
        Index("jobs_status_index", "status"),
        Index(
            "jobs_token_id_active_unique",
            "token_id",
            unique=True,
            postgresql_where=text("smart_contract_id IS NULL AND status IN ('pending', 'queued')"),
            sqlite_where=text("smart_contract_id IS NULL AND status IN ('pending', 'queued')"),
        ),
        Index(
            "jobs_smart_contract_id_active_unique",
            "smart_contract_id",
            unique=True,
            postgresql_where=text("token_id IS NULL AND status IN ('pending', 'queued')"),
            sqlite_where=text("token_id IS NULL AND status IN ('pending', 'queued')"),
        ),
    )

    @property
    def target(self) -> JobTarget:
        try:
            return job_target(token_id=self.token_id, smart_contract_id=self.smart_contract_id)
        except InvalidJobTarget as e:
            raise JobIntegrityError(f"Job {self.id} is corrupt: {e.message}")

    def __repr__(self):
        return f"<Job(id={self.id}, token_id={self.token_id}, smart_contract_id={self.smart_contract_id}, status='{self.status.value}')>"
