from sqlalchemy import Column, DateTime, Integer, String

from src.utils.time import utcnow
from .base import Base


class RateLimitedHost(Base):
    __tablename__ = "rate_limited_hosts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    hostname = Column(String, unique=True, index=True, nullable=False)
    retry_after = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
