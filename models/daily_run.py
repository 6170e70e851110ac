"""
DailyRun model - one row per calendar day.
Holds the single-writer lease for the orchestrator and the persisted run summary.
"""
from sqlalchemy import Column, Integer, String, Date, DateTime, JSON

from models.base import Base, AuditMixin


class DailyRun(Base, AuditMixin):
    __tablename__ = 'daily_runs'

    runID = Column(Integer, primary_key=True, autoincrement=True)
    runDate = Column(Date, nullable=False, unique=True, index=True)

    status = Column(String(20), nullable=False, default="running")  # running, completed, failed

    # Lease
    leaseOwner = Column(String(100), nullable=True)
    leaseExpiresAt = Column(DateTime, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)

    startedAt = Column(DateTime, nullable=True)
    completedAt = Column(DateTime, nullable=True)

    summary = Column(JSON, nullable=True)
    # Structure: RunSummary.to_dict()
    lastError = Column(String, nullable=True)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<DailyRun(runDate={self.runDate}, status={self.status}, owner={self.leaseOwner})>"
