"""
Per-day business volume accrual record.
One row per (investment, day) makes volume accrual idempotent on re-runs.
"""
from sqlalchemy import Column, Integer, String, Boolean, Date, ForeignKey, UniqueConstraint

from models.base import Base, AuditMixin, MoneyColumn


class VolumeAccrual(Base, AuditMixin):
    """Business volume credited from one investment on one day."""
    __tablename__ = 'volume_accruals'
    __table_args__ = (
        UniqueConstraint('investmentID', 'accrualDate', name='uq_volume_accrual_day'),
    )

    accrualID = Column(Integer, primary_key=True, autoincrement=True)
    investmentID = Column(Integer, ForeignKey('investments.investmentID'), nullable=False, index=True)
    accrualDate = Column(Date, nullable=False, index=True)

    accountID = Column(Integer, ForeignKey('accounts.accountID'), nullable=False)  # contributor
    targetNodeID = Column(Integer, ForeignKey('tree_nodes.nodeID'), nullable=True, index=True)
    leg = Column(String(5), nullable=True)
    packageID = Column(Integer, ForeignKey('packages.packageID'), nullable=True)

    amount = MoneyColumn()
    propagated = Column(Boolean, nullable=False, default=True)
    runID = Column(Integer, ForeignKey('daily_runs.runID'), nullable=True)

    def __repr__(self):
        return (
            f"<VolumeAccrual(investmentID={self.investmentID}, date={self.accrualDate}, "
            f"node={self.targetNodeID}, leg={self.leg}, amount={self.amount})>"
        )
