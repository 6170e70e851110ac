"""
Investment model - one per funding event.
FIXED principal: ROI never changes it, renewable ROI accumulates in the ROI wallet.
"""
from sqlalchemy import (
    Column, Integer, String, Boolean, Date, DECIMAL, ForeignKey, CheckConstraint
)
from sqlalchemy.orm import relationship, column_property

from models.base import Base, AuditMixin, MoneyColumn, RATE_PLACES


class Investment(Base, AuditMixin):
    __tablename__ = 'investments'
    __table_args__ = (
        CheckConstraint('"daysElapsed" >= 0', name='ck_investment_days_elapsed'),
        CheckConstraint('"daysRemaining" >= 0', name='ck_investment_days_remaining'),
    )

    investmentID = Column(Integer, primary_key=True, autoincrement=True)

    # Relations
    accountID = Column(Integer, ForeignKey('accounts.accountID'), nullable=False, index=True)
    packageID = Column(Integer, ForeignKey('packages.packageID'), nullable=True)

    # Amounts
    investedAmount = MoneyColumn()
    principal = column_property(MoneyColumn(), active_history=True)

    # Terms (snapshot from package at creation)
    totalOutputPct = Column(DECIMAL(10, 4), nullable=False)
    durationDays = Column(Integer, nullable=False)
    dailyRoiRate = Column(DECIMAL(20, RATE_PLACES), nullable=True)
    renewablePct = Column(DECIMAL(10, 4), nullable=True)  # None -> engine default

    # Lifecycle
    startDate = Column(Date, nullable=False)
    endDate = Column(Date, nullable=False)
    daysElapsed = column_property(Column(Integer, nullable=False, default=0), active_history=True)
    daysRemaining = Column(Integer, nullable=False)
    lastAccrualDate = Column(Date, nullable=True)
    isActive = column_property(Column(Boolean, nullable=False, default=True, index=True), active_history=True)
    expiredOn = Column(Date, nullable=True)

    # Cumulative ROI
    totalRoiEarned = MoneyColumn()   # cashable part only
    totalReinvested = MoneyColumn()  # renewable part only

    # Manual review
    needsReview = Column(Boolean, nullable=False, default=False)
    reviewNote = Column(String, nullable=True)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    account = relationship('Account', backref='investments')
    package = relationship('Package')

    def __repr__(self):
        return (
            f"<Investment(investmentID={self.investmentID}, principal={self.principal}, "
            f"days={self.daysElapsed}/{self.durationDays}, active={self.isActive})>"
        )
