"""
Package model - funding package settings (ROI terms and binary terms).
"""
from decimal import Decimal

from sqlalchemy import Column, Integer, String, DECIMAL

from models.base import Base, AuditMixin, MoneyColumn


class Package(Base, AuditMixin):
    __tablename__ = 'packages'

    packageID = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    status = Column(String(20), nullable=False, default="active")  # active, inactive

    minAmount = MoneyColumn()
    maxAmount = MoneyColumn()

    # ROI terms
    durationDays = Column(Integer, nullable=False, default=150)
    totalOutputPct = Column(DECIMAL(10, 4), nullable=False, default=Decimal("225"))
    renewablePct = Column(DECIMAL(10, 4), nullable=False, default=Decimal("50"))

    # Binary terms
    binaryPct = Column(DECIMAL(10, 4), nullable=False, default=Decimal("10"))
    powerCapacity = MoneyColumn(default=Decimal("1000"))

    @property
    def isActive(self) -> bool:
        return self.status == "active"

    def __repr__(self):
        return f"<Package(packageID={self.packageID}, name={self.name}, status={self.status})>"
