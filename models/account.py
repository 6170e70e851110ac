"""
Account model - one per participant in the binary structure.
"""
from enum import Enum

from sqlalchemy import Column, Integer, String, ForeignKey
from sqlalchemy.orm import relationship, column_property

from models.base import Base, AuditMixin


class AccountStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class AccountKind(str, Enum):
    """Regular accounts follow binary rules; root accounts collect volume but never match."""
    REGULAR = "regular"
    ROOT = "root"


class Leg(str, Enum):
    LEFT = "left"
    RIGHT = "right"


class Account(Base, AuditMixin):
    __tablename__ = 'accounts'

    accountID = Column(Integer, primary_key=True, autoincrement=True)
    externalId = Column(String(64), nullable=False, unique=True, index=True)

    status = Column(String(20), nullable=False, default=AccountStatus.ACTIVE.value)
    kind = Column(String(20), nullable=False, default=AccountKind.REGULAR.value)

    # Referral placement: fixed at creation
    referrerID = column_property(
        Column(Integer, ForeignKey('accounts.accountID'), nullable=True, index=True),
        active_history=True
    )
    position = column_property(Column(String(5), nullable=True), active_history=True)  # 'left' / 'right'

    referrer = relationship('Account', remote_side=[accountID], backref='referrals')
    treeNode = relationship(
        'TreeNode',
        uselist=False,
        back_populates='account',
        foreign_keys='TreeNode.accountID'
    )

    @property
    def isRoot(self) -> bool:
        return self.kind == AccountKind.ROOT.value

    @property
    def isSuspended(self) -> bool:
        return self.status == AccountStatus.SUSPENDED.value

    @property
    def leg(self) -> Leg:
        """Leg under the referrer; unset positions count as left."""
        return Leg(self.position) if self.position else Leg.LEFT

    def __repr__(self):
        return f"<Account(accountID={self.accountID}, externalId={self.externalId}, kind={self.kind})>"
