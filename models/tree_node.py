"""
TreeNode model - binary leg counters for one account.

Counters:
    *Business - cumulative volume ever credited to the leg (never decreases)
    *Matched  - cumulative volume consumed from *Business by matches (never decreases)
    *Carry    - carried-forward volume waiting for the opposite leg
"""
from sqlalchemy import (
    Column, Integer, String, Boolean, Date, ForeignKey, CheckConstraint
)
from sqlalchemy.orm import relationship, column_property

from models.base import Base, AuditMixin, MoneyColumn, ZERO


class TreeNode(Base, AuditMixin):
    __tablename__ = 'tree_nodes'
    __table_args__ = (
        CheckConstraint('"leftMatched" <= "leftBusiness"', name='ck_tree_left_matched'),
        CheckConstraint('"rightMatched" <= "rightBusiness"', name='ck_tree_right_matched'),
        CheckConstraint('"leftCarry" >= 0', name='ck_tree_left_carry'),
        CheckConstraint('"rightCarry" >= 0', name='ck_tree_right_carry'),
    )

    nodeID = Column(Integer, primary_key=True, autoincrement=True)
    accountID = Column(Integer, ForeignKey('accounts.accountID'), nullable=False, unique=True, index=True)

    # Binary placement
    parentID = Column(Integer, ForeignKey('accounts.accountID'), nullable=True, index=True)
    leftChildID = Column(Integer, ForeignKey('accounts.accountID'), nullable=True)
    rightChildID = Column(Integer, ForeignKey('accounts.accountID'), nullable=True)

    # Volume counters
    leftBusiness = column_property(MoneyColumn(), active_history=True)
    rightBusiness = column_property(MoneyColumn(), active_history=True)
    leftMatched = column_property(MoneyColumn(), active_history=True)
    rightMatched = column_property(MoneyColumn(), active_history=True)
    leftCarry = MoneyColumn()
    rightCarry = MoneyColumn()

    # Run bookkeeping
    lastMatchedOn = Column(Date, nullable=True)
    needsReview = Column(Boolean, nullable=False, default=False)
    reviewNote = Column(String, nullable=True)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    account = relationship('Account', back_populates='treeNode', foreign_keys=[accountID])

    @property
    def leftAvailable(self):
        return (self.leftCarry or ZERO) + (self.leftBusiness or ZERO) - (self.leftMatched or ZERO)

    @property
    def rightAvailable(self):
        return (self.rightCarry or ZERO) + (self.rightBusiness or ZERO) - (self.rightMatched or ZERO)

    @property
    def hasPendingVolume(self) -> bool:
        return self.leftAvailable > 0 or self.rightAvailable > 0

    def __repr__(self):
        return (
            f"<TreeNode(accountID={self.accountID}, "
            f"L={self.leftBusiness}/{self.leftMatched}/{self.leftCarry}, "
            f"R={self.rightBusiness}/{self.rightMatched}/{self.rightCarry})>"
        )
