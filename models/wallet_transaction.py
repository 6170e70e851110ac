"""
WalletTransaction model - append-only ledger, one row per wallet mutation.
"""
from sqlalchemy import Column, Integer, String, ForeignKey, DECIMAL

from models.base import Base, AuditMixin, MoneyColumn, MONEY_PLACES


class WalletTransaction(Base, AuditMixin):
    __tablename__ = 'wallet_transactions'

    transactionID = Column(Integer, primary_key=True, autoincrement=True)

    # Relations
    accountID = Column(Integer, ForeignKey('accounts.accountID'), nullable=False, index=True)
    walletID = Column(Integer, ForeignKey('wallets.walletID'), nullable=False, index=True)
    runID = Column(Integer, ForeignKey('daily_runs.runID'), nullable=True, index=True)

    category = Column(String(20), nullable=False)
    direction = Column(String(10), nullable=False)  # credit, debit
    entryType = Column(String(30), nullable=False)  # binary_bonus, roi_payout, debit, reserve, release, credit

    # Amounts
    amount = MoneyColumn()
    cashableAmount = MoneyColumn()
    renewableAmount = MoneyColumn()

    # Snapshots
    balanceBefore = MoneyColumn()
    balanceAfter = MoneyColumn()
    renewableBefore = Column(DECIMAL(20, MONEY_PLACES), nullable=True)
    renewableAfter = Column(DECIMAL(20, MONEY_PLACES), nullable=True)

    status = Column(String(20), nullable=False, default="completed")

    # Idempotency and references
    idempotencyKey = Column(String(100), nullable=True, unique=True)
    txRef = Column(String(100), nullable=True, index=True)  # node:7, investment:12
    notes = Column(String, nullable=True)

    def __repr__(self):
        return (
            f"<WalletTransaction(transactionID={self.transactionID}, type={self.entryType}, "
            f"amount={self.amount}, key={self.idempotencyKey})>"
        )
