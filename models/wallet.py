"""
Wallet model - one balance row per (account, category).

balance            - cashable, withdrawable
renewablePrincipal - non-withdrawable ROI accumulator (ROI wallet only)
reserved           - earmarked for pending withdrawals
"""
from enum import Enum

from sqlalchemy import Column, Integer, String, ForeignKey, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import relationship

from models.base import Base, AuditMixin, MoneyColumn


class WalletCategory(str, Enum):
    INVESTMENT = "investment"
    ROI = "roi"
    BINARY = "binary"
    REFERRAL = "referral"
    WITHDRAWAL = "withdrawal"
    INTEREST = "interest"
    TOKEN = "token"
    CAREER_LEVEL = "career_level"


class Wallet(Base, AuditMixin):
    __tablename__ = 'wallets'
    __table_args__ = (
        UniqueConstraint('accountID', 'category', name='uq_wallet_account_category'),
        CheckConstraint('balance >= 0', name='ck_wallet_balance'),
        CheckConstraint('"renewablePrincipal" >= 0', name='ck_wallet_renewable'),
        CheckConstraint('reserved >= 0', name='ck_wallet_reserved'),
    )

    walletID = Column(Integer, primary_key=True, autoincrement=True)
    accountID = Column(Integer, ForeignKey('accounts.accountID'), nullable=False, index=True)
    category = Column(String(20), nullable=False)

    balance = MoneyColumn()
    renewablePrincipal = MoneyColumn()
    reserved = MoneyColumn()
    currency = Column(String(10), nullable=False, default="USD")

    account = relationship('Account', backref='wallets')

    def __repr__(self):
        return (
            f"<Wallet(accountID={self.accountID}, category={self.category}, "
            f"balance={self.balance}, renewable={self.renewablePrincipal})>"
        )
