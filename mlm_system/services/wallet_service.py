# mlm_system/services/wallet_service.py
"""
Wallet mutation service.
Every balance change is an atomic SQL increment plus one WalletTransaction row.
"""
from decimal import Decimal
from typing import Optional
from sqlalchemy.orm import Session
from sqlalchemy import update, select
import logging

from models.base import ZERO
from models.wallet import Wallet, WalletCategory
from models.wallet_transaction import WalletTransaction
from mlm_system.errors import InvariantViolationError, InsufficientBalanceError
from mlm_system.utils.investment_helpers import quantize_money, to_decimal

logger = logging.getLogger(__name__)

_wallets = Wallet.__table__


class WalletService:
    """
    Service for crediting and debiting account wallets.

    Business Logic:
    - One wallet per (account, category), created on first use
    - balance is cashable; renewablePrincipal (ROI wallet) is never withdrawable
    - Debits and reservations never take balance below zero
    - The caller owns the transaction: nothing is committed here, so the
      wallet mutation commits or rolls back together with the entity that
      caused it
    """

    def __init__(self, session: Session):
        self.session = session

    # ============================================================
    # PUBLIC API
    # ============================================================

    def getWallet(self, accountId: int, category: WalletCategory) -> Wallet:
        """
        Get the wallet for (account, category), creating it with zero balances.

        A concurrent creator loses on the unique constraint; the resulting
        IntegrityError is transient and the caller retries.
        """
        wallet = self.session.query(Wallet).filter_by(
            accountID=accountId,
            category=category.value
        ).first()

        if wallet:
            return wallet

        wallet = Wallet(
            accountID=accountId,
            category=category.value,
            balance=ZERO,
            renewablePrincipal=ZERO,
            reserved=ZERO
        )
        self.session.add(wallet)
        self.session.flush()

        logger.debug(f"Created {category.value} wallet for account {accountId}")
        return wallet

    async def credit(
            self,
            accountId: int,
            category: WalletCategory,
            amount: Decimal,
            entryType: str = "credit",
            idempotencyKey: Optional[str] = None,
            txRef: Optional[str] = None,
            runId: Optional[int] = None,
            notes: Optional[str] = None
    ) -> WalletTransaction:
        """
        Add amount to the cashable balance.

        Returns:
            Ledger row (the existing one when idempotencyKey was already used)
        """
        amount = self._positive(amount, "credit")

        existing = self._findByKey(idempotencyKey)
        if existing:
            return existing

        wallet = self.getWallet(accountId, category)
        after = self._applyDelta(wallet, balanceDelta=amount)

        return self._record(
            wallet,
            direction="credit",
            entryType=entryType,
            amount=amount,
            cashable=amount,
            renewable=ZERO,
            balanceAfter=after.balance,
            balanceDelta=amount,
            idempotencyKey=idempotencyKey,
            txRef=txRef,
            runId=runId,
            notes=notes
        )

    async def creditRoi(
            self,
            accountId: int,
            cashable: Decimal,
            renewable: Decimal,
            idempotencyKey: Optional[str] = None,
            txRef: Optional[str] = None,
            runId: Optional[int] = None
    ) -> WalletTransaction:
        """
        Credit one day of ROI: cashable part to balance, renewable part to
        renewablePrincipal, in a single ledger row.
        """
        cashable = quantize_money(cashable)
        renewable = quantize_money(renewable)
        if cashable < 0 or renewable < 0:
            raise InvariantViolationError(
                f"Negative ROI credit for account {accountId}: cashable={cashable}, renewable={renewable}"
            )

        existing = self._findByKey(idempotencyKey)
        if existing:
            return existing

        wallet = self.getWallet(accountId, WalletCategory.ROI)
        after = self._applyDelta(wallet, balanceDelta=cashable, renewableDelta=renewable)

        return self._record(
            wallet,
            direction="credit",
            entryType="roi_payout",
            amount=cashable + renewable,
            cashable=cashable,
            renewable=renewable,
            balanceAfter=after.balance,
            balanceDelta=cashable,
            renewableAfter=after.renewablePrincipal,
            renewableDelta=renewable,
            idempotencyKey=idempotencyKey,
            txRef=txRef,
            runId=runId,
            notes="Daily ROI"
        )

    async def debit(
            self,
            accountId: int,
            category: WalletCategory,
            amount: Decimal,
            idempotencyKey: Optional[str] = None,
            txRef: Optional[str] = None,
            notes: Optional[str] = None
    ) -> WalletTransaction:
        """
        Remove amount from the cashable balance.

        Raises:
            InsufficientBalanceError: If balance < amount (balance unchanged)
        """
        amount = self._positive(amount, "debit")

        existing = self._findByKey(idempotencyKey)
        if existing:
            return existing

        wallet = self.getWallet(accountId, category)
        after = self._applyDelta(
            wallet,
            balanceDelta=-amount,
            guard=_wallets.c.balance >= amount
        )

        return self._record(
            wallet,
            direction="debit",
            entryType="debit",
            amount=amount,
            cashable=amount,
            renewable=ZERO,
            balanceAfter=after.balance,
            balanceDelta=-amount,
            idempotencyKey=idempotencyKey,
            txRef=txRef,
            notes=notes
        )

    async def reserve(
            self,
            accountId: int,
            category: WalletCategory,
            amount: Decimal,
            txRef: Optional[str] = None
    ) -> WalletTransaction:
        """
        Move amount from balance to reserved (pending withdrawal).

        Raises:
            InsufficientBalanceError: If balance < amount
        """
        amount = self._positive(amount, "reserve")
        wallet = self.getWallet(accountId, category)
        after = self._applyDelta(
            wallet,
            balanceDelta=-amount,
            reservedDelta=amount,
            guard=_wallets.c.balance >= amount
        )

        return self._record(
            wallet,
            direction="debit",
            entryType="reserve",
            amount=amount,
            cashable=amount,
            renewable=ZERO,
            balanceAfter=after.balance,
            balanceDelta=-amount,
            txRef=txRef,
            notes=f"Reserved, total reserved {after.reserved}"
        )

    async def release(
            self,
            accountId: int,
            category: WalletCategory,
            amount: Decimal,
            txRef: Optional[str] = None
    ) -> WalletTransaction:
        """
        Return a reservation to balance.

        Raises:
            InvariantViolationError: If reserved < amount
        """
        amount = self._positive(amount, "release")
        wallet = self.getWallet(accountId, category)
        after = self._applyDelta(
            wallet,
            balanceDelta=amount,
            reservedDelta=-amount,
            guard=_wallets.c.reserved >= amount
        )

        return self._record(
            wallet,
            direction="credit",
            entryType="release",
            amount=amount,
            cashable=amount,
            renewable=ZERO,
            balanceAfter=after.balance,
            balanceDelta=amount,
            txRef=txRef,
            notes=f"Released, total reserved {after.reserved}"
        )

    # ============================================================
    # INTERNALS
    # ============================================================

    def _positive(self, amount, operation: str) -> Decimal:
        amount = quantize_money(amount)
        if amount <= 0:
            raise InvariantViolationError(f"{operation} amount must be positive, got {amount}")
        return amount

    def _findByKey(self, idempotencyKey: Optional[str]) -> Optional[WalletTransaction]:
        if not idempotencyKey:
            return None

        existing = self.session.query(WalletTransaction).filter_by(
            idempotencyKey=idempotencyKey
        ).first()
        if existing:
            logger.warning(f"Ledger entry {idempotencyKey} already exists, wallet not touched")
        return existing

    def _applyDelta(
            self,
            wallet: Wallet,
            balanceDelta: Decimal = ZERO,
            renewableDelta: Decimal = ZERO,
            reservedDelta: Decimal = ZERO,
            guard=None
    ):
        """
        Apply increments in one UPDATE statement and return the new row values.

        A guarded UPDATE that matches no row leaves the wallet untouched.
        """
        stmt = update(_wallets).where(_wallets.c.walletID == wallet.walletID)
        if guard is not None:
            stmt = stmt.where(guard)

        stmt = stmt.values(
            balance=_wallets.c.balance + balanceDelta,
            renewablePrincipal=_wallets.c.renewablePrincipal + renewableDelta,
            reserved=_wallets.c.reserved + reservedDelta
        )

        result = self.session.execute(stmt)

        # ORM copy is stale after a Core UPDATE
        self.session.expire(wallet, ['balance', 'renewablePrincipal', 'reserved'])

        row = self.session.execute(
            select(_wallets.c.balance, _wallets.c.renewablePrincipal, _wallets.c.reserved)
            .where(_wallets.c.walletID == wallet.walletID)
        ).one()

        if result.rowcount == 0:
            if balanceDelta < 0:
                raise InsufficientBalanceError(
                    wallet.accountID, wallet.category, -balanceDelta, to_decimal(row.balance)
                )
            raise InvariantViolationError(
                f"Wallet {wallet.walletID}: reserved {row.reserved} below release {-reservedDelta}"
            )

        return row

    def _record(
            self,
            wallet: Wallet,
            direction: str,
            entryType: str,
            amount: Decimal,
            cashable: Decimal,
            renewable: Decimal,
            balanceAfter,
            balanceDelta: Decimal,
            renewableAfter=None,
            renewableDelta: Decimal = ZERO,
            idempotencyKey: Optional[str] = None,
            txRef: Optional[str] = None,
            runId: Optional[int] = None,
            notes: Optional[str] = None
    ) -> WalletTransaction:
        balanceAfter = quantize_money(balanceAfter)

        transaction = WalletTransaction()
        transaction.accountID = wallet.accountID
        transaction.walletID = wallet.walletID
        transaction.runID = runId
        transaction.category = wallet.category
        transaction.direction = direction
        transaction.entryType = entryType
        transaction.amount = amount
        transaction.cashableAmount = cashable
        transaction.renewableAmount = renewable
        transaction.balanceAfter = balanceAfter
        transaction.balanceBefore = balanceAfter - balanceDelta

        if renewableAfter is not None:
            renewableAfter = quantize_money(renewableAfter)
            transaction.renewableAfter = renewableAfter
            transaction.renewableBefore = renewableAfter - renewableDelta

        transaction.status = "completed"
        transaction.idempotencyKey = idempotencyKey
        transaction.txRef = txRef
        transaction.notes = notes

        self.session.add(transaction)
        self.session.flush()

        logger.info(
            f"Wallet {wallet.category} account={wallet.accountID}: {direction} {amount} "
            f"({entryType}) {transaction.balanceBefore} → {balanceAfter}"
        )
        return transaction
