# tests/test_wallet.py
"""
Tests for WalletService.

Key principle: every balance change is an atomic increment with exactly one
ledger row, and balance never goes below zero.

Run:
    pytest tests/test_wallet.py -v
"""
from decimal import Decimal

import pytest

from models import Wallet, WalletCategory, WalletTransaction
from mlm_system.errors import InsufficientBalanceError, InvariantViolationError
from mlm_system.services.wallet_service import WalletService
from tests.conftest import run


# =============================================================================
# TEST CLASS: Credit
# =============================================================================

class TestCredit:
    """Tests for credits."""

    def test_first_credit_creates_wallet(self, session, make_account, wallet_of):
        """
        TEST: wallets are created lazily on first credit.
        """
        account = make_account()
        assert wallet_of(account, WalletCategory.BINARY) is None

        entry = run(WalletService(session).credit(account.accountID, WalletCategory.BINARY, Decimal("25.5")))
        session.commit()

        wallet = wallet_of(account, WalletCategory.BINARY)
        assert wallet.balance == Decimal("25.5")
        assert entry.balanceBefore == Decimal("0")
        assert entry.balanceAfter == Decimal("25.5")
        assert entry.direction == "credit"

    def test_snapshots_chain(self, session, make_account):
        account = make_account()
        service = WalletService(session)

        first = run(service.credit(account.accountID, WalletCategory.REFERRAL, Decimal("10")))
        second = run(service.credit(account.accountID, WalletCategory.REFERRAL, Decimal("5")))
        session.commit()

        assert first.balanceAfter == second.balanceBefore
        assert second.balanceAfter == Decimal("15")

    def test_idempotency_key_prevents_double_credit(self, session, make_account, wallet_of):
        """
        TEST: a reused idempotency key returns the original entry.
        """
        account = make_account()
        service = WalletService(session)

        first = run(service.credit(account.accountID, WalletCategory.BINARY, Decimal("50"), idempotencyKey="binary:x"))
        session.commit()
        again = run(service.credit(account.accountID, WalletCategory.BINARY, Decimal("50"), idempotencyKey="binary:x"))
        session.commit()

        assert again.transactionID == first.transactionID
        assert wallet_of(account, WalletCategory.BINARY).balance == Decimal("50")
        assert session.query(WalletTransaction).count() == 1

    def test_non_positive_credit_rejected(self, session, make_account):
        account = make_account()

        with pytest.raises(InvariantViolationError):
            run(WalletService(session).credit(account.accountID, WalletCategory.BINARY, Decimal("0")))

    def test_roi_credit_splits_fields(self, session, make_account, wallet_of):
        account = make_account()

        entry = run(WalletService(session).creditRoi(account.accountID, Decimal("7.5"), Decimal("2.5")))
        session.commit()

        wallet = wallet_of(account, WalletCategory.ROI)
        assert wallet.balance == Decimal("7.5")
        assert wallet.renewablePrincipal == Decimal("2.5")
        assert entry.amount == Decimal("10")
        assert entry.renewableAfter == Decimal("2.5")


# =============================================================================
# TEST CLASS: Debit
# =============================================================================

class TestDebit:
    """Tests for debits, reservations and the non-negative balance rule."""

    def test_debit_within_balance(self, session, make_account, wallet_of):
        account = make_account()
        service = WalletService(session)
        run(service.credit(account.accountID, WalletCategory.ROI, Decimal("100")))
        session.commit()

        entry = run(service.debit(account.accountID, WalletCategory.ROI, Decimal("40")))
        session.commit()

        assert entry.balanceBefore == Decimal("100")
        assert entry.balanceAfter == Decimal("60")
        assert wallet_of(account, WalletCategory.ROI).balance == Decimal("60")

    def test_debit_beyond_balance_rejected(self, session, make_account, wallet_of):
        """
        TEST: a debit larger than the balance raises and leaves the balance unchanged.
        """
        account = make_account()
        service = WalletService(session)
        run(service.credit(account.accountID, WalletCategory.BINARY, Decimal("30")))
        session.commit()

        with pytest.raises(InsufficientBalanceError) as exc_info:
            run(service.debit(account.accountID, WalletCategory.BINARY, Decimal("30.01")))
        session.rollback()

        assert exc_info.value.available == Decimal("30")
        assert wallet_of(account, WalletCategory.BINARY).balance == Decimal("30")
        assert session.query(WalletTransaction).filter_by(direction="debit").count() == 0

    def test_debit_on_empty_wallet_rejected(self, session, make_account):
        account = make_account()

        with pytest.raises(InsufficientBalanceError):
            run(WalletService(session).debit(account.accountID, WalletCategory.WITHDRAWAL, Decimal("1")))
        session.rollback()

    def test_insufficient_balance_is_invariant_violation(self):
        assert issubclass(InsufficientBalanceError, InvariantViolationError)

    def test_renewable_principal_not_debitable(self, session, make_account, wallet_of):
        """
        TEST: renewablePrincipal is not part of the cashable balance.
        """
        account = make_account()
        service = WalletService(session)
        run(service.creditRoi(account.accountID, Decimal("5"), Decimal("5")))
        session.commit()

        with pytest.raises(InsufficientBalanceError):
            run(service.debit(account.accountID, WalletCategory.ROI, Decimal("6")))
        session.rollback()

        wallet = wallet_of(account, WalletCategory.ROI)
        assert wallet.balance == Decimal("5")
        assert wallet.renewablePrincipal == Decimal("5")

    def test_reserve_and_release(self, session, make_account, wallet_of):
        account = make_account()
        service = WalletService(session)
        run(service.credit(account.accountID, WalletCategory.BINARY, Decimal("100")))
        session.commit()

        run(service.reserve(account.accountID, WalletCategory.BINARY, Decimal("70")))
        session.commit()

        wallet = wallet_of(account, WalletCategory.BINARY)
        assert wallet.balance == Decimal("30")
        assert wallet.reserved == Decimal("70")

        with pytest.raises(InsufficientBalanceError):
            run(service.reserve(account.accountID, WalletCategory.BINARY, Decimal("31")))
        session.rollback()

        run(service.release(account.accountID, WalletCategory.BINARY, Decimal("70")))
        session.commit()

        wallet = wallet_of(account, WalletCategory.BINARY)
        assert wallet.balance == Decimal("100")
        assert wallet.reserved == Decimal("0")

    def test_release_beyond_reserved_rejected(self, session, make_account):
        account = make_account()
        service = WalletService(session)
        run(service.credit(account.accountID, WalletCategory.BINARY, Decimal("10")))
        session.commit()

        with pytest.raises(InvariantViolationError):
            run(service.release(account.accountID, WalletCategory.BINARY, Decimal("1")))
        session.rollback()


# =============================================================================
# TEST CLASS: Direct modification warning
# =============================================================================

class TestBalanceProtection:
    """Direct assignment to Wallet.balance bypasses the ledger and is logged."""

    def test_direct_balance_set_warns(self, session, make_account, caplog):
        account = make_account()
        run(WalletService(session).credit(account.accountID, WalletCategory.BINARY, Decimal("10")))
        session.commit()

        wallet = session.query(Wallet).filter_by(accountID=account.accountID).one()
        assert wallet.balance == Decimal("10")

        with caplog.at_level("WARNING"):
            wallet.balance = Decimal("999")

        assert "DIRECT wallet balance modification" in caplog.text
        session.rollback()
