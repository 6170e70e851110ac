# tests/test_roi.py
"""
Tests for ROI accrual.

    compute_roi_split - cashable / renewable split and rounding
    RoiService        - wallet credits, day counters, expiry

Run:
    pytest tests/test_roi.py -v
"""
from datetime import timedelta
from decimal import Decimal

import pytest

from models import Investment, WalletCategory, WalletTransaction
from mlm_system.errors import EngineConfigurationError
from mlm_system.services.daily_cycle import DailyCycleService
from mlm_system.services.roi_service import RoiService, compute_roi_split
from mlm_system.utils.investment_helpers import daily_roi_rate
from tests.conftest import START_DATE, run


# =============================================================================
# TEST CLASS: compute_roi_split
# =============================================================================

class TestComputeRoiSplit:
    """Tests for the pure ROI split."""

    def test_half_renewable_split(self):
        """
        TEST: principal 1000, rate 0.015, renewable 50%.

        Verify: daily 15, cashable 7.5, renewable 7.5.
        """
        split = compute_roi_split(Decimal("1000"), Decimal("0.015"), Decimal("50"))

        assert split.dailyRoiAmount == Decimal("15")
        assert split.cashablePart == Decimal("7.5")
        assert split.renewablePart == Decimal("7.5")

    def test_parts_always_add_up(self):
        """
        TEST: rounding never loses or creates money.
        """
        cases = [
            (Decimal("333.33"), Decimal("0.015"), Decimal("33")),
            (Decimal("1234.56789"), Decimal("0.0123456789"), Decimal("12.5")),
            (Decimal("0.01"), Decimal("0.015"), Decimal("50")),
        ]

        for principal, rate, pct in cases:
            split = compute_roi_split(principal, rate, pct)
            assert split.cashablePart + split.renewablePart == split.dailyRoiAmount
            assert split.cashablePart >= 0
            assert split.renewablePart >= 0

    def test_zero_renewable_pays_everything(self):
        split = compute_roi_split(Decimal("1000"), Decimal("0.015"), Decimal("0"))

        assert split.cashablePart == Decimal("15")
        assert split.renewablePart == Decimal("0")

    def test_daily_rate_from_package_terms(self):
        assert daily_roi_rate(Decimal("225"), 150) == Decimal("0.015")


# =============================================================================
# TEST CLASS: RoiService.accrueInvestment
# =============================================================================

class TestAccrueInvestment:
    """Tests for one day of ROI on one investment."""

    def test_accrual_credits_roi_wallet(self, session, make_account, make_investment, wallet_of):
        """
        TEST: 1000 at 225% / 150 days, default 50% renewable.

        Verify: ROI wallet balance 7.5, renewablePrincipal 7.5, principal
        still 1000, day counters advanced.
        """
        account = make_account()
        investment = make_investment(account, 1000)
        service = RoiService(session)

        split = run(service.accrueInvestment(investment, START_DATE))
        session.commit()

        assert split.dailyRoiAmount == Decimal("15")

        wallet = wallet_of(account, WalletCategory.ROI)
        assert wallet.balance == Decimal("7.5")
        assert wallet.renewablePrincipal == Decimal("7.5")

        session.refresh(investment)
        assert investment.principal == Decimal("1000")
        assert investment.daysElapsed == 1
        assert investment.daysRemaining == 149
        assert investment.totalRoiEarned == Decimal("7.5")
        assert investment.totalReinvested == Decimal("7.5")
        assert investment.lastAccrualDate == START_DATE
        assert investment.isActive is True

    def test_ledger_entry_carries_split(self, session, make_account, make_investment):
        account = make_account()
        investment = make_investment(account, 1000)

        run(RoiService(session).accrueInvestment(investment, START_DATE))
        session.commit()

        entry = session.query(WalletTransaction).filter_by(accountID=account.accountID).one()
        assert entry.entryType == "roi_payout"
        assert entry.amount == Decimal("15")
        assert entry.cashableAmount == Decimal("7.5")
        assert entry.renewableAmount == Decimal("7.5")
        assert entry.renewableBefore == Decimal("0")
        assert entry.renewableAfter == Decimal("7.5")
        assert entry.txRef == f"investment:{investment.investmentID}"
        assert entry.idempotencyKey == f"roi:{investment.investmentID}:{START_DATE.isoformat()}"

    def test_same_day_accrual_skipped(self, session, make_account, make_investment, wallet_of):
        """
        TEST: a second accrual on the same day changes nothing.
        """
        account = make_account()
        investment = make_investment(account, 1000)
        service = RoiService(session)

        run(service.accrueInvestment(investment, START_DATE))
        session.commit()

        assert run(service.accrueInvestment(investment, START_DATE)) is None
        session.commit()

        assert wallet_of(account, WalletCategory.ROI).balance == Decimal("7.5")
        session.refresh(investment)
        assert investment.daysElapsed == 1

    def test_package_renewable_pct_used(self, session, make_account, make_package, make_investment, wallet_of):
        package = make_package(renewablePct=Decimal("30"))
        account = make_account()
        investment = make_investment(account, 1000, package=package)

        split = run(RoiService(session).accrueInvestment(investment, START_DATE))
        session.commit()

        assert split.renewablePart == Decimal("4.5")
        assert split.cashablePart == Decimal("10.5")
        assert wallet_of(account, WalletCategory.ROI).renewablePrincipal == Decimal("4.5")

    def test_zero_rate_rejected(self, session, make_account, make_investment, wallet_of):
        """
        TEST: a zero dailyRoiRate is a data error, nothing is credited.
        """
        account = make_account()
        investment = make_investment(account, 1000)
        investment.dailyRoiRate = Decimal("0")
        session.commit()

        with pytest.raises(EngineConfigurationError):
            run(RoiService(session).accrueInvestment(investment, START_DATE))
        session.rollback()

        assert wallet_of(account, WalletCategory.ROI) is None

    def test_missing_rate_rejected(self, session, make_account, make_investment):
        account = make_account()
        investment = make_investment(account, 1000)
        investment.dailyRoiRate = None
        session.commit()

        with pytest.raises(EngineConfigurationError):
            run(RoiService(session).accrueInvestment(investment, START_DATE))
        session.rollback()

    def test_not_accrued_before_start(self, session, make_account, make_investment):
        account = make_account()
        investment = make_investment(account, 1000)

        assert run(RoiService(session).accrueInvestment(investment, START_DATE - timedelta(days=1))) is None


# =============================================================================
# TEST CLASS: Lifecycle
# =============================================================================

class TestLifecycle:
    """Tests for investment expiry."""

    def test_expires_on_last_day(self, session, make_account, make_investment, wallet_of):
        """
        TEST: a 150-day investment turns inactive exactly on the accrual that
        makes daysElapsed=150 and never accrues again.
        """
        account = make_account()
        investment = make_investment(account, 1000)
        service = RoiService(session)

        for day in range(149):
            run(service.accrueInvestment(investment, START_DATE + timedelta(days=day)))
            session.commit()

        session.refresh(investment)
        assert investment.daysElapsed == 149
        assert investment.daysRemaining == 1
        assert investment.isActive is True

        lastDay = START_DATE + timedelta(days=149)
        run(service.accrueInvestment(investment, lastDay))
        session.commit()

        session.refresh(investment)
        assert investment.daysElapsed == 150
        assert investment.daysRemaining == 0
        assert investment.isActive is False
        assert investment.expiredOn == lastDay

        assert run(service.accrueInvestment(investment, lastDay + timedelta(days=1))) is None
        session.commit()

        session.refresh(investment)
        assert investment.daysElapsed == 150
        assert investment.principal == Decimal("1000")
        assert investment.totalRoiEarned == Decimal("1125")
        assert investment.totalReinvested == Decimal("1125")
        assert wallet_of(account, WalletCategory.ROI).balance == Decimal("1125")

    def test_deactivate_after_end_date(self, session, make_account, make_investment):
        """
        TEST: an investment whose endDate has passed is deactivated.
        """
        account = make_account()
        investment = make_investment(account, 1000)
        service = RoiService(session)

        afterEnd = investment.endDate + timedelta(days=1)
        expired = run(service.deactivateExpiredInvestments(afterEnd))
        session.commit()

        assert expired == 1
        session.refresh(investment)
        assert investment.isActive is False
        assert investment.expiredOn == afterEnd
        assert run(service.accrueInvestment(investment, afterEnd)) is None

    def test_running_investment_not_deactivated(self, session, make_account, make_investment):
        account = make_account()
        make_investment(account, 1000)

        assert run(RoiService(session).deactivateExpiredInvestments(START_DATE + timedelta(days=10))) == 0

    def test_roi_cycle_skips_flagged(self, session, settings, make_account, make_investment):
        account = make_account()
        good = make_investment(account, 1000)
        flagged = make_investment(account, 2000)
        flagged.needsReview = True
        session.commit()

        summary = run(DailyCycleService(session, settings).runRoiOnly(START_DATE))

        assert summary.accrued == 1
        assert summary.totalRoiPaid == Decimal("7.5")
        assert session.get(Investment, flagged.investmentID).daysElapsed == 0
        assert session.get(Investment, good.investmentID).daysElapsed == 1
