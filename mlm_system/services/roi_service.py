# mlm_system/services/roi_service.py
"""
Daily ROI accrual.

    dailyRoiAmount = principal * dailyRoiRate
    renewablePart  = dailyRoiAmount * renewablePct / 100
    cashablePart   = dailyRoiAmount - renewablePart

cashablePart goes to the ROI wallet balance, renewablePart to the same
wallet's renewablePrincipal. Investment.principal never changes.
"""
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import or_
import logging

from config import Config
from models.account import Account, AccountStatus
from models.investment import Investment
from mlm_system.errors import EngineConfigurationError
from mlm_system.services.wallet_service import WalletService
from mlm_system.utils.investment_helpers import quantize_money, to_decimal

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class RoiSplit:
    dailyRoiAmount: Decimal
    cashablePart: Decimal
    renewablePart: Decimal


def compute_roi_split(principal, dailyRoiRate, renewablePct) -> RoiSplit:
    """
    Split one day of ROI into cashable and renewable parts.

    cashable + renewable == daily exactly; rounding only happens on daily
    and renewable.

    Example:
        compute_roi_split(Decimal("1000"), Decimal("0.015"), Decimal("50"))
        -> RoiSplit(dailyRoiAmount=15, cashablePart=7.5, renewablePart=7.5)
    """
    daily = quantize_money(to_decimal(principal) * to_decimal(dailyRoiRate))
    renewable = quantize_money(daily * to_decimal(renewablePct) / HUNDRED)
    return RoiSplit(
        dailyRoiAmount=daily,
        cashablePart=daily - renewable,
        renewablePart=renewable
    )


class RoiService:
    """
    Service for daily ROI accrual and investment expiry.

    Business Logic:
    - One accrual per investment per day (Investment.lastAccrualDate)
    - Investments expire after durationDays accruals or once endDate passes
    - Expired investments are never reactivated or accrued again
    - Counters, wallet credits and ledger row share one transaction
    """

    def __init__(self, session: Session, defaultRenewablePct: Optional[Decimal] = None):
        self.session = session
        self.wallets = WalletService(session)

        if defaultRenewablePct is None:
            defaultRenewablePct = Config.get(Config.DEFAULT_RENEWABLE_PCT, "50")
        self.defaultRenewablePct = to_decimal(defaultRenewablePct)

    # ============================================================
    # EXPIRY
    # ============================================================

    async def deactivateExpiredInvestments(self, today: date) -> int:
        """
        Mark investments whose term is over as inactive. Does not commit.

        Args:
            today: Run date

        Returns:
            Number of investments deactivated
        """
        expired = self.session.query(Investment).filter(
            Investment.isActive == True,  # noqa: E712
            or_(
                Investment.endDate < today,
                Investment.daysElapsed >= Investment.durationDays,
                Investment.daysRemaining <= 0
            )
        ).all()

        for investment in expired:
            investment.isActive = False
            investment.expiredOn = today
            investment.daysRemaining = max(0, investment.durationDays - investment.daysElapsed)

            logger.info(
                f"Investment {investment.investmentID} expired: "
                f"days={investment.daysElapsed}/{investment.durationDays}, endDate={investment.endDate}"
            )

        self.session.flush()
        return len(expired)

    # ============================================================
    # ACCRUAL
    # ============================================================

    def getAccruableInvestmentIds(self, today: date) -> List[int]:
        """Active, unflagged, started investments of non-suspended accounts not accrued today."""
        rows = self.session.query(Investment.investmentID).join(
            Account, Account.accountID == Investment.accountID
        ).filter(
            Investment.isActive == True,  # noqa: E712
            Investment.needsReview == False,  # noqa: E712
            Account.status != AccountStatus.SUSPENDED.value,
            Investment.startDate <= today,
            or_(Investment.lastAccrualDate.is_(None), Investment.lastAccrualDate < today)
        ).order_by(Investment.investmentID).all()

        return [row[0] for row in rows]

    async def accrueInvestment(
            self,
            investment: Investment,
            today: date,
            runId: Optional[int] = None
    ) -> Optional[RoiSplit]:
        """
        Accrue one day of ROI for one investment. Does not commit.

        Returns:
            RoiSplit, or None when the investment is not due today

        Raises:
            EngineConfigurationError: If dailyRoiRate is missing or not positive
        """
        if not investment.isActive:
            return None

        if investment.lastAccrualDate is not None and investment.lastAccrualDate >= today:
            logger.debug(f"Investment {investment.investmentID} already accrued on {investment.lastAccrualDate}")
            return None

        if today < investment.startDate:
            return None

        rate = to_decimal(investment.dailyRoiRate) if investment.dailyRoiRate is not None else None
        if rate is None or rate <= 0:
            raise EngineConfigurationError(
                f"Investment {investment.investmentID} has invalid dailyRoiRate {investment.dailyRoiRate}"
            )

        renewablePct = (
            to_decimal(investment.renewablePct)
            if investment.renewablePct is not None
            else self.defaultRenewablePct
        )

        split = compute_roi_split(investment.principal, rate, renewablePct)

        await self.wallets.creditRoi(
            accountId=investment.accountID,
            cashable=split.cashablePart,
            renewable=split.renewablePart,
            idempotencyKey=f"roi:{investment.investmentID}:{today.isoformat()}",
            txRef=f"investment:{investment.investmentID}",
            runId=runId
        )

        daysElapsed = (investment.daysElapsed or 0) + 1

        investment.lastAccrualDate = today
        investment.totalRoiEarned = to_decimal(investment.totalRoiEarned) + split.cashablePart
        investment.totalReinvested = to_decimal(investment.totalReinvested) + split.renewablePart
        investment.daysElapsed = daysElapsed
        investment.daysRemaining = max(0, investment.durationDays - daysElapsed)

        if daysElapsed >= investment.durationDays or today >= investment.endDate:
            investment.isActive = False
            investment.expiredOn = today
            logger.info(f"Investment {investment.investmentID} completed its term on {today}")

        self.session.flush()

        logger.debug(
            f"ROI investment {investment.investmentID}: daily={split.dailyRoiAmount}, "
            f"cashable={split.cashablePart}, renewable={split.renewablePart}, "
            f"day {daysElapsed}/{investment.durationDays}"
        )
        return split
