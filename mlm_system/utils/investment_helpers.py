# mlm_system/utils/investment_helpers.py
"""
Helper functions for money arithmetic and investment terms.
"""
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional
import logging

from sqlalchemy.orm import Session

from config import Config
from models.base import MONEY_PLACES, RATE_PLACES
from models.account import Account
from models.package import Package
from models.investment import Investment
from mlm_system.errors import EngineConfigurationError

logger = logging.getLogger(__name__)

MONEY_QUANT = Decimal(1).scaleb(-MONEY_PLACES)
RATE_QUANT = Decimal(1).scaleb(-RATE_PLACES)
HUNDRED = Decimal("100")


def to_decimal(value) -> Decimal:
    """Convert a stored value to Decimal without passing through float repr."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_money(value) -> Decimal:
    """
    Round to persistence scale (8 places, half-up).

    Example:
        quantize_money(Decimal("7.123456785")) -> Decimal("7.12345679")
    """
    return to_decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def quantize_rate(value) -> Decimal:
    return to_decimal(value).quantize(RATE_QUANT, rounding=ROUND_HALF_UP)


def daily_roi_rate(totalOutputPct, durationDays: int) -> Decimal:
    """
    Daily ROI rate as a fraction of principal.

    Args:
        totalOutputPct: Total output over the whole term, in percent
        durationDays: Term length in days

    Returns:
        Rate quantized to 12 places

    Raises:
        EngineConfigurationError: If durationDays is not positive

    Example:
        daily_roi_rate(Decimal("225"), 150) -> Decimal("0.015000000000")
    """
    if not durationDays or durationDays <= 0:
        raise EngineConfigurationError(f"Invalid durationDays {durationDays}")
    return quantize_rate(to_decimal(totalOutputPct) / HUNDRED / Decimal(durationDays))


def open_investment(
        session: Session,
        account: Account,
        amount,
        startDate: date,
        package: Optional[Package] = None
) -> Investment:
    """
    Create an active Investment with terms copied from the package.

    Without a package the configured DEFAULT_* terms are used. The caller
    owns the transaction; nothing is committed here.

    Args:
        session: Database session
        account: Investing account
        amount: Invested amount (becomes the fixed principal)
        startDate: First day of the term
        package: Funding package (optional)

    Returns:
        The new (flushed) Investment
    """
    amount = quantize_money(amount)
    if amount <= 0:
        raise EngineConfigurationError(f"Investment amount must be positive, got {amount}")

    if package is not None:
        durationDays = package.durationDays
        totalOutputPct = to_decimal(package.totalOutputPct)
        renewablePct = to_decimal(package.renewablePct)
    else:
        durationDays = int(Config.get(Config.DEFAULT_DURATION_DAYS, 150))
        totalOutputPct = to_decimal(Config.get(Config.DEFAULT_TOTAL_OUTPUT_PCT, "225"))
        renewablePct = None

    investment = Investment(
        accountID=account.accountID,
        packageID=package.packageID if package is not None else None,
        investedAmount=amount,
        principal=amount,
        totalOutputPct=totalOutputPct,
        durationDays=durationDays,
        dailyRoiRate=daily_roi_rate(totalOutputPct, durationDays),
        renewablePct=renewablePct,
        startDate=startDate,
        endDate=startDate + timedelta(days=durationDays),
        daysElapsed=0,
        daysRemaining=durationDays,
        isActive=True,
    )
    session.add(investment)
    session.flush()

    logger.info(
        f"Investment {investment.investmentID} opened: account={account.accountID}, "
        f"principal={amount}, rate={investment.dailyRoiRate}, days={durationDays}"
    )
    return investment


def get_investment_info(investment: Investment) -> Dict:
    """
    Progress snapshot of an investment, for reports and diagnostics.

    Example:
        {
            "investmentID": 12,
            "principal": 1000.0,
            "daysElapsed": 10,
            "daysRemaining": 140,
            "totalRoiEarned": 75.0,
            "totalReinvested": 75.0,
            "expectedTotalOutput": 2250.0,
            "isActive": True
        }
    """
    principal = to_decimal(investment.principal)
    expected = quantize_money(principal * to_decimal(investment.totalOutputPct) / HUNDRED)

    return {
        "investmentID": investment.investmentID,
        "principal": float(principal),
        "daysElapsed": investment.daysElapsed,
        "daysRemaining": investment.daysRemaining,
        "totalRoiEarned": float(to_decimal(investment.totalRoiEarned)),
        "totalReinvested": float(to_decimal(investment.totalReinvested)),
        "expectedTotalOutput": float(expected),
        "isActive": investment.isActive
    }
