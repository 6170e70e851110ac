# mlm_system/services/volume_service.py
"""
Business volume accrual for the binary tree.
Each active investment credits its principal to the referrer's leg once per day.
"""
from datetime import date
from decimal import Decimal
from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import select
import logging

from models.account import Account, Leg
from models.investment import Investment
from models.tree_node import TreeNode
from models.volume_accrual import VolumeAccrual
from mlm_system.errors import EngineConfigurationError
from mlm_system.utils.chain_walker import ChainWalker
from mlm_system.utils.investment_helpers import to_decimal

logger = logging.getLogger(__name__)


class VolumeService:
    """Service for accruing daily business volume (BV) onto tree nodes."""

    def __init__(self, session: Session):
        self.session = session
        self.walker = ChainWalker(session)

    # ============================================================
    # PUBLIC API - Main entry points
    # ============================================================

    def getAccruableInvestmentIds(self, today: date) -> List[int]:
        """IDs of active, unflagged, started investments without a VolumeAccrual row for today."""
        accrued = select(VolumeAccrual.investmentID).where(
            VolumeAccrual.accrualDate == today
        )

        rows = self.session.query(Investment.investmentID).filter(
            Investment.isActive == True,  # noqa: E712
            Investment.needsReview == False,  # noqa: E712
            Investment.startDate <= today,
            Investment.investmentID.notin_(accrued)
        ).order_by(Investment.investmentID).all()

        return [row[0] for row in rows]

    async def accrueInvestment(
            self,
            investment: Investment,
            today: date,
            runId: Optional[int] = None
    ) -> Optional[VolumeAccrual]:
        """
        Credit one investment's principal to its referrer's leg for today.

        Does not commit. The VolumeAccrual row and the node increment belong
        to the same transaction.

        Args:
            investment: Active investment
            today: Accrual date
            runId: DailyRun ID

        Returns:
            New VolumeAccrual, or None when today's volume was already accrued
            or the investment has not started yet

        Raises:
            EngineConfigurationError: If the owner or the referrer's node is missing
        """
        if today < investment.startDate:
            return None

        existing = self.session.query(VolumeAccrual).filter_by(
            investmentID=investment.investmentID,
            accrualDate=today
        ).first()
        if existing:
            logger.debug(f"Volume for investment {investment.investmentID} already accrued on {today}")
            return None

        account = self.session.get(Account, investment.accountID)
        if not account:
            raise EngineConfigurationError(
                f"Investment {investment.investmentID}: owner {investment.accountID} not found"
            )

        amount = to_decimal(investment.principal)
        accrual = VolumeAccrual(
            investmentID=investment.investmentID,
            accrualDate=today,
            accountID=account.accountID,
            packageID=investment.packageID,
            amount=amount,
            runID=runId
        )

        placement = self.walker.get_placement(account)
        if placement is None:
            # Top of the tree: nobody above to receive volume
            accrual.propagated = False
            self.session.add(accrual)
            self.session.flush()
            logger.debug(f"Account {account.accountID} has no referrer, volume not propagated")
            return accrual

        node, leg = placement
        await self._addBusiness(node, leg, amount)

        accrual.targetNodeID = node.nodeID
        accrual.leg = leg.value
        accrual.propagated = True
        self.session.add(accrual)
        self.session.flush()

        logger.debug(
            f"BV {amount} from investment {investment.investmentID} → "
            f"node {node.nodeID} {leg.value} leg"
        )
        return accrual

    # ============================================================
    # INTERNALS
    # ============================================================

    async def _addBusiness(self, node: TreeNode, leg: Leg, amount: Decimal):
        """Only *Business is touched here; matching owns *Matched and *Carry."""
        if leg == Leg.LEFT:
            node.leftBusiness = to_decimal(node.leftBusiness) + amount
        else:
            node.rightBusiness = to_decimal(node.rightBusiness) + amount
