# mlm_system/services/matching_service.py
"""
Binary matching engine.

Matching consumes volume available on both legs of a node and pays a capped
bonus on the matched amount:

    leftAvailable  = leftCarry  + (leftBusiness  - leftMatched)
    rightAvailable = rightCarry + (rightBusiness - rightMatched)
    matched        = min(leftAvailable, rightAvailable)
    cappedMatched  = min(matched, max(powerCapacity, 0))
    bonus          = cappedMatched * binaryPct / 100

Each leg gives up cappedMatched from its carry first and then from unmatched
business (*Matched grows by the part taken from business). The leg left with
more volume afterwards adds the difference to its carry.

Example (10%, capacity 10000):
    L business 6000, R business 5000
    → bonus 500, L matched 5000, R matched 5000, L carry 1000, R carry 0
"""
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import List, Optional
from sqlalchemy.orm import Session
import logging

from models.base import ZERO
from models.account import Account, AccountKind, AccountStatus
from models.tree_node import TreeNode
from models.wallet import WalletCategory
from mlm_system.config.packages import BonusTermsResolver
from mlm_system.errors import EngineConfigurationError, InvariantViolationError
from mlm_system.services.wallet_service import WalletService
from mlm_system.utils.investment_helpers import quantize_money, to_decimal

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class NodeVolumes:
    """Snapshot of the six leg counters of one node."""
    leftBusiness: Decimal = ZERO
    rightBusiness: Decimal = ZERO
    leftMatched: Decimal = ZERO
    rightMatched: Decimal = ZERO
    leftCarry: Decimal = ZERO
    rightCarry: Decimal = ZERO

    @classmethod
    def from_node(cls, node: TreeNode) -> "NodeVolumes":
        return cls(
            leftBusiness=to_decimal(node.leftBusiness),
            rightBusiness=to_decimal(node.rightBusiness),
            leftMatched=to_decimal(node.leftMatched),
            rightMatched=to_decimal(node.rightMatched),
            leftCarry=to_decimal(node.leftCarry),
            rightCarry=to_decimal(node.rightCarry),
        )

    @property
    def leftUnmatched(self) -> Decimal:
        return self.leftBusiness - self.leftMatched

    @property
    def rightUnmatched(self) -> Decimal:
        return self.rightBusiness - self.rightMatched

    @property
    def leftAvailable(self) -> Decimal:
        return self.leftCarry + self.leftUnmatched

    @property
    def rightAvailable(self) -> Decimal:
        return self.rightCarry + self.rightUnmatched

    def apply_to(self, node: TreeNode):
        node.leftBusiness = self.leftBusiness
        node.rightBusiness = self.rightBusiness
        node.leftMatched = self.leftMatched
        node.rightMatched = self.rightMatched
        node.leftCarry = self.leftCarry
        node.rightCarry = self.rightCarry


@dataclass(frozen=True)
class MatchResult:
    bonusAmount: Decimal
    matched: Decimal
    cappedMatched: Decimal
    state: NodeVolumes


def _check_state(state: NodeVolumes):
    """Raise on counters that are already inconsistent; never clamp."""
    for side in ("left", "right"):
        business = getattr(state, f"{side}Business")
        matched = getattr(state, f"{side}Matched")
        carry = getattr(state, f"{side}Carry")

        if business < 0 or matched < 0:
            raise InvariantViolationError(f"Negative {side} counters: business={business}, matched={matched}")
        if matched > business:
            raise InvariantViolationError(f"{side}Matched {matched} exceeds {side}Business {business}")
        if carry < 0:
            raise InvariantViolationError(f"Negative {side}Carry {carry}")


def _consume(carry: Decimal, matched: Decimal, amount: Decimal):
    """Take amount from carry first, then from unmatched business."""
    if carry >= amount:
        return carry - amount, matched
    return ZERO, matched + (amount - carry)


def match_node(state: NodeVolumes, binaryPct, powerCapacity) -> MatchResult:
    """
    Run one match over a node's leg counters.

    Bookkeeping runs even when nothing can be paid (zero capacity, empty leg).

    Args:
        state: Current counters
        binaryPct: Bonus percentage, 0-100
        powerCapacity: Maximum matched volume paid per match (<= 0 pays nothing)

    Returns:
        MatchResult with the bonus and the new counters

    Raises:
        InvariantViolationError: If the input counters are inconsistent
        EngineConfigurationError: If binaryPct is outside 0-100
    """
    _check_state(state)

    binaryPct = to_decimal(binaryPct)
    if binaryPct < 0 or binaryPct > HUNDRED:
        raise EngineConfigurationError(f"binaryPct {binaryPct} outside 0-100")

    leftAvailable = state.leftAvailable
    rightAvailable = state.rightAvailable

    matched = min(leftAvailable, rightAvailable)
    cappedMatched = min(matched, max(to_decimal(powerCapacity), ZERO))

    bonusAmount = quantize_money(cappedMatched * binaryPct / HUNDRED)

    leftCarry, leftMatched = _consume(state.leftCarry, state.leftMatched, cappedMatched)
    rightCarry, rightMatched = _consume(state.rightCarry, state.rightMatched, cappedMatched)

    leftAfter = leftAvailable - cappedMatched
    rightAfter = rightAvailable - cappedMatched

    if leftAfter > rightAfter:
        leftCarry += leftAfter - rightAfter
    elif rightAfter > leftAfter:
        rightCarry += rightAfter - leftAfter

    newState = replace(
        state,
        leftMatched=leftMatched,
        rightMatched=rightMatched,
        leftCarry=leftCarry,
        rightCarry=rightCarry
    )
    _check_state(newState)

    return MatchResult(
        bonusAmount=bonusAmount,
        matched=matched,
        cappedMatched=cappedMatched,
        state=newState
    )


class BinaryMatchingService:
    """
    Service for running daily binary matching over tree nodes.

    Business Logic:
    - One match per node per day (TreeNode.lastMatchedOn)
    - Root accounts accumulate volume but are never matched or paid
    - Suspended accounts and nodes flagged for review are skipped
    - Node counters, wallet credit and ledger row share one transaction
    """

    def __init__(self, session: Session):
        self.session = session
        self.wallets = WalletService(session)

    # ============================================================
    # PUBLIC API
    # ============================================================

    def getMatchableNodeIds(self, today: date) -> List[int]:
        """Nodes of regular, non-suspended accounts not yet matched today."""
        rows = self.session.query(TreeNode.nodeID).join(
            Account, Account.accountID == TreeNode.accountID
        ).filter(
            Account.kind != AccountKind.ROOT.value,
            Account.status != AccountStatus.SUSPENDED.value,
            TreeNode.needsReview == False,  # noqa: E712
            (TreeNode.lastMatchedOn.is_(None)) | (TreeNode.lastMatchedOn < today)
        ).order_by(TreeNode.nodeID).all()

        return [row[0] for row in rows]

    async def matchNode(
            self,
            node: TreeNode,
            today: date,
            terms: BonusTermsResolver,
            runId: Optional[int] = None
    ) -> Optional[MatchResult]:
        """
        Match one node and pay its bonus. Does not commit.

        Returns:
            MatchResult, or None when the node is not eligible today
        """
        account = node.account
        if account is None or account.isRoot or account.isSuspended:
            return None

        if node.needsReview:
            logger.debug(f"Node {node.nodeID} flagged for review, skipped")
            return None

        if node.lastMatchedOn is not None and node.lastMatchedOn >= today:
            logger.debug(f"Node {node.nodeID} already matched on {node.lastMatchedOn}")
            return None

        if not node.hasPendingVolume:
            return None

        bonusTerms = terms.resolve(node)
        result = match_node(
            NodeVolumes.from_node(node),
            bonusTerms.binaryPct,
            bonusTerms.powerCapacity
        )

        result.state.apply_to(node)
        node.lastMatchedOn = today

        if result.bonusAmount > 0:
            await self.wallets.credit(
                accountId=node.accountID,
                category=WalletCategory.BINARY,
                amount=result.bonusAmount,
                entryType="binary_bonus",
                idempotencyKey=f"binary:{node.accountID}:{today.isoformat()}",
                txRef=f"node:{node.nodeID}",
                runId=runId,
                notes=(
                    f"Binary bonus {bonusTerms.binaryPct}% of {result.cappedMatched} "
                    f"(terms {bonusTerms.source})"
                )
            )

        self.session.flush()

        logger.info(
            f"Node {node.nodeID} matched: matched={result.matched}, capped={result.cappedMatched}, "
            f"bonus={result.bonusAmount}, carry L={result.state.leftCarry} R={result.state.rightCarry}"
        )
        return result
