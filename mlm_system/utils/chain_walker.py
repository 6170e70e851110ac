# mlm_system/utils/chain_walker.py
"""
Safe binary tree walking utilities.
Resolves referrer placement and prevents infinite loops on broken trees.
"""
from typing import Optional, Callable, Set, List, Tuple
from sqlalchemy.orm import Session
import logging

from models.account import Account, Leg
from models.tree_node import TreeNode
from mlm_system.errors import EngineConfigurationError, InvariantViolationError

logger = logging.getLogger(__name__)


class ChainWalker:
    """
    Utilities for walking the referrer chain (up) and the binary legs (down).
    """

    def __init__(self, session: Session):
        self.session = session

    def get_node(self, account: Account) -> Optional[TreeNode]:
        return self.session.query(TreeNode).filter_by(accountID=account.accountID).first()

    def get_placement(self, account: Account) -> Optional[Tuple[TreeNode, Leg]]:
        """
        Resolve the node and leg that receive this account's volume.

        Args:
            account: Contributing account

        Returns:
            (referrer node, leg) or None when the account has no referrer

        Raises:
            EngineConfigurationError: If the referrer has no TreeNode
        """
        if account.referrerID is None:
            return None

        node = self.session.query(TreeNode).filter_by(accountID=account.referrerID).first()
        if not node:
            raise EngineConfigurationError(
                f"Referrer {account.referrerID} of account {account.accountID} has no tree node"
            )

        return node, account.leg

    def attach_account(self, account: Account) -> TreeNode:
        """
        Create the TreeNode for a newly registered account.

        Links the node under its referrer's leg when that slot is still free.
        Nothing is committed here.

        Raises:
            InvariantViolationError: If the account already has a node
        """
        if self.get_node(account):
            raise InvariantViolationError(f"Account {account.accountID} already has a tree node")

        node = TreeNode(accountID=account.accountID, parentID=account.referrerID)
        self.session.add(node)

        if account.referrerID is not None:
            parentNode = self.session.query(TreeNode).filter_by(
                accountID=account.referrerID
            ).first()

            if parentNode is None:
                logger.warning(
                    f"Account {account.accountID}: referrer {account.referrerID} has no tree node"
                )
            elif account.leg == Leg.LEFT and parentNode.leftChildID is None:
                parentNode.leftChildID = account.accountID
            elif account.leg == Leg.RIGHT and parentNode.rightChildID is None:
                parentNode.rightChildID = account.accountID

        self.session.flush()
        return node

    def walk_upline(
            self,
            start_account: Account,
            callback: Callable[[Account, Leg, int], bool],
            max_depth: int = 100
    ) -> int:
        """
        Walk up the referrer chain, calling callback for each referrer.

        Args:
            start_account: Starting account
            callback: Function(referrer, leg_of_previous, level) -> continue_walking
            max_depth: Maximum depth to prevent runaway loops

        Returns:
            Number of accounts processed
        """
        current = start_account
        level = 1
        processed = 0
        visited = set()

        while current.referrerID is not None and level <= max_depth:
            if current.accountID in visited:
                logger.error(f"Cycle detected at account {current.accountID}")
                break

            visited.add(current.accountID)

            referrer = self.session.query(Account).filter_by(accountID=current.referrerID).first()
            if not referrer:
                logger.warning(
                    f"Referrer {current.referrerID} not found for account {current.accountID}"
                )
                break

            processed += 1
            if not callback(referrer, current.leg, level):
                break

            if referrer.isRoot:
                logger.debug(f"Reached root account at level {level}")
                break

            current = referrer
            level += 1

        if level > max_depth:
            logger.error(f"Max depth ({max_depth}) exceeded starting from account {start_account.accountID}")

        return processed

    def walk_downline(
            self,
            start_account: Account,
            callback: Callable[[Account, Leg, int], None],
            max_depth: int = 50,
            level: int = 1,
            visited: Optional[Set[int]] = None
    ) -> int:
        """
        Walk down both legs recursively, depth-first, left leg first.

        Args:
            start_account: Starting account
            callback: Function(account, leg, level) for each downline account
            max_depth: Maximum depth
            level: Current depth (internal)
            visited: Set of visited account IDs (for cycle detection)

        Returns:
            Total number of accounts processed
        """
        if visited is None:
            visited = set()

        if level > max_depth:
            logger.warning(f"Max depth reached at account {start_account.accountID}")
            return 0

        if start_account.accountID in visited:
            logger.error(f"Cycle detected in downline at account {start_account.accountID}")
            return 0

        visited.add(start_account.accountID)

        processed = 0
        for leg in (Leg.LEFT, Leg.RIGHT):
            for referral in self.get_leg_members(start_account, leg):
                callback(referral, leg, level)
                processed += 1
                processed += self.walk_downline(referral, callback, max_depth, level + 1, visited)

        return processed

    def get_leg_members(self, account: Account, leg: Leg) -> List[Account]:
        """Direct referrals placed on one leg (unset positions count as left)."""
        query = self.session.query(Account).filter(Account.referrerID == account.accountID)
        if leg == Leg.LEFT:
            query = query.filter((Account.position == Leg.LEFT.value) | (Account.position.is_(None)))
        else:
            query = query.filter(Account.position == Leg.RIGHT.value)
        return query.order_by(Account.accountID).all()

    def get_upline_chain(self, account: Account, max_depth: int = 100) -> List[Account]:
        """List of referrers from the immediate one up to the root."""
        chain = []

        def collect(referrer, leg, level):
            chain.append(referrer)
            return True

        self.walk_upline(account, collect, max_depth)
        return chain

    def count_downline(self, account: Account, max_depth: int = 50) -> int:
        count = [0]  # Use list to allow modification in callback

        def counter(downline_account, leg, level):
            count[0] += 1

        self.walk_downline(account, counter, max_depth)
        return count[0]
