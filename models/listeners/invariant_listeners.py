# models/listeners/invariant_listeners.py
"""
Invariant Event Listeners - reject flushes that would corrupt ledger state.

Architecture:
    Session.before_flush → validate every new/dirty TreeNode, Investment, Account
    Any violation raises InvariantViolationError and the flush (and the
    surrounding unit of work) is abandoned by the caller's rollback.

Checked:
    TreeNode:   *Matched <= *Business, *Carry >= 0,
                *Business and *Matched never decrease
    Investment: principal never changes, inactive never becomes active again,
                daysElapsed never decreases,
                daysElapsed + daysRemaining == durationDays while active
    Account:    position and referrer never reassigned

NOTE: Wallet balances are NOT checked here. They are mutated with atomic
      SQL UPDATE statements (see WalletService) and guarded by CHECK constraints.
"""
import logging

from sqlalchemy import event
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import get_history
from sqlalchemy.orm.base import NO_VALUE, NEVER_SET

logger = logging.getLogger(__name__)

_EMPTY = (None, NO_VALUE, NEVER_SET)


def _old_and_new(obj, attr):
    """Return (old, new) for a modified attribute, or (None, None) if unchanged."""
    history = get_history(obj, attr)
    if not history.added:
        return None, None
    old = history.deleted[0] if history.deleted else None
    return old, history.added[0]


def register_invariant_listeners():
    """
    Register before_flush validation for engine entities.

    Called once during application startup from models/listeners/__init__.py
    """
    from models.account import Account
    from models.investment import Investment
    from models.tree_node import TreeNode
    from mlm_system.errors import InvariantViolationError

    # =========================================================================
    # TREE NODE
    # =========================================================================

    def check_tree_node(node: TreeNode, is_new: bool):
        for side in ("left", "right"):
            business = getattr(node, f"{side}Business")
            matched = getattr(node, f"{side}Matched")
            carry = getattr(node, f"{side}Carry")

            if business is not None and matched is not None and matched > business:
                raise InvariantViolationError(
                    f"TreeNode account={node.accountID}: {side}Matched {matched} "
                    f"exceeds {side}Business {business}"
                )
            if carry is not None and carry < 0:
                raise InvariantViolationError(
                    f"TreeNode account={node.accountID}: negative {side}Carry {carry}"
                )

            if is_new:
                continue

            for counter in (f"{side}Business", f"{side}Matched"):
                old, new = _old_and_new(node, counter)
                if old not in _EMPTY and new is not None and new < old:
                    raise InvariantViolationError(
                        f"TreeNode account={node.accountID}: {counter} decreased {old} → {new}"
                    )

    # =========================================================================
    # INVESTMENT
    # =========================================================================

    def check_investment(investment: Investment, is_new: bool):
        if not is_new:
            old, new = _old_and_new(investment, "principal")
            if old not in _EMPTY and new != old:
                raise InvariantViolationError(
                    f"Investment {investment.investmentID}: principal is fixed "
                    f"({old} → {new} rejected)"
                )

            old, new = _old_and_new(investment, "isActive")
            if old is False and new:
                raise InvariantViolationError(
                    f"Investment {investment.investmentID}: expired investment cannot be reactivated"
                )

            old, new = _old_and_new(investment, "daysElapsed")
            if old not in _EMPTY and new is not None and new < old:
                raise InvariantViolationError(
                    f"Investment {investment.investmentID}: daysElapsed decreased {old} → {new}"
                )

        if investment.isActive and investment.daysRemaining is not None:
            elapsed = investment.daysElapsed or 0
            if elapsed + investment.daysRemaining != investment.durationDays:
                raise InvariantViolationError(
                    f"Investment {investment.investmentID}: daysElapsed ({elapsed}) + "
                    f"daysRemaining ({investment.daysRemaining}) != durationDays "
                    f"({investment.durationDays})"
                )

    # =========================================================================
    # ACCOUNT
    # =========================================================================

    def check_account(account: Account):
        for attr in ("position", "referrerID"):
            old, new = _old_and_new(account, attr)
            if old not in _EMPTY and new != old:
                raise InvariantViolationError(
                    f"Account {account.externalId}: {attr} is fixed at creation "
                    f"({old} → {new} rejected)"
                )

    @event.listens_for(Session, "before_flush")
    def validate_before_flush(session, flush_context, instances):
        """Validate every pending and modified engine entity."""
        for obj in session.new:
            if isinstance(obj, TreeNode):
                check_tree_node(obj, is_new=True)
            elif isinstance(obj, Investment):
                check_investment(obj, is_new=True)

        for obj in session.dirty:
            if not session.is_modified(obj):
                continue
            if isinstance(obj, TreeNode):
                check_tree_node(obj, is_new=False)
            elif isinstance(obj, Investment):
                check_investment(obj, is_new=False)
            elif isinstance(obj, Account):
                check_account(obj)


# =========================================================================
# SAFETY: Warn on direct wallet balance modification
# =========================================================================

def register_balance_protection():
    """
    Log warnings when Wallet.balance / renewablePrincipal is assigned directly.

    All wallet mutations must go through WalletService so that every change
    has a matching WalletTransaction row.
    """
    from models.wallet import Wallet

    @event.listens_for(Wallet.balance, 'set')
    def warn_direct_balance_set(target, value, oldvalue, initiator):
        """Warn when balance is set directly (not via WalletService)."""
        if oldvalue not in _EMPTY and value != oldvalue:
            logger.warning(
                f"DIRECT wallet balance modification detected! "
                f"account={target.accountID}, category={target.category}, {oldvalue} → {value}"
            )

    @event.listens_for(Wallet.renewablePrincipal, 'set')
    def warn_direct_renewable_set(target, value, oldvalue, initiator):
        """Warn when renewablePrincipal is set directly (not via WalletService)."""
        if oldvalue not in _EMPTY and value != oldvalue:
            logger.warning(
                f"DIRECT renewablePrincipal modification detected! "
                f"account={target.accountID}, {oldvalue} → {value}"
            )
