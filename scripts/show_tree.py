#!/usr/bin/env python3
"""
Display the binary tree with leg counters.

Shows every account below the root with BV / matched / carry per leg.

Usage:
    python scripts/show_tree.py [--root-id EXTERNAL_ID] [--max-depth DEPTH] [--stats]
    python scripts/show_tree.py --account EXTERNAL_ID
"""

import sys
import os
import argparse

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import func

from config import Config
from core.db import session_scope
from models.account import Account, AccountKind, Leg
from models.investment import Investment
from models.tree_node import TreeNode
from models.wallet import Wallet
from mlm_system.utils.chain_walker import ChainWalker
from mlm_system.utils.investment_helpers import get_investment_info

import logging

logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)


def format_node(node):
    if node is None:
        return "(no node)"
    return (
        f"L {node.leftBusiness}/{node.leftMatched}/{node.leftCarry}  "
        f"R {node.rightBusiness}/{node.rightMatched}/{node.rightCarry}"
    )


def print_tree(root_account, max_depth=None):
    """Print ASCII tree of the structure."""
    with session_scope() as session:
        walker = ChainWalker(session)

        def print_account(account, leg=None, prefix="", is_last=True, depth=0):
            if max_depth and depth > max_depth:
                return

            connector = "└─ " if is_last else "├─ "
            root_marker = "👑 " if account.isRoot else ""
            leg_marker = f"[{leg.value[0].upper()}] " if leg else ""
            status_marker = "" if account.status == "active" else f" ({account.status})"

            node = walker.get_node(account)
            review_marker = " ⚠️ review" if node is not None and node.needsReview else ""

            print(
                f"{prefix}{connector}{leg_marker}{root_marker}{account.externalId}{status_marker}  "
                f"{format_node(node)}{review_marker}"
            )

            children = [
                (child_leg, child)
                for child_leg in (Leg.LEFT, Leg.RIGHT)
                for child in walker.get_leg_members(account, child_leg)
            ]

            for i, (child_leg, child) in enumerate(children):
                is_last_child = (i == len(children) - 1)
                new_prefix = prefix + ("    " if is_last else "│   ")
                print_account(child, child_leg, new_prefix, is_last_child, depth + 1)

        print("\n" + "=" * 80)
        print("BINARY TREE")
        print("=" * 80)
        print("\nLegend:")
        print("  👑 = Root account (collects volume, never matched)")
        print("  [L]/[R] = leg under the referrer")
        print("  L/R business/matched/carry")
        print(f"Downline of {root_account.externalId}: {walker.count_downline(root_account)} accounts")
        print("\n" + "=" * 80 + "\n")
        print_account(root_account)
        print("\n" + "=" * 80 + "\n")


def print_statistics():
    """Print database statistics."""
    with session_scope() as session:
        total_accounts = session.query(Account).count()
        active_investments = session.query(Investment).filter_by(isActive=True).count()
        total_investments = session.query(Investment).count()
        flagged_nodes = session.query(TreeNode).filter_by(needsReview=True).count()
        flagged_investments = session.query(Investment).filter_by(needsReview=True).count()

        print("\n" + "=" * 80)
        print("DATABASE STATISTICS")
        print("=" * 80 + "\n")

        print(f"Accounts:            {total_accounts}")
        print(f"Investments:         {total_investments} ({active_investments} active)")
        print(f"Flagged nodes:       {flagged_nodes}")
        print(f"Flagged investments: {flagged_investments}")

        totals = session.query(
            func.sum(TreeNode.leftBusiness),
            func.sum(TreeNode.rightBusiness),
            func.sum(TreeNode.leftCarry),
            func.sum(TreeNode.rightCarry)
        ).one()
        print(f"\nBusiness L/R: {totals[0] or 0} / {totals[1] or 0}")
        print(f"Carry    L/R: {totals[2] or 0} / {totals[3] or 0}")

        print("\nWallets by category:")
        wallet_totals = session.query(
            Wallet.category,
            func.sum(Wallet.balance),
            func.sum(Wallet.renewablePrincipal)
        ).group_by(Wallet.category).all()

        for category, balance, renewable in wallet_totals:
            print(f"  {category:12} balance={balance or 0} renewable={renewable or 0}")

        print("\n" + "=" * 80 + "\n")


def print_account_details(external_id):
    """Print the upline chain and investments of one account."""
    with session_scope() as session:
        account = session.query(Account).filter_by(externalId=external_id).first()
        if not account:
            print(f"❌ Account {external_id} not found")
            return

        walker = ChainWalker(session)
        chain = walker.get_upline_chain(account)

        print("\n" + "=" * 80)
        print(f"ACCOUNT {account.externalId} ({account.kind}, {account.status})")
        print("=" * 80 + "\n")
        print(f"Node: {format_node(walker.get_node(account))}")
        print("Upline: " + (" → ".join(referrer.externalId for referrer in chain) or "(none)"))

        print("\nInvestments:")
        for investment in session.query(Investment).filter_by(accountID=account.accountID).all():
            info = get_investment_info(investment)
            print(
                f"  #{info['investmentID']} principal={info['principal']} "
                f"days={info['daysElapsed']}/{info['daysElapsed'] + info['daysRemaining']} "
                f"roi={info['totalRoiEarned']} reinvested={info['totalReinvested']} "
                f"of {info['expectedTotalOutput']} {'active' if info['isActive'] else 'expired'}"
            )
        print()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description='Display binary tree')
    parser.add_argument('--root-id', type=str,
                        help='externalId of the top account (default: first root account)')
    parser.add_argument('--max-depth', type=int,
                        help='Maximum depth to display')
    parser.add_argument('--stats', action='store_true',
                        help='Show statistics only')
    parser.add_argument('--account', type=str,
                        help='externalId of an account to show in detail')

    args = parser.parse_args()

    Config.initialize_from_env()

    if args.stats:
        print_statistics()
        return

    if args.account:
        print_account_details(args.account)
        return

    with session_scope() as session:
        if args.root_id:
            root = session.query(Account).filter_by(externalId=args.root_id).first()
        else:
            root = session.query(Account).filter_by(
                kind=AccountKind.ROOT.value
            ).order_by(Account.accountID).first()
            if root is None:
                root = session.query(Account).filter(
                    Account.referrerID.is_(None)
                ).order_by(Account.accountID).first()

        if not root:
            print("❌ Root account not found")
            return
        session.expunge(root)

    print_tree(root, args.max_depth)
    print_statistics()


if __name__ == '__main__':
    main()
