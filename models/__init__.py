"""
Database models for the binary matching and ROI engine.
Import all models here for easy access.
"""

# Base and mixins
from models.base import Base, AuditMixin, MONEY_PLACES, RATE_PLACES

# Core models
from models.account import Account, AccountKind, AccountStatus, Leg
from models.tree_node import TreeNode
from models.package import Package
from models.investment import Investment
from models.wallet import Wallet, WalletCategory
from models.wallet_transaction import WalletTransaction

# Run bookkeeping
from models.daily_run import DailyRun
from models.volume_accrual import VolumeAccrual

# Event listeners
from models.listeners import register_all_listeners

__all__ = [
    # Base
    'Base',
    'AuditMixin',
    'MONEY_PLACES',
    'RATE_PLACES',

    # Core
    'Account',
    'AccountKind',
    'AccountStatus',
    'Leg',
    'TreeNode',
    'Package',
    'Investment',
    'Wallet',
    'WalletCategory',
    'WalletTransaction',

    # Runs
    'DailyRun',
    'VolumeAccrual',

    # Listeners
    'register_all_listeners',
]
