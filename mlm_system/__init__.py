# mlm_system/__init__.py
"""
Binary matching and ROI accrual engine.
"""

# Services
from mlm_system.services.wallet_service import WalletService
from mlm_system.services.volume_service import VolumeService
from mlm_system.services.matching_service import (
    BinaryMatchingService,
    MatchResult,
    NodeVolumes,
    match_node
)
from mlm_system.services.roi_service import RoiService, RoiSplit, compute_roi_split
from mlm_system.services.daily_cycle import DailyCycleService, RunSummary

# Configuration
from mlm_system.config.packages import (
    BonusTerms,
    BonusTermsResolver,
    EngineSettings,
    TermsPolicy
)

# Errors
from mlm_system.errors import (
    EngineError,
    EngineConfigurationError,
    InvariantViolationError,
    InsufficientBalanceError,
    RunInProgressError,
    StoreUnavailableError
)

__all__ = [
    # Services
    'WalletService',
    'VolumeService',
    'BinaryMatchingService',
    'MatchResult',
    'NodeVolumes',
    'match_node',
    'RoiService',
    'RoiSplit',
    'compute_roi_split',
    'DailyCycleService',
    'RunSummary',

    # Config
    'BonusTerms',
    'BonusTermsResolver',
    'EngineSettings',
    'TermsPolicy',

    # Errors
    'EngineError',
    'EngineConfigurationError',
    'InvariantViolationError',
    'InsufficientBalanceError',
    'RunInProgressError',
    'StoreUnavailableError',
]
