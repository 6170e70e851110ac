# mlm_system/errors.py
"""
Engine error taxonomy.

    EngineConfigurationError - entity data/config missing → log, skip entity
    InvariantViolationError  - mutation would corrupt state → reject, flag entity
    InsufficientBalanceError - wallet debit beyond balance (invariant violation)
    RunInProgressError       - another live run holds today's lease
    StoreUnavailableError    - store cannot be read at all → abort run
"""


class EngineError(Exception):
    """Base class for engine errors."""
    pass


class EngineConfigurationError(EngineError):
    """Missing tree node, absent ROI rate, missing package configuration."""
    pass


class InvariantViolationError(EngineError):
    """A mutation would break a ledger invariant."""
    pass


class InsufficientBalanceError(InvariantViolationError):
    """Wallet debit exceeds the available balance."""

    def __init__(self, accountId: int, category: str, amount, available=None):
        self.accountId = accountId
        self.category = category
        self.amount = amount
        self.available = available
        super().__init__(
            f"Insufficient {category} balance for account {accountId}: "
            f"requested {amount}, available {available}"
        )


class RunInProgressError(EngineError):
    """Another orchestrator run holds the lease for this day."""
    pass


class StoreUnavailableError(EngineError):
    """The store cannot serve the run at all."""
    pass
