# tests/conftest.py
"""
Pytest configuration and shared fixtures for engine tests.

Every test gets a throw-away SQLite database file under tmp_path.

Run:
    pytest tests -v
"""
import asyncio
import logging
import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from config import Config
from models import Base, Account, AccountKind, AccountStatus, Package, Wallet, WalletCategory
from models.listeners import register_all_listeners
from mlm_system.config.packages import BonusTerms, EngineSettings, TermsPolicy
from mlm_system.utils.chain_walker import ChainWalker
from mlm_system.utils.investment_helpers import open_investment

# =============================================================================
# INITIALIZE CONFIG
# =============================================================================

Config.initialize_from_env()

logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

# =============================================================================
# CONSTANTS
# =============================================================================

START_DATE = date(2025, 1, 1)


def run(coro):
    """Drive an async service method to completion."""
    return asyncio.run(coro)


# =============================================================================
# CONFIG FIXTURES
# =============================================================================

@pytest.fixture(autouse=True)
def engine_config():
    """Pin the configuration keys the engine reads, whatever .env says."""
    overrides = {
        Config.DEFAULT_BINARY_PCT: Decimal("10"),
        Config.DEFAULT_POWER_CAPACITY: Decimal("1000"),
        Config.BONUS_TERMS_POLICY: "latest_contribution",
        Config.DEFAULT_RENEWABLE_PCT: Decimal("50"),
        Config.DEFAULT_DURATION_DAYS: 150,
        Config.DEFAULT_TOTAL_OUTPUT_PCT: Decimal("225"),
        Config.MAX_ENTITY_ATTEMPTS: 3,
        Config.RUN_LEASE_SECONDS: 3600,
    }
    saved = Config.get_all()
    for key, value in overrides.items():
        Config.set(key, value, source="tests")
    yield
    for key in overrides:
        if key in saved:
            Config.set(key, saved[key], source="tests")


@pytest.fixture
def settings():
    """Default terms only: 10% up to 10000 matched volume per day."""
    return EngineSettings(
        defaultTerms=BonusTerms(binaryPct=Decimal("10"), powerCapacity=Decimal("10000")),
        termsPolicy=TermsPolicy.DEFAULT,
        defaultRenewablePct=Decimal("50"),
        maxEntityAttempts=3,
        leaseSeconds=3600
    )


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture(scope="session", autouse=True)
def setup_listeners():
    """Register listeners once at test session start."""
    register_all_listeners()


@pytest.fixture
def engine(tmp_path):
    """Fresh SQLite database file for each test."""
    engine = create_engine(f"sqlite:///{tmp_path / 'engine_test.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    """Create database session for each test."""
    Session = sessionmaker(bind=engine)
    session = Session()
    yield session
    session.close()


# =============================================================================
# ENTITY FACTORIES
# =============================================================================

@pytest.fixture
def make_account(session):
    """
    Create an account (and its tree node) under an optional referrer.

    Usage:
        root = make_account(kind=AccountKind.ROOT)
        left = make_account(referrer=root, position="left")
    """

    def _make(referrer=None, position=None, kind=AccountKind.REGULAR,
              status=AccountStatus.ACTIVE, with_node=True):
        account = Account(
            externalId=f"CROWN-{uuid.uuid4().hex[:6].upper()}",
            kind=kind.value,
            status=status.value,
            referrerID=referrer.accountID if referrer is not None else None,
            position=position
        )
        session.add(account)
        session.flush()

        if with_node:
            ChainWalker(session).attach_account(account)

        session.commit()
        return account

    return _make


@pytest.fixture
def make_package(session):
    """Create a funding package (defaults match the standard plan)."""

    def _make(**kwargs):
        values = {
            "name": f"Plan {uuid.uuid4().hex[:4]}",
            "status": "active",
            "minAmount": Decimal("100"),
            "maxAmount": Decimal("100000"),
            "durationDays": 150,
            "totalOutputPct": Decimal("225"),
            "renewablePct": Decimal("50"),
            "binaryPct": Decimal("10"),
            "powerCapacity": Decimal("1000"),
        }
        values.update(kwargs)
        package = Package(**values)
        session.add(package)
        session.commit()
        return package

    return _make


@pytest.fixture
def make_investment(session):
    """Open an investment for an account and commit it."""

    def _make(account, amount, start=START_DATE, package=None):
        investment = open_investment(session, account, Decimal(str(amount)), start, package)
        session.commit()
        return investment

    return _make


# =============================================================================
# HELPER FIXTURES
# =============================================================================

@pytest.fixture
def wallet_of(session):
    """Look up a wallet, or None when it was never created."""

    def _get(account, category: WalletCategory):
        session.expire_all()
        return session.query(Wallet).filter_by(
            accountID=account.accountID,
            category=category.value
        ).first()

    return _get
