# tests/test_scheduler.py
"""
Tests for the scheduler wrapper, run settings and the command line.

Run:
    pytest tests/test_scheduler.py -v
"""
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

import background.mlm_scheduler as scheduler_module
from background.mlm_scheduler import DailyCycleScheduler
from config import Config, ConfigurationError
from engine import parse_args
from models import DailyRun, WalletCategory
from mlm_system.config.packages import EngineSettings, TermsPolicy
from tests.conftest import START_DATE, run


@pytest.fixture
def scheduler(engine, monkeypatch):
    """Scheduler whose sessions point at the test database."""
    factory = sessionmaker(bind=engine)
    monkeypatch.setattr(scheduler_module, "get_session", factory)
    return DailyCycleScheduler()


class TestEngineSettings:
    """Tests for EngineSettings.from_config."""

    def test_settings_from_config(self):
        settings = EngineSettings.from_config()

        assert settings.termsPolicy == TermsPolicy.LATEST_CONTRIBUTION
        assert settings.defaultTerms.binaryPct == Decimal("10")
        assert settings.defaultTerms.powerCapacity == Decimal("1000")
        assert settings.defaultRenewablePct == Decimal("50")
        assert settings.maxEntityAttempts == 3

    def test_unknown_policy_rejected(self):
        Config.set(Config.BONUS_TERMS_POLICY, "highest_package", source="tests")

        with pytest.raises(ConfigurationError):
            EngineSettings.from_config()


class TestDailyCycleScheduler:
    """Tests for DailyCycleScheduler execution outside the cron trigger."""

    def test_trigger_now_runs_cycle(self, session, scheduler, make_account, make_investment, wallet_of):
        """
        TEST: a manual trigger runs the full cycle in its own session.

        Defaults apply (10% capped at 1000 matched volume): bonus 100.
        """
        sponsor = make_account()
        make_investment(make_account(referrer=sponsor, position="left"), 6000)
        make_investment(make_account(referrer=sponsor, position="right"), 5000)

        summary = run(scheduler.triggerNow(START_DATE))

        assert summary.matched == 1
        assert summary.totalBonusPaid == Decimal("100")
        assert wallet_of(sponsor, WalletCategory.BINARY).balance == Decimal("100")
        assert scheduler.stats["runsExecuted"] == 1
        assert scheduler.stats["lastSummary"]["runDate"] == START_DATE.isoformat()

        session.expire_all()
        assert session.query(DailyRun).filter_by(runDate=START_DATE).one().status == "completed"

    def test_roi_only_trigger(self, scheduler, make_account, make_investment, wallet_of):
        account = make_account()
        make_investment(account, 1000)

        summary = run(scheduler.triggerNow(START_DATE, roiOnly=True))

        assert summary.accrued == 1
        assert wallet_of(account, WalletCategory.ROI).balance == Decimal("7.5")

    def test_status_before_start(self, scheduler):
        status = scheduler.getStatus()

        assert status["isRunning"] is False
        assert status["schedulerRunning"] is False
        assert status["timezone"] == Config.get(Config.SCHEDULER_TIMEZONE, "UTC")
        assert status["jobs"] == []


class TestCommandLine:
    """Tests for engine.py argument parsing."""

    def test_once_with_date(self):
        args = parse_args(["--once", "--date", "2025-01-31"])

        assert args.once is True
        assert args.date == date(2025, 1, 31)
        assert args.roi_only is False

    def test_defaults(self):
        args = parse_args([])

        assert args.once is False
        assert args.date is None
