# mlm_system/services/daily_cycle.py
"""
Daily cycle orchestrator.

Order (once per calendar day):
    1. deactivate expired investments
    2. accrue business volume, then match every node with pending volume
    3. accrue ROI for every still-active investment

Every entity is its own transaction. Re-running a day is safe: committed
entities are skipped through VolumeAccrual rows, TreeNode.lastMatchedOn,
Investment.lastAccrualDate and unique ledger idempotency keys.
"""
from dataclasses import dataclass, field, asdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import uuid4
import logging
import os
import socket

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from models.base import utcnow
from models.daily_run import DailyRun
from models.investment import Investment
from models.tree_node import TreeNode
from mlm_system.config.packages import BonusTermsResolver, EngineSettings
from mlm_system.errors import (
    EngineConfigurationError,
    InvariantViolationError,
    RunInProgressError,
    StoreUnavailableError
)
from mlm_system.services.volume_service import VolumeService
from mlm_system.services.matching_service import BinaryMatchingService
from mlm_system.services.roi_service import RoiService

logger = logging.getLogger(__name__)

# Errors worth another attempt on the same entity
TRANSIENT_ERRORS = (StaleDataError, OperationalError, IntegrityError)


@dataclass
class RunSummary:
    """Counters for one daily run, stored on DailyRun.summary."""
    runDate: date
    expired: int = 0
    volumeAccrued: int = 0
    matched: int = 0
    totalBonusPaid: Decimal = Decimal("0")
    accrued: int = 0
    totalRoiPaid: Decimal = Decimal("0")
    totalReinvested: Decimal = Decimal("0")
    skipped: int = 0
    deferred: int = 0
    flagged: int = 0
    errors: int = 0
    errorDetails: List[Dict] = field(default_factory=list)

    def addError(self, stage: str, entityId: int, error: Exception, outcome: str):
        self.errors += 1
        self.errorDetails.append({
            "stage": stage,
            "entityId": entityId,
            "outcome": outcome,
            "error": str(error)
        })

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["runDate"] = self.runDate.isoformat()
        for key in ("totalBonusPaid", "totalRoiPaid", "totalReinvested"):
            data[key] = str(data[key])
        return data


class DailyCycleService:
    """
    Runs the daily cycle under a DailyRun lease.

    Per-entity failure handling:
    - StaleDataError / OperationalError / IntegrityError: retried up to
      maxEntityAttempts, then deferred to the next run
    - EngineConfigurationError: logged, entity skipped
    - InvariantViolationError: rolled back, entity flagged needsReview
    - StoreUnavailableError, or anything else escaping a stage: run aborted,
      marked failed and its lease released
    """

    def __init__(self, session: Session, settings: Optional[EngineSettings] = None):
        self.session = session
        self.settings = settings or EngineSettings.from_config()
        self.owner = f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex[:8]}"

        self.volumes = VolumeService(session)
        self.matching = BinaryMatchingService(session)
        self.roi = RoiService(session, self.settings.defaultRenewablePct)

    # ============================================================
    # PUBLIC API
    # ============================================================

    async def runDailyCycle(self, today: date) -> RunSummary:
        """
        Run expiry, volume accrual, matching and ROI for one day.

        Raises:
            RunInProgressError: If another live run holds today's lease
            StoreUnavailableError: If the store cannot serve the run

        Any error that escapes the stages marks the run failed and releases
        the lease before it propagates.
        """
        run = await self._acquireLease(today)
        summary = RunSummary(runDate=today)

        logger.info(f"Daily cycle {today} started (run {run.runID}, owner {self.owner})")

        try:
            await self._expireInvestments(today, summary)
            await self._renewLease(run.runID)

            terms = self._loadTerms()
            await self._accrueVolume(today, run.runID, summary)
            await self._renewLease(run.runID)
            await self._matchNodes(today, terms, run.runID, summary)
            await self._renewLease(run.runID)

            await self._accrueRoi(today, run.runID, summary)
            await self._completeRun(run.runID, summary)

        except Exception as e:
            await self._failRun(run.runID, e)
            raise

        return summary

    async def runRoiOnly(self, today: date) -> RunSummary:
        """Expiry and ROI accrual only (manual trigger), same lease and guards."""
        run = await self._acquireLease(today)
        summary = RunSummary(runDate=today)

        logger.info(f"ROI-only cycle {today} started (run {run.runID})")

        try:
            await self._expireInvestments(today, summary)
            await self._renewLease(run.runID)
            await self._accrueRoi(today, run.runID, summary)
            await self._completeRun(run.runID, summary)
        except Exception as e:
            await self._failRun(run.runID, e)
            raise

        return summary

    # ============================================================
    # STAGES
    # ============================================================

    async def _expireInvestments(self, today: date, summary: RunSummary):
        try:
            summary.expired = await self.roi.deactivateExpiredInvestments(today)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StoreUnavailableError(f"Expiry step failed: {e}") from e

        logger.info(f"Expired investments: {summary.expired}")

    def _loadTerms(self) -> BonusTermsResolver:
        try:
            return BonusTermsResolver(self.session, self.settings)
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StoreUnavailableError(f"Cannot load bonus terms: {e}") from e

    async def _accrueVolume(self, today: date, runId: int, summary: RunSummary):
        investmentIds = self._listIds(lambda: self.volumes.getAccruableInvestmentIds(today))

        async def work(investment):
            return await self.volumes.accrueInvestment(investment, today, runId)

        for investmentId in investmentIds:
            accrual = await self._runEntity("volume", Investment, investmentId, work, summary)
            if accrual is not None:
                summary.volumeAccrued += 1

        logger.info(f"Volume accrued for {summary.volumeAccrued} investments")

    async def _matchNodes(self, today: date, terms: BonusTermsResolver, runId: int, summary: RunSummary):
        nodeIds = self._listIds(lambda: self.matching.getMatchableNodeIds(today))

        async def work(node):
            return await self.matching.matchNode(node, today, terms, runId)

        for nodeId in nodeIds:
            result = await self._runEntity("matching", TreeNode, nodeId, work, summary)
            if result is not None:
                summary.matched += 1
                summary.totalBonusPaid += result.bonusAmount

        logger.info(f"Matched {summary.matched} nodes, bonus paid {summary.totalBonusPaid}")

    async def _accrueRoi(self, today: date, runId: int, summary: RunSummary):
        investmentIds = self._listIds(lambda: self.roi.getAccruableInvestmentIds(today))

        async def work(investment):
            return await self.roi.accrueInvestment(investment, today, runId)

        for investmentId in investmentIds:
            split = await self._runEntity("roi", Investment, investmentId, work, summary)
            if split is not None:
                summary.accrued += 1
                summary.totalRoiPaid += split.cashablePart
                summary.totalReinvested += split.renewablePart

        logger.info(
            f"ROI accrued for {summary.accrued} investments: paid={summary.totalRoiPaid}, "
            f"reinvested={summary.totalReinvested}"
        )

    # ============================================================
    # PER-ENTITY EXECUTION
    # ============================================================

    def _listIds(self, query: Callable[[], List[int]]) -> List[int]:
        try:
            return query()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StoreUnavailableError(f"Cannot list entities: {e}") from e

    async def _runEntity(
            self,
            stage: str,
            model,
            entityId: int,
            work: Callable[[Any], Awaitable[Any]],
            summary: RunSummary
    ) -> Any:
        """
        Run work(entity) in its own transaction with retry.

        Returns:
            Result of work, or None when the entity was skipped, flagged or deferred
        """
        maxAttempts = max(1, self.settings.maxEntityAttempts)
        lastError = None

        for attempt in range(1, maxAttempts + 1):
            try:
                entity = self.session.get(model, entityId)
                if entity is None:
                    summary.skipped += 1
                    return None

                result = await work(entity)
                self.session.commit()

                if result is None:
                    summary.skipped += 1
                return result

            except EngineConfigurationError as e:
                self.session.rollback()
                logger.error(f"[{stage}] {model.__name__} {entityId} skipped: {e}")
                summary.addError(stage, entityId, e, "skipped")
                return None

            except InvariantViolationError as e:
                self.session.rollback()
                logger.error(
                    f"[{stage}] {model.__name__} {entityId} rejected, flagging for review: {e}",
                    exc_info=True
                )
                self._flag(model, entityId, f"{stage}: {e}")
                summary.flagged += 1
                summary.addError(stage, entityId, e, "flagged")
                return None

            except TRANSIENT_ERRORS as e:
                self.session.rollback()
                lastError = e
                logger.warning(
                    f"[{stage}] {model.__name__} {entityId} attempt {attempt}/{maxAttempts} failed: {e}"
                )

            except Exception as e:
                self.session.rollback()
                logger.error(f"[{stage}] Error processing {model.__name__} {entityId}: {e}", exc_info=True)
                summary.addError(stage, entityId, e, "error")
                return None

        logger.error(f"[{stage}] {model.__name__} {entityId} deferred to next run after {maxAttempts} attempts")
        summary.deferred += 1
        summary.addError(stage, entityId, lastError, "deferred")
        return None

    def _flag(self, model, entityId: int, note: str):
        """Set needsReview on a TreeNode or Investment in a separate commit."""
        pk = model.__mapper__.primary_key[0]
        try:
            self.session.query(model).filter(pk == entityId).update(
                {"needsReview": True, "reviewNote": note[:500]},
                synchronize_session=False
            )
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Failed to flag {model.__name__} {entityId}: {e}", exc_info=True)

    # ============================================================
    # LEASE
    # ============================================================

    async def _acquireLease(self, today: date) -> DailyRun:
        """
        Take the single-writer lease for today.

        A completed or failed run may be re-run; a running one only after its
        lease has expired.
        """
        now = utcnow()
        expiresAt = now + timedelta(seconds=self.settings.leaseSeconds)

        try:
            run = self.session.query(DailyRun).filter_by(runDate=today).first()
        except OperationalError as e:
            self.session.rollback()
            raise StoreUnavailableError(f"Cannot read daily run for {today}: {e}") from e

        if run is None:
            run = DailyRun(
                runDate=today,
                status="running",
                leaseOwner=self.owner,
                leaseExpiresAt=expiresAt,
                attempts=1,
                startedAt=now
            )
            self.session.add(run)
            try:
                self.session.commit()
            except IntegrityError:
                self.session.rollback()
                raise RunInProgressError(f"Daily run for {today} was created concurrently")
            return run

        if (
                run.status == "running"
                and run.leaseOwner not in (None, self.owner)
                and run.leaseExpiresAt is not None
                and run.leaseExpiresAt > now
        ):
            raise RunInProgressError(
                f"Daily run for {today} is held by {run.leaseOwner} until {run.leaseExpiresAt}"
            )

        if run.status == "running" and run.leaseOwner not in (None, self.owner):
            logger.warning(f"Taking over expired lease of {run.leaseOwner} for {today}")

        run.status = "running"
        run.leaseOwner = self.owner
        run.leaseExpiresAt = expiresAt
        run.attempts = (run.attempts or 0) + 1
        run.startedAt = now
        run.completedAt = None
        run.lastError = None

        try:
            self.session.commit()
        except StaleDataError:
            self.session.rollback()
            raise RunInProgressError(f"Daily run for {today} was taken by another worker")

        return run

    async def _renewLease(self, runId: int):
        """Push the lease expiry forward between stages so a long run is not taken over."""
        try:
            run = self.session.get(DailyRun, runId)
            if run.leaseOwner != self.owner:
                raise RunInProgressError(f"Daily run {runId} was taken over by {run.leaseOwner}")
            run.leaseExpiresAt = utcnow() + timedelta(seconds=self.settings.leaseSeconds)
            self.session.commit()
        except StaleDataError as e:
            self.session.rollback()
            raise RunInProgressError(f"Daily run {runId} was taken over by another worker") from e
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StoreUnavailableError(f"Cannot renew lease of run {runId}: {e}") from e

    async def _completeRun(self, runId: int, summary: RunSummary):
        run = self.session.get(DailyRun, runId)
        run.status = "completed"
        run.summary = summary.to_dict()
        run.completedAt = utcnow()
        run.leaseOwner = None
        run.leaseExpiresAt = None
        self.session.commit()

        logger.info(
            f"Daily cycle {summary.runDate} completed: expired={summary.expired}, "
            f"volume={summary.volumeAccrued}, matched={summary.matched}, "
            f"bonus={summary.totalBonusPaid}, roi={summary.accrued}, "
            f"flagged={summary.flagged}, deferred={summary.deferred}, errors={summary.errors}"
        )

    async def _failRun(self, runId: int, error: Exception):
        logger.critical(f"Daily run {runId} aborted: {error}", exc_info=True)
        try:
            self.session.rollback()
            run = self.session.get(DailyRun, runId)
            if run.leaseOwner not in (None, self.owner):
                logger.warning(f"Run {runId} now belongs to {run.leaseOwner}, leaving its status")
                return
            run.status = "failed"
            run.lastError = str(error)[:1000]
            run.leaseOwner = None
            run.leaseExpiresAt = None
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Could not mark run {runId} as failed: {e}", exc_info=True)
