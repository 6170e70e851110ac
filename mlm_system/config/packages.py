"""
Bonus terms and engine settings.

Bonus terms (binaryPct / powerCapacity) come from funding packages. Which
package governs a node is an explicit policy, chosen once per run:

    latest_contribution  - package of the newest volume accrual credited to the node
    owner_package        - package of the node owner's own newest investment
    first_active_package - first active package in the catalogue (legacy behavior)
    default              - configured defaults only

Every policy falls back to DEFAULT_BINARY_PCT / DEFAULT_POWER_CAPACITY when
there is no package context for the node.
"""
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional
import logging

from sqlalchemy.orm import Session

from models.package import Package
from models.investment import Investment
from models.tree_node import TreeNode
from models.volume_accrual import VolumeAccrual
from mlm_system.errors import EngineConfigurationError

logger = logging.getLogger(__name__)


class TermsPolicy(Enum):
    """Precedence rule for per-node bonus terms."""
    LATEST_CONTRIBUTION = "latest_contribution"
    OWNER_PACKAGE = "owner_package"
    FIRST_ACTIVE_PACKAGE = "first_active_package"
    DEFAULT = "default"


@dataclass(frozen=True)
class BonusTerms:
    binaryPct: Decimal
    powerCapacity: Decimal
    source: str = "default"


@dataclass(frozen=True)
class EngineSettings:
    """Explicit run configuration, built once at run start."""
    defaultTerms: BonusTerms
    termsPolicy: TermsPolicy
    defaultRenewablePct: Decimal
    maxEntityAttempts: int = 3
    leaseSeconds: int = 3600

    @classmethod
    def from_config(cls) -> "EngineSettings":
        """
        Build settings from Config.

        Raises:
            ConfigurationError: If BONUS_TERMS_POLICY is unknown
        """
        from config import Config, ConfigurationError

        raw_policy = Config.get(Config.BONUS_TERMS_POLICY, TermsPolicy.LATEST_CONTRIBUTION.value)
        try:
            policy = TermsPolicy(raw_policy)
        except ValueError:
            raise ConfigurationError(f"Unknown BONUS_TERMS_POLICY '{raw_policy}'")

        return cls(
            defaultTerms=BonusTerms(
                binaryPct=Decimal(str(Config.get(Config.DEFAULT_BINARY_PCT, "10"))),
                powerCapacity=Decimal(str(Config.get(Config.DEFAULT_POWER_CAPACITY, "1000"))),
            ),
            termsPolicy=policy,
            defaultRenewablePct=Decimal(str(Config.get(Config.DEFAULT_RENEWABLE_PCT, "50"))),
            maxEntityAttempts=int(Config.get(Config.MAX_ENTITY_ATTEMPTS, 3)),
            leaseSeconds=int(Config.get(Config.RUN_LEASE_SECONDS, 3600)),
        )


def terms_from_package(package: Package) -> BonusTerms:
    """
    Convert package columns to BonusTerms.

    Raises:
        EngineConfigurationError: If binaryPct is missing or outside 0-100
    """
    if package.binaryPct is None or package.powerCapacity is None:
        raise EngineConfigurationError(f"Package {package.packageID} has no binary terms")

    binaryPct = Decimal(str(package.binaryPct))
    if binaryPct < 0 or binaryPct > 100:
        raise EngineConfigurationError(
            f"Package {package.packageID} binaryPct {binaryPct} outside 0-100"
        )

    return BonusTerms(
        binaryPct=binaryPct,
        powerCapacity=Decimal(str(package.powerCapacity)),
        source=f"package:{package.packageID}"
    )


class BonusTermsResolver:
    """Resolves binaryPct/powerCapacity per node under one TermsPolicy."""

    def __init__(self, session: Session, settings: EngineSettings):
        self.session = session
        self.settings = settings

        # Package catalogue snapshot for this run
        self._packages: Dict[int, Package] = {
            package.packageID: package
            for package in session.query(Package).order_by(Package.packageID).all()
        }
        self._firstActiveId: Optional[int] = next(
            (pid for pid, package in self._packages.items() if package.isActive),
            None
        )

        logger.info(
            f"Bonus terms policy={settings.termsPolicy.value}, "
            f"packages={len(self._packages)}, "
            f"default={settings.defaultTerms.binaryPct}%/{settings.defaultTerms.powerCapacity}"
        )

    def resolve(self, node: TreeNode) -> BonusTerms:
        """
        Get bonus terms for a node.

        Raises:
            EngineConfigurationError: If the node's package context points to
                a missing or invalid package
        """
        policy = self.settings.termsPolicy

        if policy == TermsPolicy.DEFAULT:
            return self.settings.defaultTerms

        if policy == TermsPolicy.FIRST_ACTIVE_PACKAGE:
            packageId = self._firstActiveId
        elif policy == TermsPolicy.LATEST_CONTRIBUTION:
            packageId = self._latestContributionPackage(node)
        else:
            packageId = self._ownerPackage(node)

        if packageId is None:
            return self.settings.defaultTerms

        package = self._packages.get(packageId)
        if package is None:
            raise EngineConfigurationError(
                f"Node {node.nodeID}: package {packageId} not found"
            )

        return terms_from_package(package)

    def _latestContributionPackage(self, node: TreeNode) -> Optional[int]:
        return self.session.query(VolumeAccrual.packageID).filter(
            VolumeAccrual.targetNodeID == node.nodeID,
            VolumeAccrual.packageID.isnot(None)
        ).order_by(
            VolumeAccrual.accrualDate.desc(),
            VolumeAccrual.accrualID.desc()
        ).limit(1).scalar()

    def _ownerPackage(self, node: TreeNode) -> Optional[int]:
        return self.session.query(Investment.packageID).filter(
            Investment.accountID == node.accountID,
            Investment.packageID.isnot(None)
        ).order_by(
            Investment.isActive.desc(),
            Investment.startDate.desc(),
            Investment.investmentID.desc()
        ).limit(1).scalar()
