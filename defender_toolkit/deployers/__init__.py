from .base import (
    BaseDeployer,
    DeploymentError,
    DeploymentResult,
    StepResult,
    PASS,
    FAIL,
    SKIPPED,
    PLANNED,
)
from .identity import IdentityDeployer
from .endpoint import EndpointDeployer
from .office import OfficeDeployer
from .cloud_apps import CloudAppsDeployer
from .xdr import XdrDeployer

# Canonical run order, keyed by product code
ALL_DEPLOYERS = {
    "mdi": IdentityDeployer,
    "mde": EndpointDeployer,
    "mdo": OfficeDeployer,
    "mdca": CloudAppsDeployer,
    "xdr": XdrDeployer,
}

__all__ = [
    "BaseDeployer",
    "DeploymentError",
    "DeploymentResult",
    "StepResult",
    "PASS",
    "FAIL",
    "SKIPPED",
    "PLANNED",
    "IdentityDeployer",
    "EndpointDeployer",
    "OfficeDeployer",
    "CloudAppsDeployer",
    "XdrDeployer",
    "ALL_DEPLOYERS",
]
