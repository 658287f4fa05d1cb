from src.entities.service import Service, ServiceVersion, ServiceRole, SpecType
from src.entities.interaction import Interaction
from src.entities.contract import Contract, ContractStatus
from src.entities.verification import VerificationTask, VerificationResult
from src.entities.fixture import Fixture, FixtureStatus, FixtureSource
from src.entities.audit_log import FixtureAuditLog
from src.entities.deployment import DeploymentState, DeploymentSlot, DeploymentStatus

__all__ = [
    "Service", "ServiceVersion", "ServiceRole", "SpecType",
    "Interaction", "Contract", "ContractStatus",
    "VerificationTask", "VerificationResult",
    "Fixture", "FixtureStatus", "FixtureSource", "FixtureAuditLog",
    "DeploymentState", "DeploymentSlot", "DeploymentStatus",
]
