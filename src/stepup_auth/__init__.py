"""stepup-auth — multi-method two-factor authentication and device trust.

TOTP, SMS/email codes, WebAuthn hardware keys, recovery codes, trusted
devices, role policies and a risk-scored audit trail behind one façade,
``TwoFactorService``. Persistence, delivery and the WebAuthn ceremony are
plugged in through the ports in ``stepup_auth.ports``.
"""

from __future__ import annotations

# ── Adapters ────────────────────────────────────────────────────
from .adapters.memory import (
    FrozenClock,
    InMemoryHardwareCredentialRepository,
    InMemoryProfileRepository,
    InMemoryRecoveryCodeRepository,
    InMemorySessionStore,
    InMemoryTrustedDeviceRepository,
    InMemoryUserDirectory,
    SystemClock,
)

# ── Audit ────────────────────────────────────────────────────────
from .audit import (
    AuditEvent,
    AuditEventType,
    AuditLog,
    InMemoryAuditStore,
    RiskFactor,
    SecurityStatistics,
    SuspiciousActivity,
    SuspiciousAnnotation,
    UserRiskAnalysis,
)

# ── Configuration ────────────────────────────────────────────────
from .config import (
    HardwareKeyConfig,
    OtpConfig,
    RecoveryCodeConfig,
    RiskConfig,
    StepUpConfig,
    TotpConfig,
    TrustedDeviceConfig,
)
from .correlation import (
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)

# ── Components ───────────────────────────────────────────────────
from .devices import TrustedDeviceStore, derive_fingerprint

# ── Domain ───────────────────────────────────────────────────────
from .domain import (
    AuthenticatorType,
    HardwareCredential,
    PolicyComplianceResult,
    PolicyViolation,
    Role,
    SessionPurpose,
    SessionState,
    TrustedDevice,
    TwoFactorMethod,
    TwoFactorPolicy,
    TwoFactorProfile,
    VerificationSession,
    check_compliance,
    effective_policy,
)

# ── Errors ───────────────────────────────────────────────────────
from .exceptions import (
    CollaboratorUnavailableError,
    ConcurrencyError,
    DomainError,
    EntityNotFoundError,
    FailureReason,
    InvariantViolationError,
    MfaError,
    OptimisticLockingError,
    PermissionDeniedError,
    ReplayDetectedError,
    StepUpError,
)
from .locking import CriticalSection, ILockStrategy, InMemoryLockStrategy, ResourceIdentifier
from .mfa import TotpSetup, TotpVerifier
from .observability import MfaMetrics

# ── Ports ────────────────────────────────────────────────────────
from .ports import (
    AssertionVerification,
    DeviceInfo,
    IAuditStore,
    IClock,
    IHardwareCredentialRepository,
    IMfaDeliveryHook,
    IProfileRepository,
    IRecoveryCodeRepository,
    ISessionStore,
    ITrustedDeviceRepository,
    IUserDirectory,
    IWebAuthnCeremony,
    RegistrationVerification,
    UserContact,
)
from .recovery import RecoveryCodeVault
from .result import GENERIC_FAILURE_MESSAGE, OperationResult
from .risk import RiskContext, RiskLevel, RiskScoringEngine
from .security import PasswordHasher

# ── Service ──────────────────────────────────────────────────────
from .service import TwoFactorService
from .sessions import VerificationSessionManager
from .status import MethodAvailability, ProfileStatus, VerificationOutcome
from .webauthn import Challenge, HardwareKeyRegistry

__version__ = "0.1.0"

__all__: list[str] = [
    "__version__",
    # Service
    "TwoFactorService",
    "OperationResult",
    "GENERIC_FAILURE_MESSAGE",
    "ProfileStatus",
    "MethodAvailability",
    "VerificationOutcome",
    # Components
    "TotpSetup",
    "TotpVerifier",
    "VerificationSessionManager",
    "HardwareKeyRegistry",
    "Challenge",
    "RecoveryCodeVault",
    "TrustedDeviceStore",
    "derive_fingerprint",
    "RiskScoringEngine",
    "RiskContext",
    "RiskLevel",
    "PasswordHasher",
    "MfaMetrics",
    # Audit
    "AuditEvent",
    "AuditEventType",
    "AuditLog",
    "InMemoryAuditStore",
    "SuspiciousAnnotation",
    "SuspiciousActivity",
    "SecurityStatistics",
    "RiskFactor",
    "UserRiskAnalysis",
    # Config
    "StepUpConfig",
    "TotpConfig",
    "OtpConfig",
    "RecoveryCodeConfig",
    "TrustedDeviceConfig",
    "HardwareKeyConfig",
    "RiskConfig",
    # Correlation
    "get_correlation_id",
    "set_correlation_id",
    "generate_correlation_id",
    # Domain
    "TwoFactorMethod",
    "TwoFactorProfile",
    "HardwareCredential",
    "AuthenticatorType",
    "TrustedDevice",
    "VerificationSession",
    "SessionState",
    "SessionPurpose",
    "Role",
    "TwoFactorPolicy",
    "PolicyViolation",
    "PolicyComplianceResult",
    "effective_policy",
    "check_compliance",
    # Errors
    "StepUpError",
    "DomainError",
    "InvariantViolationError",
    "EntityNotFoundError",
    "ConcurrencyError",
    "OptimisticLockingError",
    "MfaError",
    "ReplayDetectedError",
    "CollaboratorUnavailableError",
    "PermissionDeniedError",
    "FailureReason",
    # Locking
    "ILockStrategy",
    "InMemoryLockStrategy",
    "CriticalSection",
    "ResourceIdentifier",
    # Ports
    "DeviceInfo",
    "UserContact",
    "RegistrationVerification",
    "AssertionVerification",
    "IClock",
    "IMfaDeliveryHook",
    "IWebAuthnCeremony",
    "IUserDirectory",
    "IProfileRepository",
    "IHardwareCredentialRepository",
    "ITrustedDeviceRepository",
    "IRecoveryCodeRepository",
    "ISessionStore",
    "IAuditStore",
    # Adapters
    "FrozenClock",
    "SystemClock",
    "InMemoryUserDirectory",
    "InMemoryProfileRepository",
    "InMemoryHardwareCredentialRepository",
    "InMemoryTrustedDeviceRepository",
    "InMemoryRecoveryCodeRepository",
    "InMemorySessionStore",
]
