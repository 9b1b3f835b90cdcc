"""Domain model: aggregates, value types and pure policy tables.

Nothing in this package performs I/O or imports from the service layer.
"""

from .aggregate import AggregateRoot
from .hardware_key import AuthenticatorType, HardwareCredential
from .methods import (
    METHOD_METADATA,
    MethodMetadata,
    TwoFactorMethod,
    metadata_for,
    selectable_methods,
)
from .policy import (
    POLICY_TABLE,
    ROLE_HIERARCHY,
    PolicyComplianceResult,
    PolicyViolation,
    Role,
    TwoFactorPolicy,
    ViolationSeverity,
    check_compliance,
    effective_policy,
)
from .profile import TwoFactorProfile
from .recovery_codes import RecoveryCodeEntry, RecoveryCodeSet
from .session import PENDING_STATES, SessionPurpose, SessionState, VerificationSession
from .trusted_device import MAX_TRUST_LEVEL, MIN_TRUST_LEVEL, TrustedDevice

__all__: list[str] = [
    "AggregateRoot",
    # Methods
    "TwoFactorMethod",
    "MethodMetadata",
    "METHOD_METADATA",
    "metadata_for",
    "selectable_methods",
    # Policy
    "Role",
    "ROLE_HIERARCHY",
    "TwoFactorPolicy",
    "POLICY_TABLE",
    "PolicyViolation",
    "PolicyComplianceResult",
    "ViolationSeverity",
    "effective_policy",
    "check_compliance",
    # Aggregates
    "TwoFactorProfile",
    "HardwareCredential",
    "AuthenticatorType",
    "TrustedDevice",
    "MIN_TRUST_LEVEL",
    "MAX_TRUST_LEVEL",
    "RecoveryCodeSet",
    "RecoveryCodeEntry",
    "VerificationSession",
    "SessionState",
    "SessionPurpose",
    "PENDING_STATES",
]
