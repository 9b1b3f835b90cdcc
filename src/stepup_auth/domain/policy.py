"""Role-based two-factor policy.

The role hierarchy and the per-role policy are immutable tables built once
at import time from the declarative definitions below. Nothing caches or
mutates them at runtime.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType

from .methods import TwoFactorMethod


class Role(str, Enum):
    USER = "user"
    AUTHOR = "author"
    MODERATOR = "moderator"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


# Each role directly includes the roles listed here.
_ROLE_PARENTS: dict[Role, tuple[Role, ...]] = {
    Role.USER: (),
    Role.AUTHOR: (Role.USER,),
    Role.MODERATOR: (Role.AUTHOR,),
    Role.ADMIN: (Role.MODERATOR,),
    Role.SUPER_ADMIN: (Role.ADMIN,),
}


def _expand(role: Role) -> frozenset[Role]:
    included = {role}
    for parent in _ROLE_PARENTS[role]:
        included |= _expand(parent)
    return frozenset(included)


ROLE_HIERARCHY: Mapping[Role, frozenset[Role]] = MappingProxyType(
    {role: _expand(role) for role in Role}
)


def includes(role: Role, other: Role) -> bool:
    """Whether ``role`` carries every capability of ``other``."""
    return other in ROLE_HIERARCHY[role]


class ViolationSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class TwoFactorPolicy:
    """Two-factor requirements for a role.

    Attributes:
        is_required: Whether two-factor authentication must be enabled.
        minimum_methods: Minimum number of concrete methods enabled.
        required_methods: Methods that must be among the enabled ones.
        prohibited_methods: Methods that must not be enabled.
    """

    is_required: bool = False
    minimum_methods: int = 0
    required_methods: frozenset[TwoFactorMethod] = field(default_factory=frozenset)
    prohibited_methods: frozenset[TwoFactorMethod] = field(default_factory=frozenset)

    def merge(self, other: TwoFactorPolicy) -> TwoFactorPolicy:
        """Strictest combination of two policies."""
        return TwoFactorPolicy(
            is_required=self.is_required or other.is_required,
            minimum_methods=max(self.minimum_methods, other.minimum_methods),
            required_methods=self.required_methods | other.required_methods,
            prohibited_methods=self.prohibited_methods | other.prohibited_methods,
        )


POLICY_TABLE: Mapping[Role, TwoFactorPolicy] = MappingProxyType(
    {
        Role.USER: TwoFactorPolicy(),
        Role.AUTHOR: TwoFactorPolicy(),
        Role.MODERATOR: TwoFactorPolicy(is_required=True, minimum_methods=1),
        Role.ADMIN: TwoFactorPolicy(
            is_required=True,
            minimum_methods=1,
            prohibited_methods=frozenset({TwoFactorMethod.SMS}),
        ),
        Role.SUPER_ADMIN: TwoFactorPolicy(
            is_required=True,
            minimum_methods=2,
            required_methods=frozenset({TwoFactorMethod.HARDWARE_KEY}),
            prohibited_methods=frozenset({TwoFactorMethod.SMS}),
        ),
    }
)


def effective_policy(roles: Iterable[Role]) -> TwoFactorPolicy:
    policy = TwoFactorPolicy()
    for role in roles:
        policy = policy.merge(POLICY_TABLE[role])
    return policy


@dataclass(frozen=True)
class PolicyViolation:
    type: str
    description: str
    severity: ViolationSeverity
    required_action: str


@dataclass(frozen=True)
class PolicyComplianceResult:
    is_compliant: bool
    violations: tuple[PolicyViolation, ...] = ()


def check_compliance(
    enabled_methods: Iterable[TwoFactorMethod], roles: Iterable[Role]
) -> PolicyComplianceResult:
    """Compare a user's enabled methods against the policy for their roles."""
    policy = effective_policy(roles)
    enabled = frozenset(enabled_methods)
    violations: list[PolicyViolation] = []

    if policy.is_required and not enabled:
        violations.append(
            PolicyViolation(
                type="two_factor_required",
                description="Two-factor authentication is required for this role.",
                severity=ViolationSeverity.CRITICAL,
                required_action="Enable at least one two-factor method.",
            )
        )
    elif len(enabled) < policy.minimum_methods:
        violations.append(
            PolicyViolation(
                type="insufficient_methods",
                description=(
                    f"At least {policy.minimum_methods} methods are required, "
                    f"{len(enabled)} enabled."
                ),
                severity=ViolationSeverity.HIGH,
                required_action="Enable an additional two-factor method.",
            )
        )

    for method in sorted(policy.required_methods - enabled, key=lambda m: m.value):
        violations.append(
            PolicyViolation(
                type="required_method_missing",
                description=f"{method.value} must be enabled for this role.",
                severity=ViolationSeverity.HIGH,
                required_action=f"Enable {method.value}.",
            )
        )
    for method in sorted(policy.prohibited_methods & enabled, key=lambda m: m.value):
        violations.append(
            PolicyViolation(
                type="prohibited_method_enabled",
                description=f"{method.value} is not allowed for this role.",
                severity=ViolationSeverity.MEDIUM,
                required_action=f"Disable {method.value}.",
            )
        )

    return PolicyComplianceResult(
        is_compliant=not violations, violations=tuple(violations)
    )


__all__: list[str] = [
    "Role",
    "ROLE_HIERARCHY",
    "includes",
    "ViolationSeverity",
    "TwoFactorPolicy",
    "POLICY_TABLE",
    "effective_policy",
    "PolicyViolation",
    "PolicyComplianceResult",
    "check_compliance",
]
