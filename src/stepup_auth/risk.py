"""Risk scoring for authentication attempts.

``RiskScoringEngine.score`` is a pure function of its ``RiskContext``: no
I/O, no shared state, safe to call from any number of tasks at once.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from enum import Enum

from .config import RiskConfig

MIN_SCORE = 0
MAX_SCORE = 100

# RFC 1918 and IPv6 unique-local ranges. Loopback and link-local are checked
# through the address flags.
PRIVATE_NETWORKS = tuple(
    ipaddress.ip_network(network)
    for network in ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "fc00::/7")
)


@dataclass(frozen=True)
class RiskContext:
    """Request facts the score is computed from.

    Attributes:
        previous_attempt_failed: Whether the user's immediately preceding
            attempt failed.
        ip_address: Client IP as reported by the HTTP layer, if known.
        user_agent: Client user-agent header, if known.
    """

    previous_attempt_failed: bool = False
    ip_address: str | None = None
    user_agent: str | None = None


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def clamp_score(value: int) -> int:
    return max(MIN_SCORE, min(MAX_SCORE, value))


def risk_level(score: int) -> RiskLevel:
    if score >= 60:
        return RiskLevel.HIGH
    if score >= 30:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


class RiskScoringEngine:
    """Additive heuristic score clamped to [0, 100].

    Example:
        ```python
        engine = RiskScoringEngine()
        engine.score(RiskContext(ip_address="10.0.0.4", user_agent="Mozilla/5.0"))
        # 0  (private IP -10, clamped)
        ```
    """

    def __init__(self, config: RiskConfig | None = None) -> None:
        self.config = config or RiskConfig()

    def score(self, context: RiskContext) -> int:
        total = 0
        if context.previous_attempt_failed:
            total += self.config.previous_failure
        total += self._ip_weight(context.ip_address)
        total += self._user_agent_weight(context.user_agent)
        return clamp_score(total)

    def _ip_weight(self, ip_address: str | None) -> int:
        if not ip_address or not ip_address.strip():
            return self.config.unknown_ip
        try:
            address = ipaddress.ip_address(ip_address.strip())
        except ValueError:
            return self.config.unknown_ip
        if address.is_loopback or address.is_link_local:
            return self.config.private_ip
        if any(address in network for network in PRIVATE_NETWORKS):
            return self.config.private_ip
        if address.is_global and not address.is_multicast:
            return self.config.public_ip
        # Documentation, reserved, shared and multicast ranges say nothing
        # about where the client is.
        return self.config.unknown_ip

    def _user_agent_weight(self, user_agent: str | None) -> int:
        if not user_agent or not user_agent.strip():
            return self.config.unknown_user_agent
        lowered = user_agent.lower()
        if any(signature in lowered for signature in self.config.bot_signatures):
            return self.config.bot_user_agent
        return 0


__all__: list[str] = [
    "MIN_SCORE",
    "MAX_SCORE",
    "PRIVATE_NETWORKS",
    "RiskContext",
    "RiskLevel",
    "RiskScoringEngine",
    "clamp_score",
    "risk_level",
]
