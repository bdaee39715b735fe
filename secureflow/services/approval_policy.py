"""Approval gate: decides whether proposed fixes need a human decision."""
from dataclasses import dataclass, field
from typing import Iterable

from secureflow.core.config import Settings
from secureflow.schemas.analysis import ProposedRemediationAction, Risk, Severity


@dataclass(frozen=True)
class ApprovalPolicy:
    """Approval is required when any action hits one of the configured cutoffs.

    An empty set of actions never needs approval.
    """

    severities: frozenset[Severity] = field(default_factory=lambda: frozenset({Severity.CRITICAL, Severity.HIGH}))
    risks: frozenset[Risk] = field(default_factory=lambda: frozenset({Risk.HIGH}))
    min_confidence: int = 70

    @classmethod
    def from_settings(cls, settings: Settings) -> "ApprovalPolicy":
        return cls(
            severities=frozenset(Severity(s.upper()) for s in settings.APPROVAL_SEVERITIES),
            risks=frozenset(Risk(r.upper()) for r in settings.APPROVAL_RISKS),
            min_confidence=settings.APPROVAL_MIN_CONFIDENCE,
        )

    def requires_approval(self, action: ProposedRemediationAction) -> bool:
        return (
            action.severity in self.severities
            or action.estimated_risk in self.risks
            or action.confidence < self.min_confidence
        )

    def __call__(self, actions: Iterable[ProposedRemediationAction]) -> bool:
        return any(self.requires_approval(a) for a in actions)
