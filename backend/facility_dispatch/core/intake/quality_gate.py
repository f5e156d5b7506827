"""
Quality gate for candidate alerts.

An alert must be confident, urgent and backed by a model that fits its
data before it is allowed to create an incident and pull a technician.
Failing the gate is a filtering decision, not an error: the caller gets
a GateDecision with the reason and no incident is created.
"""
import logging
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class GateCandidate(Protocol):
    days_to_failure: float
    confidence: Optional[float]
    model_r2: Optional[float]


class GateDecision:
    """Outcome of evaluating one alert against the gate."""

    def __init__(self, passed: bool, reason: Optional[str] = None):
        self.passed = passed
        self.reason = reason

    def __bool__(self) -> bool:
        return self.passed

    def __repr__(self) -> str:
        return f"<GateDecision(passed={self.passed}, reason={self.reason!r})>"


class QualityGate:
    """
    Pass/fail precondition on alert confidence, urgency and model fit.

    All rules must pass:
    - confidence, when present, is at least min_confidence (percent)
    - days_to_failure is at most max_days_to_failure
    - model_r2, when present, is at least min_model_r2
    """

    def __init__(
        self,
        min_confidence: float = 80.0,
        max_days_to_failure: float = 20.0,
        min_model_r2: float = 0.7,
    ):
        self.min_confidence = min_confidence
        self.max_days_to_failure = max_days_to_failure
        self.min_model_r2 = min_model_r2

    @classmethod
    def from_settings(cls, settings) -> "QualityGate":
        return cls(
            min_confidence=settings.min_confidence_threshold,
            max_days_to_failure=settings.max_days_to_failure,
            min_model_r2=settings.min_model_r2,
        )

    def evaluate(self, alert: GateCandidate) -> GateDecision:
        if alert.confidence is not None and alert.confidence < self.min_confidence:
            return self._reject(
                f"Confidence {alert.confidence:g}% < {self.min_confidence:g}%"
            )

        if alert.days_to_failure > self.max_days_to_failure:
            return self._reject(
                f"Days to failure {alert.days_to_failure:g} > {self.max_days_to_failure:g}"
            )

        if alert.model_r2 is not None and alert.model_r2 < self.min_model_r2:
            return self._reject(
                f"Model R2 {alert.model_r2:g} < {self.min_model_r2:g}"
            )

        return GateDecision(passed=True)

    def _reject(self, reason: str) -> GateDecision:
        logger.info(f"Alert rejected by quality gate: {reason}")
        return GateDecision(passed=False, reason=reason)
