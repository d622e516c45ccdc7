"""
Post-condition checks run after an action settles.

A verifier answers one question: is the incident's resource healthy now?
They are injected into the supervisor so tests can force either outcome.
"""

import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Awaitable, Callable, Iterable

from ..models import ActionResult, Incident, RemediationPlan

logger = logging.getLogger(__name__)

MetricReader = Callable[[str], Awaitable[float]]


class Verifier(ABC):
    """Interface for post-condition checks."""

    @abstractmethod
    async def verify(self, incident: Incident, plan: RemediationPlan, result: ActionResult) -> bool:
        """Return True if the resource is healthy after ``result``."""
        pass


class StaticVerifier(Verifier):
    """Always answers ``healthy``."""

    def __init__(self, healthy: bool = True):
        self.healthy = healthy

    async def verify(self, incident: Incident, plan: RemediationPlan, result: ActionResult) -> bool:
        return self.healthy


class ScriptedVerifier(Verifier):
    """
    Answers from a fixed script, then ``default`` once it runs out.

    Example:
        >>> verifier = ScriptedVerifier([False, True])  # primary fails, fallback passes
    """

    def __init__(self, outcomes: Iterable[bool], default: bool = True):
        self._outcomes = deque(outcomes)
        self.default = default
        self.calls = 0

    async def verify(self, incident: Incident, plan: RemediationPlan, result: ActionResult) -> bool:
        self.calls += 1
        if self._outcomes:
            return self._outcomes.popleft()
        return self.default


class ResultBasedVerifier(Verifier):
    """Healthy iff the action actually changed something on a real resource."""

    async def verify(self, incident: Incident, plan: RemediationPlan, result: ActionResult) -> bool:
        return result.outcome.executed and result.message != "at_max"


class ThresholdVerifier(Verifier):
    """
    Reads a metric for the target and compares it to a threshold.

    Args:
        read_metric: Async callable returning the current metric value for a target
        threshold: Healthy while the value stays below (or above) this
        higher_is_worse: Direction of the comparison
    """

    def __init__(self, read_metric: MetricReader, threshold: float, higher_is_worse: bool = True):
        self.read_metric = read_metric
        self.threshold = threshold
        self.higher_is_worse = higher_is_worse

    async def verify(self, incident: Incident, plan: RemediationPlan, result: ActionResult) -> bool:
        value = await self.read_metric(result.target)
        healthy = value < self.threshold if self.higher_is_worse else value > self.threshold
        logger.info(
            f"Metric for {result.target}: {value} (threshold {self.threshold}) -> "
            f"{'healthy' if healthy else 'unhealthy'}"
        )
        return healthy
