"""Result types for planning and applying."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Dict, List, Optional

from stackpilot.specs.models import ResourceSpec
from stackpilot.state.base import ResourceRecord


class PlanAction(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    NOOP = "no-op"


class StepStatus(StrEnum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def succeeded(self) -> bool:
        """Whether dependents may proceed past a step in this state."""
        return self in (StepStatus.SUCCESS, StepStatus.SKIPPED)


@dataclass(frozen=True)
class PlanStep:
    """One resource paired with the action computed for it."""

    spec: ResourceSpec
    action: PlanAction
    record: Optional[ResourceRecord] = None

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def kind(self) -> str:
        return str(self.spec.kind)

    @property
    def depends_on(self) -> tuple[str, ...]:
        return self.spec.depends_on


@dataclass
class Plan:
    """Ordered steps computed from desired vs. recorded state."""

    steps: List[PlanStep] = field(default_factory=list)
    orphaned: List[str] = field(default_factory=list)

    def get(self, name: str) -> Optional[PlanStep]:
        for step in self.steps:
            if step.name == name:
                return step
        return None

    def counts(self) -> Dict[str, int]:
        counts = {action.value: 0 for action in PlanAction}
        for step in self.steps:
            counts[step.action.value] += 1
        return counts

    @property
    def has_changes(self) -> bool:
        return any(step.action != PlanAction.NOOP for step in self.steps)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "steps": [
                {
                    "name": step.name,
                    "kind": step.kind,
                    "action": step.action.value,
                    "depends_on": list(step.depends_on),
                    "provider_id": step.record.provider_id if step.record else None,
                }
                for step in self.steps
            ],
            "counts": self.counts(),
            "orphaned": list(self.orphaned),
        }


@dataclass
class StepResult:
    """Terminal outcome of one plan step."""

    name: str
    kind: str
    action: PlanAction
    status: StepStatus
    provider_id: Optional[str] = None
    reason: Optional[str] = None
    attempts: int = 0
    duration_seconds: float = 0.0
    error_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "action": self.action.value,
            "status": self.status.value,
            "provider_id": self.provider_id,
            "reason": self.reason,
            "attempts": self.attempts,
            "duration_seconds": round(self.duration_seconds, 3),
            "error_type": self.error_type,
        }


@dataclass
class ApplyReport:
    """Per-step report covering the whole plan."""

    results: List[StepResult] = field(default_factory=list)
    aborted: Optional[str] = None
    duration_seconds: float = 0.0

    def get(self, name: str) -> Optional[StepResult]:
        for result in self.results:
            if result.name == name:
                return result
        return None

    @property
    def success(self) -> bool:
        """Whether every step succeeded or was skipped."""
        return self.aborted is None and all(r.status.succeeded for r in self.results)

    def counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in StepStatus}
        for result in self.results:
            counts[result.status.value] += 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "aborted": self.aborted,
            "duration_seconds": round(self.duration_seconds, 3),
            "counts": self.counts(),
            "steps": [r.to_dict() for r in self.results],
        }


class ResultCollector:
    """Aggregates step results during execution, reported in plan order."""

    def __init__(self, plan: Plan) -> None:
        self._order = [step.name for step in plan.steps]
        self._results: Dict[str, StepResult] = {}

    def record(self, result: StepResult) -> None:
        self._results[result.name] = result

    def status(self, name: str) -> Optional[StepStatus]:
        result = self._results.get(name)
        return result.status if result else None

    def finalize(self, duration: float, aborted: Optional[str] = None) -> ApplyReport:
        return ApplyReport(
            results=[self._results[name] for name in self._order if name in self._results],
            aborted=aborted,
            duration_seconds=duration,
        )
