"""Orchestration package: planning and applying resources."""

from stackpilot.orchestration.engine import ExecutionEngine, RetryPolicy
from stackpilot.orchestration.plan_builder import PlanBuilder
from stackpilot.orchestration.registry import HandlerRegistry, ResourceHandler
from stackpilot.orchestration.resolver import ConfigResolver
from stackpilot.orchestration.results import (
    ApplyReport,
    Plan,
    PlanAction,
    PlanStep,
    ResultCollector,
    StepResult,
    StepStatus,
)

__all__ = [
    "ApplyReport",
    "ConfigResolver",
    "ExecutionEngine",
    "HandlerRegistry",
    "Plan",
    "PlanAction",
    "PlanBuilder",
    "PlanStep",
    "ResourceHandler",
    "ResultCollector",
    "RetryPolicy",
    "StepResult",
    "StepStatus",
]
