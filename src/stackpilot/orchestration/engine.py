"""Execution engine: applies a plan step by step through resource handlers."""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from stackpilot.config import Settings
from stackpilot.core.errors import (
    ConflictError,
    ProviderError,
    StackPilotError,
    StateStoreError,
    ValidationError,
)
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
from stackpilot.state.base import INCOMPLETE_FINGERPRINT, ResourceRecord, StateStore, utcnow

logger = structlog.get_logger()

# (result, reason the whole run must abort)
StepOutcome = Tuple[StepResult, Optional[str]]


@dataclass(frozen=True)
class RetryPolicy:
    """Retry bounds for provider calls and state store writes."""

    max_attempts: int = 5
    multiplier: float = 1.0
    max_wait: float = 30.0
    state_attempts: int = 3

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            multiplier=settings.backoff_multiplier,
            max_wait=settings.backoff_max,
            state_attempts=settings.state_retry_attempts,
        )


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, ProviderError) and exc.transient


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "step_retry",
        attempt=retry_state.attempt_number,
        wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        error=str(exc),
    )


class ExecutionEngine:
    """
    Applies plan steps in dependency order.

    A step starts only once all of its dependencies succeeded (or were
    skipped as no-ops). Each successful provider call is recorded in the
    state store before further steps are scheduled. A failed step fails its
    dependents while independent branches keep going. Aborts (abort event,
    run timeout, conflicts, state store failures) are honoured between
    steps: running steps complete and unstarted ones are cancelled.
    """

    def __init__(
        self,
        registry: HandlerRegistry,
        store: StateStore,
        *,
        retry: RetryPolicy | None = None,
        max_workers: int = 1,
        call_timeout: float | None = None,
        resolver: ConfigResolver | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._registry = registry
        self._store = store
        self._retry = retry or RetryPolicy()
        self._max_workers = max_workers
        self._call_timeout = call_timeout
        self._resolver = resolver
        self._sleep = sleep
        self._clock = clock
        self._store_lock = asyncio.Lock()

    async def execute(
        self,
        plan: Plan,
        *,
        abort: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> ApplyReport:
        """Apply every step of ``plan`` and report each step's terminal status."""
        run_id = uuid.uuid4().hex[:12]
        structlog.contextvars.bind_contextvars(run_id=run_id)
        started = self._clock()
        deadline = started + timeout if timeout else None
        collector = ResultCollector(plan)
        known = {step.name for step in plan.steps}
        pending: Dict[str, PlanStep] = {step.name: step for step in plan.steps}
        running: Dict[asyncio.Task, PlanStep] = {}
        aborted: Optional[str] = None

        logger.info("apply_started", steps=len(plan.steps), **plan.counts())
        try:
            while pending or running:
                self._propagate(pending, collector, known)

                if aborted is None:
                    aborted = self._abort_reason(abort, deadline)
                if aborted is not None:
                    for step in pending.values():
                        collector.record(_result(step, StepStatus.CANCELLED, reason=aborted))
                    pending.clear()
                else:
                    for name, step in list(pending.items()):
                        if len(running) >= self._max_workers:
                            break
                        if all(_succeeded(collector.status(dep)) for dep in step.depends_on):
                            del pending[name]
                            running[asyncio.create_task(self._run_step(step))] = step

                if not running:
                    # Nothing ready and nothing in flight: only a cyclic hand-built plan gets here
                    for step in pending.values():
                        collector.record(
                            _result(step, StepStatus.FAILED, reason="dependencies cannot be satisfied")
                        )
                    pending.clear()
                    continue

                done, _ = await asyncio.wait(running.keys(), return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    running.pop(task)
                    result, fatal = task.result()
                    collector.record(result)
                    if fatal and aborted is None:
                        aborted = fatal
                        logger.error("apply_aborting", reason=fatal)
        finally:
            for task in running:
                task.cancel()
            structlog.contextvars.unbind_contextvars("run_id")

        report = collector.finalize(self._clock() - started, aborted)
        logger.info(
            "apply_finished",
            run_id=run_id,
            success=report.success,
            aborted=aborted,
            duration=report.duration_seconds,
            counts=report.counts(),
        )
        return report

    @staticmethod
    def _propagate(
        pending: Dict[str, PlanStep], collector: ResultCollector, known: set[str]
    ) -> None:
        """Fail or cancel pending steps whose dependencies can no longer succeed.

        Pending steps are visited in plan order, so a failure recorded here
        is seen by later dependents in the same pass.
        """
        for name, step in list(pending.items()):
            for dep in step.depends_on:
                if dep not in known:
                    collector.record(
                        _result(step, StepStatus.FAILED, reason=f"dependency '{dep}' is not in the plan")
                    )
                    break
                status = collector.status(dep)
                if status == StepStatus.FAILED:
                    collector.record(
                        _result(step, StepStatus.FAILED, reason=f"dependency '{dep}' failed")
                    )
                    break
                if status == StepStatus.CANCELLED:
                    collector.record(
                        _result(step, StepStatus.CANCELLED, reason=f"dependency '{dep}' cancelled")
                    )
                    break
            else:
                continue
            del pending[name]

    def _abort_reason(self, abort: asyncio.Event | None, deadline: float | None) -> Optional[str]:
        if abort is not None and abort.is_set():
            return "aborted by request"
        if deadline is not None and self._clock() >= deadline:
            return "run timeout exceeded"
        return None

    async def _run_step(self, step: PlanStep) -> StepOutcome:
        log = logger.bind(step=step.name, kind=step.kind, action=step.action.value)
        started = self._clock()

        if step.action == PlanAction.NOOP:
            log.info("step_skipped")
            provider_id = step.record.provider_id if step.record else None
            return _result(step, StepStatus.SKIPPED, provider_id=provider_id), None

        handler = self._registry.get(step.kind)
        if handler is None:
            log.error("step_failed", reason="no_handler")
            return _result(step, StepStatus.FAILED, reason=f"no handler registered for kind '{step.kind}'"), None

        log.info("step_started")
        attempts = 0
        # identity of a resource this step created before a later call failed
        created_id: Optional[str] = None
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._retry.max_attempts),
                wait=wait_exponential(multiplier=self._retry.multiplier, max=self._retry.max_wait),
                retry=retry_if_exception(_is_transient),
                before_sleep=_log_retry,
                sleep=self._sleep,
                reraise=True,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    config = step.spec.config
                    if self._resolver is not None:
                        config = await self._resolver.resolve(config)
                    try:
                        provider_id = await self._invoke(handler, step, config, created_id)
                    except ProviderError as e:
                        if e.provider_id:
                            created_id = e.provider_id
                        raise

            await self._persist(_record(step, provider_id, step.spec.fingerprint()))
        except (ConflictError, StateStoreError) as e:
            log.error("step_failed", error_type=type(e).__name__, error=e.message, fatal=True)
            result = _failed(step, e, attempts, self._clock() - started)
            return result, f"{type(e).__name__} in step '{step.name}': {e.message}"
        except StackPilotError as e:
            log.error("step_failed", error_type=type(e).__name__, error=e.message, attempts=attempts)
            result = _failed(step, e, attempts, self._clock() - started)
            return result, await self._keep_incomplete(step, created_id, result)
        except Exception as e:
            log.exception("step_failed_unexpectedly", error=str(e))
            result = _failed(step, e, attempts, self._clock() - started)
            return result, await self._keep_incomplete(step, created_id, result)

        log.info("step_succeeded", provider_id=provider_id, attempts=attempts)
        return (
            _result(
                step,
                StepStatus.SUCCESS,
                provider_id=provider_id,
                attempts=attempts,
                duration=self._clock() - started,
            ),
            None,
        )

    async def _invoke(
        self,
        handler: ResourceHandler,
        step: PlanStep,
        config: Dict[str, Any],
        created_id: Optional[str],
    ) -> str:
        """Call the handler; once the resource exists, retries converge it with ``update``."""
        if step.action == PlanAction.UPDATE:
            if step.record is None:
                raise ValidationError(
                    f"Update of '{step.name}' has no recorded state", details={"resource": step.name}
                )
            provider_id: Optional[str] = step.record.provider_id
        else:
            provider_id = created_id

        if provider_id is None:
            call: Awaitable[Any] = handler.create(config)
        else:
            call = handler.update(provider_id, config)

        try:
            if self._call_timeout:
                result = await asyncio.wait_for(call, self._call_timeout)
            else:
                result = await call
        except asyncio.TimeoutError as e:
            raise ProviderError.transient_error(
                f"Provider call timed out after {self._call_timeout}s", resource=step.name
            ) from e

        if provider_id is not None:
            return provider_id
        if not result:
            raise ProviderError.permanent_error(
                "Provider returned no identity for created resource", resource=step.name
            )
        return str(result)

    async def _keep_incomplete(
        self, step: PlanStep, created_id: Optional[str], result: StepResult
    ) -> Optional[str]:
        """Record a resource whose creation failed half way so the next plan updates it.

        Returns an abort reason when the state store cannot take the record.
        """
        if created_id is None:
            return None
        result.provider_id = created_id
        try:
            await self._persist(_record(step, created_id, INCOMPLETE_FINGERPRINT))
        except StateStoreError as e:
            logger.error("step_failed", step=step.name, error_type="StateStoreError", error=e.message, fatal=True)
            return f"StateStoreError in step '{step.name}': {e.message}"
        logger.warning("step_left_incomplete", step=step.name, provider_id=created_id)
        return None

    async def _persist(self, record: ResourceRecord) -> None:
        async with self._store_lock:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._retry.state_attempts),
                wait=wait_exponential(multiplier=self._retry.multiplier, max=self._retry.max_wait),
                retry=retry_if_exception_type(StateStoreError),
                sleep=self._sleep,
                reraise=True,
            ):
                with attempt:
                    await self._store.put(record)


def _succeeded(status: Optional[StepStatus]) -> bool:
    return status is not None and status.succeeded


def _record(step: PlanStep, provider_id: str, fingerprint: str) -> ResourceRecord:
    return ResourceRecord(
        name=step.name,
        kind=step.kind,
        provider_id=provider_id,
        fingerprint=fingerprint,
        applied_at=utcnow(),
    )


def _result(
    step: PlanStep,
    status: StepStatus,
    *,
    provider_id: Optional[str] = None,
    reason: Optional[str] = None,
    attempts: int = 0,
    duration: float = 0.0,
) -> StepResult:
    return StepResult(
        name=step.name,
        kind=step.kind,
        action=step.action,
        status=status,
        provider_id=provider_id,
        reason=reason,
        attempts=attempts,
        duration_seconds=duration,
    )


def _failed(step: PlanStep, error: Exception, attempts: int, duration: float) -> StepResult:
    result = _result(
        step,
        StepStatus.FAILED,
        reason=getattr(error, "message", None) or str(error),
        attempts=attempts,
        duration=duration,
    )
    result.error_type = type(error).__name__
    return result
