"""Step execution with timeouts and retries."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional, Union

from pydantic import BaseModel

from .context import ContextRecorder
from .contracts import Step
from .errors import AgentResolutionError, StepExecutionError, StepTimeoutError
from .models import StepResult, StepStatus
from .providers import AgentRegistry, CancellationSignal, CapabilityProvider, ProviderResult
from .utils.retry import compute_backoff, schedule_retry

logger = logging.getLogger(__name__)


class AttemptStarted(BaseModel):
    """Sent to the coordinator before each provider call."""

    step_id: str
    attempt: int


class AttemptRecord(BaseModel):
    """Outcome of one provider call, reported to the coordinator."""

    step_id: str
    attempt: int
    max_attempts: int
    succeeded: bool
    error: Optional[str] = None
    tokens_used: int = 0

    @property
    def will_retry(self) -> bool:
        return not self.succeeded and self.attempt < self.max_attempts


AttemptEvent = Union[AttemptStarted, AttemptRecord]


class StepExecutor:
    """Runs a single step against its capability provider."""

    def __init__(self, registry: AgentRegistry) -> None:
        self._registry = registry

    async def run(
        self,
        step: Step,
        context: ContextRecorder,
        cancel_event: Optional[asyncio.Event] = None,
        on_attempt: Optional[Callable[[AttemptEvent], None]] = None,
    ) -> StepResult:
        started = time.monotonic()
        cancel_event = cancel_event or asyncio.Event()

        try:
            provider = self._registry.resolve(step.agent, step.id)
        except AgentResolutionError as exc:
            logger.error(str(exc))
            return self._failed(step, str(exc), attempts=0, tokens=0, started=started)

        policy = step.retry_policy
        tokens_total = 0
        last_error: Optional[str] = None
        attempts = 0

        for attempt in range(1, policy.max_attempts + 1):
            if cancel_event.is_set():
                last_error = "cancelled"
                break
            attempts = attempt
            if on_attempt is not None:
                on_attempt(AttemptStarted(step_id=step.id, attempt=attempt))
            try:
                result = await self._attempt(provider, step, context, cancel_event)
            except (StepTimeoutError, StepExecutionError) as exc:
                last_error = str(exc)
                tokens = exc.tokens_used
                tokens_total += tokens
                self._record(
                    context,
                    on_attempt,
                    AttemptRecord(
                        step_id=step.id,
                        attempt=attempt,
                        max_attempts=policy.max_attempts,
                        succeeded=False,
                        error=last_error,
                        tokens_used=tokens,
                    ),
                )
                logger.warning(
                    f"Step {step.id} failed (attempt {attempt}/{policy.max_attempts}): {last_error}"
                )
                if attempt < policy.max_attempts:
                    delay = compute_backoff(policy, attempt)
                    if not await schedule_retry(delay, cancel_event):
                        last_error = "cancelled"
                        break
                continue

            tokens_total += result.tokens_used
            self._record(
                context,
                on_attempt,
                AttemptRecord(
                    step_id=step.id,
                    attempt=attempt,
                    max_attempts=policy.max_attempts,
                    succeeded=True,
                    tokens_used=result.tokens_used,
                ),
            )
            logger.info(f"Step {step.id} succeeded on attempt {attempt}")
            return StepResult(
                step_id=step.id,
                status=StepStatus.SUCCEEDED,
                output=result.output,
                attempts=attempt,
                tokens_used=tokens_total,
                duration_ms=_elapsed_ms(started),
            )

        return self._failed(
            step, last_error, attempts=attempts, tokens=tokens_total, started=started
        )

    async def _attempt(
        self,
        provider: CapabilityProvider,
        step: Step,
        context: ContextRecorder,
        cancel_event: asyncio.Event,
    ) -> ProviderResult:
        timeout = step.timeout / 1000 if step.timeout else None
        signal = CancellationSignal(cancel_event, timeout)
        call = provider.invoke(step.agent, step.task, context, signal)
        try:
            if timeout is None:
                result = await call
            else:
                result = await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError:
            raise StepTimeoutError(step.id, step.timeout) from None
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise StepExecutionError(step.id, f"{type(exc).__name__}: {exc}") from exc

        if result.error:
            raise StepExecutionError(step.id, result.error, result.tokens_used)
        return result

    @staticmethod
    def _record(
        context: ContextRecorder,
        on_attempt: Optional[Callable[[AttemptEvent], None]],
        record: AttemptRecord,
    ) -> None:
        if record.succeeded:
            summary = f"attempt {record.attempt} succeeded"
        else:
            summary = f"attempt {record.attempt} failed: {record.error}"
        if context.append_history(
            record.step_id, summary, record.attempt, record.tokens_used
        ):
            context.add_tokens(record.tokens_used)
        if on_attempt is not None:
            on_attempt(record)

    @staticmethod
    def _failed(
        step: Step,
        error: Optional[str],
        attempts: int,
        tokens: int,
        started: float,
    ) -> StepResult:
        return StepResult(
            step_id=step.id,
            status=StepStatus.FAILED,
            error=error,
            attempts=attempts,
            tokens_used=tokens,
            duration_ms=_elapsed_ms(started),
            fatal=not step.optional,
        )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
