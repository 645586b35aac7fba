"""Downstream Gateway — every collaborator call passes breaker, timeout and retry here.

Invariants:
    - Per attempt, in order: breaker permission -> asyncio.wait_for(timeout) -> outcome
      recorded into the collaborator's breaker
    - Up to retry.max_attempts attempts with exponential backoff (1s, 2s, 4s ...)
    - Breaker OPEN: rejected immediately, no network call, no further retries
    - CollaboratorInputError (HTTP 4xx): never retried, never counted as a breaker failure
    - A cancelled call hands its breaker permit back without recording an outcome
    - Timeouts cancel the call and count as failures
    - Nothing but DownstreamUnavailableError (or DownstreamTimeoutError) leaves this module,
      apart from the caller's own cancellation

Design Decisions:
    - Gateway owns the collaborator clients: services never hold a raw client
    - sleep/clock injected: tests run the retry schedule without waiting
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Any

from lifeflow.config import Settings
from lifeflow.core.circuit_breaker import (
    BreakerConfig, CircuitBreaker, CircuitBreakerRegistry, DEFAULT_BREAKER_CONFIGS,
)
from lifeflow.core.domain_types import BloodType, BreakerState, Collaborator
from lifeflow.core.errors import (
    CollaboratorInputError, DownstreamTimeoutError, DownstreamUnavailableError,
    ErrorContext,
)
from lifeflow.core.repository_protocols import (
    AnalyticsClient, DonorClient, GeolocationClient, InventoryClient,
    NotificationClient,
)
from lifeflow.core.request_models import EligibleDonor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 4000

    def backoff_ms(self, attempt: int) -> int:
        """Delay after the given zero-based failed attempt."""
        return min(self.max_delay_ms, (2 ** attempt) * self.base_delay_ms)


def breaker_configs_from_settings(settings: Settings) -> dict[str, BreakerConfig]:
    """Per-collaborator defaults with window sizing taken from settings."""
    return {
        name: replace(
            config,
            window_size=settings.breaker_window_size,
            minimum_calls=settings.breaker_minimum_calls,
            permitted_half_open_calls=settings.breaker_half_open_calls,
        )
        for name, config in DEFAULT_BREAKER_CONFIGS.items()
    }


def retry_policy_from_settings(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        base_delay_ms=settings.retry_base_delay_ms,
        max_delay_ms=settings.retry_max_delay_ms,
    )


class DownstreamGateway:
    """Resilience-wrapped access to inventory, donor, geolocation, notification, analytics."""

    def __init__(
        self,
        registry: CircuitBreakerRegistry,
        *,
        inventory: InventoryClient,
        donors: DonorClient,
        geolocation: GeolocationClient,
        notifications: NotificationClient,
        analytics: AnalyticsClient,
        retry: RetryPolicy = RetryPolicy(),
        timeout_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.registry = registry
        self._inventory = inventory
        self._donors = donors
        self._geolocation = geolocation
        self._notifications = notifications
        self._analytics = analytics
        self._retry = retry
        self._timeout = timeout_seconds
        self._clock = clock
        self._sleep = sleep

    # --- Collaborator operations ---------------------------------------------

    async def check_stock(self, blood_type: BloodType, units: float) -> bool:
        return await self.call(
            Collaborator.INVENTORY, "check_stock",
            self._inventory.check_stock, blood_type, units,
        )

    async def find_eligible_donors(
        self, blood_type: BloodType, units: float,
    ) -> list[EligibleDonor]:
        return await self.call(
            Collaborator.DONOR, "find_eligible",
            self._donors.find_eligible, blood_type, units,
        )

    async def distance(self, origin: str, destination: str) -> float:
        return await self.call(
            Collaborator.GEOLOCATION, "distance",
            self._geolocation.distance, origin, destination,
        )

    async def notify_donor(self, donor_id: str, payload: dict) -> None:
        await self.call(
            Collaborator.NOTIFICATION, "send",
            self._notifications.send, donor_id, payload,
        )

    async def record_analytics(self, event_type: str, payload: dict) -> None:
        await self.call(
            Collaborator.ANALYTICS, "record",
            self._analytics.record, event_type, payload,
        )

    # --- Resilience pipeline -------------------------------------------------

    async def call(
        self,
        collaborator: Collaborator,
        operation: str,
        fn: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> Any:
        """Run fn(*args) under breaker, timeout and retry for one collaborator."""
        name = collaborator.value
        breaker = self.registry.get(name)
        last_error: BaseException | None = None
        attempts = 0

        for attempt in range(self._retry.max_attempts):
            if not breaker.try_acquire():
                raise self._rejected(breaker, operation)

            attempts += 1
            before = breaker.state
            started = self._clock()
            try:
                result = await asyncio.wait_for(fn(*args), timeout=self._timeout)
            except asyncio.CancelledError:
                # the caller went away; the call has no outcome to record
                breaker.release()
                raise
            except CollaboratorInputError as e:
                breaker.release()
                logger.warning(
                    f"{name}.{operation} rejected input, not retrying: {e.message}",
                    extra={"collaborator": name, "error_code": e.code},
                )
                raise DownstreamUnavailableError(
                    name, e.message, context=ErrorContext(collaborator=name),
                ) from e
            except asyncio.TimeoutError as e:
                breaker.record_failure(self._clock() - started)
                last_error = e
            except Exception as e:
                breaker.record_failure(self._clock() - started)
                last_error = e
            else:
                breaker.record_success(self._clock() - started)
                self._log_transition(breaker, before)
                return result

            self._log_transition(breaker, before)
            logger.warning(
                f"{name}.{operation} failed (attempt {attempt + 1}/{self._retry.max_attempts}): "
                f"{last_error!r}",
                extra={"collaborator": name, "attempt": attempt + 1},
            )
            if attempt + 1 >= self._retry.max_attempts:
                break
            if breaker.state == BreakerState.OPEN:
                break
            await self._sleep(self._retry.backoff_ms(attempt) / 1000)

        if isinstance(last_error, asyncio.TimeoutError):
            raise DownstreamTimeoutError(
                name, self._timeout, context=ErrorContext(collaborator=name),
            ) from last_error
        raise DownstreamUnavailableError(
            name,
            f"{operation} failed after {attempts} attempt(s): {last_error!r}",
            context=ErrorContext(collaborator=name),
        ) from last_error

    def breaker_states(self) -> dict[str, str]:
        return {s.name: s.state.value for s in self.registry.snapshots()}

    def _rejected(
        self, breaker: CircuitBreaker, operation: str,
    ) -> DownstreamUnavailableError:
        retry_after_ms = int(breaker.retry_after_seconds() * 1000)
        logger.warning(
            f"{breaker.name}.{operation} short-circuited",
            extra={
                "collaborator": breaker.name,
                "breaker_state": breaker.state.value,
            },
        )
        return DownstreamUnavailableError(
            breaker.name,
            "circuit breaker open",
            retry_after_ms=retry_after_ms or None,
            context=ErrorContext(collaborator=breaker.name),
        )

    def _log_transition(self, breaker: CircuitBreaker, before: BreakerState) -> None:
        after = breaker.state
        if after == before:
            return
        log = logger.warning if after == BreakerState.OPEN else logger.info
        log(
            f"Circuit breaker {breaker.name}: {before.value} -> {after.value}",
            extra={"collaborator": breaker.name, "breaker_state": after.value},
        )
