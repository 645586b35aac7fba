"""Deadline Sweeper — background task expiring requests whose deadline has passed.

Invariants:
    - Expiry goes through RequestLifecycle.expire (same per-request lock as every
      other transition), never a direct store write
    - A request that reached a terminal state first is skipped, not an error
    - One failing request never stops the pass; one failing pass never stops the loop

Design Decisions:
    - Poll the store (list_overdue) instead of one timer per request: survives
      restarts and needs no in-memory schedule
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timezone

from lifeflow.core.errors import (
    ConcurrencyError, InvalidStateTransitionError, LifeFlowError,
)
from lifeflow.core.repository_protocols import RequestStore
from lifeflow.services.request_lifecycle import RequestLifecycle

logger = logging.getLogger(__name__)


class DeadlineSweeper:

    def __init__(
        self,
        store: RequestStore,
        lifecycle: RequestLifecycle,
        interval_seconds: float = 30.0,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._store = store
        self._lifecycle = lifecycle
        self.interval_seconds = interval_seconds
        self._now = now
        self._task: asyncio.Task | None = None
        self.running = False

    async def sweep_once(self) -> int:
        """Expire every overdue non-terminal request. Returns how many expired."""
        overdue = await self._store.list_overdue(self._now())
        expired = 0
        for request in overdue:
            try:
                await self._lifecycle.expire(request.id)
                expired += 1
            except (InvalidStateTransitionError, ConcurrencyError) as e:
                logger.info(
                    f"Skipped expiry, lost race to another transition: {e.message}",
                    extra={"request_id": request.id, "error_code": e.code},
                )
            except LifeFlowError as e:
                logger.error(
                    f"Expiry failed, retrying next pass: {e.message}",
                    extra={"request_id": request.id, "error_code": e.code},
                )
        if expired:
            logger.info(f"Sweeper expired {expired} request(s)", extra={"expired": expired})
        return expired

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self.running = True
        self._task = asyncio.create_task(self._run(), name="deadline-sweeper")
        logger.info(f"Deadline sweeper started (interval={self.interval_seconds}s)")

    async def stop(self) -> None:
        self.running = False
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info("Deadline sweeper stopped")

    async def _run(self) -> None:
        while self.running:
            try:
                await self.sweep_once()
            except LifeFlowError as e:
                logger.error(
                    f"Sweep pass failed: {e.message}", extra={"error_code": e.code},
                )
            except Exception as e:
                logger.error(f"Sweep pass failed: {e}", exc_info=True)
            await asyncio.sleep(self.interval_seconds)
