"""Outbox Event Bus — durably hands lifecycle events to their topic.

Invariants:
    - publish() returns only after the outbox row is committed
    - Any storage failure surfaces as EventPublishError (never a raw DB error)
    - Topic comes from the event type; payload is LifecycleEvent.to_message()

Design Decisions:
    - Transactional outbox over a broker client: no broker dependency in this
      service, a relay forwards unpublished rows (published_at IS NULL)
"""

import logging

from lifeflow.core.errors import EventPublishError, LifeFlowError
from lifeflow.core.lifecycle_events import LifecycleEvent
from lifeflow.infrastructure.database import DatabaseSessionManager
from lifeflow.models.event_outbox import EventOutboxRow

logger = logging.getLogger(__name__)


class OutboxEventBus:
    """EventBus writing to the event_outbox table."""

    def __init__(self, db: DatabaseSessionManager):
        self._db = db

    async def publish(self, event: LifecycleEvent) -> None:
        try:
            async with self._db.session() as session:
                session.add(EventOutboxRow(
                    id=event.event_id,
                    topic=event.topic,
                    event_type=event.event_type.value,
                    request_id=event.request_id,
                    payload=event.to_message(),
                    created_at=event.timestamp,
                ))
                await session.commit()
        except LifeFlowError as e:
            raise EventPublishError(event.topic, e.message) from e
        logger.info(
            f"Event published: {event.event_type.value}",
            extra={
                "topic": event.topic,
                "request_id": event.request_id,
                "event_type": event.event_type.value,
            },
        )
