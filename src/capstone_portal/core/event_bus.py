"""Redis pub/sub publisher for workflow events.

Workflow services publish an event after a committed state change so that
the external notification mailer can email the affected users.  Channel::

    workflow:events

Message shape::

    {
        "event": "application.status_changed",
        "occurred_at": "2026-10-19T09:30:00+00:00",
        "application_id": "…",
        "old_status": "pending",
        "new_status": "approved"
    }

Publishing is fire-and-forget: a failure is logged at WARNING and never
propagates to the workflow operation that triggered it.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import redis.asyncio as aioredis

from capstone_portal.api.metrics import best_effort_failures_total
from capstone_portal.core.clock import Clock, utc_now

logger = logging.getLogger(__name__)

WORKFLOW_CHANNEL = "workflow:events"


class WorkflowEventPublisher:
    """Publishes workflow events to Redis.

    Constructed with ``redis_client=None`` the publisher is a no-op, which is
    how tests and deployments without a mailer run.

    Args:
        redis_client: An ``redis.asyncio.Redis`` client, or ``None``.
        channel: Pub/sub channel name.
        clock: Source of ``occurred_at`` timestamps.
    """

    def __init__(
        self,
        redis_client: Optional[aioredis.Redis] = None,
        channel: str = WORKFLOW_CHANNEL,
        clock: Clock = utc_now,
    ) -> None:
        self._redis = redis_client
        self._channel = channel
        self._clock = clock

    async def publish(self, event: str, **payload: Any) -> None:
        """Publish *event* with *payload*; never raises."""
        if self._redis is None:
            return
        message = {"event": event, "occurred_at": self._clock().isoformat(), **payload}
        try:
            await self._redis.publish(self._channel, json.dumps(message, default=str))
        except Exception:
            best_effort_failures_total.labels(step="publish_event").inc()
            logger.warning(
                "Failed to publish workflow event",
                extra={"workflow_event": event, "channel": self._channel},
            )
