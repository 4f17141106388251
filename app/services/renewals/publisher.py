from __future__ import annotations

import json
import logging
from typing import Protocol

logger = logging.getLogger(__name__)

HANDLE_RENEWAL_TASK = "app.tasks.renewals.handle_renewal"


class RenewalPublisher(Protocol):
    def publish(self, message: dict, message_id: str) -> None:
        """Send one renewal message; return only once the broker accepted it."""


class CeleryRenewalPublisher:
    """Publishes renewal messages as Celery tasks on the renewals queue.

    The body travels as a JSON string so the consumer sees exactly what was
    sent and can reject unparseable payloads itself.
    """

    def __init__(self, celery_app, queue: str, task_name: str = HANDLE_RENEWAL_TASK):
        self._app = celery_app
        self._queue = queue
        self._task_name = task_name

    def publish(self, message: dict, message_id: str) -> None:
        body = json.dumps(message, sort_keys=True)
        self._app.send_task(
            self._task_name,
            args=[body],
            task_id=message_id,
            queue=self._queue,
            retry=False,
        )
        logger.debug("Published renewal message %s to %s", message_id, self._queue)
