"""Sink — drains the notification queue to the console and the webhook.

Learn: The sink is the queue's only consumer. It stops when (and only
when) it reads the Disconnect sentinel, so every notification enqueued
before shutdown is echoed and delivered first.

For each Chat:
1. Echo "username: content" to the operator console
2. If a webhook is configured, POST it once — failures are counted and
   logged, never retried
"""

from dataclasses import dataclass
from typing import Callable, Optional

import click
import structlog

from herald.relay.queue import NotificationQueue
from herald.schemas.notification import Chat, Disconnect
from herald.services.webhook import WebhookDelivery

logger = structlog.get_logger()


@dataclass
class SinkStats:
    """What the sink did over one run."""
    echoed: int = 0
    delivered: int = 0
    failed: int = 0


class Sink:
    def __init__(
        self,
        queue: NotificationQueue,
        delivery: Optional[WebhookDelivery] = None,
        echo: Callable[[str], None] = click.echo,
    ):
        self.queue = queue
        self.delivery = delivery
        self.echo = echo
        self.stats = SinkStats()

    async def run(self) -> SinkStats:
        """Consume notifications until Disconnect."""
        while True:
            msg = await self.queue.get()
            if isinstance(msg, Disconnect):
                logger.debug("herald.sink_disconnected", **self.stats.__dict__)
                return self.stats
            await self._handle(msg)

    async def _handle(self, msg: Chat) -> None:
        self.echo(msg.line())
        self.stats.echoed += 1

        if self.delivery is None:
            return

        try:
            ok = await self.delivery.deliver(msg.payload())
        except Exception:
            logger.exception("webhook.delivery_error", username=msg.username)
            ok = False

        if ok:
            self.stats.delivered += 1
        else:
            self.stats.failed += 1
