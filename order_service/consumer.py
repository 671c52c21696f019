import logging
import sqlite3

from broker.models import CompletionEvent
from common.errors import ValidationError

from order_service.lifecycle import CompletionOutcome, OrderLifecycleManager

logger = logging.getLogger(__name__)


class CompletionConsumer:
    """Applies ``completion-events`` to the order lifecycle.

    A message that cannot be applied yet is requeued once; if it comes back
    still unapplicable it is acked and logged so the queue never spins on it.
    """

    def __init__(self, manager: OrderLifecycleManager):
        self.manager = manager

    def handle(self, ch, method, properties, body):
        try:
            event = CompletionEvent.from_json(body)
        except ValidationError as e:
            logger.error("MALFORMED completion event -> DLQ | error: %s", e)
            ch.basic_nack(delivery_tag=method.delivery_tag, requeue=False)
            return

        logger.info("Received completion %s for %s", event.outcome, event.order_id)
        try:
            outcome = self.manager.apply_completion(event)
        except sqlite3.Error as e:
            logger.error("Store error applying completion for %s: %s", event.order_id, e)
            outcome = None

        if outcome in (None, CompletionOutcome.NOT_QUEUED):
            if not method.redelivered:
                ch.basic_nack(delivery_tag=method.delivery_tag, requeue=True)
                return
            logger.error("Dropping completion for %s after redelivery (outcome=%s)",
                         event.order_id, outcome.value if outcome else "store_error")
        ch.basic_ack(delivery_tag=method.delivery_tag)
