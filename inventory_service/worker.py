import logging

from broker.config import COMPLETION_EVENTS_QUEUE
from broker.models import COMPLETED, FAILED, CompletionEvent, WorkItem
from common.errors import FulfillmentError, ValidationError

from inventory_service.fulfillment import FulfillmentExecutor

logger = logging.getLogger(__name__)


class PendingWorkConsumer:
    """Applies deferred fulfillment requests from ``pending-work``.

    Business failures are acknowledged and reported as a FAILED completion
    so the queue keeps draining. The delivery is acked only after the
    completion event is published; a publish failure propagates to the
    connection supervisor and the broker redelivers, which is safe because
    the executor is idempotent.
    """

    def __init__(self, executor: FulfillmentExecutor, supervisor=None):
        self.executor = executor
        self.supervisor = supervisor

    def handle(self, ch, method, properties, body):
        try:
            item = WorkItem.from_json(body)
        except ValidationError as e:
            logger.error("MALFORMED work item -> DLQ | error: %s", e)
            ch.basic_nack(delivery_tag=method.delivery_tag, requeue=False)
            return

        event = self.process(item)
        self.supervisor.publish(COMPLETION_EVENTS_QUEUE, event.to_json())
        ch.basic_ack(delivery_tag=method.delivery_tag)
        logger.info("Sent completion %s for %s%s", event.outcome, item.order_id,
                    " (redelivered)" if method.redelivered else "")

    def process(self, item: WorkItem) -> CompletionEvent:
        try:
            result = self.executor.fulfill(
                item.order_id, item.item_id, item.quantity, inject_delay=item.inject_delay
            )
        except FulfillmentError as e:
            logger.warning("Async fulfillment FAILED for %s | %s", item.order_id, e)
            return CompletionEvent(order_id=item.order_id, outcome=FAILED, reason=e.reason)
        except ValidationError as e:
            logger.warning("Async fulfillment rejected %s | %s", item.order_id, e)
            return CompletionEvent(order_id=item.order_id, outcome=FAILED, reason="invalid_request")
        except Exception:
            logger.exception("Async fulfillment crashed for %s", item.order_id)
            return CompletionEvent(order_id=item.order_id, outcome=FAILED, reason="processing_error")

        logger.info("Async fulfillment %s for %s", result.status, item.order_id)
        return CompletionEvent(order_id=item.order_id, outcome=COMPLETED)
