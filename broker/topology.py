import logging

from broker.config import COMPLETION_EVENTS_QUEUE, DLQ_QUEUE, DLX_EXCHANGE, PENDING_WORK_QUEUE

logger = logging.getLogger(__name__)

QUEUES = (PENDING_WORK_QUEUE, COMPLETION_EVENTS_QUEUE)


def declare_topology(channel) -> None:
    # Dead Letter Exchange & Queue
    channel.exchange_declare(exchange=DLX_EXCHANGE, exchange_type="fanout", durable=True)
    channel.queue_declare(queue=DLQ_QUEUE, durable=True)
    channel.queue_bind(queue=DLQ_QUEUE, exchange=DLX_EXCHANGE)

    # Work queues use the default exchange; rejected messages go to the DLX.
    dlx_args = {"x-dead-letter-exchange": DLX_EXCHANGE}
    for queue in QUEUES:
        channel.queue_declare(queue=queue, durable=True, arguments=dlx_args)
    logger.info("Declared queues %s (DLX '%s' -> '%s')", ", ".join(QUEUES), DLX_EXCHANGE, DLQ_QUEUE)


def setup_infrastructure() -> None:
    """Connect (retrying) and declare the topology once, then exit."""
    from broker.supervisor import ConnectionSupervisor

    connection = ConnectionSupervisor().connect_with_retry()
    logger.info("Infrastructure ready")
    connection.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    setup_infrastructure()
