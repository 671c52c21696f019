import os

RABBITMQ_HOST = os.environ.get("RABBITMQ_HOST", "localhost")
RABBITMQ_PORT = int(os.environ.get("RABBITMQ_PORT", "5672"))
RABBITMQ_USER = os.environ.get("RABBITMQ_USER", "guest")
RABBITMQ_PASSWORD = os.environ.get("RABBITMQ_PASSWORD", "guest")
RABBITMQ_VHOST = os.environ.get("RABBITMQ_VHOST", "/")

# Queues
PENDING_WORK_QUEUE = "pending-work"
COMPLETION_EVENTS_QUEUE = "completion-events"

# Dead-letter
DLX_EXCHANGE = "fulfillment-dlx"
DLQ_QUEUE = "fulfillment-dlq"

# Connection supervision
RECONNECT_DELAY_S = float(os.environ.get("RABBITMQ_RECONNECT_DELAY_S", "5"))
PUBLISH_TIMEOUT_S = float(os.environ.get("RABBITMQ_PUBLISH_TIMEOUT_S", "2"))
HEARTBEAT_S = 60
