"""Error taxonomy shared by the order and inventory services."""


class OrderFlowError(Exception):
    """Base class for every classified failure in the fulfillment flow."""


class ValidationError(OrderFlowError, ValueError):
    """Bad input. Never retried."""


class FulfillmentError(OrderFlowError):
    """The fulfillment call did not apply its effect."""

    reason = "inventory_error"

    def __init__(self, message: str = "", reason: str | None = None):
        super().__init__(message or self.reason)
        if reason is not None:
            self.reason = reason


class InsufficientStock(FulfillmentError):
    reason = "insufficient_stock"


class ItemNotFound(FulfillmentError):
    reason = "item_not_found"


class DeadlineExceeded(FulfillmentError):
    """The caller stopped waiting. The callee may still apply its effect."""

    reason = "deadline_exceeded"


class QueueUnavailable(OrderFlowError):
    """Deferred work could not be handed to the broker."""

    reason = "queue_unavailable"


class TransportError(OrderFlowError):
    """Broker connection lost. Recovered by the connection supervisor."""
