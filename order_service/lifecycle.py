"""Order state machine.

    PENDING --sync success--------------------> CONFIRMED
    PENDING --deadline exceeded, enqueued-----> QUEUED
    PENDING --any other failure---------------> FAILED
    QUEUED  --completion COMPLETED------------> COMPLETED
    QUEUED  --completion FAILED / enqueue fail-> FAILED

``OrderStore.transition`` is the only write path for status and applies a
transition with a compare-and-set on the current status, so an order never
leaves a terminal state no matter which thread asks.
"""
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum

from broker.config import PENDING_WORK_QUEUE
from broker.models import CompletionEvent, WorkItem
from common import db as common_db
from common.errors import DeadlineExceeded, FulfillmentError, QueueUnavailable, ValidationError
from common.ids import new_order_id

logger = logging.getLogger(__name__)


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    QUEUED = "QUEUED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


TERMINAL = frozenset({OrderStatus.CONFIRMED, OrderStatus.COMPLETED, OrderStatus.FAILED})

TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.QUEUED, OrderStatus.FAILED},
    OrderStatus.QUEUED: {OrderStatus.COMPLETED, OrderStatus.FAILED},
}


class CompletionOutcome(str, Enum):
    APPLIED = "applied"
    IGNORED = "ignored"
    NOT_QUEUED = "not_queued"
    UNKNOWN_ORDER = "unknown_order"


@dataclass
class Order:
    id: str
    item_id: str
    quantity: int
    status: OrderStatus
    created_at: str
    updated_at: str
    reason: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL

    def to_dict(self) -> dict:
        d = asdict(self)
        d["status"] = self.status.value
        return d

    @classmethod
    def from_row(cls, row) -> "Order":
        return cls(
            id=row["id"],
            item_id=row["item_id"],
            quantity=row["quantity"],
            status=OrderStatus(row["status"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            reason=row["reason"],
        )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class OrderStore:
    def __init__(self, db_path: str | None = None):
        self.db_path = db_path

    def create(self, item_id: str, quantity: int) -> Order:
        now = _now()
        order = Order(id=new_order_id(), item_id=item_id, quantity=quantity,
                      status=OrderStatus.PENDING, created_at=now, updated_at=now)
        conn = common_db.connect(self.db_path)
        try:
            conn.execute(
                "INSERT INTO orders (id, item_id, quantity, status, reason, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (order.id, item_id, quantity, order.status.value, None, now, now),
            )
            conn.commit()
        finally:
            conn.close()
        return order

    def get(self, order_id: str) -> Order | None:
        conn = common_db.connect(self.db_path)
        try:
            row = conn.execute("SELECT * FROM orders WHERE id = ?", (order_id,)).fetchone()
        finally:
            conn.close()
        return Order.from_row(row) if row else None

    def list_orders(self) -> list[Order]:
        conn = common_db.connect(self.db_path)
        try:
            rows = conn.execute("SELECT * FROM orders ORDER BY created_at DESC, rowid DESC").fetchall()
        finally:
            conn.close()
        return [Order.from_row(row) for row in rows]

    def transition(self, order_id: str, target: OrderStatus, reason: str | None = None) -> bool:
        """Move to ``target`` if the current status allows it. Returns whether it did."""
        sources = [s.value for s, targets in TRANSITIONS.items() if target in targets]
        if not sources:
            return False
        placeholders = ", ".join("?" for _ in sources)
        conn = common_db.connect(self.db_path)
        try:
            cur = conn.execute(
                f"UPDATE orders SET status = ?, reason = ?, updated_at = ? "
                f"WHERE id = ? AND status IN ({placeholders})",
                (target.value, reason, _now(), order_id, *sources),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()


class OrderLifecycleManager:
    def __init__(self, store: OrderStore, inventory, supervisor=None):
        self.store = store
        self.inventory = inventory
        self.supervisor = supervisor

    def place_order(self, item_id: str, quantity: int, fault_flag: bool = False) -> Order:
        if not item_id:
            raise ValidationError("item_id is required")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError("quantity must be a positive integer")

        order = self.store.create(item_id, quantity)
        logger.info("PLACED %s | %d x %s | fault_flag=%s", order.id, quantity, item_id, fault_flag)

        try:
            self.inventory.deduct(order.id, item_id, quantity, fault_flag=fault_flag)
        except DeadlineExceeded as exc:
            logger.warning("Order %s: %s. Queuing for background processing", order.id, exc)
            return self._fall_back(order)
        except FulfillmentError as exc:
            logger.warning("Order %s FAILED | %s: %s", order.id, exc.reason, exc)
            return self._finish(order.id, OrderStatus.FAILED, exc.reason)
        except Exception:
            logger.exception("Order %s FAILED | unexpected error calling inventory", order.id)
            return self._finish(order.id, OrderStatus.FAILED, FulfillmentError.reason)

        logger.info("CONFIRMED %s", order.id)
        return self._finish(order.id, OrderStatus.CONFIRMED)

    def _fall_back(self, order: Order) -> Order:
        if self.supervisor is None or not self.supervisor.is_ready:
            logger.error("Order %s FAILED | queue unavailable, cannot defer", order.id)
            return self._finish(order.id, OrderStatus.FAILED, QueueUnavailable.reason)

        # Written before publishing so a fast completion event finds the order QUEUED.
        queued = self._finish(order.id, OrderStatus.QUEUED)
        item = WorkItem(order_id=order.id, item_id=order.item_id, quantity=order.quantity)
        try:
            self.supervisor.publish(PENDING_WORK_QUEUE, item.to_json())
        except QueueUnavailable as exc:
            logger.error("Order %s FAILED | enqueue failed: %s", order.id, exc)
            return self._finish(order.id, OrderStatus.FAILED, QueueUnavailable.reason)

        logger.info("QUEUED %s on '%s'", order.id, PENDING_WORK_QUEUE)
        # The caller gets the QUEUED snapshot even if a completion already landed.
        return queued

    def _finish(self, order_id: str, status: OrderStatus, reason: str | None = None) -> Order:
        if not self.store.transition(order_id, status, reason):
            logger.warning("Order %s: transition to %s refused", order_id, status.value)
        return self.store.get(order_id)

    def apply_completion(self, event: CompletionEvent) -> CompletionOutcome:
        order = self.store.get(event.order_id)
        if order is None:
            logger.warning("Completion for unknown order %s", event.order_id)
            return CompletionOutcome.UNKNOWN_ORDER
        if order.is_terminal:
            logger.info("Completion for %s ignored, already %s", order.id, order.status.value)
            return CompletionOutcome.IGNORED
        if order.status is OrderStatus.PENDING:
            return CompletionOutcome.NOT_QUEUED

        target = OrderStatus(event.outcome)
        if not self.store.transition(order.id, target, event.reason):
            # Another flow finished the order first.
            return CompletionOutcome.IGNORED
        logger.info("Order %s updated to %s", order.id, target.value)
        return CompletionOutcome.APPLIED
