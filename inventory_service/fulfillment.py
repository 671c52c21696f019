"""Stock ledger, idempotency register and the fulfillment executor.

The executor is called from two places: the synchronous ``/inventory/deduct``
route and the ``pending-work`` consumer. Both may see the same order id
(the order service stops waiting after its deadline but does not cancel the
call), so the idempotency check and the stock decrement run inside one
``BEGIN IMMEDIATE`` transaction. That lock also serializes concurrent
reservations on the same item.
"""
import logging
import sqlite3
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from common import db as common_db
from common.errors import InsufficientStock, ItemNotFound, ValidationError

from inventory_service.config import FAULT_DELAY_S, SEED_PRODUCTS

logger = logging.getLogger(__name__)

APPLIED = "applied"
ALREADY_APPLIED = "already_applied"


@dataclass
class FulfillmentResult:
    order_id: str
    status: str
    remaining: int | None = None


class StockLedger:
    def __init__(self, db_path: str | None = None):
        self.db_path = db_path

    def list_items(self) -> list[dict]:
        conn = common_db.connect(self.db_path)
        try:
            rows = conn.execute(
                "SELECT item_id, name, quantity FROM inventory ORDER BY name"
            ).fetchall()
        finally:
            conn.close()
        return [dict(row) for row in rows]

    def quantity(self, item_id: str) -> int | None:
        conn = common_db.connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT quantity FROM inventory WHERE item_id = ?", (item_id,)
            ).fetchone()
        finally:
            conn.close()
        return row["quantity"] if row else None

    def seed(self, products=SEED_PRODUCTS) -> int:
        """Insert missing products; existing rows keep their stock."""
        conn = common_db.connect(self.db_path)
        try:
            before = conn.total_changes
            conn.executemany(
                "INSERT OR IGNORE INTO inventory (item_id, name, quantity) VALUES (?, ?, ?)",
                products,
            )
            conn.commit()
            inserted = conn.total_changes - before
        finally:
            conn.close()
        if inserted:
            logger.info("Seeded %d products", inserted)
        return inserted

    @staticmethod
    def reserve(conn: sqlite3.Connection, item_id: str, quantity: int) -> int:
        """Take ``quantity`` units inside the caller's transaction."""
        row = conn.execute(
            "SELECT quantity FROM inventory WHERE item_id = ?", (item_id,)
        ).fetchone()
        if row is None:
            raise ItemNotFound(f"Item {item_id} not found")
        available = row["quantity"]
        if available < quantity:
            raise InsufficientStock(f"Insufficient {item_id}: need {quantity}, have {available}")

        cur = conn.execute(
            "UPDATE inventory SET quantity = quantity - ? WHERE item_id = ? AND quantity >= ?",
            (quantity, item_id, quantity),
        )
        if cur.rowcount != 1:
            raise InsufficientStock(f"Insufficient {item_id}: need {quantity}")
        return available - quantity


class IdempotencyRegister:
    def __init__(self, db_path: str | None = None):
        self.db_path = db_path

    def contains(self, order_id: str) -> bool:
        conn = common_db.connect(self.db_path)
        try:
            return self.is_applied(conn, order_id)
        finally:
            conn.close()

    @staticmethod
    def is_applied(conn: sqlite3.Connection, order_id: str) -> bool:
        row = conn.execute(
            "SELECT 1 FROM idempotency_log WHERE order_id = ? LIMIT 1", (order_id,)
        ).fetchone()
        return row is not None

    @staticmethod
    def record(conn: sqlite3.Connection, order_id: str, item_id: str, quantity: int) -> None:
        conn.execute(
            "INSERT INTO idempotency_log (order_id, item_id, quantity, applied_at) VALUES (?, ?, ?, ?)",
            (order_id, item_id, quantity, datetime.now(timezone.utc).isoformat()),
        )


class FulfillmentExecutor:
    def __init__(
        self,
        db_path: str | None = None,
        fault_delay_s: float = FAULT_DELAY_S,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db_path = db_path
        self.fault_delay_s = fault_delay_s
        self._sleep = sleep

    def fulfill(self, order_id: str, item_id: str, quantity: int,
                inject_delay: bool = False) -> FulfillmentResult:
        if inject_delay:
            # Test hook simulating an unresponsive dependency.
            logger.info("Fault injection: stalling %s for %.1fs", order_id, self.fault_delay_s)
            self._sleep(self.fault_delay_s)

        if not order_id or not item_id:
            raise ValidationError("order_id and item_id are required")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError("quantity must be a positive integer")

        conn = common_db.connect(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            if IdempotencyRegister.is_applied(conn, order_id):
                conn.commit()
                logger.info("Idempotency check: %s already applied, stock unchanged", order_id)
                return FulfillmentResult(order_id=order_id, status=ALREADY_APPLIED)

            remaining = StockLedger.reserve(conn, item_id, quantity)
            IdempotencyRegister.record(conn, order_id, item_id, quantity)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        logger.info("Reserved %d x %s for %s (remaining %d)", quantity, item_id, order_id, remaining)
        return FulfillmentResult(order_id=order_id, status=APPLIED, remaining=remaining)
