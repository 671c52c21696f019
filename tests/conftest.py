from unittest.mock import Mock

import pytest

from broker.supervisor import ConnectionState
from common import db as common_db
from inventory_service.fulfillment import FulfillmentExecutor, StockLedger

PRODUCTS = [
    ("widget", "Widget", 10),
    ("gadget", "Gadget", 3),
]


class FakeSupervisor:
    """Stands in for the broker connection: records publishes."""

    def __init__(self, ready: bool = True, error: Exception | None = None):
        self.ready = ready
        self.error = error
        self.published: list[tuple[str, str]] = []

    @property
    def is_ready(self) -> bool:
        return self.ready

    @property
    def state(self) -> ConnectionState:
        return ConnectionState.READY if self.ready else ConnectionState.DISCONNECTED

    def publish(self, queue: str, body: str) -> None:
        if self.error is not None:
            raise self.error
        self.published.append((queue, body))


class FakeInventory:
    """InventoryClient double: raises ``error`` or calls ``executor``."""

    def __init__(self, executor=None, error: Exception | None = None):
        self.executor = executor
        self.error = error
        self.calls: list[tuple] = []
        self.timeout_s = 2.0

    def deduct(self, order_id, item_id, quantity, fault_flag=False):
        self.calls.append((order_id, item_id, quantity, fault_flag))
        if self.error is not None:
            raise self.error
        result = self.executor.fulfill(order_id, item_id, quantity)
        return {"status": result.status, "order_id": order_id}


def delivery(redelivered: bool = False, tag: int = 1):
    method = Mock()
    method.delivery_tag = tag
    method.redelivered = redelivered
    return Mock(), method


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "test.db")
    common_db.init_db(path)
    return path


@pytest.fixture
def ledger(db_path):
    stock = StockLedger(db_path)
    stock.seed(PRODUCTS)
    return stock


@pytest.fixture
def executor(db_path, ledger):
    return FulfillmentExecutor(db_path, fault_delay_s=0.0)
