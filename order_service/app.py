import logging
import os

from fastapi import FastAPI

from broker.config import COMPLETION_EVENTS_QUEUE
from broker.supervisor import ConnectionSupervisor
from common import db as common_db
from common.latency import LatencyAggregator

from order_service.config import LATENCY_SWEEP_INTERVAL_S, LATENCY_WINDOW_S
from order_service.consumer import CompletionConsumer
from order_service.inventory_client import InventoryClient
from order_service.lifecycle import OrderLifecycleManager, OrderStore
from order_service.metrics import record_request_duration
from order_service.routes import router

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="OrderService")
app.state.db_path = None
app.state.latency = LatencyAggregator(window_s=LATENCY_WINDOW_S)
app.state.supervisor = None
app.state.lifecycle = None


@app.on_event("startup")
def startup() -> None:
    common_db.init_db(app.state.db_path)

    manager = OrderLifecycleManager(OrderStore(app.state.db_path), InventoryClient())
    consumer = CompletionConsumer(manager)
    supervisor = ConnectionSupervisor(consumers={COMPLETION_EVENTS_QUEUE: consumer.handle})
    manager.supervisor = supervisor

    app.state.lifecycle = manager
    app.state.supervisor = supervisor
    supervisor.start()
    app.state.latency.start_sweeper(LATENCY_SWEEP_INTERVAL_S)
    logger.info("OrderService started (db=%s)", app.state.db_path or common_db.get_db_path())


@app.on_event("shutdown")
def shutdown() -> None:
    app.state.latency.stop_sweeper()
    if app.state.supervisor is not None:
        app.state.supervisor.stop()


app.middleware("http")(record_request_duration)
app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", "8000")))
