import logging
import os

from fastapi import FastAPI

from broker.config import PENDING_WORK_QUEUE
from broker.supervisor import ConnectionSupervisor
from common import db as common_db

from inventory_service.config import SEED_ON_STARTUP
from inventory_service.fulfillment import FulfillmentExecutor, StockLedger
from inventory_service.routes import router
from inventory_service.worker import PendingWorkConsumer

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="InventoryService")
app.state.db_path = None
app.state.executor = FulfillmentExecutor()
app.state.supervisor = None


@app.on_event("startup")
def startup() -> None:
    common_db.init_db(app.state.db_path)
    if SEED_ON_STARTUP:
        StockLedger(app.state.db_path).seed()

    app.state.executor = FulfillmentExecutor(app.state.db_path)
    consumer = PendingWorkConsumer(app.state.executor)
    supervisor = ConnectionSupervisor(consumers={PENDING_WORK_QUEUE: consumer.handle})
    consumer.supervisor = supervisor
    app.state.supervisor = supervisor
    # The HTTP surface is usable while the broker is still coming up.
    supervisor.start()
    logger.info("InventoryService started (db=%s)", app.state.db_path or common_db.get_db_path())


@app.on_event("shutdown")
def shutdown() -> None:
    if app.state.supervisor is not None:
        app.state.supervisor.stop()


app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", "8001")))
