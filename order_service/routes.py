from fastapi import APIRouter, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from common import db as common_db

from order_service.lifecycle import OrderStatus
from order_service.metrics import metrics_response
from order_service.models import (
    ConfigRequest,
    FailedResponse,
    OrderRequest,
    OrderResponse,
    QueuedResponse,
    StatsResponse,
)

router = APIRouter()

FAILURE_MESSAGES = {
    "insufficient_stock": "Order failed: insufficient stock",
    "item_not_found": "Order failed: unknown item",
    "queue_unavailable": "Critical: service unavailable (queue down)",
    "inventory_unavailable": "Order failed: inventory service unreachable",
}


@router.get("/health")
def health(request: Request):
    broker = request.app.state.supervisor
    broker_state = broker.state.value if broker is not None else "disabled"
    if common_db.ping(request.app.state.db_path):
        return {"status": "UP", "db": "CONNECTED", "broker": broker_state}
    return JSONResponse(
        status_code=503,
        content={"status": "DOWN", "db": "DISCONNECTED", "broker": broker_state},
    )


@router.post("/config")
def set_config(config: ConfigRequest, request: Request) -> dict:
    inventory = request.app.state.lifecycle.inventory
    if config.inventory_timeout_s is not None:
        inventory.timeout_s = config.inventory_timeout_s
    return {"inventory_timeout_s": inventory.timeout_s}


@router.get("/metrics")
def metrics() -> Response:
    return metrics_response()


@router.get("/stats", response_model=StatsResponse)
def stats(request: Request) -> StatsResponse:
    latency = request.app.state.latency
    return StatsResponse(average_latency=latency.average(), request_count=latency.count())


@router.get("/orders", response_model=list[OrderResponse])
def list_orders(request: Request) -> list[dict]:
    return [o.to_dict() for o in request.app.state.lifecycle.store.list_orders()]


@router.get("/orders/{order_id}", response_model=OrderResponse)
def get_order(order_id: str, request: Request) -> dict:
    order = request.app.state.lifecycle.store.get(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return order.to_dict()


@router.post(
    "/orders",
    status_code=201,
    response_model=OrderResponse,
    responses={202: {"model": QueuedResponse}, 503: {"model": FailedResponse}},
)
def create_order(order: OrderRequest, request: Request):
    placed = request.app.state.lifecycle.place_order(order.item_id, order.quantity, order.fault_flag)

    if placed.status is OrderStatus.CONFIRMED:
        return placed.to_dict()

    if placed.status is OrderStatus.QUEUED:
        body = QueuedResponse(
            id=placed.id,
            status=OrderStatus.QUEUED.value,
            message="Order timed out, queued for async processing",
        )
        return JSONResponse(status_code=202, content=body.model_dump())

    body = FailedResponse(
        error=FAILURE_MESSAGES.get(placed.reason, "Order failed due to inventory issue"),
        order_id=placed.id,
        status=OrderStatus.FAILED.value,
        reason=placed.reason,
    )
    return JSONResponse(status_code=503, content=body.model_dump())
