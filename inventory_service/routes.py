import logging

from fastapi import APIRouter, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from common import db as common_db
from common.errors import InsufficientStock, ItemNotFound, ValidationError

from inventory_service.fulfillment import IdempotencyRegister, StockLedger
from inventory_service.models import (
    AppliedResponse,
    ConfigRequest,
    DeductRequest,
    DeductResponse,
    Product,
    StockLevel,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
def health(request: Request):
    if common_db.ping(request.app.state.db_path):
        return {"status": "UP", "db": "CONNECTED"}
    return JSONResponse(status_code=503, content={"status": "DOWN", "db": "DISCONNECTED"})


@router.post("/config")
def set_config(config: ConfigRequest, request: Request) -> dict:
    executor = request.app.state.executor
    if config.fault_delay_s is not None:
        executor.fault_delay_s = config.fault_delay_s
    return {"fault_delay_s": executor.fault_delay_s}


@router.get("/products", response_model=list[Product])
def list_products(request: Request) -> list[dict]:
    return StockLedger(request.app.state.db_path).list_items()


@router.get("/products/{item_id}", response_model=StockLevel)
def get_stock(item_id: str, request: Request) -> StockLevel:
    quantity = StockLedger(request.app.state.db_path).quantity(item_id)
    if quantity is None:
        raise HTTPException(status_code=404, detail=f"Item {item_id} not found")
    return StockLevel(item_id=item_id, quantity=quantity)


@router.post("/seed")
def seed_products(request: Request) -> dict:
    inserted = StockLedger(request.app.state.db_path).seed()
    return {"message": "Seeding check complete", "inserted": inserted}


@router.get("/inventory/applied/{order_id}", response_model=AppliedResponse)
def applied(order_id: str, request: Request) -> AppliedResponse:
    register = IdempotencyRegister(request.app.state.db_path)
    return AppliedResponse(order_id=order_id, applied=register.contains(order_id))


@router.post("/inventory/deduct", response_model=DeductResponse)
def deduct_inventory(payload: DeductRequest, request: Request) -> DeductResponse:
    try:
        result = request.app.state.executor.fulfill(
            payload.order_id, payload.item_id, payload.quantity,
            inject_delay=payload.fault_flag,
        )
    except ItemNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InsufficientStock as exc:
        logger.info("Deduct refused for %s | %s", payload.order_id, exc)
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    return DeductResponse(status=result.status, order_id=result.order_id, remaining=result.remaining)


@router.get("/metrics")
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
