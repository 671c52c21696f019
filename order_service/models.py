from pydantic import BaseModel, Field


class OrderRequest(BaseModel):
    item_id: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    fault_flag: bool = False


class OrderResponse(BaseModel):
    id: str
    item_id: str
    quantity: int
    status: str
    reason: str | None = None
    created_at: str
    updated_at: str


class QueuedResponse(BaseModel):
    id: str
    status: str
    message: str


class FailedResponse(BaseModel):
    error: str
    order_id: str
    status: str
    reason: str | None = None


class StatsResponse(BaseModel):
    average_latency: float
    request_count: int


class ConfigRequest(BaseModel):
    inventory_timeout_s: float | None = Field(default=None, gt=0)
