from pydantic import BaseModel, Field


class DeductRequest(BaseModel):
    order_id: str = Field(min_length=1)
    item_id: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    fault_flag: bool = False


class DeductResponse(BaseModel):
    status: str
    order_id: str
    remaining: int | None = None


class Product(BaseModel):
    item_id: str
    name: str
    quantity: int


class ConfigRequest(BaseModel):
    fault_delay_s: float | None = Field(default=None, ge=0)


class StockLevel(BaseModel):
    item_id: str
    quantity: int


class AppliedResponse(BaseModel):
    order_id: str
    applied: bool
