import json
from dataclasses import asdict, dataclass

from common.errors import ValidationError

COMPLETED = "COMPLETED"
FAILED = "FAILED"


def _load(data) -> dict:
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    try:
        d = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError(f"invalid JSON: {exc}") from exc
    if not isinstance(d, dict):
        raise ValidationError("message must be a JSON object")
    return d


def _require_str(d: dict, key: str) -> str:
    value = d.get(key)
    if not isinstance(value, str) or not value:
        raise ValidationError(f"missing or invalid {key}")
    return value


@dataclass
class WorkItem:
    """Deferred fulfillment request carried on the pending-work queue."""

    order_id: str
    item_id: str
    quantity: int
    inject_delay: bool = False

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, data) -> "WorkItem":
        d = _load(data)
        quantity = d.get("quantity")
        # bool is an int subclass; reject it explicitly.
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise ValidationError("quantity must be a positive integer")
        return cls(
            order_id=_require_str(d, "order_id"),
            item_id=_require_str(d, "item_id"),
            quantity=quantity,
            inject_delay=bool(d.get("inject_delay", False)),
        )


@dataclass
class CompletionEvent:
    """Final outcome of deferred work, sent back to the order lifecycle."""

    order_id: str
    outcome: str
    reason: str | None = None

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, data) -> "CompletionEvent":
        d = _load(data)
        outcome = d.get("outcome")
        if outcome not in (COMPLETED, FAILED):
            raise ValidationError(f"unknown outcome: {outcome!r}")
        reason = d.get("reason")
        if reason is not None and not isinstance(reason, str):
            raise ValidationError("reason must be a string")
        return cls(order_id=_require_str(d, "order_id"), outcome=outcome, reason=reason)
