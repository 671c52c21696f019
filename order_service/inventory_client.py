import logging

import requests

from common.errors import DeadlineExceeded, FulfillmentError, InsufficientStock, ItemNotFound

from order_service.config import INVENTORY_DEADLINE_S, INVENTORY_URL

logger = logging.getLogger(__name__)


def _detail(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("error") or body)
    return str(body)


class InventoryClient:
    """Synchronous, deadline-bounded call to the inventory deduct endpoint.

    Hitting the deadline only stops the wait; the inventory service may
    still finish the deduction later.
    """

    def __init__(self, base_url: str = INVENTORY_URL, timeout_s: float = INVENTORY_DEADLINE_S,
                 session: requests.Session | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.session = session or requests.Session()

    def deduct(self, order_id: str, item_id: str, quantity: int, fault_flag: bool = False) -> dict:
        payload = {
            "order_id": order_id,
            "item_id": item_id,
            "quantity": quantity,
            "fault_flag": fault_flag,
        }
        try:
            resp = self.session.post(
                f"{self.base_url}/inventory/deduct",
                json=payload,
                timeout=self.timeout_s,
            )
        except requests.Timeout as exc:
            raise DeadlineExceeded(f"Inventory did not answer within {self.timeout_s}s") from exc
        except requests.RequestException as exc:
            raise FulfillmentError(f"Inventory unreachable: {exc}", reason="inventory_unavailable") from exc

        if resp.status_code == 200:
            try:
                return resp.json()
            except ValueError as exc:
                raise FulfillmentError(f"Inventory sent an unreadable reply: {exc}") from exc
        detail = _detail(resp)
        if resp.status_code == 409:
            raise InsufficientStock(detail)
        if resp.status_code == 404:
            raise ItemNotFound(detail)
        logger.warning("Inventory returned %d for %s: %s", resp.status_code, order_id, detail)
        raise FulfillmentError(f"Inventory returned {resp.status_code}: {detail}")
