"""
Shopping cart kept on the client.

CartStore is the one owner of the cart state. Every mutation writes the full
cart as JSON under a fixed storage key and then notifies subscribers (the
header badge, the cart page, the checkout summary) so they can re-render.
"""
import json
import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

CART_STORAGE_KEY = "maktabati_cart"


class MemoryStorage:
    """In-process stand-in for the browser's localStorage."""

    def __init__(self, items: Optional[Dict[str, str]] = None):
        self._items = dict(items or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class JsonFileStorage:
    """localStorage backed by a single JSON file of key -> string values."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Could not read storage file %s: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")

    def get_item(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove_item(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)


class CartLine(BaseModel):
    product: dict
    quantity: int = Field(..., ge=1)

    @property
    def product_id(self) -> str:
        return product_key(self.product)

    @property
    def price(self) -> float:
        return float(self.product.get("price", 0))

    @property
    def stock(self) -> int:
        return int(self.product.get("stock", 0))

    @property
    def line_total(self) -> float:
        return round(self.price * self.quantity, 2)


class CartTotals(BaseModel):
    total_items: int
    total_price: float


def product_key(product: dict) -> str:
    return str(product.get("id") or product.get("_id") or "")


class CartStore:
    def __init__(self, storage, key: str = CART_STORAGE_KEY):
        self.storage = storage
        self.key = key
        self._lines: List[CartLine] = []
        self._subscribers: List[Callable[["CartStore"], None]] = []
        self.load()

    # ---------------------- reading ----------------------

    def load(self) -> None:
        """Replace the in-memory cart with what storage holds."""
        raw = self.storage.get_item(self.key)
        self._lines = self._parse(raw) if raw else []

    def _parse(self, raw: str) -> List[CartLine]:
        try:
            data = json.loads(raw)
            if not isinstance(data, list):
                raise ValueError("cart is not a list")
            return [CartLine.model_validate(item) for item in data]
        except (ValueError, ValidationError) as exc:
            logger.warning("Error loading cart from storage, starting empty: %s", exc)
            return []

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines)

    @property
    def is_empty(self) -> bool:
        return not self._lines

    @property
    def count(self) -> int:
        return self.totals().total_items

    def find(self, product_id: str) -> Optional[CartLine]:
        for line in self._lines:
            if line.product_id == product_id:
                return line
        return None

    def totals(self) -> CartTotals:
        return CartTotals(
            total_items=sum(line.quantity for line in self._lines),
            total_price=round(sum(line.price * line.quantity for line in self._lines), 2),
        )

    # ---------------------- mutations ----------------------

    def add(self, product: dict, quantity: int = 1) -> None:
        if int(product.get("stock", 0)) <= 0 or quantity < 1:
            return
        line = self.find(product_key(product))
        if line is not None:
            line.quantity += quantity
        else:
            self._lines.append(CartLine(product=dict(product), quantity=quantity))
        self._commit()

    def set_quantity(self, product_id: str, quantity: int) -> None:
        line = self.find(product_id)
        if line is None:
            return
        if quantity <= 0 or line.stock <= 0:
            self._lines.remove(line)
        else:
            line.quantity = max(1, min(quantity, line.stock))
        self._commit()

    def remove(self, product_id: str) -> None:
        self._lines = [line for line in self._lines if line.product_id != product_id]
        self._commit()

    def clear(self) -> None:
        self._lines = []
        self.storage.remove_item(self.key)
        self._notify()

    # ---------------------- persistence & notification ----------------------

    def subscribe(self, callback: Callable[["CartStore"], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _commit(self) -> None:
        payload = [line.model_dump() for line in self._lines]
        self.storage.set_item(self.key, json.dumps(payload, ensure_ascii=False))
        self._notify()

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            callback(self)
