import json
from typing import List, Optional, Tuple, Union

from db.models import CartItem, Product
from db.platform import KeyValueStore
from utils.config import CART_STORAGE_KEY
from utils.logger import get_logger
from utils.subscription import Listeners, Subscription

_logger = get_logger(__name__)


class CartStore:
    """
    Shopping cart of one-of-a-kind items, persisted in the key-value store.

    - items are unique by id, there is no quantity
    - every effective mutation writes the whole cart once, after the change
    - a cart that cannot be written keeps working in memory only
    """

    def __init__(self, storage: KeyValueStore, key: str = CART_STORAGE_KEY) -> None:
        self._storage = storage
        self._key = key
        self._durable = True
        self._items: List[CartItem] = self._load()
        self._listeners: Listeners["CartStore"] = Listeners()

        self.is_open = False

    def _load(self) -> List[CartItem]:
        try:
            blob = self._storage.get(self._key)
        except OSError as exc:
            _logger.warning(f"Could not read saved cart: {exc}")
            return []
        if not blob:
            return []
        try:
            raw = json.loads(blob)
            if not isinstance(raw, list):
                raise ValueError("saved cart is not a list")
            items: List[CartItem] = []
            for entry in raw:
                if not isinstance(entry, dict):
                    raise ValueError(f"saved cart entry is not an object: {entry!r}")
                item = CartItem.from_dict(entry)
                if all(i.id != item.id for i in items):
                    items.append(item)
            return items
        except (ValueError, RecursionError) as exc:
            # RecursionError: nesting too deep for the json decoder
            _logger.warning(f"Discarding malformed saved cart: {exc}")
            return []

    def _persist(self) -> None:
        if not self._durable:
            return
        blob = json.dumps([item.to_dict() for item in self._items])
        try:
            self._storage.set(self._key, blob)
        except OSError as exc:
            self._durable = False
            _logger.warning(f"Cart persistence failed, keeping cart in memory: {exc}")

    def _changed(self) -> None:
        self._persist()
        self._listeners.notify(self)

    # ---------------------------
    # Reads
    # ---------------------------

    @property
    def items(self) -> Tuple[CartItem, ...]:
        return tuple(self._items)

    @property
    def durable(self) -> bool:
        return self._durable

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        return any(item.id == item_id for item in self._items)

    def get(self, item_id: str) -> Optional[CartItem]:
        for item in self._items:
            if item.id == item_id:
                return item
        return None

    def total(self) -> int:
        return sum(item.price for item in self._items)

    def subscribe(self, listener) -> Subscription:
        return self._listeners.add(listener)

    # ---------------------------
    # Mutations
    # ---------------------------

    def add_item(self, item: Union[CartItem, Product]) -> None:
        if isinstance(item, Product):
            item = CartItem.from_product(item)
        if item.id in self:
            return
        self._items.append(item)
        self._changed()

    def remove_item(self, item_id: str) -> None:
        remaining = [item for item in self._items if item.id != item_id]
        if len(remaining) == len(self._items):
            return
        self._items = remaining
        self._changed()

    def clear(self) -> None:
        self._items = []
        self._changed()

    def toggle_visibility(self) -> bool:
        self.is_open = not self.is_open
        self._listeners.notify(self)
        return self.is_open
