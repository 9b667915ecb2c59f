import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import Field

from errors import ValidationFailed
from schemas import OrderItem

logger = logging.getLogger(__name__)


class CartItem(OrderItem):
    """An order line before submission; ``id`` identifies the line, not the menu item."""
    id: str = Field(default_factory=lambda: uuid4().hex)


class Cart:
    """
    Order being assembled at one POS terminal.

    Owned by whoever created it; nothing here is shared between terminals.
    """

    def __init__(self):
        self.items: List[CartItem] = []
        self.table: Optional[Dict[str, Any]] = None

    def select_table(self, table: Optional[Dict[str, Any]]) -> None:
        self.table = table

    def add_item(self, item: CartItem) -> CartItem:
        for existing in self.items:
            if (existing.menu_item_id == item.menu_item_id
                    and existing.variants == item.variants
                    and existing.addons == item.addons):
                existing.quantity += item.quantity
                return existing
        self.items.append(item)
        return item

    def remove_item(self, line_id: str) -> None:
        self.items = [i for i in self.items if i.id != line_id]

    def update_quantity(self, line_id: str, quantity: int) -> None:
        if quantity < 1:
            self.remove_item(line_id)
            return
        for item in self.items:
            if item.id == line_id:
                item.quantity = quantity

    def clear(self) -> None:
        self.items = []
        self.table = None

    def total(self) -> float:
        return round(sum(i.price * i.quantity for i in self.items), 2)

    def to_order_items(self) -> List[OrderItem]:
        return [OrderItem(**i.model_dump(exclude={"id"})) for i in self.items]

    def submit(self, coordinator, notes: Optional[str] = None, waiter_id: Optional[str] = None) -> str:
        """Send the cart to the kitchen; cleared only once the order exists."""
        if not self.table:
            raise ValidationFailed("Please select a table first")
        if not self.items:
            raise ValidationFailed("Cart is empty")
        order_id = coordinator.create_order(
            self.table["id"], self.to_order_items(), self.total(), notes=notes, waiter_id=waiter_id
        )
        logger.debug("Cart submitted as order %s", order_id)
        self.clear()
        return order_id
