from __future__ import annotations

import logging
from typing import Iterable, List

from sqlalchemy import update
from sqlalchemy.orm import Session

from educomm.models import CartItem, Kit
from educomm.observability import increment_counter, record_event
from educomm.services.results import InsufficientStockError


def insufficient_stock_message(kit_name: str, requested: int, available: int) -> str:
    return f"Not enough stock for {kit_name} (requested {requested}, available {available})."


class InventoryService:
    """
    Encapsulates kit stock decrements triggered by checkout and payment reconciliation.

    Stock is only ever decremented through a single conditional UPDATE so two
    concurrent purchases of the last unit cannot both succeed.
    """

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def find_shortages(self, cart_items: Iterable[CartItem]) -> List[str]:
        """Return one message per cart line whose kit cannot cover the requested quantity."""
        messages = []
        for item in cart_items:
            kit = item.kit
            available = kit.stock_quantity if kit is not None else 0
            if kit is None or available < item.quantity:
                name = kit.name if kit is not None else f"kit {item.kit_id}"
                messages.append(insufficient_stock_message(name, item.quantity, available))
        return messages

    def reserve(self, kit_id: int, quantity: int, reason: str = "sale") -> bool:
        """
        Decrement stock for a kit only if enough units remain.

        Args:
            kit_id: The kit to update
            quantity: Units to take
            reason: Reason for the decrement (checkout, reconciliation, ...)

        Returns:
            True when the row was updated, False when stock was insufficient
        """
        if quantity <= 0:
            raise ValueError("Quantity to reserve must be positive")

        result = self.db.execute(
            update(Kit)
            .where(Kit.kit_id == kit_id, Kit.stock_quantity >= quantity)
            .values(stock_quantity=Kit.stock_quantity - quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            increment_counter("stock_reservations_rejected_total", labels={"reason": reason})
            self.logger.warning(
                "Stock reservation rejected for kit %d (requested %d, %s)",
                kit_id,
                quantity,
                reason,
            )
            return False

        record_event(
            "inventory_updated",
            {"kit_id": kit_id, "delta": -quantity, "reason": reason},
        )
        return True

    def reserve_cart(self, cart_items: Iterable[CartItem], reason: str = "sale") -> None:
        """Reserve every cart line or raise InsufficientStockError; the caller rolls back."""
        reserved = []
        for item in cart_items:
            if not self.reserve(item.kit_id, item.quantity, reason=reason):
                # Re-read the row so the message reports what actually remains
                self.db.expire(item.kit)
                available = item.kit.stock_quantity if item.kit is not None else 0
                name = item.kit.name if item.kit is not None else f"kit {item.kit_id}"
                raise InsufficientStockError(
                    [insufficient_stock_message(name, item.quantity, available)]
                )
            reserved.append((item.kit_id, item.quantity))

        if reserved:
            self.logger.info(
                "Stock reserved for %d kit(s)",
                len(reserved),
                extra={"adjustments": reserved},
            )
