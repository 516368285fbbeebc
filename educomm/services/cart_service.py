from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session, joinedload

from educomm.models import Cart, CartItem, Kit
from educomm.services.results import OutcomeKind, ServiceResult


class CartService:
    """Database-backed cart: one cart per user, one line per kit."""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def get_cart(self, user_id: int) -> Optional[Cart]:
        return (
            self.db.query(Cart)
            .options(joinedload(Cart.items).joinedload(CartItem.kit))
            .filter_by(user_id=user_id)
            .first()
        )

    def get_or_create_cart(self, user_id: int) -> Cart:
        cart = self.db.query(Cart).filter_by(user_id=user_id).first()
        if not cart:
            cart = Cart(user_id=user_id)
            self.db.add(cart)
            self.db.flush()
        return cart

    def add_item(self, user_id: int, kit_id: int, quantity: int = 1) -> ServiceResult:
        """Add a kit to the user's cart, merging with an existing line for the same kit."""
        if quantity is None or quantity < 1:
            return ServiceResult.failure(OutcomeKind.INVALID_REQUEST, "Quantity must be at least 1.")

        kit = self.db.query(Kit).filter_by(kit_id=kit_id).first()
        if not kit or not kit.is_active:
            return ServiceResult.failure(OutcomeKind.KIT_NOT_FOUND, "Kit not found.")

        try:
            cart = self.get_or_create_cart(user_id)
            existing_item = (
                self.db.query(CartItem)
                .filter_by(cart_id=cart.cart_id, kit_id=kit_id)
                .first()
            )
            if existing_item:
                existing_item.quantity += quantity
            else:
                self.db.add(
                    CartItem(
                        cart_id=cart.cart_id,
                        kit_id=kit_id,
                        quantity=quantity,
                        added_at=datetime.now(timezone.utc),
                    )
                )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.logger.info("Added kit %d x%d to cart of user %d", kit_id, quantity, user_id)
        return ServiceResult.completed("Item added to cart.", cart=self.cart_view(user_id))

    def remove_item(self, user_id: int, cart_item_id: int) -> ServiceResult:
        item = (
            self.db.query(CartItem)
            .join(Cart, Cart.cart_id == CartItem.cart_id)
            .filter(Cart.user_id == user_id, CartItem.cart_item_id == cart_item_id)
            .first()
        )
        if not item:
            return ServiceResult.failure(OutcomeKind.CART_ITEM_NOT_FOUND, "Item not found.")

        self.db.delete(item)
        self.db.commit()
        return ServiceResult.completed("Item removed.", cart=self.cart_view(user_id))

    def clear(self, user_id: int) -> int:
        """Delete every line of the user's cart without committing; returns the number removed."""
        cart = self.db.query(Cart).filter_by(user_id=user_id).first()
        if not cart:
            return 0
        removed = (
            self.db.query(CartItem)
            .filter_by(cart_id=cart.cart_id)
            .delete(synchronize_session=False)
        )
        self.db.expire(cart, ["items"])
        return removed

    def consume_lines(self, cart: Cart, cart_items) -> int:
        """Delete exactly the given lines of the cart without committing; returns the number removed."""
        line_ids = [item.cart_item_id for item in cart_items]
        if not line_ids:
            return 0
        removed = (
            self.db.query(CartItem)
            .filter(CartItem.cart_id == cart.cart_id, CartItem.cart_item_id.in_(line_ids))
            .delete(synchronize_session=False)
        )
        if cart in self.db:
            self.db.expire(cart, ["items"])
        return removed

    def cart_view(self, user_id: int) -> Dict[str, Any]:
        cart = self.get_cart(user_id)
        if not cart:
            return {"cartId": None, "items": [], "total": 0.0}

        items = []
        total = Decimal("0.00")
        for item in cart.items:
            line_total = item.kit.line_total(item.quantity)
            total += line_total
            items.append({
                "cartItemId": item.cart_item_id,
                "kitId": item.kit_id,
                "name": item.kit.name,
                "unitPrice": float(item.kit.price),
                "quantity": item.quantity,
                "lineTotal": float(line_total),
                "availableStock": item.kit.stock_quantity,
                "addedAt": item.added_at.isoformat() if item.added_at else None,
            })
        return {"cartId": cart.cart_id, "items": items, "total": float(total)}
