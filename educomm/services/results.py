from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from educomm.models import Order


class OutcomeKind(str, Enum):
    COMPLETED = "completed"
    NOT_COMPLETED = "not_completed"
    ALREADY_PROCESSED = "already_processed"
    EMPTY_CART = "empty_cart"
    INSUFFICIENT_STOCK = "insufficient_stock"
    MISSING_USER_ID = "missing_user_id"
    INVALID_REQUEST = "invalid_request"
    KIT_NOT_FOUND = "kit_not_found"
    CART_ITEM_NOT_FOUND = "cart_item_not_found"
    SESSION_NOT_FOUND = "session_not_found"
    GATEWAY_ERROR = "gateway_error"
    PROCESSING_ERROR = "processing_error"


# Outcomes that are not failures from the caller's point of view
_NON_ERROR_KINDS = frozenset(
    {OutcomeKind.COMPLETED, OutcomeKind.NOT_COMPLETED, OutcomeKind.ALREADY_PROCESSED}
)


@dataclass(frozen=True)
class ServiceResult:
    """Outcome of a checkout, cart or payment operation."""

    kind: OutcomeKind
    message: str = ""
    order: Optional[Order] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.kind in _NON_ERROR_KINDS

    @classmethod
    def completed(cls, message: str = "", order: Optional[Order] = None, **data: Any) -> "ServiceResult":
        return cls(OutcomeKind.COMPLETED, message, order, data)

    @classmethod
    def failure(cls, kind: OutcomeKind, message: str, **data: Any) -> "ServiceResult":
        return cls(kind, message, None, data)


class InsufficientStockError(Exception):
    """Raised inside a checkout transaction when a kit cannot cover the requested quantity."""

    def __init__(self, messages):
        self.messages = list(messages)
        super().__init__(" ".join(self.messages))


class CartConsumedError(Exception):
    """Raised when the cart lines read for an order were already consumed by another transaction."""
