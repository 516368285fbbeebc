from .cart_service import CartService
from .enrollment_service import EnrollmentService
from .inventory_service import InventoryService
from .order_service import OrderService
from .payment_gateway import PaymentGateway, StripeGateway
from .payment_service import PaymentService

__all__ = [
    "CartService",
    "EnrollmentService",
    "InventoryService",
    "OrderService",
    "PaymentGateway",
    "StripeGateway",
    "PaymentService",
]
