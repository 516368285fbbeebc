# educomm/models.py
from enum import Enum
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    DateTime,
    ForeignKey,
    Boolean,
    Text,
    CheckConstraint,
    UniqueConstraint,
    Enum as SAEnum,
)
from sqlalchemy.orm import relationship

# Use a single, shared Base for all models
from educomm.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class UserRole(str, Enum):
    CUSTOMER = "Customer"
    ADMIN = "Admin"


class OrderStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class User(Base):
    __tablename__ = 'users'
    user_id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False)
    first_name = Column(String(100), nullable=False, default="")
    last_name = Column(String(100), nullable=False, default="")
    role = Column(
        SAEnum(UserRole, name="user_role", native_enum=False, validate_strings=True, values_callable=_enum_values),
        default=UserRole.CUSTOMER,
        nullable=False,
    )
    created_at = Column(DateTime, default=_utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class Course(Base):
    __tablename__ = 'courses'
    course_id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    description = Column(Text)
    is_active = Column(Boolean, default=True, nullable=False)


class Kit(Base):
    __tablename__ = 'kits'
    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_kits_stock_non_negative"),
    )

    kit_id = Column(Integer, primary_key=True, autoincrement=True)
    course_id = Column(Integer, ForeignKey('courses.course_id'), nullable=True)
    name = Column(String(200), nullable=False)
    description = Column(Text)
    sku = Column(String(64))
    price = Column(Numeric(18, 2), nullable=False)
    stock_quantity = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True, nullable=False)

    def line_total(self, quantity: int) -> Decimal:
        return Decimal(self.price) * quantity


class Cart(Base):
    __tablename__ = 'carts'
    cart_id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.user_id'), nullable=False, unique=True)
    items = relationship(
        "CartItem",
        cascade="all, delete-orphan",
        order_by="CartItem.cart_item_id",
    )

    @property
    def is_empty(self) -> bool:
        return not self.items

    def total(self) -> Decimal:
        return sum((item.kit.line_total(item.quantity) for item in self.items), Decimal("0.00"))


class CartItem(Base):
    __tablename__ = 'cart_items'
    __table_args__ = (
        UniqueConstraint("cart_id", "kit_id", name="uq_cart_items_cart_kit"),
        CheckConstraint("quantity >= 1", name="ck_cart_items_quantity_positive"),
    )

    cart_item_id = Column(Integer, primary_key=True, autoincrement=True)
    cart_id = Column(Integer, ForeignKey('carts.cart_id', ondelete="CASCADE"), nullable=False)
    kit_id = Column(Integer, ForeignKey('kits.kit_id'), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    added_at = Column(DateTime, default=_utcnow)
    kit = relationship("Kit")


class Order(Base):
    __tablename__ = 'orders'
    order_id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.user_id'), nullable=False)
    order_date = Column(DateTime, default=_utcnow, nullable=False)
    total_amount = Column(Numeric(18, 2), nullable=False)
    status = Column(
        SAEnum(OrderStatus, name="order_status", native_enum=False, validate_strings=True, values_callable=_enum_values),
        default=OrderStatus.PENDING,
        nullable=False,
    )
    shipping_address = Column(Text, nullable=False)
    # External checkout session that paid for this order; the idempotency key for reconciliation
    payment_session_id = Column(String(255), unique=True, nullable=True)
    items = relationship(
        "OrderItem",
        cascade="all, delete-orphan",
        order_by="OrderItem.order_item_id",
    )


class OrderItem(Base):
    __tablename__ = 'order_items'
    order_item_id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey('orders.order_id', ondelete="CASCADE"), nullable=False)
    kit_id = Column(Integer, ForeignKey('kits.kit_id'), nullable=False)
    quantity = Column(Integer, nullable=False)
    price_at_purchase = Column(Numeric(18, 2), nullable=False)
    kit = relationship("Kit")

    @property
    def line_total(self) -> Decimal:
        return Decimal(self.price_at_purchase) * self.quantity


class Enrollment(Base):
    __tablename__ = 'enrollments'
    __table_args__ = (
        UniqueConstraint("user_id", "course_id", name="uq_enrollments_user_course"),
    )

    enrollment_id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.user_id'), nullable=False)
    course_id = Column(Integer, ForeignKey('courses.course_id'), nullable=False)
    enrolled_at = Column(DateTime, default=_utcnow)
    is_completed = Column(Boolean, default=False, nullable=False)
    progress_percentage = Column(Integer, default=0, nullable=False)
