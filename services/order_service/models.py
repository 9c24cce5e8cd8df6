import enum

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from shared.config.database import Base


class OrderStatus(str, enum.Enum):
    PENDING = "Pending"
    PAID = "Paid"
    FAILED = "Failed"
    SHIPPED = "Shipped"

    def can_transition_to(self, new_status: "OrderStatus") -> bool:
        return new_status in ALLOWED_TRANSITIONS[self]


ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PAID, OrderStatus.FAILED},
    OrderStatus.PAID: {OrderStatus.SHIPPED},
    OrderStatus.FAILED: set(),
    OrderStatus.SHIPPED: set(),
}


class Order(Base):
    __tablename__ = "orders"

    order_id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, nullable=False, index=True)
    tax_id = Column(Integer, nullable=False)
    shipping_id = Column(Integer, nullable=False)
    # Originating cart id; unique so a cart can turn into at most one order.
    reference = Column(String(50), nullable=False, unique=True)
    auth_code = Column(String(100), nullable=False)
    total_amount = Column(Integer, nullable=False) # cents
    status = Column(
        Enum(OrderStatus, name="order_status", values_callable=lambda e: [s.value for s in e]),
        nullable=False,
        default=OrderStatus.PENDING,
    )
    created_on = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    shipped_on = Column(DateTime(timezone=True), nullable=True)

    lines = relationship(
        "OrderLine",
        back_populates="order",
        lazy="selectin",
        order_by="OrderLine.item_id",
        cascade="all, delete-orphan",
    )


class OrderLine(Base):
    __tablename__ = "order_detail"

    item_id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.order_id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False)
    attributes = Column(String(1000), nullable=False, default="")
    # Snapshots taken at commit time; never re-read from the catalog.
    product_name = Column(String(100), nullable=False)
    unit_cost = Column(Integer, nullable=False) # cents
    quantity = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="lines")

    @property
    def subtotal(self) -> int:
        return self.quantity * self.unit_cost
