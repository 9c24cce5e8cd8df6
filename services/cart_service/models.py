from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.sql import func

from shared.config.database import Base


class CartLine(Base):
    __tablename__ = "shopping_cart"
    __table_args__ = (CheckConstraint("quantity > 0", name="ck_shopping_cart_quantity_positive"),)

    item_id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(String(50), nullable=False, index=True) # client-held UUID string
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    attributes = Column(String(1000), nullable=False, default="")
    quantity = Column(Integer, nullable=False)
    added_on = Column(DateTime(timezone=True), server_default=func.now())
