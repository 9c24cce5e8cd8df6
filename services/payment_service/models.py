from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.sql import func

from shared.config.database import Base


class Payment(Base):
    """One row per capture attempt that reached the gateway."""

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.order_id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False) # gateway minor units
    currency = Column(String(3), nullable=False)
    status = Column(String(20), nullable=False) # succeeded, failed
    transaction_id = Column(String(255), nullable=True)
    error_code = Column(String(50), nullable=True)
    created_on = Column(DateTime(timezone=True), server_default=func.now())
