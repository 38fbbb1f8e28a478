from core.database import Base
from sqlalchemy.orm import relationship
from sqlalchemy import (Column, Integer, String, ForeignKey, Enum, JSON)
from utils.payment_status import ORDER_STATUSES, PAYABLE_ORDER_STATUSES, OrderStatus
from .mixins import CreatedAtMixin, UpdatedAtMixin

class Order(Base, CreatedAtMixin, UpdatedAtMixin):
    __tablename__ = "orders"

    #pk
    id = Column(Integer, primary_key=True, index=True)

    #fk
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    delivery_id = Column(Integer, ForeignKey("deliveries.id", ondelete="SET NULL"), nullable=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id", ondelete="SET NULL"), nullable=True, index=True)

    #relationships
    customer = relationship("Customer", back_populates="orders")
    delivery = relationship("Delivery", back_populates="order")
    transaction = relationship("Transaction")

    reference = Column(String, unique=True, nullable=False, index=True)
    amount_in_cents = Column(Integer, nullable=False)
    currency = Column(String, nullable=False, default="COP")
    status = Column(Enum(*ORDER_STATUSES, name="order_status"),
                    default=OrderStatus.PENDING.value, nullable=False, index=True)
    # [{"product_id": int, "quantity": int}, ...], immutable after creation
    items = Column(JSON, nullable=False)

    @property
    def accepts_payment(self) -> bool:
        return self.status in PAYABLE_ORDER_STATUSES
