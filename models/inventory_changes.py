from core.database import Base
from sqlalchemy import (Column, Integer, ForeignKey, Enum)
from sqlalchemy.orm import relationship
from .mixins import CreatedAtMixin

class InventoryChange(Base, CreatedAtMixin):
    """Audit row written for every stock movement caused by a payment."""
    __tablename__ = "inventory_changes"

    #pk
    id = Column(Integer, primary_key=True, index=True)

    #fk
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)

    #relationships
    product = relationship("Product", back_populates="inventory_changes")

    # actual units removed, which can be less than requested when stock ran out
    change_amount = Column(Integer, nullable=False)
    requested_amount = Column(Integer, nullable=False)
    reason = Column(Enum("increment", "decrement", name="reason"), nullable=False)
