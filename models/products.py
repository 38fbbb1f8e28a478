from core.database import Base
from sqlalchemy import (Column, Integer, String, Numeric, CheckConstraint)
from sqlalchemy.orm import relationship
from .mixins import CreatedAtMixin, UpdatedAtMixin

class Product(Base, CreatedAtMixin, UpdatedAtMixin):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
    )

    #pk
    id = Column(Integer, primary_key=True, index=True)

    #relationships
    inventory_changes = relationship("InventoryChange", back_populates="product")

    name = Column(String, nullable=False)
    description = Column(String)
    # authoritative unit price, whole currency units (e.g. 30000.00 COP)
    price = Column(Numeric(12, 2), nullable=False)
    image_url = Column(String)
    stock = Column(Integer, nullable=False, default=0)
