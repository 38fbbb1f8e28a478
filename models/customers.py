from core.database import Base
from sqlalchemy import (Column, Integer, String)
from sqlalchemy.orm import relationship
from .mixins import CreatedAtMixin, UpdatedAtMixin

class Customer(Base, CreatedAtMixin, UpdatedAtMixin):
    __tablename__ = "customers"

    #pk
    id = Column(Integer, primary_key=True, index=True)

    #relationships
    orders = relationship("Order", back_populates="customer")

    # natural key for upserts
    email = Column(String, unique=True, nullable=False, index=True)
    full_name = Column(String, nullable=False)
    phone_number = Column(String)
