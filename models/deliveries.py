from core.database import Base
from sqlalchemy import (Column, Integer, String, Text, Enum, DateTime)
from sqlalchemy.orm import relationship
from utils.payment_status import DELIVERY_STATUSES, DeliveryStatus
from .mixins import CreatedAtMixin, UpdatedAtMixin

class Delivery(Base, CreatedAtMixin, UpdatedAtMixin):
    __tablename__ = "deliveries"

    #pk
    id = Column(Integer, primary_key=True, index=True)

    #relationships
    order = relationship("Order", back_populates="delivery", uselist=False)

    address_line_1 = Column(String, nullable=False)
    address_line_2 = Column(String)
    city = Column(String, nullable=False)
    region = Column(String)
    country = Column(String, nullable=False, default="CO")
    postal_code = Column(String)
    phone_number = Column(String)
    delivery_notes = Column(Text)
    status = Column(Enum(*DELIVERY_STATUSES, name="delivery_status"),
                    default=DeliveryStatus.PENDING.value, nullable=False, index=True)
    # set only once a payment is approved
    estimated_delivery_date = Column(DateTime(timezone=True), nullable=True)
