from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Session
from models.deliveries import Delivery
from utils.payment_status import DeliveryStatus


class DeliveryRepository:

    @staticmethod
    def find_by_id(db: Session, delivery_id: int) -> Delivery | None:
        return db.get(Delivery, delivery_id)

    @staticmethod
    def create(db: Session, **fields) -> Delivery:
        fields.setdefault("status", DeliveryStatus.PENDING.value)
        fields.setdefault("country", "CO")
        delivery = Delivery(**fields)
        db.add(delivery)
        db.flush()
        return delivery

    @staticmethod
    def update_status(db: Session, delivery: Delivery, status: str,
                      estimated_delivery_date: Optional[datetime] = None) -> Delivery:
        delivery.status = status
        if estimated_delivery_date is not None:
            delivery.estimated_delivery_date = estimated_delivery_date
        db.flush()
        return delivery
