from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session
from core.config import settings
from models.inventory_changes import InventoryChange
from models.orders import Order
from repositories import ProductRepository, DeliveryRepository
from utils.payment_status import DeliveryStatus
from utils.references import get_estimated_delivery_date
from utils.logger import get_logger

logger = get_logger(__name__)


class FulfillmentService:
    """
    Side effects of an approved payment: stock leaves the shelf and the
    delivery gets scheduled.

    Nothing here commits. Callers run apply_approval inside the same unit
    of work as the status write that decided approval happened, and call it
    at most once per order.
    """

    @staticmethod
    def decrement_stock(db: Session, items: List[Dict[str, Any]], order_id: Optional[int] = None) -> Dict[int, int]:
        """
        Returns {product_id: units_removed}. Unknown products are skipped;
        stock never goes below 0.
        """
        removed = {}
        for item in items or []:
            product_id = item.get("product_id")
            quantity = int(item.get("quantity", 0))
            if product_id is None or quantity <= 0:
                continue

            units = ProductRepository.decrement_stock(db, product_id, quantity)
            if units is None:
                logger.warning(
                    "Stock decrement skipped - product not found",
                    extra={"product_id": product_id, "order_id": order_id}
                )
                continue

            if units < quantity:
                logger.warning(
                    "Stock exhausted while fulfilling order",
                    extra={"product_id": product_id, "requested": quantity,
                           "removed": units, "order_id": order_id}
                )

            db.add(InventoryChange(
                product_id=product_id,
                order_id=order_id,
                change_amount=units,
                requested_amount=quantity,
                reason="decrement"
            ))
            removed[product_id] = units

        db.flush()
        return removed

    @staticmethod
    def assign_delivery(db: Session, delivery_id: Optional[int], now: Optional[datetime] = None):
        if delivery_id is None:
            return None

        delivery = DeliveryRepository.find_by_id(db, delivery_id)
        if delivery is None:
            logger.warning("Delivery not found for approved order", extra={"delivery_id": delivery_id})
            return None

        return DeliveryRepository.update_status(
            db, delivery,
            DeliveryStatus.ASSIGNED.value,
            estimated_delivery_date=get_estimated_delivery_date(settings.DELIVERY_ESTIMATE_DAYS, now)
        )

    @staticmethod
    def apply_approval(db: Session, order: Order) -> Dict[int, int]:
        removed = FulfillmentService.decrement_stock(db, order.items, order_id=order.id)
        FulfillmentService.assign_delivery(db, order.delivery_id)

        logger.info(
            "Approval side effects applied",
            extra={"order_id": order.id, "reference": order.reference, "stock_removed": removed}
        )
        return removed
