from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from core.config import settings
from core.errors import ValidationError, NotFound, ServerError
from models.orders import Order
from repositories import CustomerRepository, DeliveryRepository, OrderRepository
from schemas.checkout_schemas import CreateOrderRequest
from services.price_service import PriceValidator
from utils.payment_status import OrderStatus
from utils.references import generate_order_reference
from utils.result import Success, Failure, Result
from utils.logger import get_logger, log_failure

logger = get_logger(__name__)

REQUIRED_FIELDS = ("customer_email", "customer_name", "items", "amount_in_cents")


@dataclass
class OrderCreated:
    order_id: int
    reference: str
    customer_id: int
    delivery_id: Optional[int]
    amount_in_cents: int
    currency: str
    status: str
    items: List[Dict[str, Any]]
    price_breakdown: Dict[str, int] = field(default_factory=dict)


class OrderService:
    """
    Order assembly pipeline.

    Flow (each step short-circuits on failure):
    1. Check required fields
    2. Recompute and verify the total against current prices
    3. Upsert the customer by email
    4. Create the delivery when a shipping address was sent
    5. Create the order with a fresh reference, status pending

    Every write step commits on its own. A failure in a later step does
    not undo an earlier one; the customer upsert is idempotent and a
    dangling pending delivery is left for ops to clean up.
    """

    def __init__(self, price_validator: PriceValidator | None = None):
        self.price_validator = price_validator or PriceValidator()

    def create_order(self, db: Session, request: CreateOrderRequest) -> Result:
        result = (
            self._validate_required_fields(request)
            .bind(lambda data: self._validate_prices(db, data))
            .bind(lambda data: self._create_or_update_customer(db, data))
            .bind(lambda data: self._create_delivery_if_needed(db, data))
            .bind(lambda data: self._create_order_record(db, data))
        )

        if result.is_failure:
            log_failure(logger, "Order creation failed", result.error,
                        customer_email=request.customer_email)
        else:
            logger.info(
                "Order created",
                extra={
                    "reference": result.value.reference,
                    "order_id": result.value.order_id,
                    "amount_in_cents": result.value.amount_in_cents
                }
            )
        return result

    def _validate_required_fields(self, request: CreateOrderRequest) -> Result:
        missing = [name for name in REQUIRED_FIELDS if getattr(request, name) in (None, [])]
        if missing:
            return Failure(ValidationError("Missing required fields", details={"missing": missing}))

        return Success({
            "request": request,
            "items": [item.model_dump() for item in request.items],
            "currency": request.currency or settings.DEFAULT_CURRENCY,
        })

    def _validate_prices(self, db: Session, data: Dict[str, Any]) -> Result:
        request = data["request"]
        return self.price_validator.validate(db, data["items"], request.amount_in_cents).map(
            # the client amount is dropped here, only the server total moves on
            lambda breakdown: {
                **data,
                "amount_in_cents": breakdown.total_cents,
                "price_breakdown": breakdown.to_dict(),
            }
        )

    def _create_or_update_customer(self, db: Session, data: Dict[str, Any]) -> Result:
        request = data["request"]
        try:
            customer = CustomerRepository.create_or_update_by_email(
                db,
                email=request.customer_email,
                full_name=request.customer_name,
                phone_number=request.customer_phone
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            return Failure(ServerError("upsert_customer", f"Failed to create/update customer: {e}"))

        return Success({**data, "customer_id": customer.id})

    def _create_delivery_if_needed(self, db: Session, data: Dict[str, Any]) -> Result:
        request = data["request"]
        address = request.shipping_address
        if address is None:
            return Success({**data, "delivery_id": None})

        try:
            delivery = DeliveryRepository.create(
                db,
                address_line_1=address.address_line_1,
                address_line_2=address.address_line_2,
                city=address.city,
                region=address.region,
                country=address.country or "CO",
                postal_code=address.postal_code,
                phone_number=address.phone_number or request.customer_phone,
                delivery_notes=address.notes
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            return Failure(ServerError("create_delivery", f"Failed to create delivery: {e}"))

        return Success({**data, "delivery_id": delivery.id})

    def _create_order_record(self, db: Session, data: Dict[str, Any]) -> Result:
        try:
            order = OrderRepository.create(
                db,
                reference=generate_order_reference(),
                customer_id=data["customer_id"],
                delivery_id=data["delivery_id"],
                amount_in_cents=data["amount_in_cents"],
                currency=data["currency"],
                items=data["items"],
                status=OrderStatus.PENDING.value
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            return Failure(ServerError("create_order", f"Failed to create order: {e}"))

        return Success(OrderCreated(
            order_id=order.id,
            reference=order.reference,
            customer_id=order.customer_id,
            delivery_id=order.delivery_id,
            amount_in_cents=order.amount_in_cents,
            currency=order.currency,
            status=order.status,
            items=order.items,
            price_breakdown=data["price_breakdown"]
        ))

    @staticmethod
    def get_order_details(db: Session, reference: str) -> Result:
        """Flattened Order + Customer + Transaction + Delivery view."""
        if not reference or not reference.strip():
            return Failure(ValidationError("Reference is required"))

        try:
            order = OrderRepository.find_with_details(db, reference)
        except SQLAlchemyError as e:
            return Failure(ServerError("find_order", f"Failed to retrieve order: {e}"))

        if order is None:
            return Failure(NotFound("Order not found", details={"reference": reference}))

        return Success(format_order_details(order))


def format_order_details(order: Order) -> Dict[str, Any]:
    # absent relations are left out entirely, never emitted as null
    details = {
        "id": order.id,
        "reference": order.reference,
        "amount_in_cents": order.amount_in_cents,
        "currency": order.currency,
        "status": order.status,
        "items": order.items,
        "created_at": order.created_at.isoformat() if order.created_at else None,
        "updated_at": order.updated_at.isoformat() if order.updated_at else None,
    }

    customer = order.customer
    if customer:
        details["customer_email"] = customer.email
        details["customer_name"] = customer.full_name
        if customer.phone_number:
            details["customer_phone"] = customer.phone_number

    transaction = order.transaction
    if transaction:
        details["transaction_status"] = transaction.status
        if transaction.wompi_transaction_id:
            details["wompi_transaction_id"] = transaction.wompi_transaction_id

    delivery = order.delivery
    if delivery:
        details["shipping_address"] = {
            key: value for key, value in {
                "address_line_1": delivery.address_line_1,
                "address_line_2": delivery.address_line_2,
                "city": delivery.city,
                "region": delivery.region,
                "country": delivery.country,
                "postal_code": delivery.postal_code,
            }.items() if value is not None
        }
        details["delivery_status"] = delivery.status
        if delivery.estimated_delivery_date:
            details["estimated_delivery_date"] = delivery.estimated_delivery_date.isoformat()

    return details
