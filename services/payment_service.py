from dataclasses import dataclass, field
from functools import partial
from typing import Any, Dict, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from core.errors import ValidationError, NotFound, PaymentFailed, ServerError, GatewayUnavailable
from models.orders import Order
from models.transactions import Transaction
from repositories import OrderRepository, TransactionRepository
from schemas.checkout_schemas import PaymentMethod, ProcessPaymentRequest
from services.fulfillment_service import FulfillmentService
from services.wompi_gateway import (PaymentGateway, ChargeRequest, GatewayResponse,
                                    GatewayTimeout, GatewayTransportError)
from utils.payment_status import GatewayStatus, OrderStatus, PAYABLE_ORDER_STATUSES, map_gateway_status
from utils.result import Success, Failure, Result
from utils.logger import get_logger, log_failure, sanitize_log_data

logger = get_logger(__name__)

MALFORMED_ERROR_TYPES = {"parse_error", "malformed_response"}


@dataclass
class PaymentContext:
    """State threaded through the payment steps; each step fills in more."""
    reference: str
    payment_method: PaymentMethod
    redirect_url: Optional[str] = None
    order: Optional[Order] = None
    order_id: Optional[int] = None
    # status the order had before this attempt claimed it
    previous_status: Optional[str] = None
    claimed: bool = False
    acceptance_token: Optional[str] = None
    charge: Optional[ChargeRequest] = None
    gateway_data: Optional[Dict[str, Any]] = None
    transaction: Optional[Transaction] = None
    order_status: Optional[OrderStatus] = None
    stock_removed: Dict[int, int] = field(default_factory=dict)


@dataclass
class PaymentOutcome:
    order_id: int
    reference: str
    order_status: str
    transaction_id: int
    wompi_transaction_id: Optional[str]
    transaction_status: str
    gateway_data: Dict[str, Any]
    stock_removed: Dict[int, int]


class PaymentService:
    """
    Drives one order through a charge attempt.

    Steps (the first failure stops the rest):
    1. find_order        - order with customer/delivery, claimed for this attempt
    2. acceptance_token  - gateway acceptance token
    3. prepare_params    - charge request for the payment method
    4. create_charge     - submit to the gateway
    5. record_transaction
    6. update_order      - gateway status mapped onto the order
    7. apply_approval    - stock and delivery, only when APPROVED

    The claim in step 1 is a conditional UPDATE to `processing`, so of two
    concurrent attempts on one order only one reaches the gateway. If the
    attempt stops before the gateway accepted a charge, the order goes back
    to the status it had.

    Steps 5-7 share one database transaction. A callback for this charge
    that arrives before it commits finds no transaction and is redelivered
    later, by which time the status it carries is already recorded.
    """

    def __init__(self, gateway: PaymentGateway):
        self.gateway = gateway

    async def process_existing_order(self, db: Session, request: ProcessPaymentRequest) -> Result:
        return await self.pay(db, request.reference, request.to_payment_method(), request.redirect_url)

    async def pay(self, db: Session, reference: str, payment_method: PaymentMethod,
                  redirect_url: Optional[str] = None) -> Result:
        steps = (
            self._find_order,
            self._get_acceptance_token,
            self._prepare_params,
            self._create_charge,
            self._record_transaction,
            self._update_order,
            self._apply_approval,
        )

        ctx = PaymentContext(reference, payment_method, redirect_url)
        result = Success(ctx)
        for step in steps:
            result = await result.bind_async(partial(step, db))

        if result.is_failure:
            if ctx.claimed and ctx.gateway_data is None:
                self._release_order(db, ctx)
            log_failure(logger, "Payment failed", result.error, reference=reference,
                        payment_method_type=payment_method.type)
            return result

        logger.info(
            "Payment processed",
            extra={
                "reference": reference,
                "wompi_transaction_id": ctx.transaction.wompi_transaction_id,
                "transaction_status": ctx.transaction.status,
                "order_status": ctx.order_status.value
            }
        )
        return Success(PaymentOutcome(
            order_id=ctx.order.id,
            reference=ctx.order.reference,
            order_status=ctx.order_status.value,
            transaction_id=ctx.transaction.id,
            wompi_transaction_id=ctx.transaction.wompi_transaction_id,
            transaction_status=ctx.transaction.status,
            gateway_data=ctx.gateway_data,
            stock_removed=ctx.stock_removed
        ))

    async def _find_order(self, db: Session, ctx: PaymentContext) -> Result:
        try:
            order = OrderRepository.find_with_details(db, ctx.reference)
        except SQLAlchemyError as e:
            return Failure(ServerError("find_order", f"Failed to load order: {e}"))

        if order is None:
            return Failure(NotFound("Order not found", details={"reference": ctx.reference}))

        if not order.accepts_payment:
            return Failure(ValidationError(
                "Order cannot be charged in its current status",
                details={"reference": order.reference, "status": order.status}
            ))

        ctx.order = order
        ctx.order_id = order.id
        ctx.previous_status = order.status
        try:
            claimed = OrderRepository.claim_for_payment(
                db, order, PAYABLE_ORDER_STATUSES, OrderStatus.PROCESSING.value
            )
            if not claimed:
                db.rollback()
                return Failure(ValidationError(
                    "Order is already being charged",
                    details={"reference": ctx.reference}
                ))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            return Failure(ServerError("find_order", f"Failed to claim order: {e}",
                                       details={"reference": ctx.reference}))

        ctx.claimed = True
        return Success(ctx)

    @staticmethod
    def _release_order(db: Session, ctx: PaymentContext):
        try:
            released = OrderRepository.release_claim(
                db, ctx.order_id, OrderStatus.PROCESSING.value, ctx.previous_status
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.error(
                "Failed to release order after aborted charge attempt",
                extra={"reference": ctx.reference, "previous_status": ctx.previous_status},
                exc_info=True
            )
            return

        if released:
            logger.info(
                "Order released after aborted charge attempt",
                extra={"reference": ctx.reference, "status": ctx.previous_status}
            )

    async def _get_acceptance_token(self, db: Session, ctx: PaymentContext) -> Result:
        try:
            acceptance = await self.gateway.get_acceptance_token()
        except (GatewayTimeout, GatewayTransportError) as e:
            return Failure(GatewayUnavailable("acceptance_token", str(e)))

        if not acceptance:
            return Failure(ServerError("acceptance_token", "Failed to get acceptance token"))

        ctx.acceptance_token = acceptance["acceptance_token"]
        return Success(ctx)

    async def _prepare_params(self, db: Session, ctx: PaymentContext) -> Result:
        method = ctx.payment_method
        if not method.is_chargeable:
            field_name = "token" if method.type == "CARD" else "phone_number"
            return Failure(ValidationError(
                f"Payment method {method.type} requires {field_name}",
                details={"missing": [field_name]}
            ))

        order = ctx.order
        customer = order.customer
        delivery = order.delivery

        shipping_address = None
        if delivery is not None:
            shipping_address = {
                key: value for key, value in {
                    "address_line_1": delivery.address_line_1,
                    "address_line_2": delivery.address_line_2,
                    "city": delivery.city,
                    "region": delivery.region,
                    "country": delivery.country,
                    "postal_code": delivery.postal_code,
                    "phone_number": delivery.phone_number or customer.phone_number,
                    "name": customer.full_name,
                }.items() if value is not None
            }

        ctx.charge = ChargeRequest(
            acceptance_token=ctx.acceptance_token,
            amount_in_cents=order.amount_in_cents,
            currency=order.currency,
            customer_email=customer.email,
            reference=order.reference,
            payment_method_type=method.type,
            full_name=customer.full_name,
            phone_number=customer.phone_number,
            payment_token=method.token if method.type == "CARD" else None,
            nequi_phone_number=method.phone_number if method.type == "NEQUI" else None,
            installments=method.installments,
            redirect_url=ctx.redirect_url,
            shipping_address=shipping_address
        )
        return Success(ctx)

    async def _create_charge(self, db: Session, ctx: PaymentContext) -> Result:
        try:
            response = await self.gateway.create_transaction(ctx.charge)
        except GatewayTimeout as e:
            # the charge may or may not exist at the gateway; the order stays as it was
            return Failure(GatewayUnavailable("create_charge", str(e), details={"reference": ctx.reference}))
        except GatewayTransportError as e:
            return Failure(GatewayUnavailable("create_charge", str(e), details={"reference": ctx.reference}))

        if response.success:
            ctx.gateway_data = response.data
            return Success(ctx)

        return self._charge_rejected(db, ctx, response)

    def _charge_rejected(self, db: Session, ctx: PaymentContext, response: GatewayResponse) -> Failure:
        error = response.error or {}
        if error.get("type") in MALFORMED_ERROR_TYPES:
            return Failure(ServerError("create_charge", "Unexpected gateway response",
                                       details={"gateway_error": error}))
        if int(error.get("status_code") or 0) >= 500:
            return Failure(GatewayUnavailable("create_charge", "Gateway error",
                                              details={"gateway_error": error}))

        self.record_failed_transaction(db, ctx.order, ctx.payment_method, error)
        return Failure(PaymentFailed(error, reference=ctx.reference))

    @staticmethod
    def record_failed_transaction(db: Session, order: Order, payment_method: PaymentMethod,
                                  error: Dict[str, Any]) -> Transaction | None:
        """ERROR transaction linked to the order. Does not block a later retry."""
        try:
            transaction = TransactionRepository.create(
                db,
                reference=order.reference,
                amount_in_cents=order.amount_in_cents,
                currency=order.currency,
                status=GatewayStatus.ERROR.value,
                payment_method_type=payment_method.type,
                payment_data=error
            )
            OrderRepository.update_transaction(db, order, transaction.id, OrderStatus.ERROR.value)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(
                "Failed to record rejected transaction",
                extra={"reference": order.reference, "error": str(e)},
                exc_info=True
            )
            return None
        return transaction

    async def _record_transaction(self, db: Session, ctx: PaymentContext) -> Result:
        data = ctx.gateway_data
        method = ctx.payment_method
        try:
            ctx.transaction = TransactionRepository.create(
                db,
                wompi_transaction_id=str(data["id"]),
                reference=ctx.order.reference,
                amount_in_cents=ctx.order.amount_in_cents,
                currency=ctx.order.currency,
                status=data["status"],
                payment_method_type=method.type,
                payment_method_token=method.token if method.type == "CARD" else None,
                payment_data=data
            )
        except SQLAlchemyError as e:
            return self._rollback(db, ctx, "record_transaction", e)
        return Success(ctx)

    async def _update_order(self, db: Session, ctx: PaymentContext) -> Result:
        ctx.order_status = map_gateway_status(ctx.transaction.status)
        try:
            OrderRepository.update_transaction(db, ctx.order, ctx.transaction.id, ctx.order_status.value)
        except SQLAlchemyError as e:
            return self._rollback(db, ctx, "update_order", e)
        return Success(ctx)

    async def _apply_approval(self, db: Session, ctx: PaymentContext) -> Result:
        try:
            if ctx.transaction.status == GatewayStatus.APPROVED.value:
                ctx.stock_removed = FulfillmentService.apply_approval(db, ctx.order)
            db.commit()
        except SQLAlchemyError as e:
            return self._rollback(db, ctx, "apply_approval", e)
        return Success(ctx)

    @staticmethod
    def _rollback(db: Session, ctx: PaymentContext, step: str, error: Exception) -> Failure:
        db.rollback()
        # the gateway already holds this charge; keep its payload for ops
        logger.error(
            "Charge accepted by gateway but not recorded",
            extra={"step": step, "reference": ctx.reference, "gateway_data": sanitize_log_data(ctx.gateway_data or {})},
            exc_info=True
        )
        return Failure(ServerError(step, f"Failed at {step}: {error}",
                                   details={"reference": ctx.reference}))
