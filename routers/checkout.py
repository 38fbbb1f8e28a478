from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette import status
from core.errors import AppError
from schemas.checkout_schemas import CreateOrderRequest, ProcessPaymentRequest, WebhookEvent, WebhookEventData
from services.order_service import OrderService
from services.wompi_gateway import GatewayTimeout, GatewayTransportError
from middleware.rate_limiter import limiter
from utils.deps import (db_dependency, gateway_dependency, order_service_dependency,
                        payment_service_dependency, reconciler_dependency)
from utils.logger import get_logger

# Setup logger
logger = get_logger(__name__)


router = APIRouter(
    prefix="/api/checkout",
    tags=["checkout"]
)

TRANSACTION_UPDATED = "transaction.updated"


def error_response(error: AppError, **extra) -> JSONResponse:
    """
    Validation, not-found and payment failures carry their reason; server
    errors get a generic message (the full context is already in the logs).
    """
    if error.http_status == status.HTTP_503_SERVICE_UNAVAILABLE:
        body = {"success": False, "error": "Payment gateway unavailable, please retry"}
    elif error.http_status >= 500:
        body = {"success": False, "error": "Internal server error"}
    else:
        body = {"success": False, "error": error.message}
        if error.details:
            body["details"] = error.details
    body.update(extra)
    return JSONResponse(status_code=error.http_status, content=body)


def confirmation_url(request: Request) -> str:
    return f"{str(request.base_url).rstrip('/')}/order-confirmation"


@router.post("/create-order", status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def create_order(request: Request, body: CreateOrderRequest, db: db_dependency,
                       order_service: order_service_dependency,
                       payment_service: payment_service_dependency):
    """
    Create an order and, when a usable payment method is included, charge it.
    """
    order_result = order_service.create_order(db, body)
    if order_result.is_failure:
        return error_response(order_result.error)

    order = order_result.value
    order_body = {
        "id": order.order_id,
        "reference": order.reference,
        "amount_in_cents": order.amount_in_cents,
        "currency": order.currency,
        "status": order.status
    }

    if body.payment_method is None or not body.payment_method.is_chargeable:
        return {"success": True, "order": order_body}

    payment_result = await payment_service.pay(
        db, order.reference, body.payment_method,
        redirect_url=body.redirect_url or confirmation_url(request)
    )
    if payment_result.is_failure:
        # the order exists either way; the client can retry via /process-payment
        return error_response(payment_result.error, order={"reference": order.reference})

    payment = payment_result.value
    order_body["status"] = payment.order_status
    return {
        "success": True,
        "order": order_body,
        "transaction": {
            "id": payment.wompi_transaction_id,
            "status": payment.transaction_status
        }
    }


@router.post("/process-payment", status_code=status.HTTP_200_OK)
@limiter.limit("10/minute")
async def process_payment(request: Request, body: ProcessPaymentRequest, db: db_dependency,
                          payment_service: payment_service_dependency):
    """
    Charge an existing order by reference.
    """
    if body.redirect_url is None:
        body.redirect_url = confirmation_url(request)

    result = await payment_service.process_existing_order(db, body)
    if result.is_failure:
        return error_response(result.error)

    payment = result.value
    return {
        "success": True,
        "order": {"reference": payment.reference, "status": payment.order_status},
        "transaction": {
            "id": payment.wompi_transaction_id,
            "status": payment.transaction_status,
            "reference": payment.reference,
            "payment_link_url": payment.gateway_data.get("payment_link_url"),
            "redirect_url": payment.gateway_data.get("redirect_url")
        }
    }


@router.get("/order/{reference}", status_code=status.HTTP_200_OK)
async def get_order(reference: str, db: db_dependency):
    result = OrderService.get_order_details(db, reference)
    if result.is_failure:
        return error_response(result.error)

    return {"success": True, "order": result.value}


@router.get("/transaction-status/{transaction_id}", status_code=status.HTTP_200_OK)
@limiter.limit("30/minute")
async def transaction_status(request: Request, transaction_id: str, db: db_dependency,
                             reconciler: reconciler_dependency):
    """
    Poll the gateway (bounded) until the transaction settles.
    """
    result = await reconciler.poll(db, transaction_id)
    if result.is_failure:
        return error_response(result.error)

    outcome = result.value
    if outcome.still_pending:
        return {
            "success": True,
            "transaction": {"status": outcome.status, "message": outcome.message},
            "attempts": outcome.attempts
        }

    data = outcome.reconciliation.gateway_data
    return {
        "success": True,
        "transaction": {
            "id": outcome.reconciliation.wompi_transaction_id,
            "status": outcome.status,
            "reference": data.get("reference"),
            "amount_in_cents": data.get("amount_in_cents"),
            "currency": data.get("currency"),
            "payment_method_type": data.get("payment_method_type"),
            "status_message": data.get("status_message")
        },
        "attempts": outcome.attempts
    }


@router.get("/acceptance-token", status_code=status.HTTP_200_OK)
async def acceptance_token(gateway: gateway_dependency):
    try:
        token = await gateway.get_acceptance_token()
    except (GatewayTimeout, GatewayTransportError):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"success": False, "error": "Payment gateway unavailable, please retry"}
        )

    if not token:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": "Failed to get acceptance token"}
        )
    return {"success": True, "acceptance_token": token}


@router.post("/webhook", status_code=status.HTTP_200_OK)
async def webhook(request: Request, db: db_dependency, gateway: gateway_dependency,
                  reconciler: reconciler_dependency):
    """
    Gateway event callback. May be redelivered and may race with polling.
    """
    payload = (await request.body()).decode("utf-8")
    signature = request.headers.get("X-Signature")
    timestamp = request.headers.get("X-Timestamp")

    if not gateway.validate_webhook_signature(payload, signature, timestamp):
        logger.warning("Webhook rejected - invalid signature")
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED,
                            content={"success": False, "error": "Invalid signature"})

    try:
        event = WebhookEvent.model_validate_json(payload)
        event_data = WebhookEventData.model_validate(event.data) if event.event == TRANSACTION_UPDATED else None
    except PydanticValidationError as e:
        logger.warning("Webhook rejected - malformed payload", extra={"errors": e.error_count()})
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST,
                            content={"success": False, "error": "Malformed event payload"})

    if event_data is None:
        logger.info("Webhook event ignored", extra={"event": event.event})
        return {"success": True, "message": "Event ignored"}

    result = reconciler.handle_callback(db, event_data.transaction)
    if result.is_failure:
        error = result.error
        if error.http_status == status.HTTP_404_NOT_FOUND or error.http_status >= 500:
            # non-2xx makes the gateway redeliver; the charge may not be committed yet
            return JSONResponse(status_code=error.http_status,
                                content={"success": False, "error": error.message if error.http_status < 500
                                         else "Internal server error"})
        # 200 so the gateway does not keep redelivering an event we cannot apply
        return {"success": False, "message": "Event could not be applied"}

    outcome = result.value
    return {
        "success": True,
        "transaction": {"id": outcome.wompi_transaction_id, "status": outcome.status},
        "side_effects_applied": outcome.side_effects_applied
    }
