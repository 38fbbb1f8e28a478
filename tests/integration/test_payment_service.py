import asyncio
import pytest
from core.errors import PaymentFailed, GatewayUnavailable, ServerError, ValidationError, NotFound
from models import Product, Order, Transaction, InventoryChange
from repositories import OrderRepository
from schemas.checkout_schemas import PaymentMethod
from services.payment_service import PaymentService
from services.wompi_gateway import GatewayResponse, GatewayTimeout
from tests.conftest import FakeGateway, transaction_response
from utils.payment_status import PAYABLE_ORDER_STATUSES

CARD = PaymentMethod(type="CARD", token="tok_test_12345_abcdef", installments=1)


async def test_pending_charge_recorded(session, gateway, make_order):
    order = make_order()
    gateway.charge_response = transaction_response("wompi-txn-9", "PENDING", reference=order.reference)

    result = await PaymentService(gateway).pay(session, order.reference, CARD)

    assert result.is_success
    outcome = result.value
    assert outcome.order_status == "processing"
    assert outcome.transaction_status == "PENDING"
    assert outcome.wompi_transaction_id == "wompi-txn-9"

    session.refresh(order)
    assert order.status == "processing"
    assert order.transaction.wompi_transaction_id == "wompi-txn-9"
    assert order.transaction.payment_method_token == CARD.token
    # nothing leaves the shelf until approval
    assert session.get(Product, order.items[0]["product_id"]).stock == 10


async def test_charge_request_built_from_order(session, gateway, make_order):
    order = make_order()
    gateway.charge_response = transaction_response(reference=order.reference)

    await PaymentService(gateway).pay(session, order.reference, CARD, redirect_url="http://shop/confirm")

    charge = gateway.charges[0]
    assert charge.acceptance_token == "acc_tok_1234567890"
    assert charge.amount_in_cents == order.amount_in_cents
    assert charge.reference == order.reference
    assert charge.customer_email == order.customer.email
    assert charge.payment_method() == {"type": "CARD", "token": CARD.token, "installments": 1}
    assert charge.shipping_address["city"] == "Bogota"
    assert charge.redirect_url == "http://shop/confirm"


async def test_approved_charge_applies_side_effects(session, gateway, make_order):
    order = make_order()
    gateway.charge_response = transaction_response("wompi-txn-9", "APPROVED", reference=order.reference)

    result = await PaymentService(gateway).pay(session, order.reference, CARD)

    assert result.is_success
    product_id = order.items[0]["product_id"]
    assert result.value.stock_removed == {product_id: 2}
    session.refresh(order)
    assert order.status == "approved"
    assert order.delivery.status == "assigned"
    assert order.delivery.estimated_delivery_date is not None
    assert session.get(Product, product_id).stock == 8
    assert session.query(InventoryChange).count() == 1


async def test_declined_charge(session, gateway, make_order):
    order = make_order()
    gateway.charge_response = transaction_response("wompi-txn-9", "DECLINED", reference=order.reference)

    result = await PaymentService(gateway).pay(session, order.reference, CARD)

    assert result.is_success
    session.refresh(order)
    assert order.status == "declined"
    assert order.delivery.status == "pending"
    assert session.get(Product, order.items[0]["product_id"]).stock == 10


async def test_rejected_charge_records_error(session, gateway, make_order):
    """Gateway says no: ERROR transaction linked, order moved to error."""
    order = make_order()
    gateway.charge_response = GatewayResponse(success=False, error={
        "type": "INPUT_VALIDATION_ERROR", "reason": "Invalid card token", "status_code": 422
    })

    result = await PaymentService(gateway).pay(session, order.reference, CARD)

    assert result.is_failure
    assert isinstance(result.error, PaymentFailed)
    assert result.error.message == "Invalid card token"

    session.refresh(order)
    assert order.status == "error"
    assert order.transaction.status == "ERROR"
    assert order.transaction.wompi_transaction_id is None


async def test_rejected_order_can_retry(session, gateway, make_order):
    order = make_order()
    gateway.charge_response = GatewayResponse(success=False, error={"reason": "Declined", "status_code": 422})
    await PaymentService(gateway).pay(session, order.reference, CARD)

    gateway.charge_response = transaction_response("wompi-txn-2", "APPROVED", reference=order.reference)
    result = await PaymentService(gateway).pay(session, order.reference, CARD)

    assert result.is_success
    session.refresh(order)
    assert order.status == "approved"
    assert session.query(Transaction).filter(Transaction.reference == order.reference).count() == 2


async def test_timeout_leaves_order_untouched(session, gateway, make_order):
    """A charge that never got an answer is not a decline."""
    order = make_order()
    gateway.charge_error = GatewayTimeout("create_transaction timed out")

    result = await PaymentService(gateway).pay(session, order.reference, CARD)

    assert result.is_failure
    assert isinstance(result.error, GatewayUnavailable)
    assert result.error.http_status == 503
    session.refresh(order)
    assert order.status == "pending"
    assert order.transaction_id is None
    assert session.query(Transaction).count() == 0


async def test_gateway_5xx_is_unavailable(session, gateway, make_order):
    order = make_order()
    gateway.charge_response = GatewayResponse(success=False, error={"type": "unknown_error", "status_code": 502})

    result = await PaymentService(gateway).pay(session, order.reference, CARD)

    assert isinstance(result.error, GatewayUnavailable)
    assert session.query(Transaction).count() == 0


async def test_malformed_response_is_server_error(session, gateway, make_order):
    order = make_order()
    gateway.charge_response = GatewayResponse(success=False, error={"type": "malformed_response"})

    result = await PaymentService(gateway).pay(session, order.reference, CARD)

    assert type(result.error) is ServerError
    assert result.error.step == "create_charge"
    session.refresh(order)
    assert order.status == "pending"


async def test_missing_acceptance_token(session, gateway, make_order):
    order = make_order()
    gateway.acceptance = None

    result = await PaymentService(gateway).pay(session, order.reference, CARD)

    assert result.error.step == "acceptance_token"
    assert gateway.charges == []


async def test_unknown_reference(session, gateway):
    result = await PaymentService(gateway).pay(session, "ORDER-0-0000", CARD)

    assert isinstance(result.error, NotFound)


@pytest.mark.parametrize("status", ["approved", "processing"])
async def test_paid_or_in_flight_order_refused(session, gateway, make_order, status):
    order = make_order(order_status=status)

    result = await PaymentService(gateway).pay(session, order.reference, CARD)

    assert isinstance(result.error, ValidationError)
    assert gateway.charges == []


async def test_card_without_token_refused(session, gateway, make_order):
    order = make_order()

    result = await PaymentService(gateway).pay(session, order.reference, PaymentMethod(type="CARD"))

    assert isinstance(result.error, ValidationError)
    assert result.error.details == {"missing": ["token"]}
    assert gateway.charges == []


class YieldingGateway(FakeGateway):
    """Hands control back to the event loop on every call, like a real network round trip."""

    async def get_acceptance_token(self):
        await asyncio.sleep(0)
        return await super().get_acceptance_token()

    async def create_transaction(self, charge):
        await asyncio.sleep(0)
        return await super().create_transaction(charge)


async def test_concurrent_payments_charge_once(session, other_session, make_order):
    order = make_order()
    gateway = YieldingGateway()
    gateway.charge_response = transaction_response("wompi-txn-9", "APPROVED", reference=order.reference)
    service = PaymentService(gateway)

    first, second = await asyncio.gather(
        service.pay(session, order.reference, CARD),
        service.pay(other_session, order.reference, CARD),
    )

    results = [first, second]
    assert sum(result.is_success for result in results) == 1
    refused = next(result for result in results if result.is_failure)
    assert isinstance(refused.error, ValidationError)
    assert len(gateway.charges) == 1

    session.expire_all()
    assert session.query(Transaction).count() == 1
    assert session.get(Product, order.items[0]["product_id"]).stock == 8
    assert session.query(InventoryChange).count() == 1


def test_claim_lost_to_another_attempt(session, other_session, make_order):
    """An order read before another attempt claimed it cannot be claimed again."""
    order = make_order()
    stale_copy = other_session.get(Order, order.id)
    assert stale_copy.status == "pending"

    assert OrderRepository.claim_for_payment(session, order, PAYABLE_ORDER_STATUSES, "processing")
    session.commit()

    assert not OrderRepository.claim_for_payment(other_session, stale_copy, PAYABLE_ORDER_STATUSES, "processing")
    other_session.rollback()


async def test_failed_attempt_restores_previous_status(session, gateway, make_order):
    order = make_order(order_status="declined")
    gateway.acceptance = None

    result = await PaymentService(gateway).pay(session, order.reference, CARD)

    assert result.is_failure
    session.expire_all()
    assert session.get(Order, order.id).status == "declined"


async def test_rejected_charge_keeps_error_status(session, gateway, make_order):
    """The order is already moved to error, so the claim is not handed back."""
    order = make_order(order_status="voided")
    gateway.charge_response = GatewayResponse(success=False, error={"reason": "Declined", "status_code": 422})

    await PaymentService(gateway).pay(session, order.reference, CARD)

    session.expire_all()
    assert session.get(Order, order.id).status == "error"
