import json
import httpx
import pytest
from services.wompi_gateway import WompiGateway, ChargeRequest, GatewayTimeout, GatewayTransportError
from utils.signatures import integrity_signature


def make_gateway(handler) -> WompiGateway:
    return WompiGateway(
        base_url="https://sandbox.wompi.test/v1",
        public_key="pub_test_abc",
        private_key="prv_test_xyz",
        integrity_key="integrity_secret",
        events_key="events_secret",
        timeout=2.0,
        transport=httpx.MockTransport(handler)
    )


def make_charge(**overrides) -> ChargeRequest:
    data = {
        "acceptance_token": "acc_tok_1234567890",
        "amount_in_cents": 6000000,
        "currency": "COP",
        "customer_email": "buyer@example.com",
        "reference": "ORDER-1700000000-1234",
        "payment_method_type": "CARD",
        "full_name": "Test Buyer",
        "payment_token": "tok_test_12345",
        "installments": 2,
    }
    data.update(overrides)
    return ChargeRequest(**data)


async def test_acceptance_token():
    def handler(request):
        assert request.url.path == "/v1/merchants/pub_test_abc"
        return httpx.Response(200, json={"data": {"presigned_acceptance": {
            "acceptance_token": "acc_tok_1234567890", "permalink": "https://wompi.co/terms.pdf",
            "type": "END_USER_POLICY"
        }}})

    gateway = make_gateway(handler)
    token = await gateway.get_acceptance_token()
    await gateway.aclose()

    assert token["acceptance_token"] == "acc_tok_1234567890"


async def test_acceptance_token_missing():
    gateway = make_gateway(lambda request: httpx.Response(200, json={"data": {}}))

    assert await gateway.get_acceptance_token() is None
    await gateway.aclose()


async def test_create_transaction_payload():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"data": {"id": "wompi-txn-1", "status": "PENDING"}})

    gateway = make_gateway(handler)
    response = await gateway.create_transaction(make_charge())
    await gateway.aclose()

    assert response.success
    assert response.data["id"] == "wompi-txn-1"
    assert seen["auth"] == "Bearer prv_test_xyz"
    body = seen["body"]
    assert body["payment_method"] == {"type": "CARD", "token": "tok_test_12345", "installments": 2}
    assert body["signature"] == integrity_signature("ORDER-1700000000-1234", 6000000, "COP", "integrity_secret")
    assert body["customer_data"]["full_name"] == "Test Buyer"
    assert "shipping_address" not in body


async def test_nequi_payment_method():
    charge = make_charge(payment_method_type="NEQUI", payment_token=None, nequi_phone_number="3001234567")

    assert charge.payment_method() == {"type": "NEQUI", "phone_number": "3001234567"}


async def test_gateway_rejection_keeps_reason():
    gateway = make_gateway(lambda request: httpx.Response(422, json={"error": {
        "type": "INPUT_VALIDATION_ERROR", "reason": "Invalid token"
    }}))

    response = await gateway.create_transaction(make_charge())
    await gateway.aclose()

    assert response.success is False
    assert response.error["reason"] == "Invalid token"
    assert response.error["status_code"] == 422


@pytest.mark.parametrize("reply, error_type", [
    (httpx.Response(200, text="<html>oops</html>"), "parse_error"),
    (httpx.Response(200, json={"data": None}), "malformed_response"),
    (httpx.Response(200, json={"data": {"status": "PENDING"}}), "malformed_response"),
])
async def test_malformed_success_is_failure(reply, error_type):
    gateway = make_gateway(lambda request: reply)

    response = await gateway.get_transaction("wompi-txn-1")
    await gateway.aclose()

    assert response.success is False
    assert response.error["type"] == error_type


async def test_timeout_raises():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    gateway = make_gateway(handler)
    with pytest.raises(GatewayTimeout):
        await gateway.get_transaction("wompi-txn-1")
    await gateway.aclose()


async def test_connection_error_raises():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    gateway = make_gateway(handler)
    with pytest.raises(GatewayTransportError):
        await gateway.create_transaction(make_charge())
    await gateway.aclose()
