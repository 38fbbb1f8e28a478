from services.wompi_gateway import GatewayResponse
from tests.conftest import transaction_response


async def test_process_payment(client, gateway, make_order):
    order = make_order()
    gateway.charge_response = transaction_response("wompi-txn-3", "PENDING", reference=order.reference,
                                                   redirect_url="http://shop/confirm")

    response = await client.post("/api/checkout/process-payment", json={
        "reference": order.reference,
        "payment_method_type": "CARD",
        "payment_token": "tok_test_12345",
        "installments": 3
    })

    assert response.status_code == 200
    body = response.json()
    assert body["order"] == {"reference": order.reference, "status": "processing"}
    assert body["transaction"]["id"] == "wompi-txn-3"
    assert body["transaction"]["redirect_url"] == "http://shop/confirm"
    assert gateway.charges[0].installments == 3


async def test_process_payment_rejected(client, session, gateway, make_order):
    order = make_order()
    gateway.charge_response = GatewayResponse(success=False, error={
        "type": "INPUT_VALIDATION_ERROR", "reason": "Card expired", "status_code": 422
    })

    response = await client.post("/api/checkout/process-payment", json={
        "reference": order.reference,
        "payment_method_type": "CARD",
        "payment_token": "tok_test_12345"
    })

    assert response.status_code == 402
    assert response.json()["error"] == "Card expired"
    session.refresh(order)
    assert order.status == "error"


async def test_process_payment_unknown_order(client):
    response = await client.post("/api/checkout/process-payment", json={
        "reference": "ORDER-0-0000",
        "payment_method_type": "CARD",
        "payment_token": "tok_test_12345"
    })

    assert response.status_code == 404


async def test_process_payment_requires_token(client, make_order):
    order = make_order()

    response = await client.post("/api/checkout/process-payment", json={
        "reference": order.reference,
        "payment_method_type": "CARD"
    })

    assert response.status_code == 422


async def test_acceptance_token(client):
    response = await client.get("/api/checkout/acceptance-token")

    assert response.status_code == 200
    assert response.json()["acceptance_token"]["acceptance_token"] == "acc_tok_1234567890"


async def test_acceptance_token_unavailable(client, gateway):
    gateway.acceptance = None

    response = await client.get("/api/checkout/acceptance-token")

    assert response.status_code == 500
