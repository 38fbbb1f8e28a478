from typing import Annotated
from fastapi import Depends, Request
from sqlalchemy.orm import Session
from core.config import settings
from core.database import SessionLocal
from services.order_service import OrderService
from services.payment_service import PaymentService
from services.reconciliation_service import StatusReconciler, RetryPolicy
from services.wompi_gateway import PaymentGateway


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

db_dependency = Annotated[Session, Depends(get_db)]


def get_payment_gateway(request: Request) -> PaymentGateway:
    # built once in main.lifespan and shared by every request
    return request.app.state.payment_gateway

gateway_dependency = Annotated[PaymentGateway, Depends(get_payment_gateway)]


def get_order_service() -> OrderService:
    return OrderService()

order_service_dependency = Annotated[OrderService, Depends(get_order_service)]


def get_payment_service(gateway: gateway_dependency) -> PaymentService:
    return PaymentService(gateway)

payment_service_dependency = Annotated[PaymentService, Depends(get_payment_service)]


def get_reconciler(gateway: gateway_dependency) -> StatusReconciler:
    return StatusReconciler(gateway, RetryPolicy.from_settings(settings))

reconciler_dependency = Annotated[StatusReconciler, Depends(get_reconciler)]
