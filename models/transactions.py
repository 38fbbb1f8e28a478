from core.database import Base
from sqlalchemy import (Column, Integer, String, JSON)
from utils.payment_status import GatewayStatus
from .mixins import CreatedAtMixin, UpdatedAtMixin

class Transaction(Base, CreatedAtMixin, UpdatedAtMixin):
    """
    One charge attempt at the payment gateway.

    `status` uses the gateway vocabulary (PENDING, APPROVED, ...), not the
    order vocabulary. `version` is bumped on every status write and is the
    compare-and-swap token used by reconciliation.
    """
    __tablename__ = "transactions"

    #pk
    id = Column(Integer, primary_key=True, index=True)

    # null until the gateway answers (and forever for rejected attempts)
    wompi_transaction_id = Column(String, unique=True, nullable=True, index=True)
    reference = Column(String, nullable=False, index=True)
    amount_in_cents = Column(Integer, nullable=False)
    currency = Column(String, nullable=False, default="COP")
    status = Column(String, nullable=False, default=GatewayStatus.PENDING.value, index=True)
    payment_method_type = Column(String)
    payment_method_token = Column(String)
    # last raw gateway payload, audit/debug only
    payment_data = Column(JSON)
    version = Column(Integer, nullable=False, default=1)
