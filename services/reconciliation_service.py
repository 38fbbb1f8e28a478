import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from core.config import Settings
from core.errors import ValidationError, NotFound, ServerError, GatewayUnavailable
from repositories import OrderRepository, TransactionRepository
from schemas.checkout_schemas import TransactionEventData
from services.fulfillment_service import FulfillmentService
from services.wompi_gateway import PaymentGateway, GatewayTimeout, GatewayTransportError
from utils.payment_status import (GatewayStatus, map_gateway_status, is_terminal_gateway_status,
                                  accepts_status_update)
from utils.result import Success, Failure, Result
from utils.logger import get_logger, log_failure

logger = get_logger(__name__)

STILL_PENDING_MESSAGE = "Transaction is still being processed"


@dataclass(frozen=True)
class RetryPolicy:
    """How long to keep asking the gateway before giving up for now."""
    max_attempts: int = 5
    delay_seconds: float = 3.0
    is_terminal: Callable[[str], bool] = is_terminal_gateway_status

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds cannot be negative")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(max_attempts=settings.POLL_MAX_ATTEMPTS, delay_seconds=settings.POLL_DELAY_SECONDS)


@dataclass
class ReconcileOutcome:
    transaction_id: int
    wompi_transaction_id: str
    previous_status: str
    status: str
    order_id: Optional[int]
    order_status: Optional[str]
    side_effects_applied: bool
    # true when the update was older than what we already had and was dropped
    stale: bool
    gateway_data: Dict[str, Any]


@dataclass
class PollOutcome:
    status: str
    attempts: int
    message: Optional[str] = None
    reconciliation: Optional[ReconcileOutcome] = None

    @property
    def still_pending(self) -> bool:
        return self.reconciliation is None or not is_terminal_gateway_status(self.status)


class StatusReconciler:
    """
    Merges gateway-reported transaction status into local state.

    Polling and gateway callbacks both end up in reconcile(), and may race
    or repeat for the same transaction. Stock and delivery side effects fire
    only on the transition from an open status into APPROVED. Settled statuses
    are final except that an approved charge can still be voided. The read
    of the previous status, the status write and those side effects happen
    in one database transaction, guarded by a row lock plus a
    compare-and-swap on the transaction's version.
    """

    MAX_CAS_RETRIES = 3

    def __init__(self, gateway: PaymentGateway, policy: RetryPolicy | None = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.gateway = gateway
        self.policy = policy or RetryPolicy()
        self.sleep = sleep

    async def poll(self, db: Session, gateway_id: str, policy: RetryPolicy | None = None) -> Result:
        """
        Ask the gateway for the transaction's status until it is terminal or
        attempts run out. Running out is not an error: the result reports the
        transaction as still pending. Cancellation propagates from the sleep.
        """
        policy = policy or self.policy
        last = None

        for attempt in range(1, policy.max_attempts + 1):
            result = await self._fetch(gateway_id)
            result = result.bind(lambda data: self.reconcile(db, gateway_id, data))
            if result.is_failure:
                log_failure(logger, "Transaction polling failed", result.error,
                            wompi_transaction_id=gateway_id, attempt=attempt)
                return result

            last = result.value
            if policy.is_terminal(last.status):
                return Success(PollOutcome(status=last.status, attempts=attempt, reconciliation=last))

            if attempt < policy.max_attempts:
                await self.sleep(policy.delay_seconds)

        logger.info(
            "Transaction still pending after polling",
            extra={"wompi_transaction_id": gateway_id, "attempts": policy.max_attempts}
        )
        return Success(PollOutcome(
            status=GatewayStatus.PENDING.value,
            attempts=policy.max_attempts,
            message=STILL_PENDING_MESSAGE,
            reconciliation=last
        ))

    def handle_callback(self, db: Session, transaction_data: TransactionEventData) -> Result:
        """Apply a transaction snapshot pushed by the gateway. Safe under redelivery."""
        result = self.reconcile(db, transaction_data.id, transaction_data.model_dump())
        if result.is_failure:
            log_failure(logger, "Callback reconciliation failed", result.error,
                        wompi_transaction_id=transaction_data.id)
        return result

    async def _fetch(self, gateway_id: str) -> Result:
        try:
            response = await self.gateway.get_transaction(gateway_id)
        except (GatewayTimeout, GatewayTransportError) as e:
            return Failure(GatewayUnavailable("fetch_status", str(e),
                                              details={"wompi_transaction_id": gateway_id}))

        if not response.success:
            return Failure(ServerError(
                "fetch_status", "Failed to fetch transaction from payment gateway",
                details={"wompi_transaction_id": gateway_id, "gateway_error": response.error}
            ))
        return Success(response.data)

    def reconcile(self, db: Session, gateway_id: str, gateway_data: Dict[str, Any]) -> Result:
        new_status = gateway_data.get("status")
        if not isinstance(new_status, str) or not new_status:
            return Failure(ValidationError("Gateway payload has no status",
                                           details={"wompi_transaction_id": gateway_id}))

        try:
            for _ in range(self.MAX_CAS_RETRIES):
                result = self._reconcile_once(db, gateway_id, new_status, gateway_data)
                if result is not None:
                    return result
                db.rollback()
                logger.info("Concurrent status update detected, retrying",
                            extra={"wompi_transaction_id": gateway_id})
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Reconciliation failed", extra={"wompi_transaction_id": gateway_id},
                         exc_info=True)
            return Failure(ServerError("reconcile", f"Failed to reconcile transaction: {e}",
                                       details={"wompi_transaction_id": gateway_id}))

        return Failure(ServerError("reconcile", "Transaction kept changing underneath the update",
                                   details={"wompi_transaction_id": gateway_id}))

    def _reconcile_once(self, db: Session, gateway_id: str, new_status: str,
                        gateway_data: Dict[str, Any]) -> Result | None:
        """One read-compare-write pass. Returns None when the compare-and-swap lost."""
        transaction = TransactionRepository.find_by_wompi_id(db, gateway_id, for_update=True)
        if transaction is None:
            db.rollback()
            return Failure(NotFound(f"Transaction with wompi_id {gateway_id} not found",
                                    details={"wompi_transaction_id": gateway_id}))

        transaction_id = transaction.id
        previous_status = transaction.status
        version = transaction.version

        # out-of-order reports (a late PENDING, APPROVED after VOIDED, ...) are dropped
        if not accepts_status_update(previous_status, new_status):
            db.rollback()
            logger.info(
                "Ignoring stale status update",
                extra={"wompi_transaction_id": gateway_id, "previous_status": previous_status,
                       "reported_status": new_status}
            )
            return Success(ReconcileOutcome(
                transaction_id=transaction_id,
                wompi_transaction_id=gateway_id,
                previous_status=previous_status,
                status=previous_status,
                order_id=None,
                order_status=None,
                side_effects_applied=False,
                stale=True,
                gateway_data=gateway_data
            ))

        if not TransactionRepository.compare_and_set_status(db, transaction, version, new_status, gateway_data):
            return None

        order = OrderRepository.find_by_transaction(db, transaction)
        if order is None:
            db.rollback()
            return Failure(NotFound(f"Order for transaction {gateway_id} not found",
                                    details={"wompi_transaction_id": gateway_id,
                                             "reference": transaction.reference}))

        order_status = None
        applied = False
        # an order retried with a newer transaction is no longer driven by this one
        if order.transaction_id in (None, transaction.id):
            order_status = map_gateway_status(new_status).value
            OrderRepository.update_status(db, order, order_status)

            # approval side effects fire only when leaving an open status
            if new_status == GatewayStatus.APPROVED.value and not is_terminal_gateway_status(previous_status):
                FulfillmentService.apply_approval(db, order)
                applied = True
        else:
            logger.warning(
                "Status update for superseded transaction",
                extra={"wompi_transaction_id": gateway_id, "order_id": order.id,
                       "active_transaction_id": order.transaction_id}
            )

        db.commit()

        logger.info(
            "Transaction reconciled",
            extra={
                "wompi_transaction_id": gateway_id,
                "previous_status": previous_status,
                "status": new_status,
                "order_status": order_status,
                "side_effects_applied": applied
            }
        )
        return Success(ReconcileOutcome(
            transaction_id=transaction.id,
            wompi_transaction_id=gateway_id,
            previous_status=previous_status,
            status=new_status,
            order_id=order.id,
            order_status=order_status,
            side_effects_applied=applied,
            stale=False,
            gateway_data=gateway_data
        ))
