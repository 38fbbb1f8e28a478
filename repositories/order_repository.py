from typing import Any, Dict, List, Sequence
from sqlalchemy import update
from sqlalchemy.orm import Session, joinedload
from models.orders import Order
from models.transactions import Transaction


class OrderRepository:

    @staticmethod
    def find_by_id(db: Session, order_id: int) -> Order | None:
        return db.get(Order, order_id)

    @staticmethod
    def find_by_reference(db: Session, reference: str) -> Order | None:
        return db.query(Order).filter(Order.reference == reference).one_or_none()

    @staticmethod
    def find_with_details(db: Session, reference: str) -> Order | None:
        """Order with customer, delivery and transaction loaded in one query."""
        return (
            db.query(Order)
            .options(
                joinedload(Order.customer),
                joinedload(Order.delivery),
                joinedload(Order.transaction),
            )
            .filter(Order.reference == reference)
            .one_or_none()
        )

    @staticmethod
    def find_by_transaction(db: Session, transaction: Transaction) -> Order | None:
        order = db.query(Order).filter(Order.transaction_id == transaction.id).one_or_none()
        if order is None:
            order = OrderRepository.find_by_reference(db, transaction.reference)
        return order

    @staticmethod
    def create(db: Session, reference: str, customer_id: int, amount_in_cents: int,
               currency: str, items: List[Dict[str, Any]], status: str,
               delivery_id: int | None = None) -> Order:
        order = Order(
            reference=reference,
            customer_id=customer_id,
            delivery_id=delivery_id,
            amount_in_cents=amount_in_cents,
            currency=currency,
            status=status,
            items=items
        )
        db.add(order)
        db.flush()
        return order

    @staticmethod
    def update_status(db: Session, order: Order, status: str) -> Order:
        order.status = status
        db.flush()
        return order

    @staticmethod
    def update_transaction(db: Session, order: Order, transaction_id: int, status: str) -> Order:
        order.transaction_id = transaction_id
        order.status = status
        db.flush()
        return order

    @staticmethod
    def claim_for_payment(db: Session, order: Order, payable_statuses: Sequence[str], status: str) -> bool:
        """
        Move the order to `status` only if it is still in one of
        `payable_statuses`. A single conditional UPDATE, so of two concurrent
        charge attempts exactly one wins. Returns False for the loser.
        """
        result = db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status.in_(payable_statuses))
            .values(status=status)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def release_claim(db: Session, order_id: int, claimed_status: str, previous_status: str) -> bool:
        """Undo claim_for_payment, unless something else has moved the order since."""
        result = db.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == claimed_status)
            .values(status=previous_status)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
