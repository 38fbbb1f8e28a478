from typing import Any, Optional
from sqlalchemy import update
from sqlalchemy.orm import Session
from models.transactions import Transaction


class TransactionRepository:

    @staticmethod
    def find_by_id(db: Session, transaction_id: int) -> Transaction | None:
        return db.get(Transaction, transaction_id)

    @staticmethod
    def find_by_wompi_id(db: Session, wompi_transaction_id: str, for_update: bool = False) -> Transaction | None:
        query = db.query(Transaction).filter(Transaction.wompi_transaction_id == wompi_transaction_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        return query.one_or_none()

    @staticmethod
    def find_by_reference(db: Session, reference: str) -> Transaction | None:
        """Most recent attempt for an order reference."""
        return (
            db.query(Transaction)
            .filter(Transaction.reference == reference)
            .order_by(Transaction.id.desc())
            .first()
        )

    @staticmethod
    def create(db: Session, **fields) -> Transaction:
        transaction = Transaction(**fields)
        db.add(transaction)
        db.flush()
        return transaction

    @staticmethod
    def compare_and_set_status(db: Session, transaction: Transaction, expected_version: int,
                               status: str, payment_data: Optional[Any] = None) -> bool:
        """
        Write `status` only if nobody else changed the row since `expected_version`
        was read. Returns False when the write lost the race.
        """
        values = {"status": status, "version": Transaction.version + 1}
        if payment_data is not None:
            values["payment_data"] = payment_data

        result = db.execute(
            update(Transaction)
            .where(Transaction.id == transaction.id, Transaction.version == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        db.refresh(transaction)
        return True
