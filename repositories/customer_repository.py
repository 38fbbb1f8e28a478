from typing import Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from models.customers import Customer


class CustomerRepository:

    @staticmethod
    def find_by_id(db: Session, customer_id: int) -> Customer | None:
        return db.get(Customer, customer_id)

    @staticmethod
    def find_by_email(db: Session, email: str) -> Customer | None:
        return db.query(Customer).filter(Customer.email == email.lower().strip()).one_or_none()

    @staticmethod
    def create(db: Session, email: str, full_name: str, phone_number: Optional[str] = None) -> Customer:
        customer = Customer(
            email=email.lower().strip(),
            full_name=full_name,
            phone_number=phone_number
        )
        db.add(customer)
        db.flush()
        return customer

    @staticmethod
    def update(db: Session, customer: Customer, **fields) -> Customer:
        for name, value in fields.items():
            setattr(customer, name, value)
        db.flush()
        return customer

    @staticmethod
    def create_or_update_by_email(db: Session, email: str, full_name: str,
                                  phone_number: Optional[str] = None) -> Customer:
        """
        Idempotent upsert keyed on email.

        Two checkouts for a new email can both miss the lookup; the loser's
        insert hits the unique constraint and falls back to updating the row
        the winner created.
        """
        fields = {"full_name": full_name}
        # keep the phone we already have when the new order omits it
        if phone_number:
            fields["phone_number"] = phone_number

        existing = CustomerRepository.find_by_email(db, email)
        if existing:
            return CustomerRepository.update(db, existing, **fields)

        try:
            with db.begin_nested():
                return CustomerRepository.create(db, email, full_name, phone_number)
        except IntegrityError:
            existing = CustomerRepository.find_by_email(db, email)
            if existing is None:
                raise
            return CustomerRepository.update(db, existing, **fields)
