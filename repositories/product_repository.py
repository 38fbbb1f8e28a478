from typing import Dict, Iterable
from sqlalchemy import update, case
from sqlalchemy.orm import Session
from models.products import Product


class ProductRepository:

    @staticmethod
    def find_by_id(db: Session, product_id: int) -> Product | None:
        return db.get(Product, product_id)

    @staticmethod
    def find_many(db: Session, product_ids: Iterable[int]) -> Dict[int, Product]:
        ids = set(product_ids)
        if not ids:
            return {}
        products = db.query(Product).filter(Product.id.in_(ids)).all()
        return {product.id: product for product in products}

    @staticmethod
    def decrement_stock(db: Session, product_id: int, quantity: int) -> int | None:
        """
        Remove `quantity` units, flooring stock at 0.

        The new value is computed by the database in a single UPDATE so two
        writers cannot both subtract from the same stale read. Returns the
        number of units actually removed, or None if the product is gone.
        """
        product = db.get(Product, product_id, with_for_update=True, populate_existing=True)
        if product is None:
            return None

        before = product.stock
        db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock=case((Product.stock > quantity, Product.stock - quantity), else_=0))
            .execution_options(synchronize_session=False)
        )
        db.refresh(product)
        return before - product.stock
