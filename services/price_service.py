from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Sequence
from sqlalchemy.orm import Session
from core.config import settings
from core.errors import ValidationError, PriceMismatch
from repositories import ProductRepository
from utils.result import Success, Failure, Result
from utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PricedItem:
    product_id: int
    price_cents: int
    quantity: int


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal_cents: int
    shipping_cents: int
    total_cents: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "subtotal_cents": self.subtotal_cents,
            "shipping_cents": self.shipping_cents,
            "total_cents": self.total_cents,
        }


def to_cents(price) -> int:
    """Whole-unit price (Decimal/str/int) to integer cents, no float arithmetic."""
    return int((Decimal(str(price)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PriceCalculator:
    """
    Authoritative order total: subtotal plus a flat shipping surcharge that
    is waived once the subtotal reaches the free-shipping threshold.
    """

    def __init__(self, free_shipping_threshold_cents: int | None = None,
                 shipping_cost_cents: int | None = None):
        self.free_shipping_threshold_cents = (
            settings.FREE_SHIPPING_THRESHOLD_CENTS
            if free_shipping_threshold_cents is None else free_shipping_threshold_cents
        )
        self.shipping_cost_cents = (
            settings.SHIPPING_COST_CENTS if shipping_cost_cents is None else shipping_cost_cents
        )

    def shipping_for(self, subtotal_cents: int) -> int:
        if subtotal_cents >= self.free_shipping_threshold_cents:
            return 0
        return self.shipping_cost_cents

    def calculate(self, priced_items: Sequence[PricedItem] | None) -> PriceBreakdown:
        subtotal = sum(item.price_cents * item.quantity for item in priced_items or [])
        shipping = self.shipping_for(subtotal)
        return PriceBreakdown(subtotal, shipping, subtotal + shipping)


class PriceValidator:
    """
    Recomputes the order total from current product prices and rejects
    client totals that disagree. This is the anti-fraud control: the
    client amount is never coerced, only accepted or refused.
    """

    def __init__(self, calculator: PriceCalculator | None = None):
        self.calculator = calculator or PriceCalculator()

    def resolve_prices(self, db: Session, items: List[Dict[str, Any]]) -> Result:
        if not items:
            return Failure(ValidationError("Order must contain at least one item"))

        products = ProductRepository.find_many(db, (item["product_id"] for item in items))

        priced = []
        for item in items:
            product = products.get(item["product_id"])
            if product is None:
                return Failure(ValidationError(
                    f"Product with ID {item['product_id']} not found",
                    details={"product_id": item["product_id"]}
                ))
            priced.append(PricedItem(
                product_id=product.id,
                price_cents=to_cents(product.price),
                quantity=int(item["quantity"])
            ))

        return Success(priced)

    def validate_amount(self, priced_items: Sequence[PricedItem], claimed_amount_cents: int) -> Result:
        breakdown = self.calculator.calculate(priced_items)

        if claimed_amount_cents != breakdown.total_cents:
            logger.warning(
                "Order amount mismatch",
                extra={
                    "provided": claimed_amount_cents,
                    "calculated": breakdown.total_cents
                }
            )
            return Failure(PriceMismatch(provided=claimed_amount_cents, calculated=breakdown.total_cents))

        return Success(breakdown)

    def validate(self, db: Session, items: List[Dict[str, Any]], claimed_amount_cents: int) -> Result:
        """Success(PriceBreakdown) with the server-computed total, or the first failure."""
        return self.resolve_prices(db, items).bind(
            lambda priced: self.validate_amount(priced, claimed_amount_cents)
        )
