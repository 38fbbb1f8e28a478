"""
Persistence collaborators, one per entity.

Repositories add and flush but never commit: the calling service owns the
unit of work and decides where each commit boundary sits.
"""

from repositories.customer_repository import CustomerRepository
from repositories.delivery_repository import DeliveryRepository
from repositories.product_repository import ProductRepository
from repositories.transaction_repository import TransactionRepository
from repositories.order_repository import OrderRepository

__all__ = [
    "CustomerRepository",
    "DeliveryRepository",
    "ProductRepository",
    "TransactionRepository",
    "OrderRepository",
]
