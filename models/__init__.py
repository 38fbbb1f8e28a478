from models.customers import Customer
from models.deliveries import Delivery
from models.products import Product
from models.transactions import Transaction
from models.orders import Order
from models.inventory_changes import InventoryChange

__all__ = ["Customer", "Delivery", "Product", "Transaction", "Order", "InventoryChange"]
