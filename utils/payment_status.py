"""
Order, delivery and gateway status vocabularies.

The order state machine and the gateway's status strings are separate
namespaces; map_gateway_status is the only bridge between them.
"""

from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    APPROVED = "approved"
    DECLINED = "declined"
    VOIDED = "voided"
    ERROR = "error"


class GatewayStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"
    VOIDED = "VOIDED"
    ERROR = "ERROR"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


ORDER_STATUSES = tuple(s.value for s in OrderStatus)
DELIVERY_STATUSES = tuple(s.value for s in DeliveryStatus)

TERMINAL_GATEWAY_STATUSES = frozenset({
    GatewayStatus.APPROVED.value,
    GatewayStatus.DECLINED.value,
    GatewayStatus.VOIDED.value,
    GatewayStatus.ERROR.value,
})

_GATEWAY_TO_ORDER = {
    GatewayStatus.APPROVED.value: OrderStatus.APPROVED,
    GatewayStatus.DECLINED.value: OrderStatus.DECLINED,
    GatewayStatus.VOIDED.value: OrderStatus.VOIDED,
    GatewayStatus.ERROR.value: OrderStatus.ERROR,
    GatewayStatus.PENDING.value: OrderStatus.PROCESSING,
}


def map_gateway_status(gateway_status) -> OrderStatus:
    """Total mapping from any gateway status string to an order status."""
    if isinstance(gateway_status, GatewayStatus):
        gateway_status = gateway_status.value
    return _GATEWAY_TO_ORDER.get(gateway_status, OrderStatus.PENDING)


def is_terminal_gateway_status(gateway_status) -> bool:
    if isinstance(gateway_status, GatewayStatus):
        gateway_status = gateway_status.value
    return gateway_status in TERMINAL_GATEWAY_STATUSES


# Orders in these states may start a new charge attempt
PAYABLE_ORDER_STATUSES = (
    OrderStatus.PENDING.value,
    OrderStatus.ERROR.value,
    OrderStatus.DECLINED.value,
    OrderStatus.VOIDED.value,
)

# The only move out of a settled status: the gateway voids an approved charge
_LATE_TRANSITIONS = frozenset({
    (GatewayStatus.APPROVED.value, GatewayStatus.VOIDED.value),
})


def accepts_status_update(previous_status, new_status) -> bool:
    """
    Whether a reported status may overwrite the recorded one.

    Anything goes while the transaction is open. Once settled, only a
    redelivery of the same status or an approved -> voided void is taken;
    every other report is out of order and must be dropped.
    """
    if isinstance(previous_status, GatewayStatus):
        previous_status = previous_status.value
    if isinstance(new_status, GatewayStatus):
        new_status = new_status.value

    if not is_terminal_gateway_status(previous_status):
        return True
    if previous_status == new_status:
        return True
    return (previous_status, new_status) in _LATE_TRANSITIONS
