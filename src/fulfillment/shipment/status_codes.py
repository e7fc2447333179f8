"""Carrier status codes and their internal shipping status.

The code set mirrors the carrier's ``current_status_id`` values. Codes that
are not members of ``CarrierStatus`` map to nothing and leave an order's
shipping status unchanged.
"""

from enum import IntEnum

from shared.status import ShippingStatus


class CarrierStatus(IntEnum):
    AWB_ASSIGNED = 1
    LABEL_GENERATED = 2
    PICKUP_SCHEDULED = 3
    PICKUP_QUEUED = 4
    MANIFEST_GENERATED = 5
    SHIPPED = 6
    OUT_FOR_DELIVERY = 7
    DELIVERED = 8
    UNDELIVERED = 9
    RTO_INITIATED = 10
    RTO_DELIVERED = 11
    CANCELLED = 12
    RTO_ACKNOWLEDGED = 13
    OUT_FOR_PICKUP = 14
    PICKUP_EXCEPTION = 15
    IN_TRANSIT_DELAYED = 16
    PARTIAL_DELIVERED = 17
    LOST = 18
    DAMAGED = 19
    DESTROYED = 20
    REACHED_DESTINATION = 38
    MISROUTED = 39
    CONTACT_CUSTOMER_CARE = 40
    SHIPMENT_BOOKED = 41
    IN_TRANSIT_TO_DESTINATION = 42

    @property
    def shipping_status(self) -> ShippingStatus:
        return _SHIPPING_STATUS[self]


_SHIPPING_STATUS = {
    CarrierStatus.AWB_ASSIGNED: ShippingStatus.CONFIRMED,
    CarrierStatus.LABEL_GENERATED: ShippingStatus.PROCESSING,
    CarrierStatus.PICKUP_SCHEDULED: ShippingStatus.PROCESSING,
    CarrierStatus.PICKUP_QUEUED: ShippingStatus.PROCESSING,
    CarrierStatus.MANIFEST_GENERATED: ShippingStatus.PROCESSING,
    CarrierStatus.SHIPPED: ShippingStatus.SHIPPED,
    CarrierStatus.OUT_FOR_DELIVERY: ShippingStatus.SHIPPED,
    CarrierStatus.DELIVERED: ShippingStatus.DELIVERED,
    CarrierStatus.UNDELIVERED: ShippingStatus.CANCELLED,
    CarrierStatus.RTO_INITIATED: ShippingStatus.RETURNED,
    CarrierStatus.RTO_DELIVERED: ShippingStatus.RETURNED,
    CarrierStatus.CANCELLED: ShippingStatus.CANCELLED,
    CarrierStatus.RTO_ACKNOWLEDGED: ShippingStatus.RETURNED,
    CarrierStatus.OUT_FOR_PICKUP: ShippingStatus.SHIPPED,
    CarrierStatus.PICKUP_EXCEPTION: ShippingStatus.PROCESSING,
    CarrierStatus.IN_TRANSIT_DELAYED: ShippingStatus.SHIPPED,
    CarrierStatus.PARTIAL_DELIVERED: ShippingStatus.SHIPPED,
    CarrierStatus.LOST: ShippingStatus.RETURNED,
    CarrierStatus.DAMAGED: ShippingStatus.RETURNED,
    CarrierStatus.DESTROYED: ShippingStatus.RETURNED,
    CarrierStatus.REACHED_DESTINATION: ShippingStatus.SHIPPED,
    CarrierStatus.MISROUTED: ShippingStatus.SHIPPED,
    CarrierStatus.CONTACT_CUSTOMER_CARE: ShippingStatus.SHIPPED,
    CarrierStatus.SHIPMENT_BOOKED: ShippingStatus.SHIPPED,
    CarrierStatus.IN_TRANSIT_TO_DESTINATION: ShippingStatus.SHIPPED,
}


def parse_carrier_status(code) -> CarrierStatus | None:
    """Accept the code as int or numeric string; anything else is unknown."""
    try:
        return CarrierStatus(int(code))
    except (TypeError, ValueError):
        return None


def shipping_status_for(code) -> ShippingStatus | None:
    status = parse_carrier_status(code)
    return status.shipping_status if status is not None else None
