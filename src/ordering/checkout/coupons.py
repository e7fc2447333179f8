"""Coupons and their redemptions.

Redemption increments ``used_count`` with a compare-and-set update so a
coupon with a usage limit cannot be over-redeemed by concurrent checkouts. A
redemption can be released again when the checkout that took it is voided or
the order is cancelled.
"""

from datetime import datetime
from enum import Enum

import structlog
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, Identifier, Integer, String
from protean.utils.globals import current_domain

from ordering.order.order import round_money
from shared.db import as_utc, fetch_all
from shared.domain import orderstream

logger = structlog.get_logger(__name__)

WRITE_ATTEMPTS = 5


class DiscountType(Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


@orderstream.aggregate
class Coupon:
    code = String(required=True, max_length=50, unique=True)
    name = String(max_length=255, default="")
    discount_type = String(required=True, max_length=20, choices=DiscountType)
    discount_value = Float(required=True, min_value=0.0)
    min_purchase_amount = Float(default=0.0)
    max_discount_amount = Float()
    valid_from = DateTime(required=True)
    valid_until = DateTime(required=True)
    usage_limit = Integer(min_value=0)
    used_count = Integer(default=0, min_value=0)
    per_user_limit = Integer(min_value=0)
    is_active = Boolean(default=True)

    def discount_for(self, subtotal: float) -> float:
        """Percentage discounts honour the cap; fixed discounts never exceed the subtotal."""
        if DiscountType(self.discount_type) == DiscountType.PERCENTAGE:
            discount = subtotal * self.discount_value / 100
            if self.max_discount_amount:
                discount = min(discount, self.max_discount_amount)
        else:
            discount = self.discount_value
        return round_money(min(discount, subtotal))

    def in_window(self, now: datetime) -> bool:
        return as_utc(self.valid_from) <= now <= as_utc(self.valid_until)


@orderstream.aggregate
class CouponRedemption:
    coupon_id = Identifier(required=True)
    customer_id = String(required=True, max_length=50)
    order_number = String(required=True, max_length=20)
    discount = Float(required=True)
    redeemed_at = DateTime()
    released = Boolean(default=False)
    released_at = DateTime()


@orderstream.repository(part_of=Coupon)
class CouponRepository:
    def find_by_code(self, code: str) -> Coupon | None:
        return self._dao.query.filter(code=code.strip().upper()).all().first

    def take_use(self, coupon: Coupon) -> bool:
        """Count one more use unless the usage limit is already reached."""
        for _ in range(WRITE_ATTEMPTS):
            current = self._dao.get(coupon.id)
            if current.usage_limit and current.used_count >= current.usage_limit:
                return False
            taken = current.used_count
            if self._dao.query.filter(id=str(coupon.id), used_count=taken).update_all(used_count=taken + 1) == 1:
                return True
        return False

    def give_back_use(self, coupon_id: str) -> None:
        for _ in range(WRITE_ATTEMPTS):
            current = self._dao.get(coupon_id)
            taken = current.used_count
            if taken <= 0:
                return
            if self._dao.query.filter(id=str(coupon_id), used_count=taken).update_all(used_count=taken - 1) == 1:
                return


@orderstream.repository(part_of=CouponRedemption)
class CouponRedemptionRepository:
    def active_for_customer(self, coupon_id: str, customer_id: str) -> list[CouponRedemption]:
        return fetch_all(
            self._dao.query.filter(coupon_id=str(coupon_id), customer_id=customer_id, released=False)
        )

    def active_for_order(self, order_number: str) -> list[CouponRedemption]:
        return fetch_all(self._dao.query.filter(order_number=order_number, released=False))


def _reject(message: str):
    raise ValidationError({"coupon_code": [message]})


def validate_coupon(code: str, subtotal: float, customer_id: str, now: datetime) -> Coupon:
    """Return the coupon for ``code`` or raise ``ValidationError`` explaining why it cannot apply."""
    coupon = current_domain.repository_for(Coupon).find_by_code(code)
    if coupon is None:
        _reject("Invalid coupon code")
    if not coupon.is_active:
        _reject("Coupon is not active")
    if not coupon.in_window(now):
        _reject("Coupon is not valid at this time")
    if coupon.usage_limit and coupon.used_count >= coupon.usage_limit:
        _reject("Coupon usage limit exceeded")
    if coupon.per_user_limit:
        redemptions = current_domain.repository_for(CouponRedemption).active_for_customer(coupon.id, customer_id)
        if len(redemptions) >= coupon.per_user_limit:
            _reject("Coupon already used")
    if subtotal < (coupon.min_purchase_amount or 0):
        _reject(f"Minimum purchase amount of {coupon.min_purchase_amount:.2f} required")
    return coupon


def redeem(coupon: Coupon, customer_id: str, order_number: str, discount: float, now: datetime) -> CouponRedemption:
    if not current_domain.repository_for(Coupon).take_use(coupon):
        _reject("Coupon usage limit exceeded")

    redemption = CouponRedemption(
        coupon_id=str(coupon.id),
        customer_id=customer_id,
        order_number=order_number,
        discount=discount,
        redeemed_at=now,
    )
    current_domain.repository_for(CouponRedemption).add(redemption)
    logger.info("coupon_redeemed", code=coupon.code, order_number=order_number, discount=discount)
    return redemption


def release(redemption: CouponRedemption, now: datetime) -> None:
    """Give a redemption back; releasing twice has no further effect."""
    if redemption.released:
        return
    redemption.released = True
    redemption.released_at = now
    current_domain.repository_for(CouponRedemption).add(redemption)
    current_domain.repository_for(Coupon).give_back_use(redemption.coupon_id)
    logger.info("coupon_released", coupon_id=str(redemption.coupon_id), order_number=redemption.order_number)


def release_for_order(order_number: str, now: datetime) -> int:
    """Release every live redemption taken by ``order_number``; returns how many were released."""
    redemptions = current_domain.repository_for(CouponRedemption).active_for_order(order_number)
    for redemption in redemptions:
        release(redemption, now)
    return len(redemptions)
