"""Pure coupon eligibility rules: no database involved."""

from datetime import datetime, timedelta
from decimal import Decimal

from storefront.constants.coupon import CouponRejection, CouponType
from storefront.models.coupon import Coupon
from storefront.models.user import User
from storefront.services.coupon_service import evaluate_coupon
from storefront.services.pricing import CartLine, price_lines

NOW = datetime(2024, 6, 15, 12, 0)
R = CouponRejection


def _snapshot(subtotal="60.00", customer_type="B2C"):
    lines = [] if subtotal is None else [
        CartLine(product_id=1, product_name="Notebook", unit_price=Decimal(subtotal), quantity=1)
    ]
    return price_lines(lines, customer_type)


def _coupon(**fields):
    fields.setdefault("type", CouponType.percentage)
    fields.setdefault("value", Decimal("0.10"))
    return Coupon(site_id=1, code="WELCOME10", **fields)


def _user():
    return User(id=7, site_id=1, first_name="Jane", last_name="Doe", email="jane@example.com")


class TestRejections:
    def test_missing_coupon_is_not_found(self):
        evaluation = evaluate_coupon(_snapshot(), None, now=NOW)
        assert evaluation.reasons == [R.not_found]
        assert not evaluation.eligible
        assert evaluation.checks["cart_not_empty"] is True

    def test_missing_coupon_on_empty_cart_reports_both(self):
        evaluation = evaluate_coupon(_snapshot(None), None, _user(), now=NOW)
        assert evaluation.reasons == [R.not_found, R.cart_empty]

    def test_inactive_coupon_on_empty_cart_reports_both(self):
        evaluation = evaluate_coupon(_snapshot(None), _coupon(is_active=False), now=NOW)
        assert evaluation.reasons == [R.not_found, R.cart_empty]
        assert evaluation.code == "WELCOME10"

    def test_inactive_coupon_is_reported_as_not_found(self):
        evaluation = evaluate_coupon(_snapshot(), _coupon(is_active=False), now=NOW)
        assert evaluation.reasons == [R.not_found]

    def test_every_failing_check_is_reported(self):
        coupon = _coupon(
            valid_until=NOW - timedelta(days=1),
            max_usages=5,
            usage_count=5,
            minimum_amount=Decimal("100.00"),
        )
        evaluation = evaluate_coupon(_snapshot("60.00"), coupon, now=NOW)

        assert evaluation.reasons == [R.expired, R.exhausted, R.minimum_amount_not_met]
        assert evaluation.discount == Decimal("0.00")

    def test_not_yet_valid_counts_as_expired(self):
        coupon = _coupon(valid_from=NOW + timedelta(hours=1))
        assert evaluate_coupon(_snapshot(), coupon, now=NOW).reasons == [R.expired]

    def test_customer_type_not_allowed(self):
        coupon = _coupon(allowed_customer_types=["B2B"])

        assert evaluate_coupon(_snapshot(customer_type="B2C"), coupon, now=NOW).reasons == [
            R.customer_type_not_allowed
        ]
        assert evaluate_coupon(_snapshot(customer_type="B2B"), coupon, now=NOW).eligible

    def test_user_limit_reached(self):
        coupon = _coupon(max_usages_per_user=1)
        evaluation = evaluate_coupon(_snapshot(), coupon, _user(), user_usages=1, now=NOW)
        assert evaluation.reasons == [R.user_limit_reached]

    def test_user_limit_ignored_for_guests(self):
        coupon = _coupon(max_usages_per_user=1)
        assert evaluate_coupon(_snapshot(), coupon, None, user_usages=3, now=NOW).eligible

    def test_first_order_only(self):
        coupon = _coupon(first_order_only=True)

        assert evaluate_coupon(_snapshot(), coupon, _user(), previous_orders=2, now=NOW).reasons == [
            R.first_order_only
        ]
        assert evaluate_coupon(_snapshot(), coupon, _user(), previous_orders=0, now=NOW).eligible

    def test_empty_cart(self):
        evaluation = evaluate_coupon(_snapshot(None), _coupon(), now=NOW)
        assert evaluation.reasons == [R.cart_empty]
        assert evaluation.checks["cart_not_empty"] is False


class TestEligible:
    def test_percentage_discount(self):
        evaluation = evaluate_coupon(_snapshot("60.00"), _coupon(), _user(), now=NOW)

        assert evaluation.eligible
        assert evaluation.discount == Decimal("6.00")
        assert evaluation.free_shipping is False
        assert evaluation.messages == []

    def test_minimum_amount_reached_exactly(self):
        coupon = _coupon(minimum_amount=Decimal("60.00"))
        assert evaluate_coupon(_snapshot("60.00"), coupon, now=NOW).eligible

    def test_free_shipping_coupon(self):
        coupon = _coupon(type=CouponType.free_shipping, value=None)
        evaluation = evaluate_coupon(_snapshot("20.00"), coupon, now=NOW)

        assert evaluation.eligible
        assert evaluation.free_shipping is True
        assert evaluation.discount == Decimal("0.00")

    def test_window_bounds_are_inclusive(self):
        coupon = _coupon(valid_from=NOW, valid_until=NOW)
        assert evaluate_coupon(_snapshot(), coupon, now=NOW).eligible
