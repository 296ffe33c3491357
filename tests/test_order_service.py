from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlmodel import select

from storefront.constants.coupon import CouponRejection
from storefront.constants.order_status import OrderStatus
from storefront.exceptions import (
    AuditTrailImmutable,
    BusinessRuleError,
    CouponNotEligible,
    EntityNotFound,
    InvalidStatusTransition,
    OrderDeletionProhibited,
)
from storefront.jobs.order_expiry import expire_unpaid_orders
from storefront.models.cart import CartStatus
from storefront.models.order import Order
from storefront.models.order_status_history import OrderStatusHistory
from storefront.services import coupon_service, order_service, order_status_service


@pytest.fixture
def place_order(session, user, make_product, make_cart, address):
    """Checkout of a fresh cart; returns ``(order, product)``."""
    def _place_order(quantity=2, price="20.00", stock=10, coupon_code=None, customer=user):
        product = make_product(price=price, stock=stock)
        cart = make_cart(customer, [(product, quantity)])
        if coupon_code:
            coupon_service.apply_to_cart(session, cart, coupon_code, customer)
        order = order_service.create_order_from_cart(session, cart, address)
        return order, product

    return _place_order


def _history(session, order):
    return order_status_service.get_status_history(session, order)


class TestCheckout:
    def test_order_is_created_pending_with_frozen_totals(self, session, place_order):
        order, product = place_order(quantity=2, price="20.00")

        assert order.status == OrderStatus.pending
        assert order.subtotal == Decimal("40.00")
        assert order.tax_amount == Decimal("8.00")
        assert order.shipping_cost == Decimal("5.90")
        assert order.grand_total == Decimal("53.90")
        assert [(i.sku, i.quantity, i.line_total) for i in order.items] == [
            (product.sku, 2, Decimal("40.00"))
        ]
        # stock is taken on payment confirmation
        session.refresh(product)
        assert product.stock == 10

    def test_initial_history_row(self, session, user, place_order):
        order, _ = place_order()

        history = _history(session, order)
        assert len(history) == 1
        assert history[0].from_status is None
        assert history[0].to_status == OrderStatus.pending
        assert history[0].changed_by_type == "customer"
        assert history[0].changed_by_id == user.id

    def test_reference_format(self, place_order):
        order, _ = place_order()
        assert order.reference == datetime.utcnow().strftime("%Y-%m-") + "00001"

    def test_cart_is_archived(self, session, user, make_product, make_cart, address):
        cart = make_cart(user, [(make_product(), 1)])
        order_service.create_order_from_cart(session, cart, address)

        session.refresh(cart)
        assert cart.status == CartStatus.archived

        with pytest.raises(BusinessRuleError) as exc:
            order_service.create_order_from_cart(session, cart, address)
        assert exc.value.rule == "cart_not_active"

    def test_empty_cart_is_rejected(self, session, user, make_cart, address):
        cart = make_cart(user)

        with pytest.raises(BusinessRuleError) as exc:
            order_service.create_order_from_cart(session, cart, address)
        assert exc.value.rule == "cart_empty"

    def test_short_stock_is_rejected(self, session, user, make_product, make_cart, address):
        product = make_product(stock=3)
        cart = make_cart(user, [(product, 3)])
        product.stock = 1
        session.add(product)
        session.commit()

        with pytest.raises(BusinessRuleError) as exc:
            order_service.create_order_from_cart(session, cart, address)
        assert exc.value.rule == "insufficient_stock"

    def test_deactivated_product_is_rejected(self, session, user, make_product, make_cart, address):
        product = make_product()
        cart = make_cart(user, [(product, 1)])
        product.is_active = False
        session.add(product)
        session.commit()

        with pytest.raises(EntityNotFound):
            order_service.create_order_from_cart(session, cart, address)

    def test_coupon_is_consumed_and_snapshotted(self, session, make_coupon, place_order):
        coupon = make_coupon(value="0.10")
        order, _ = place_order(quantity=3, price="20.00", coupon_code="WELCOME10")

        assert order.discount_amount == Decimal("6.00")
        # (60 - 6) * 1.2, free shipping above 50
        assert order.grand_total == Decimal("64.80")
        assert order.coupon_id == coupon.id
        assert order.applied_coupon["code"] == "WELCOME10"
        assert order.applied_coupon["discount"] == "6.00"

        session.refresh(coupon)
        assert coupon.usage_count == 1

    def test_snapshot_survives_coupon_changes(self, session, make_coupon, place_order):
        coupon = make_coupon(value="0.10")
        order, _ = place_order(quantity=3, coupon_code="WELCOME10")

        coupon.value = Decimal("0.50")
        session.add(coupon)
        session.commit()
        session.refresh(order)

        assert Decimal(order.applied_coupon["value"]) == Decimal("0.10")

    def test_coupon_exhausted_before_checkout(self, session, user, make_product, make_coupon, make_cart, address):
        coupon = make_coupon(max_usages=1)
        cart = make_cart(user, [(make_product(), 1)])
        coupon_service.apply_to_cart(session, cart, "WELCOME10", user)

        coupon.usage_count = 1
        session.add(coupon)
        session.commit()

        with pytest.raises(CouponNotEligible) as exc:
            order_service.create_order_from_cart(session, cart, address)

        assert exc.value.reasons == [CouponRejection.exhausted]
        assert session.exec(select(Order)).all() == []
        session.refresh(cart)
        assert cart.status == CartStatus.active

    def test_guest_checkout(self, session, make_product, make_cart, address):
        cart = make_cart(None, [(make_product(), 1)], token="guest-token")
        order = order_service.create_order_from_cart(session, cart, address)

        assert order.is_guest_order
        assert order.customer_snapshot["guest"] is True
        assert _history(session, order)[0].changed_by_type == "system"


class TestOrderReference:
    def test_sequence_restarts_each_month(self, session, place_order):
        place_order()
        place_order()

        now = datetime.utcnow()
        assert order_service.generate_order_reference(session, now) == now.strftime("%Y-%m-") + "00003"
        assert order_service.generate_order_reference(session, datetime(1999, 1, 5)) == "1999-01-00001"

    def test_reference_collision_is_retried(self, session, user, make_product, make_cart, address, place_order, monkeypatch):
        first, _ = place_order()
        taken = [first.reference]
        allocate = order_service.generate_order_reference

        # the first allocation loses the race to an order committed elsewhere
        def racing_reference(session, now=None):
            return taken.pop() if taken else allocate(session, now)

        monkeypatch.setattr(order_service, "generate_order_reference", racing_reference)
        cart = make_cart(user, [(make_product(name="Pen", price="2.00"), 1)])

        order = order_service.create_order_from_cart(session, cart, address)

        assert order.reference == datetime.utcnow().strftime("%Y-%m-") + "00002"
        assert len(session.exec(select(Order)).all()) == 2
        assert len(_history(session, order)) == 1


class TestStatusChanges:
    def test_illegal_transition_changes_nothing(self, session, place_order):
        order, _ = place_order()

        with pytest.raises(InvalidStatusTransition) as exc:
            order_status_service.change_order_status(session, order, OrderStatus.shipped)

        assert exc.value.rule == "invalid_status_transition"
        assert exc.value.context == {"from": "pending", "to": "shipped", "rule": "invalid_status_transition"}
        session.refresh(order)
        assert order.status == OrderStatus.pending
        assert len(_history(session, order)) == 1

    def test_full_lifecycle(self, session, admin, place_order):
        order, product = place_order(quantity=2, stock=10)

        order_status_service.confirm_payment(session, order, payment_reference="PAY-1")
        assert order.validated_at is not None
        session.refresh(product)
        assert product.stock == 8

        order_status_service.mark_as_processing(session, order, admin)
        order_status_service.mark_as_shipped(session, order, "TRACK-42", "Colissimo", admin)
        assert order.meta["shipping"]["tracking_number"] == "TRACK-42"

        order_status_service.mark_as_delivered(session, order, admin)
        assert order.delivered_at is not None

        order_status_service.complete_order(session, order)
        assert order.status == OrderStatus.completed

        history = _history(session, order)
        assert [h.to_status for h in history] == [
            OrderStatus.pending,
            OrderStatus.confirmed,
            OrderStatus.processing,
            OrderStatus.shipped,
            OrderStatus.delivered,
            OrderStatus.completed,
        ]
        assert history[3].meta == {"tracking_number": "TRACK-42", "carrier": "Colissimo"}
        assert history[2].changed_by_type == "admin"

        with pytest.raises(InvalidStatusTransition):
            order_status_service.change_order_status(session, order, OrderStatus.refunded)

    def test_cancel_after_confirmation_restores_stock(self, session, user, place_order):
        order, product = place_order(quantity=3, stock=5)
        order_status_service.confirm_payment(session, order)

        order_status_service.cancel_order(session, order, user, reason="Changed my mind")

        session.refresh(product)
        assert product.stock == 5
        assert order.cancelled_at is not None
        assert _history(session, order)[-1].reason == "Changed my mind"

    def test_cancel_pending_leaves_stock_alone(self, session, user, place_order):
        order, product = place_order(quantity=3, stock=5)

        order_status_service.cancel_order(session, order, user)

        session.refresh(product)
        assert product.stock == 5

    def test_shipped_order_cannot_be_cancelled(self, session, place_order):
        order, _ = place_order()
        order_status_service.confirm_payment(session, order)
        order_status_service.mark_as_processing(session, order)
        order_status_service.mark_as_shipped(session, order)

        with pytest.raises(BusinessRuleError) as exc:
            order_status_service.cancel_order(session, order)
        assert exc.value.rule == "order_not_cancellable"

    def test_refund_requires_delivery_or_hold(self, session, admin, place_order):
        order, product = place_order(quantity=1, stock=4)

        with pytest.raises(BusinessRuleError) as exc:
            order_status_service.refund_order(session, order, admin)
        assert exc.value.rule == "order_not_refundable"

        order_status_service.confirm_payment(session, order)
        order_status_service.put_on_hold(session, order, "Address problem", admin)
        order_status_service.refund_order(session, order, admin, reason="Customer unreachable")

        assert order.status == OrderStatus.refunded
        session.refresh(product)
        assert product.stock == 4
        assert _history(session, order)[-1].meta == {"amount": str(order.grand_total)}

    def test_refund_cannot_exceed_order_total(self, session, admin, place_order):
        order, _ = place_order(quantity=1, price="20.00")
        order_status_service.confirm_payment(session, order)
        order_status_service.put_on_hold(session, order, "Damaged parcel", admin)

        with pytest.raises(BusinessRuleError) as exc:
            order_status_service.refund_order(session, order, admin, amount=order.grand_total + Decimal("0.01"))
        assert exc.value.rule == "refund_exceeds_total"
        assert order.status == OrderStatus.on_hold

        order_status_service.refund_order(session, order, admin, amount=Decimal("10.00"))
        assert order.status == OrderStatus.refunded
        assert _history(session, order)[-1].meta == {"amount": "10.00"}

    def test_confirm_fails_when_stock_ran_out(self, session, place_order, make_product):
        order, product = place_order(quantity=2, stock=2)
        product.stock = 1
        session.add(product)
        session.commit()

        with pytest.raises(BusinessRuleError) as exc:
            order_status_service.confirm_payment(session, order)

        assert exc.value.rule == "insufficient_stock"
        session.rollback()
        session.refresh(order)
        assert order.status == OrderStatus.pending

    def test_payment_failure_is_terminal(self, session, place_order):
        order, _ = place_order()
        order_status_service.mark_as_failed(session, order)

        assert order.status == OrderStatus.failed
        with pytest.raises(InvalidStatusTransition):
            order_status_service.confirm_payment(session, order)

    def test_expire_pending_orders(self, session, place_order):
        stale, _ = place_order()
        fresh, _ = place_order()
        paid, _ = place_order()
        order_status_service.confirm_payment(session, paid)
        for order in (stale, paid):
            order.created_at = datetime.utcnow() - timedelta(days=10)
            session.add(order)
        session.commit()

        expired = order_status_service.expire_pending_orders(session)

        assert [o.id for o in expired] == [stale.id]
        session.refresh(fresh)
        assert fresh.status == OrderStatus.pending
        session.refresh(paid)
        assert paid.status == OrderStatus.confirmed
        assert _history(session, stale)[-1].changed_by_type == "system"


class TestAuditTrail:
    def test_orders_cannot_be_deleted(self, session, place_order):
        order, _ = place_order()

        session.delete(order)
        with pytest.raises(OrderDeletionProhibited):
            session.flush()
        session.rollback()

    def test_history_is_append_only(self, session, place_order):
        order, _ = place_order()
        entry = session.exec(
            select(OrderStatusHistory).where(OrderStatusHistory.order_id == order.id)
        ).one()

        entry.reason = "rewritten"
        session.add(entry)
        with pytest.raises(AuditTrailImmutable) as exc:
            session.flush()
        assert exc.value.error_key == "order.history_immutable"
        session.rollback()

    def test_history_rows_cannot_be_deleted(self, session, place_order):
        order, _ = place_order()
        entry = _history(session, order)[0]

        session.delete(entry)
        with pytest.raises(AuditTrailImmutable):
            session.flush()
        session.rollback()


class TestStatistics:
    def test_revenue_counts_paid_orders_only(self, session, site, place_order):
        paid, _ = place_order(quantity=3, price="20.00")
        place_order(quantity=1, price="10.00")
        order_status_service.confirm_payment(session, paid)

        stats = order_service.order_statistics(session, site.id)

        assert stats["total_orders"] == 2
        assert stats["paid_orders"] == 1
        assert stats["revenue"] == Decimal("72.00")
        assert stats["average_order_value"] == Decimal("72.00")
        assert stats["status_distribution"]["pending"] == 1
        assert stats["status_distribution"]["confirmed"] == 1
        assert stats["status_distribution"]["refunded"] == 0


class TestExpiryJob:
    def test_job_cancels_stale_orders(self, session, place_order):
        order, _ = place_order()
        session.commit()

        assert expire_unpaid_orders(now=datetime.utcnow() + timedelta(days=30)) == 1
        session.refresh(order)
        assert order.status == OrderStatus.cancelled
