from enum import Enum


class CouponType(str, Enum):
    percentage = "percentage"
    fixed_amount = "fixed_amount"
    free_shipping = "free_shipping"


# declaration order is the order reasons are reported in
class CouponRejection(str, Enum):
    not_found = "not_found"
    expired = "expired"
    exhausted = "exhausted"
    cart_empty = "cart_empty"
    minimum_amount_not_met = "minimum_amount_not_met"
    customer_type_not_allowed = "customer_type_not_allowed"
    user_limit_reached = "user_limit_reached"
    first_order_only = "first_order_only"


REJECTION_MESSAGES = {
    CouponRejection.not_found: "This coupon code does not exist or is no longer available.",
    CouponRejection.expired: "This coupon code is expired.",
    CouponRejection.exhausted: "This coupon code has reached its usage limit.",
    CouponRejection.cart_empty: "Your cart is empty.",
    CouponRejection.minimum_amount_not_met: "Your cart does not reach the minimum amount for this coupon.",
    CouponRejection.customer_type_not_allowed: "This coupon code is not available for your account type.",
    CouponRejection.user_limit_reached: "You have already used this coupon code the maximum number of times.",
    CouponRejection.first_order_only: "This coupon code is reserved for a first order.",
}
