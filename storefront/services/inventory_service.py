import logging

from sqlmodel import Session, select

from storefront.exceptions import BusinessRuleError
from storefront.models.order import Order
from storefront.models.order_item import OrderItem
from storefront.models.product import Product

logger = logging.getLogger(__name__)


def reduce_inventory(session: Session, order: Order):
    """Take the ordered quantities out of stock. Nothing is changed if any line is short."""
    items = session.exec(select(OrderItem).where(OrderItem.order_id == order.id)).all()

    products = []
    for item in items:
        product = session.get(Product, item.product_id) if item.product_id else None
        if product is None:
            logger.warning(f"Order {order.reference}: product {item.product_id} no longer exists")
            continue

        if product.stock < item.quantity:
            raise BusinessRuleError(
                "insufficient_stock",
                f"Insufficient stock for {product.name}. Available: {product.stock}, Requested: {item.quantity}",
                {"product_id": product.id, "available": product.stock, "requested": item.quantity},
            )
        products.append((product, item.quantity))

    for product, quantity in products:
        product.stock -= quantity
        session.add(product)

    logger.info(f"Reduced inventory for order {order.reference} ({len(products)} lines)")


def restock_order_items(session: Session, order: Order) -> int:
    """Put the ordered quantities back when an order is cancelled or refunded."""
    items = session.exec(select(OrderItem).where(OrderItem.order_id == order.id)).all()

    restocked = 0
    for item in items:
        product = session.get(Product, item.product_id) if item.product_id else None
        if product:
            product.stock += item.quantity
            session.add(product)
            restocked += 1

    logger.info(f"Restocked {restocked} lines for order {order.reference}")
    return restocked
