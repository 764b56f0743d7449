"""
Cart to order conversion.

Runs as one transaction: the order row, every order line and the removal of
every cart line commit together, or nothing does.
"""
import logging
from typing import Dict

from sqlalchemy.orm import Session

from errors import Conflict, EmptyCart, NotFound
from models import Order
from repositories import CartRepository, CategoryRepository, OrderRepository
from schemas import CheckoutPayload

logger = logging.getLogger(__name__)

SHIPPING_FIELDS = (
    "shipping_address_street",
    "shipping_address_city",
    "shipping_address_state",
    "shipping_address_zip",
    "shipping_address_country",
)


def checkout(db: Session, account_id: int, payload: CheckoutPayload) -> Order:
    carts = CartRepository(db)
    catalog = CategoryRepository(db)
    orders = OrderRepository(db)

    try:
        lines = carts.lines_for(account_id)
        if not lines:
            raise EmptyCart()

        # Prices are read once and reused for the order lines
        prices: Dict[int, float] = {}
        total = 0.0
        for line in lines:
            if line.category_id not in prices:
                price = catalog.price_of(line.category_id)
                if price is None:
                    raise NotFound(f"Category {line.category_id} not found")
                prices[line.category_id] = price
            total += prices[line.category_id] * line.quantity

        shipping = {field: getattr(payload, field) for field in SHIPPING_FIELDS}
        order = orders.create(account_id, round(total, 2), payload.payment_method, shipping)
        for line in lines:
            orders.add_line(order, line.category_id, line.quantity, prices[line.category_id])
            if not carts.remove_exact(line):
                raise Conflict("Cart changed during checkout, please retry")
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"Order {order.id} placed by account {account_id}: {len(lines)} lines, total {order.total_amount}")
    db.refresh(order)
    return order
