"""
Payment processing against a gateway.

The gateway answers approved or declined; a gateway that cannot be reached
raises PaymentGatewayError. The default gateway is a simulation that approves
PAYMENT_SUCCESS_RATE of charges.
"""
import logging
import os
import random
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from sqlalchemy.orm import Session

from errors import AlreadyProcessed, InvalidState
from models import Order
from repositories import OrderRepository
from schemas import OrderStatus, PaymentStatus

logger = logging.getLogger(__name__)

PAYMENT_SUCCESS_RATE = float(os.getenv("PAYMENT_SUCCESS_RATE", "0.9"))


class PaymentOutcome(str, Enum):
    approved = "approved"
    declined = "declined"


class PaymentGateway(ABC):
    @abstractmethod
    def charge(self, order: Order, details: Optional[dict] = None) -> PaymentOutcome:
        """Charge the order; raise PaymentGatewayError when the gateway cannot be reached."""


class SimulatedGateway(PaymentGateway):
    def __init__(self, success_rate: float = PAYMENT_SUCCESS_RATE, rng: Optional[random.Random] = None):
        self.success_rate = success_rate
        self.rng = rng or random.Random()

    def charge(self, order, details=None):
        if self.rng.random() < self.success_rate:
            return PaymentOutcome.approved
        return PaymentOutcome.declined


_gateway = SimulatedGateway()


def get_payment_gateway() -> PaymentGateway:
    return _gateway


def process_payment(db: Session, gateway: PaymentGateway, order_id: int, account_id: int,
                    details: Optional[dict] = None) -> Order:
    """Charge a pending order. Approval confirms it; a decline marks the payment failed."""
    orders = OrderRepository(db)
    order = orders.get_owned(order_id, account_id)
    if order.payment_status == PaymentStatus.completed:
        raise AlreadyProcessed()
    if order.status != OrderStatus.pending:
        raise InvalidState(f"Order is {order.status} and cannot be paid")

    outcome = gateway.charge(order, details)
    try:
        if outcome == PaymentOutcome.approved:
            orders.set_payment_status(order, PaymentStatus.completed.value, status=OrderStatus.confirmed.value)
        else:
            orders.set_payment_status(order, PaymentStatus.failed.value)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"Payment for order {order.id} {outcome.value}")
    return order
