"""
Order ledger.

Orders and their item snapshots are written together in one transaction and
never edited afterwards, apart from the status, which only moves along
``pending -> paid`` or ``pending -> cancelled``.
"""
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from . import models
from .errors import (
    DuplicateSession,
    InternalError,
    InvalidCart,
    InvalidTransition,
    OrderNotFound,
    ValidationError,
)
from .gateway import (
    EVENT_ASYNC_FAILED,
    EVENT_ASYNC_SUCCEEDED,
    EVENT_COMPLETED,
    EVENT_EXPIRED,
    GatewayEvent,
)

logger = logging.getLogger(__name__)

TRANSITIONS = {
    models.ORDER_PENDING: {models.ORDER_PAID, models.ORDER_CANCELLED},
    models.ORDER_PAID: set(),
    models.ORDER_CANCELLED: set(),
}


@dataclass(frozen=True)
class LineSnapshot:
    product_id: int
    quantity: int
    price: Decimal


# Business rule: money stored rounded to 2 decimals

def round_amount(value: Decimal) -> Decimal:
    return Decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def order_total(items: Sequence[LineSnapshot]) -> Decimal:
    return round_amount(sum((round_amount(i.price) * i.quantity for i in items), Decimal("0")))


def get_order(db: Session, order_id: int) -> models.Order:
    order = db.get(models.Order, order_id)
    if order is None:
        raise OrderNotFound(order_id)
    return order


def get_order_by_session(db: Session, external_session_id: str) -> Optional[models.Order]:
    return db.execute(
        select(models.Order).where(models.Order.external_session_id == external_session_id)
    ).scalar_one_or_none()


def record_order(
    db: Session,
    user_id: Optional[int],
    items: Sequence[LineSnapshot],
    external_session_id: str,
) -> models.Order:
    if not items:
        raise InvalidCart("an order needs at least one item")
    try:
        existing = get_order_by_session(db, external_session_id)
    except SQLAlchemyError as e:
        db.rollback()
        raise InternalError("could not record order") from e
    if existing is not None:
        raise DuplicateSession(external_session_id)

    order = models.Order(
        user_id=user_id,
        total=order_total(items),
        status=models.ORDER_PENDING,
        external_session_id=external_session_id,
        items=[
            models.OrderItem(product_id=i.product_id, quantity=i.quantity, price=round_amount(i.price))
            for i in items
        ],
    )
    db.add(order)
    try:
        # Order and items flush in the same transaction: both land or neither does
        db.commit()
    except IntegrityError as e:
        db.rollback()
        if get_order_by_session(db, external_session_id) is not None:
            raise DuplicateSession(external_session_id) from e
        raise InternalError("could not record order") from e
    except (SQLAlchemyError, OverflowError, ValueError, TypeError) as e:
        # The driver raises plain Python errors for values it cannot bind
        db.rollback()
        raise InternalError("could not record order") from e
    db.refresh(order)
    return order


def list_orders_for_user(db: Session, user_id: int) -> List[models.Order]:
    stmt = (
        select(models.Order)
        .where(models.Order.user_id == user_id)
        .options(selectinload(models.Order.items))
        .order_by(models.Order.created_at.desc(), models.Order.id.desc())
    )
    return db.execute(stmt).scalars().all()


def _transition(order: models.Order, new_status: str) -> None:
    if new_status not in TRANSITIONS.get(order.status, set()):
        raise InvalidTransition(order.status, new_status)
    logger.info("Order id=%s %s -> %s", order.id, order.status, new_status)
    order.status = new_status


def update_status(db: Session, order_id: int, new_status: str) -> models.Order:
    if new_status not in models.ORDER_STATUSES:
        raise ValidationError("unknown order status", [{"field": "status", "value": new_status}])
    order = get_order(db, order_id)
    _transition(order, new_status)
    db.commit()
    db.refresh(order)
    return order


def _target_status(event: GatewayEvent) -> Optional[str]:
    if event.type == EVENT_COMPLETED:
        # Delayed payment methods complete the session while still "unpaid"
        if event.payment_status in ("paid", "no_payment_required"):
            return models.ORDER_PAID
        return None
    if event.type == EVENT_ASYNC_SUCCEEDED:
        return models.ORDER_PAID
    if event.type in (EVENT_EXPIRED, EVENT_ASYNC_FAILED):
        return models.ORDER_CANCELLED
    return None


def apply_gateway_event(db: Session, event: GatewayEvent) -> Optional[models.Order]:
    """Drive an order's status from a verified gateway callback.

    Safe to call repeatedly with the same event: an order already in the
    target state is returned unchanged.
    """
    target = _target_status(event)
    if target is None or not event.session_id:
        logger.debug("Ignoring gateway event %s (%s)", event.id, event.type)
        return None

    order = get_order_by_session(db, event.session_id)
    if order is None:
        logger.warning("Gateway event %s references unknown session %s", event.id, event.session_id)
        return None
    if order.status == target:
        logger.info("Gateway event %s already applied to order id=%s", event.id, order.id)
        return order
    if not TRANSITIONS[order.status]:
        logger.warning(
            "Gateway event %s wants %s but order id=%s is already %s",
            event.id, target, order.id, order.status,
        )
        return order

    _transition(order, target)
    db.commit()
    db.refresh(order)
    return order
