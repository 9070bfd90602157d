"""
Checkout reconciliation.

Turns an untrusted list of ``(product id, quantity)`` pairs into a pending order
priced from the catalog, backed by exactly one payment gateway session. Nothing
the client says about prices is ever read: the only inputs are ids and
quantities, and every amount sent to the gateway or stored in the ledger is
derived from a fresh catalog read.

Failure ordering matters:

- an invalid cart or unknown product fails before the gateway is contacted;
- a gateway failure fails before anything is written locally;
- a local write failure after the gateway call releases the gateway session.
"""
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, Optional

from sqlalchemy.orm import Session

from . import catalog, ledger, models
from .auth import Principal
from .cart import MAX_LINE_QUANTITY, CartLine
from .config import Settings, get_settings
from .errors import (
    DuplicateSession,
    InternalError,
    InvalidCart,
    InvalidTransition,
    OrderNotFound,
    PaymentGatewayError,
    ProductNotFound,
)
from .gateway import GatewayLineItem, PaymentGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutResult:
    url: str
    order: models.Order


def to_minor_units(price: Decimal) -> int:
    return int((Decimal(price) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _is_positive_int(value, upper=None) -> bool:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        return False
    return upper is None or value <= upper


def merge_lines(lines: Iterable[CartLine]) -> Dict[int, int]:
    """Validate cart lines and fold repeated product ids into one quantity each."""
    merged: Dict[int, int] = {}
    errors = []
    for index, line in enumerate(lines or []):
        if not _is_positive_int(line.product_id):
            errors.append({"field": f"items[{index}].id", "value": line.product_id})
            continue
        if not _is_positive_int(line.quantity, MAX_LINE_QUANTITY):
            errors.append({"field": f"items[{index}].quantity", "value": line.quantity})
            continue
        merged[line.product_id] = merged.get(line.product_id, 0) + line.quantity
    for product_id, quantity in merged.items():
        if quantity > MAX_LINE_QUANTITY:
            errors.append({"field": "quantity", "product_id": product_id, "value": quantity})
    if errors:
        raise InvalidCart("cart contains invalid lines", errors)
    if not merged:
        raise InvalidCart("cart is empty")
    return merged


def create_checkout(
    db: Session,
    gateway: PaymentGateway,
    lines: Iterable[CartLine],
    principal: Optional[Principal] = None,
    settings: Optional[Settings] = None,
) -> CheckoutResult:
    settings = settings or get_settings()
    quantities = merge_lines(lines)

    products = catalog.get_products_by_ids(db, quantities.keys())
    missing = set(quantities) - set(products)
    if missing:
        raise ProductNotFound(missing)

    snapshots = []
    line_items = []
    for product_id, quantity in quantities.items():
        product = products[product_id]
        price = ledger.round_amount(product.price)
        snapshots.append(ledger.LineSnapshot(product_id=product_id, quantity=quantity, price=price))
        line_items.append(
            GatewayLineItem(
                name=product.name,
                description=product.description,
                image=product.image,
                unit_amount=to_minor_units(price),
                quantity=quantity,
            )
        )

    metadata = {"user_id": str(principal.id)} if principal is not None else {}
    session = gateway.create_session(
        line_items,
        success_url=f"{settings.public_base_url}/success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{settings.public_base_url}/",
        metadata=metadata,
    )

    try:
        order = ledger.record_order(
            db,
            principal.id if principal is not None else None,
            snapshots,
            session.id,
        )
    except DuplicateSession:
        logger.warning("Checkout session %s already has an order", session.id)
        raise
    except InternalError:
        logger.exception("Could not persist order for checkout session %s", session.id)
        _release_session(gateway, session.id)
        raise

    logger.info(
        "Checkout created order id=%s session=%s total=%s user=%s",
        order.id, session.id, order.total, order.user_id,
    )
    return CheckoutResult(url=session.url, order=order)


def _release_session(gateway: PaymentGateway, session_id: str) -> None:
    try:
        gateway.expire_session(session_id)
    except PaymentGatewayError:
        logger.error("Could not expire orphaned checkout session %s", session_id)


def cancel_order(db: Session, gateway: PaymentGateway, order_id: int, principal: Principal) -> models.Order:
    order = ledger.get_order(db, order_id)
    if order.user_id != principal.id:
        # Other users' orders are indistinguishable from missing ones
        raise OrderNotFound(order_id)
    if order.status != models.ORDER_PENDING:
        raise InvalidTransition(order.status, models.ORDER_CANCELLED)
    # Close the hosted page first so the customer cannot pay a cancelled order
    gateway.expire_session(order.external_session_id)
    return ledger.update_status(db, order.id, models.ORDER_CANCELLED)
