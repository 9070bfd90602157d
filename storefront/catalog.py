import logging
from typing import Dict, Iterable, List

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models, schemas
from .errors import NotFound, ProductInUse

logger = logging.getLogger(__name__)


def list_products(db: Session) -> List[models.Product]:
    return db.execute(select(models.Product).order_by(models.Product.id)).scalars().all()


def get_product(db: Session, product_id: int) -> models.Product:
    product = db.get(models.Product, product_id)
    if product is None:
        raise NotFound("product not found", {"product_id": product_id})
    return product


def get_products_by_ids(db: Session, product_ids: Iterable[int]) -> Dict[int, models.Product]:
    """Fetch every requested product in one query, keyed by id. Missing ids are simply absent."""
    ids = set(product_ids)
    if not ids:
        return {}
    rows = db.execute(select(models.Product).where(models.Product.id.in_(ids))).scalars()
    return {p.id: p for p in rows}


def create_product(db: Session, data: schemas.ProductIn) -> models.Product:
    product = models.Product(
        name=data.name,
        description=data.description,
        price=data.price,
        image=data.image,
    )
    db.add(product)
    db.commit()
    db.refresh(product)
    logger.info("Created product id=%s price=%s", product.id, product.price)
    return product


def update_product(db: Session, product_id: int, data: schemas.ProductIn) -> models.Product:
    product = get_product(db, product_id)
    product.name = data.name
    product.description = data.description
    product.price = data.price
    product.image = data.image
    db.commit()
    db.refresh(product)
    logger.info("Updated product id=%s price=%s", product.id, product.price)
    return product


def delete_product(db: Session, product_id: int) -> None:
    product = get_product(db, product_id)
    referenced = db.execute(
        select(models.OrderItem.id).where(models.OrderItem.product_id == product_id).limit(1)
    ).first()
    if referenced is not None:
        raise ProductInUse(product_id)
    db.delete(product)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ProductInUse(product_id) from e
    logger.info("Deleted product id=%s", product_id)
