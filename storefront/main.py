import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from . import auth, catalog, checkout, ledger, models, schemas
from .auth import Principal
from .cart import CartLine
from .config import get_settings
from .db import Base, SessionLocal, engine
from .errors import InternalError, StorefrontError, ValidationError
from .gateway import PaymentGateway, gateway_from_settings
from .logging_config import setup_logging

setup_logging(get_settings().log_level)
logger = logging.getLogger(__name__)

# Create tables if not existing. Schema changes need a proper migration.
Base.metadata.create_all(bind=engine)

app = FastAPI(title="Storefront API")


# -------------------- Dependencies --------------------

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_gateway() -> PaymentGateway:
    return gateway_from_settings(get_settings())


def session_token(request: Request) -> Optional[str]:
    # Prefer an Authorization bearer token, fall back to the session cookie
    header = request.headers.get("authorization")
    if header and header.lower().startswith("bearer "):
        return header.split(None, 1)[1].strip()
    return request.cookies.get(get_settings().session_cookie_name)


def get_principal(request: Request, db: Session = Depends(get_db)) -> Optional[Principal]:
    return auth.resolve_principal(db, session_token(request))


def current_user(principal: Optional[Principal] = Depends(get_principal)) -> Principal:
    return auth.require_user(principal)


def current_admin(principal: Optional[Principal] = Depends(get_principal)) -> Principal:
    return auth.require_admin(principal)


def _set_session_cookie(response: Response, token: str) -> None:
    settings = get_settings()
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=settings.session_ttl_seconds,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )


async def product_payload(request: Request, admin: Principal = Depends(current_admin)) -> schemas.ProductIn:
    # Parsed by hand after the admin gate so non-admins never see body validation errors
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("request body must be JSON")
    try:
        return schemas.ProductIn.model_validate(body)
    except PydanticValidationError as e:
        raise ValidationError("invalid product", e.errors(include_url=False, include_context=False))


async def raw_body(request: Request) -> bytes:
    # Signature checks need the exact bytes Stripe sent
    return await request.body()


# -------------------- Error handling --------------------

@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    if isinstance(exc, InternalError):
        logger.error("Internal error on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        content = {"detail": "Internal server error", "error": exc.code}
    else:
        if exc.status_code >= 500:
            logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc)
        content = {"detail": exc.message, "error": exc.code, **exc.details}
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(content))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error", "error": "internal_error"})


# -------------------- Routes --------------------

@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/auth/signup", response_model=schemas.UserEnvelope, status_code=201)
def signup(payload: schemas.SignupRequest, response: Response, db: Session = Depends(get_db)):
    user = auth.create_user(db, payload.username, payload.email, payload.password)
    _set_session_cookie(response, auth.create_session(db, user))
    return {"user": user}


@app.post("/auth/login", response_model=schemas.UserEnvelope)
def login(payload: schemas.LoginRequest, response: Response, db: Session = Depends(get_db)):
    user, token = auth.login(db, payload.username, payload.password)
    _set_session_cookie(response, token)
    return {"user": user}


@app.post("/auth/logout")
def logout(request: Request, response: Response, db: Session = Depends(get_db)):
    auth.logout(db, session_token(request))
    response.delete_cookie(get_settings().session_cookie_name)
    return {"ok": True}


@app.get("/auth/user", response_model=schemas.UserEnvelope)
def whoami(principal: Principal = Depends(current_user), db: Session = Depends(get_db)):
    return {"user": db.get(models.User, principal.id)}


@app.get("/products", response_model=List[schemas.ProductRead])
def list_products(db: Session = Depends(get_db)):
    return catalog.list_products(db)


@app.get("/products/{product_id}", response_model=schemas.ProductRead)
def get_product(product_id: int, db: Session = Depends(get_db)):
    return catalog.get_product(db, product_id)


@app.post("/admin/products", response_model=schemas.ProductRead, status_code=201)
def admin_create_product(data: schemas.ProductIn = Depends(product_payload), db: Session = Depends(get_db)):
    return catalog.create_product(db, data)


@app.put("/admin/products/{product_id}", response_model=schemas.ProductRead)
def admin_update_product(product_id: int, data: schemas.ProductIn = Depends(product_payload), db: Session = Depends(get_db)):
    return catalog.update_product(db, product_id, data)


@app.delete("/admin/products/{product_id}")
def admin_delete_product(product_id: int, admin: Principal = Depends(current_admin), db: Session = Depends(get_db)):
    catalog.delete_product(db, product_id)
    return {"deleted": product_id}


@app.post("/checkout", response_model=schemas.CheckoutResponse)
def create_checkout(
    payload: schemas.CheckoutRequest,
    principal: Optional[Principal] = Depends(get_principal),
    gateway: PaymentGateway = Depends(get_gateway),
    db: Session = Depends(get_db),
):
    lines = [CartLine(product_id=item.id, quantity=item.quantity) for item in payload.items]
    result = checkout.create_checkout(db, gateway, lines, principal)
    return {"url": result.url}


@app.get("/orders", response_model=List[schemas.OrderRead])
def list_orders(principal: Principal = Depends(current_user), db: Session = Depends(get_db)):
    return ledger.list_orders_for_user(db, principal.id)


@app.post("/orders/{order_id}/cancel", response_model=schemas.OrderRead)
def cancel_order(
    order_id: int,
    principal: Principal = Depends(current_user),
    gateway: PaymentGateway = Depends(get_gateway),
    db: Session = Depends(get_db),
):
    return checkout.cancel_order(db, gateway, order_id, principal)


@app.post("/webhooks/payment")
def payment_webhook(
    request: Request,
    payload: bytes = Depends(raw_body),
    gateway: PaymentGateway = Depends(get_gateway),
    db: Session = Depends(get_db),
):
    event = gateway.parse_event(payload, request.headers.get("stripe-signature"))
    order = ledger.apply_gateway_event(db, event)
    if order is None:
        return {"received": True, "order_id": None, "status": None}
    return {"received": True, "order_id": order.id, "status": order.status}
