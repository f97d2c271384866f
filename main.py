from datetime import datetime
from typing import Optional

import jwt
import structlog
from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import settings
from accounts import AccountService
from analytics import AnalyticsService
from cart import CartService
from catalog import CatalogService
from database import db as default_db, ensure_indexes, serialize
from errors import Forbidden, InvalidId, NotFound, StoreError, Unauthorized
from logging_config import add_context, clear_context, configure_logging
from notifications import Notifier
from orders import OrderService
from schemas import (
    AddressRequest,
    CancelOrderRequest,
    CartAddRequest,
    CartQuantityRequest,
    CartRemoveRequest,
    ChangePasswordRequest,
    CheckoutRequest,
    CreateOrderRequest,
    LoginRequest,
    OrderStatusRequest,
    PaymentStatusRequest,
    ProductCreateRequest,
    ProductUpdateRequest,
    ProfileUpdateRequest,
    RegisterRequest,
    ReviewRequest,
)
from security import create_token, decode_token
from seed import seed_products

logger = structlog.get_logger(__name__)


class Services:
    """The service graph for one database, built once per app."""

    def __init__(self, database, notifier: Optional[Notifier] = None):
        self.db = database
        self.catalog = CatalogService(database)
        self.accounts = AccountService(database)
        self.carts = CartService(database, self.catalog)
        self.orders = OrderService(database, self.catalog, self.accounts, self.carts, notifier or Notifier())
        self.analytics = AnalyticsService(database)


def get_services(request: Request) -> Services:
    services = request.app.state.services
    if services is None:
        raise RuntimeError("Database is not configured")
    return services


def get_current_user(
    authorization: Optional[str] = Header(None),
    services: Services = Depends(get_services),
) -> dict:
    if not authorization:
        raise Unauthorized("Authorization token is required")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise Unauthorized("Invalid or expired token")
    try:
        payload = decode_token(token)
        user = services.accounts.get_user_by_id(payload["sub"])
    except (jwt.PyJWTError, KeyError, InvalidId, NotFound):
        raise Unauthorized("Invalid or expired token")
    if not user.get("is_active", True):
        raise Unauthorized("User account is inactive")
    add_context(user_id=str(user["_id"]))
    return user


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if user.get("role") != "admin":
        raise Forbidden()
    return user


def ensure_owner(order: dict, user: dict) -> None:
    if order["user_id"] != user["_id"] and user.get("role") != "admin":
        raise Forbidden("Unauthorized")


def ok(message: Optional[str] = None, **data) -> dict:
    body = {"success": True}
    if message:
        body["message"] = message
    body.update({key: serialize(value) for key, value in data.items()})
    return body


router = APIRouter(prefix="/api")


# Auth Endpoints
@router.post("/auth/register", status_code=201)
def register(payload: RegisterRequest, services: Services = Depends(get_services)):
    user = services.accounts.create_user(payload.name, payload.email, payload.password, phone=payload.phone)
    return ok("User registered successfully", token=create_token(user), user=user)


@router.post("/auth/login")
def login(payload: LoginRequest, services: Services = Depends(get_services)):
    user = services.accounts.authenticate(payload.email, payload.password)
    return ok("Login successful", token=create_token(user), user=user)


@router.get("/auth/profile")
def get_profile(user=Depends(get_current_user)):
    return ok(user=user)


@router.put("/auth/profile")
def update_profile(payload: ProfileUpdateRequest, user=Depends(get_current_user), services: Services = Depends(get_services)):
    updated = services.accounts.update_user(user["_id"], payload.model_dump(exclude_unset=True))
    return ok("Profile updated successfully", user=updated)


@router.put("/auth/change-password")
def change_password(payload: ChangePasswordRequest, user=Depends(get_current_user), services: Services = Depends(get_services)):
    services.accounts.change_password(user["_id"], payload.old_password, payload.new_password)
    return ok("Password changed successfully")


@router.post("/auth/addresses", status_code=201)
def add_address(payload: AddressRequest, user=Depends(get_current_user), services: Services = Depends(get_services)):
    updated = services.accounts.add_address(user["_id"], payload.model_dump())
    return ok("Address added successfully", user=updated)


@router.put("/auth/addresses/{address_id}")
def update_address(address_id: str, payload: AddressRequest, user=Depends(get_current_user), services: Services = Depends(get_services)):
    updated = services.accounts.update_address(user["_id"], address_id, payload.model_dump(exclude_unset=True))
    return ok("Address updated successfully", user=updated)


@router.delete("/auth/addresses/{address_id}")
def delete_address(address_id: str, user=Depends(get_current_user), services: Services = Depends(get_services)):
    updated = services.accounts.delete_address(user["_id"], address_id)
    return ok("Address deleted successfully", user=updated)


@router.delete("/auth/account")
def deactivate_account(user=Depends(get_current_user), services: Services = Depends(get_services)):
    services.accounts.deactivate_user(user["_id"])
    return ok("Account deactivated successfully")


@router.get("/auth/customers")
def list_customers(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    admin=Depends(require_admin),
    services: Services = Depends(get_services),
):
    return ok(data=services.accounts.get_all_customers(page, limit))


@router.get("/auth/customers/{user_id}")
def get_customer(user_id: str, admin=Depends(require_admin), services: Services = Depends(get_services)):
    return ok(user=services.accounts.get_user_by_id(user_id))


# Product Endpoints
@router.get("/products")
def list_products(
    category: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: str = "created_at",
    services: Services = Depends(get_services),
):
    result = services.catalog.get_all_products(
        category=category,
        min_price=min_price,
        max_price=max_price,
        search=search,
        page=page,
        limit=limit,
        sort_by=sort_by,
    )
    return ok(data=result)


@router.get("/products/admin/low-stock")
def low_stock_products(
    threshold: int = Query(settings.LOW_STOCK_THRESHOLD, ge=0),
    admin=Depends(require_admin),
    services: Services = Depends(get_services),
):
    return ok(products=services.catalog.get_low_stock_products(threshold))


@router.get("/products/slug/{slug}")
def get_product_by_slug(slug: str, services: Services = Depends(get_services)):
    return ok(product=services.catalog.get_product_by_slug(slug))


@router.get("/products/{product_id}")
def get_product(product_id: str, services: Services = Depends(get_services)):
    return ok(product=services.catalog.get_product_by_id(product_id))


@router.post("/products/{product_id}/reviews", status_code=201)
def add_review(product_id: str, payload: ReviewRequest, user=Depends(get_current_user), services: Services = Depends(get_services)):
    product = services.catalog.add_review(product_id, user["_id"], payload.rating, payload.comment)
    return ok("Review added successfully", product=product)


@router.post("/products", status_code=201)
def create_product(payload: ProductCreateRequest, admin=Depends(require_admin), services: Services = Depends(get_services)):
    product = services.catalog.create_product(payload.model_dump())
    return ok("Product created successfully", product=product)


@router.put("/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdateRequest, admin=Depends(require_admin), services: Services = Depends(get_services)):
    product = services.catalog.update_product(product_id, payload.model_dump(exclude_unset=True))
    return ok("Product updated successfully", product=product)


@router.delete("/products/{product_id}")
def delete_product(product_id: str, admin=Depends(require_admin), services: Services = Depends(get_services)):
    services.catalog.delete_product(product_id)
    return ok("Product deleted successfully")


# Cart Endpoints
@router.get("/cart")
def get_cart(user=Depends(get_current_user), services: Services = Depends(get_services)):
    return ok(cart=services.carts.get_cart(user["_id"]))


@router.get("/cart/summary")
def get_cart_summary(user=Depends(get_current_user), services: Services = Depends(get_services)):
    return ok(summary=services.carts.get_cart_summary(user["_id"]))


@router.post("/cart/add")
def add_to_cart(payload: CartAddRequest, user=Depends(get_current_user), services: Services = Depends(get_services)):
    cart = services.carts.add_to_cart(user["_id"], payload.product_id, payload.quantity)
    return ok("Item added to cart", cart=cart)


@router.post("/cart/remove")
def remove_from_cart(payload: CartRemoveRequest, user=Depends(get_current_user), services: Services = Depends(get_services)):
    cart = services.carts.remove_from_cart(user["_id"], payload.product_id)
    return ok("Item removed from cart", cart=cart)


@router.put("/cart/update-quantity")
def update_cart_quantity(payload: CartQuantityRequest, user=Depends(get_current_user), services: Services = Depends(get_services)):
    cart = services.carts.update_quantity(user["_id"], payload.product_id, payload.quantity)
    return ok("Cart updated", cart=cart)


@router.delete("/cart/clear")
def clear_cart(user=Depends(get_current_user), services: Services = Depends(get_services)):
    cart = services.carts.clear_cart(user["_id"])
    return ok("Cart cleared", cart=cart)


# Orders
@router.post("/orders", status_code=201)
def create_order(payload: CreateOrderRequest, user=Depends(get_current_user), services: Services = Depends(get_services)):
    order = services.orders.create_order(
        user["_id"],
        items=[item.model_dump() for item in payload.items],
        **_order_fields(payload),
    )
    return ok("Order created successfully", order=order)


@router.post("/orders/checkout", status_code=201)
def checkout(payload: CheckoutRequest, user=Depends(get_current_user), services: Services = Depends(get_services)):
    order = services.orders.checkout(user["_id"], **_order_fields(payload))
    return ok("Order created successfully", order=order)


@router.get("/orders/my-orders")
def my_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user=Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return ok(data=services.orders.get_user_orders(user["_id"], page, limit))


@router.get("/orders/admin/all")
def all_orders(
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    admin=Depends(require_admin),
    services: Services = Depends(get_services),
):
    result = services.orders.get_all_orders(
        status=status,
        payment_status=payment_status,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return ok(data=result)


@router.get("/orders/admin/statistics")
def order_statistics(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    admin=Depends(require_admin),
    services: Services = Depends(get_services),
):
    return ok(statistics=services.orders.get_order_statistics(start_date, end_date))


@router.put("/orders/admin/{order_id}/status")
def update_order_status(order_id: str, payload: OrderStatusRequest, admin=Depends(require_admin), services: Services = Depends(get_services)):
    order = services.orders.update_order_status(order_id, payload.status, payload.tracking_number)
    return ok("Order status updated successfully", order=order)


@router.put("/orders/admin/{order_id}/payment-status")
def update_payment_status(order_id: str, payload: PaymentStatusRequest, admin=Depends(require_admin), services: Services = Depends(get_services)):
    order = services.orders.update_payment_status(order_id, payload.payment_status)
    return ok("Payment status updated successfully", order=order)


@router.get("/orders/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user), services: Services = Depends(get_services)):
    order = services.orders.get_order_by_id(order_id)
    ensure_owner(order, user)
    return ok(order=order)


@router.put("/orders/{order_id}/cancel")
def cancel_order(order_id: str, payload: Optional[CancelOrderRequest] = None, user=Depends(get_current_user), services: Services = Depends(get_services)):
    ensure_owner(services.orders.get_order_by_id(order_id), user)
    order = services.orders.cancel_order(order_id, payload.reason if payload else None)
    return ok("Order cancelled successfully", order=order)


def _order_fields(payload: CheckoutRequest) -> dict:
    return {
        "payment_method": payload.payment_method,
        "shipping_address": payload.shipping_address.model_dump() if payload.shipping_address else None,
        "address_id": payload.address_id,
        "shipping_cost": payload.shipping_cost,
        "tax": payload.tax,
        "discount_amount": payload.discount_amount,
        "notes": payload.notes,
    }


# Admin dashboard
@router.get("/admin/dashboard")
def dashboard(admin=Depends(require_admin), services: Services = Depends(get_services)):
    return ok(statistics=services.analytics.dashboard_stats())


@router.get("/admin/analytics/sales")
def sales_analytics(period: str = "monthly", admin=Depends(require_admin), services: Services = Depends(get_services)):
    return ok(analytics=services.analytics.sales_analytics(period))


@router.get("/admin/analytics/customers")
def customer_analytics(admin=Depends(require_admin), services: Services = Depends(get_services)):
    return ok(analytics=services.analytics.customer_analytics())


@router.get("/admin/inventory")
def inventory_status(
    threshold: int = Query(settings.LOW_STOCK_THRESHOLD, ge=0),
    admin=Depends(require_admin),
    services: Services = Depends(get_services),
):
    return ok(inventory=services.analytics.inventory_status(threshold))


# Seed demo data if empty
@router.post("/admin/seed")
def seed_demo(admin=Depends(require_admin), services: Services = Depends(get_services)):
    if services.db["product"].count_documents({}) > 0:
        return ok(status="already-seeded")
    count = seed_products(services.catalog)
    return ok(status="seeded", count=count)


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        logger.info("Request rejected", path=request.url.path, kind=exc.kind, reason=exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": exc.message, "kind": exc.kind},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": list(error["loc"]), "msg": error["msg"], "type": error["type"]}
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": "Validation error", "kind": "validation_failed", "errors": errors},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": str(exc.detail)},
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error", path=request.url.path, method=request.method)
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "Internal server error"},
        )


def create_app(database=None, notifier: Optional[Notifier] = None) -> FastAPI:
    app = FastAPI(title="Storefront API")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        clear_context()
        add_context(method=request.method, path=request.url.path)
        return await call_next(request)

    if database is None:
        database = default_db
    if database is not None:
        ensure_indexes(database)
        app.state.services = Services(database, notifier)
    else:
        app.state.services = None

    register_error_handlers(app)
    app.include_router(router)

    @app.get("/")
    def root():
        return {"status": "ok", "service": "storefront-backend"}

    # Simple health
    @app.get("/test")
    def test_database():
        status = {
            "backend": "running",
            "database": "not-configured",
        }
        if app.state.services is None:
            return status
        try:
            app.state.services.db.list_collection_names()
            status["database"] = "connected"
        except Exception:
            logger.warning("Database health check failed", exc_info=True)
            status["database"] = "error"
        return status

    return app


configure_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
