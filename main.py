import os
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from fastapi import FastAPI, Depends, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import DEFAULT_LIMIT, DEFAULT_PAGE, MAX_LIMIT, Settings
from database import ensure_indexes, get_database, serialize_doc
from dto import (
    AddCartItemDTO,
    AddressDTO,
    ChangePasswordDTO,
    CreateOrderDTO,
    LoginDTO,
    OrderStatusDTO,
    PaymentStatusDTO,
    ProductCreateDTO,
    ProductUpdateDTO,
    ProfileUpdateDTO,
    RegisterDTO,
    RemoveCartItemDTO,
    ReviewDTO,
    StockAdjustDTO,
    UpdateCartItemDTO,
)
from errors import AppError, ForbiddenError, NotFoundError, UnauthorizedError
from schemas import UserRole
from services import Services, build_services
from services.orders import GUEST_USER_ID, order_view

logger = logging.getLogger("vault")

STORE_NAME = "Vault Skate API"

SAMPLE_PRODUCTS = [
    {
        "name": "Element Section Complete",
        "description": "Ready-to-ride 8.0 complete with Element trucks and 52mm wheels.",
        "base_price": 109.99,
        "category": "Complete Skateboard",
        "brand": "Element",
        "sku": "ELE-COMP-SECTION",
        "stock": 25,
        "variations": [
            {"size": "8.0", "color": "Natural", "sku": "ELE-COMP-SECTION-80", "stock_quantity": 15},
            {"size": "8.25", "color": "Natural", "sku": "ELE-COMP-SECTION-825", "stock_quantity": 10,
             "additional_price": 5},
        ],
        "tags": ["complete", "beginner"],
    },
    {
        "name": "Santa Cruz Screaming Hand Deck",
        "description": "Seven-ply maple deck with the classic Screaming Hand graphic.",
        "base_price": 64.95,
        "category": "Deck",
        "brand": "Santa Cruz",
        "sku": "SC-DECK-SHAND",
        "stock": 40,
        "variations": [
            {"size": "8.25", "color": "Blue", "sku": "SC-DECK-SHAND-825", "stock_quantity": 20},
            {"size": "8.5", "color": "Blue", "sku": "SC-DECK-SHAND-85", "stock_quantity": 20},
        ],
        "tags": ["deck", "classic"],
    },
    {
        "name": "Independent Stage 11 Trucks",
        "description": "Forged baseplate trucks, sold as a pair, built to grind.",
        "base_price": 59.95,
        "category": "Trucks",
        "brand": "Independent",
        "sku": "IND-TRK-S11",
        "stock": 30,
        "variations": [
            {"size": "144", "color": "Silver", "sku": "IND-TRK-S11-144", "stock_quantity": 15},
            {"size": "149", "color": "Black", "sku": "IND-TRK-S11-149", "stock_quantity": 15,
             "additional_price": 4},
        ],
        "tags": ["trucks"],
    },
]


def _ok(data: Any, **extra: Any) -> Dict[str, Any]:
    return {"success": True, "data": data, **extra}


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message, **extra})


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _orders_page(result: Dict[str, Any]) -> Dict[str, Any]:
    return _ok({**result, "orders": [order_view(o) for o in result["orders"]]})


def _products_page(result: Dict[str, Any]) -> Dict[str, Any]:
    page = dict(result)
    return _ok(serialize_doc(page.pop("products")), **page)


def create_app(settings: Optional[Settings] = None, db: Optional[Database] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    if db is None:
        db = get_database(settings)

    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    services = build_services(db, settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ensure_indexes(db)
        yield

    app = FastAPI(title=STORE_NAME, version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_middleware(app)
    _register_error_handlers(app, settings)
    _register_routes(app, services, settings)
    return app


def _register_middleware(app: FastAPI) -> None:
    request_logger = logging.getLogger("vault.http")

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed = (time.perf_counter() - started) * 1000
        request_logger.info("%s %s %s %.1fms", request.method, request.url.path, response.status_code, elapsed)
        return response


def _register_error_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return _error(exc.status_code, exc.message)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = [
            {
                "field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"),
                "message": str(err.get("msg", "")).replace("Value error, ", ""),
            }
            for err in exc.errors()
        ]
        message = errors[0]["message"] if errors else "Validation failed"
        return _error(400, message, errors=errors)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error: %s", exc)
        extra = {} if settings.is_production else {"stack": repr(exc)}
        return _error(500, "Internal server error", **extra)


def _register_routes(app: FastAPI, services: Services, settings: Settings) -> None:
    # Auth dependencies
    def get_current_user(authorization: Optional[str] = Header(default=None)) -> Optional[Dict[str, Any]]:
        if not authorization:
            return None
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token:
            raise UnauthorizedError("Invalid authorization header")
        token_data = services.auth.decode_token(token)
        user = services.users.find_by_id(token_data.id)
        if not user:
            raise UnauthorizedError("User not found")
        if not user.get("is_active", True):
            raise UnauthorizedError("Account is disabled")
        return user

    def require_user(user: Optional[Dict[str, Any]] = Depends(get_current_user)) -> Dict[str, Any]:
        if not user:
            raise UnauthorizedError("Authentication required")
        return user

    def require_admin(user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
        if not _is_admin(user):
            raise ForbiddenError("Access denied. Admin privileges required.")
        return user

    def _is_admin(user: Dict[str, Any]) -> bool:
        return user.get("role") == UserRole.ADMIN.value

    # Health
    @app.get("/")
    def root():
        return {"name": STORE_NAME, "status": "ok"}

    # Auth
    @app.post("/api/auth/register", status_code=201)
    def register(data: RegisterDTO):
        return _ok(serialize_doc(services.auth.register(data)))

    @app.post("/api/auth/login")
    def login(data: LoginDTO):
        return _ok(serialize_doc(services.auth.login(data)))

    @app.get("/api/auth/profile")
    def get_profile(user: Dict[str, Any] = Depends(require_user)):
        return _ok(serialize_doc(services.auth.get_profile(str(user["_id"]))))

    @app.put("/api/auth/profile")
    def update_profile(data: ProfileUpdateDTO, user: Dict[str, Any] = Depends(require_user)):
        return _ok(serialize_doc(services.auth.update_profile(str(user["_id"]), data)))

    @app.post("/api/auth/address", status_code=201)
    def add_address(data: AddressDTO, user: Dict[str, Any] = Depends(require_user)):
        return _ok(serialize_doc(services.auth.add_address(str(user["_id"]), data)))

    @app.delete("/api/auth/address/{address_index}")
    def remove_address(address_index: int, user: Dict[str, Any] = Depends(require_user)):
        return _ok(serialize_doc(services.auth.remove_address(str(user["_id"]), address_index)))

    @app.post("/api/auth/change-password")
    def change_password(data: ChangePasswordDTO, user: Dict[str, Any] = Depends(require_user)):
        services.auth.change_password(str(user["_id"]), data)
        return _ok({"message": "Password updated successfully"})

    # Products
    @app.get("/api/products")
    def list_products(page: int = Query(DEFAULT_PAGE, ge=1), limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
                      category: Optional[str] = None, brand: Optional[str] = None,
                      minPrice: Optional[float] = None, maxPrice: Optional[float] = None):
        result = services.products.get_products(page, limit, category=category, brand=brand,
                                                min_price=minPrice, max_price=maxPrice)
        return _products_page(result)

    @app.get("/api/products/search")
    def search_products(q: str = Query(..., min_length=1), page: int = Query(DEFAULT_PAGE, ge=1),
                        limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
                        category: Optional[str] = None, brand: Optional[str] = None,
                        minPrice: Optional[float] = None, maxPrice: Optional[float] = None):
        result = services.products.search_products(q, page, limit, category=category, brand=brand,
                                                   min_price=minPrice, max_price=maxPrice)
        return _products_page(result)

    @app.get("/api/products/{product_id}")
    def get_product(product_id: str):
        return _ok(serialize_doc(services.products.get_product_by_id(product_id)))

    @app.post("/api/products", status_code=201)
    def create_product(data: ProductCreateDTO, user: Dict[str, Any] = Depends(require_admin)):
        return _ok(serialize_doc(services.products.create_product(data)))

    @app.put("/api/products/{product_id}")
    def update_product(product_id: str, data: ProductUpdateDTO, user: Dict[str, Any] = Depends(require_admin)):
        return _ok(serialize_doc(services.products.update_product(product_id, data)))

    @app.delete("/api/products/{product_id}")
    def delete_product(product_id: str, user: Dict[str, Any] = Depends(require_admin)):
        services.products.delete_product(product_id)
        return _ok({"message": "Product deleted successfully"})

    @app.post("/api/products/{product_id}/reviews", status_code=201)
    def add_review(product_id: str, data: ReviewDTO, user: Dict[str, Any] = Depends(require_user)):
        product = services.products.add_review(product_id, str(user["_id"]), data.rating, data.comment)
        return _ok(serialize_doc(product))

    @app.patch("/api/products/{product_id}/stock")
    def adjust_stock(product_id: str, data: StockAdjustDTO, user: Dict[str, Any] = Depends(require_admin)):
        return _ok(serialize_doc(services.products.update_stock(product_id, data.quantity)))

    # Cart
    @app.get("/api/cart")
    def get_cart(user: Dict[str, Any] = Depends(require_user)):
        return _ok(serialize_doc(services.cart.get_cart(str(user["_id"]))))

    @app.delete("/api/cart")
    def clear_cart(user: Dict[str, Any] = Depends(require_user)):
        return _ok(serialize_doc(services.cart.clear_cart(str(user["_id"]))))

    @app.post("/api/cart/items")
    def add_cart_item(data: AddCartItemDTO, user: Dict[str, Any] = Depends(require_user)):
        cart = services.cart.add_item(str(user["_id"]), data.product_id, data.quantity, data.variant.model_dump())
        return _ok(serialize_doc(cart))

    @app.put("/api/cart/items")
    def update_cart_item(data: UpdateCartItemDTO, user: Dict[str, Any] = Depends(require_user)):
        cart = services.cart.update_item_quantity(str(user["_id"]), data.product_id, data.variant_sku, data.quantity)
        return _ok(serialize_doc(cart))

    @app.delete("/api/cart/items")
    def remove_cart_item(data: RemoveCartItemDTO, user: Dict[str, Any] = Depends(require_user)):
        cart = services.cart.remove_item(str(user["_id"]), data.product_id, data.variant_sku)
        return _ok(serialize_doc(cart))

    @app.post("/api/cart/refresh")
    def refresh_cart(user: Dict[str, Any] = Depends(require_user)):
        return _ok(serialize_doc(services.cart.refresh_prices(str(user["_id"]))))

    # Orders
    @app.post("/api/orders", status_code=201)
    def create_order(data: CreateOrderDTO, user: Dict[str, Any] = Depends(require_user)):
        return _ok(order_view(services.orders.create_order(str(user["_id"]), data)))

    @app.post("/api/orders/guest", status_code=201)
    def create_guest_order(data: CreateOrderDTO):
        return _ok(order_view(services.orders.create_order(GUEST_USER_ID, data)))

    @app.get("/api/orders/guest/{order_id}")
    def get_guest_order(order_id: str):
        return _ok(order_view(services.orders.get_guest_order(order_id)))

    @app.get("/api/orders/history")
    def order_history(page: int = Query(DEFAULT_PAGE, ge=1), limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
                      status: Optional[str] = None, paymentStatus: Optional[str] = None,
                      startDate: Optional[datetime] = None, endDate: Optional[datetime] = None,
                      user: Dict[str, Any] = Depends(require_user)):
        result = services.orders.get_order_history(
            str(user["_id"]), page, limit, status=status, payment_status=paymentStatus,
            start_date=_naive_utc(startDate), end_date=_naive_utc(endDate),
        )
        return _orders_page(result)

    @app.get("/api/orders/analytics")
    def order_analytics(timeframe: str = "month", startDate: Optional[datetime] = None,
                        endDate: Optional[datetime] = None, user: Dict[str, Any] = Depends(require_admin)):
        analytics = services.orders.get_order_analytics(timeframe, _naive_utc(startDate), _naive_utc(endDate))
        return _ok(analytics)

    @app.get("/api/orders/trends")
    def purchase_trends(startDate: Optional[datetime] = None, endDate: Optional[datetime] = None,
                        user: Dict[str, Any] = Depends(require_user)):
        trends = services.orders.get_user_purchase_trends(str(user["_id"]), _naive_utc(startDate),
                                                          _naive_utc(endDate))
        return _ok(trends)

    @app.get("/api/orders")
    def list_orders(page: int = Query(DEFAULT_PAGE, ge=1), limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
                    status: Optional[str] = None, paymentStatus: Optional[str] = None,
                    startDate: Optional[datetime] = None, endDate: Optional[datetime] = None,
                    user: Dict[str, Any] = Depends(require_user)):
        owner = None if _is_admin(user) else str(user["_id"])
        result = services.orders.get_orders(
            owner, page, limit, status=status, payment_status=paymentStatus,
            start_date=_naive_utc(startDate), end_date=_naive_utc(endDate),
        )
        return _orders_page(result)

    @app.get("/api/orders/{order_id}")
    def get_order(order_id: str, user: Dict[str, Any] = Depends(require_user)):
        order = services.orders.get_order_by_id(order_id)
        if not _is_admin(user) and order["user_id"] != str(user["_id"]):
            raise ForbiddenError("Access denied")
        return _ok(order_view(order))

    @app.patch("/api/orders/{order_id}/status")
    def update_order_status(order_id: str, data: OrderStatusDTO, user: Dict[str, Any] = Depends(require_admin)):
        order = services.orders.update_order_status(order_id, data.status, data.tracking_number)
        return _ok(order_view(order))

    @app.patch("/api/orders/{order_id}/payment")
    def update_payment_status(order_id: str, data: PaymentStatusDTO, user: Dict[str, Any] = Depends(require_admin)):
        return _ok(order_view(services.orders.update_payment_status(order_id, data.payment_status)))

    # Sample seed endpoint (dev only)
    @app.post("/dev/seed")
    def seed():
        if settings.is_production:
            raise NotFoundError("Not found")
        admin_email = os.getenv("ADMIN_EMAIL", "admin@vaultskate.com")
        if not services.users.find_by_email(admin_email):
            services.users.create_user("Vault", "Admin", admin_email, os.getenv("ADMIN_PASSWORD", "Admin@1234"),
                                       role=UserRole.ADMIN)
        created = 0
        if services.products.products.count_documents({}) == 0:
            for sample in SAMPLE_PRODUCTS:
                services.products.create_product(ProductCreateDTO(**sample))
                created += 1
        return _ok({"admin": admin_email, "products_created": created})


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
