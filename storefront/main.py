"""
FastAPI application exposing the storefront cart, wishlist, pricing and checkout.
"""
import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storefront.cart_store import CartStore
from storefront.catalog import CatalogIndex
from storefront.checkout_service import CheckoutOrchestrator
from storefront.config import Config
from storefront.delivery import PAYMENT_METHODS, TIME_SLOTS, DeliveryArea, delivery_options
from storefront.exceptions import (
    CheckoutFailedError,
    CheckoutInProgressError,
    CollaboratorFailure,
    IdentityError,
    ValidationError,
)
from storefront.identity import IdentityProvider, InMemoryIdentityProvider, RedisIdentityProvider
from storefront.middleware import RequestLoggingMiddleware
from storefront.models import (
    CartItemRequest,
    CartResponse,
    CheckoutRequest,
    Identity,
    OrderResult,
    PinCodeRequest,
    Product,
    QuantityUpdateRequest,
    SignInRequest,
    SignUpRequest,
    StoredOrder,
)
from storefront.persistence import (
    InMemoryKeyValueStore,
    InMemoryOrderStore,
    KeyValueStore,
    OrderStore,
    RedisKeyValueStore,
    RedisOrderStore,
)
from storefront.pricing import loyalty_progress
from storefront.redis_client import RedisClient, get_redis_client

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Application-scoped collaborators, built once and shared by all routes"""
    catalog: CatalogIndex
    storage: KeyValueStore
    cart_store: CartStore
    delivery_area: DeliveryArea
    identity: Optional[IdentityProvider]
    order_store: Optional[OrderStore]
    orchestrator: CheckoutOrchestrator
    redis: Optional[RedisClient] = None


def build_services(
    storage: KeyValueStore,
    identity: Optional[IdentityProvider] = None,
    order_store: Optional[OrderStore] = None,
    catalog: Optional[CatalogIndex] = None,
    redis: Optional[RedisClient] = None,
) -> Services:
    catalog = catalog or CatalogIndex()
    cart_store = CartStore(catalog, storage)
    delivery_area = DeliveryArea(storage)
    orchestrator = CheckoutOrchestrator(
        cart_store,
        identity=identity,
        order_store=order_store,
        delivery_area=delivery_area,
    )
    return Services(
        catalog=catalog,
        storage=storage,
        cart_store=cart_store,
        delivery_area=delivery_area,
        identity=identity,
        order_store=order_store,
        orchestrator=orchestrator,
        redis=redis,
    )


def services_from_config() -> Services:
    """Wire collaborators for the configured STORE_BACKEND"""
    if Config.STORE_BACKEND == "redis":
        redis_client = get_redis_client()
        return build_services(
            storage=RedisKeyValueStore(redis_client),
            identity=RedisIdentityProvider(redis_client, Config.STORAGE_NAMESPACE),
            order_store=RedisOrderStore(redis_client, Config.STORAGE_NAMESPACE),
            redis=redis_client,
        )
    if Config.STORE_BACKEND == "offline":
        return build_services(storage=InMemoryKeyValueStore())
    return build_services(
        storage=InMemoryKeyValueStore(),
        identity=InMemoryIdentityProvider(),
        order_store=InMemoryOrderStore(),
    )


def create_app(services: Optional[Services] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "services", None) is None:
            app.state.services = services_from_config()
        await app.state.services.cart_store.hydrate()
        logger.info(f"Storefront started with backend {Config.STORE_BACKEND}")
        yield
        if app.state.services.redis is not None:
            app.state.services.redis.close()

    app = FastAPI(
        title="Storefront API",
        description="Cart, wishlist and checkout for perishable-goods delivery",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    register_routes(app)
    register_error_handlers(app)
    return app


def get_services(request: Request) -> Services:
    return request.app.state.services


def cart_response(store: CartStore) -> CartResponse:
    return CartResponse(
        items=store.cart_lines,
        cart_count=store.cart_count,
        pricing=store.pricing_snapshot(),
    )


def _log_checkout_outcome(task: asyncio.Task) -> None:
    if task.cancelled():
        logger.warning("Checkout task was cancelled")
        return
    error = task.exception()
    if error is not None:
        logger.info(f"Checkout ended with {type(error).__name__}: {error}")


def start_checkout(orchestrator: CheckoutOrchestrator, request: CheckoutRequest) -> asyncio.Task:
    """Run a checkout as its own task so it finishes even if the caller stops waiting"""
    task = asyncio.ensure_future(orchestrator.submit_order(request))
    task.add_done_callback(_log_checkout_outcome)
    return task


def require_identity_provider(services: Services) -> IdentityProvider:
    if services.identity is None:
        raise HTTPException(status_code=503, detail="Accounts are unavailable in offline mode")
    return services.identity


async def signed_in_identity(services: Services) -> Identity:
    identity = None
    if services.identity is not None:
        identity = await services.identity.current_user()
    if identity is None:
        raise HTTPException(status_code=401, detail="Sign in to see your account")
    return identity


def register_routes(app: FastAPI) -> None:

    @app.get("/health")
    async def health_check(services: Services = Depends(get_services)):
        """Always 200 while the app runs; reports Redis status when configured."""
        redis_status = "not configured"
        redis_latency_ms = None

        if services.redis is not None:
            ping_start = time.time()
            ok = await asyncio.to_thread(services.redis.ping)
            redis_latency_ms = round((time.time() - ping_start) * 1000, 2)
            redis_status = "healthy" if ok else "unhealthy"

        return {
            "status": "healthy",
            "service": "storefront",
            "backend": Config.STORE_BACKEND,
            "offline": services.orchestrator.offline,
            "redis": {"status": redis_status, "latency_ms": redis_latency_ms},
            "timestamp": time.time(),
        }

    # Catalog

    @app.get("/catalog/products", response_model=List[Product])
    async def list_products(
        category: Optional[str] = Query(None, description="Category filter"),
        services: Services = Depends(get_services),
    ):
        return services.catalog.products(category)

    @app.get("/catalog/products/{product_id}", response_model=Product)
    async def get_product(product_id: str, services: Services = Depends(get_services)):
        product = services.catalog.find_product(product_id)
        if product is None:
            raise HTTPException(status_code=404, detail="Product not found")
        return product

    @app.get("/catalog/categories")
    async def list_categories(services: Services = Depends(get_services)):
        return services.catalog.categories()

    # Cart

    @app.get("/cart", response_model=CartResponse)
    async def get_cart(services: Services = Depends(get_services)):
        return cart_response(services.cart_store)

    @app.post("/cart/items", response_model=dict)
    async def add_cart_item(request: CartItemRequest, services: Services = Depends(get_services)):
        line = await services.cart_store.add_to_cart(request.product_id, request.variant_id, request.quantity)
        return {
            "success": line is not None,
            "message": "Item added to cart" if line else "Product or variant not available",
            "product_id": request.product_id,
            "variant_id": request.variant_id,
            "quantity": line.quantity if line else 0,
            "cart_count": services.cart_store.cart_count,
        }

    @app.patch("/cart/items/{product_id}/{variant_id}", response_model=dict)
    async def update_cart_item(
        product_id: str,
        variant_id: str,
        request: QuantityUpdateRequest,
        services: Services = Depends(get_services),
    ):
        line = await services.cart_store.update_quantity(product_id, variant_id, request.quantity)
        return {
            "success": True,
            "product_id": product_id,
            "variant_id": variant_id,
            "quantity": line.quantity if line else 0,
            "removed": line is None,
            "cart_count": services.cart_store.cart_count,
        }

    @app.delete("/cart/items/{product_id}/{variant_id}", response_model=dict)
    async def remove_cart_item(product_id: str, variant_id: str, services: Services = Depends(get_services)):
        removed = await services.cart_store.remove_from_cart(product_id, variant_id)
        if not removed:
            raise HTTPException(status_code=404, detail="Product not found in cart")
        return {
            "success": True,
            "message": "Item removed from cart",
            "product_id": product_id,
            "variant_id": variant_id,
            "cart_count": services.cart_store.cart_count,
        }

    @app.delete("/cart", response_model=dict)
    async def clear_cart(services: Services = Depends(get_services)):
        await services.cart_store.clear_cart()
        return {"success": True, "message": "Cart cleared"}

    # Wishlist

    @app.get("/wishlist")
    async def get_wishlist(services: Services = Depends(get_services)):
        return {"product_ids": services.cart_store.wishlist_ids}

    @app.post("/wishlist/{product_id}")
    async def toggle_wishlist(product_id: str, services: Services = Depends(get_services)):
        member = await services.cart_store.toggle_wishlist(product_id)
        return {"product_id": product_id, "in_wishlist": member}

    # Pricing

    @app.get("/pricing")
    async def get_pricing(
        earned_credits: int = Query(0, ge=0, description="Credits earned so far"),
        services: Services = Depends(get_services),
    ):
        snapshot = services.cart_store.pricing_snapshot()
        return {
            "pricing": snapshot,
            "free_delivery_threshold": services.orchestrator.pricing_config.free_delivery_threshold,
            "loyalty": loyalty_progress(earned_credits + snapshot.loyalty_credits),
        }

    # Delivery

    @app.get("/delivery/options")
    async def get_delivery_options():
        return {
            "dates": delivery_options(),
            "time_slots": TIME_SLOTS,
            "payment_methods": PAYMENT_METHODS,
        }

    @app.get("/delivery/pin")
    async def get_pin(
        prefix: Optional[str] = Query(None, description="Partial PIN for suggestions"),
        services: Services = Depends(get_services),
    ):
        return {
            "pin_code": await services.delivery_area.saved_pin(),
            "suggestions": services.delivery_area.suggestions(prefix) if prefix else [],
        }

    @app.post("/delivery/pin")
    async def set_pin(request: PinCodeRequest, services: Services = Depends(get_services)):
        pin = await services.delivery_area.save_pin(request.pin_code)
        return {"success": True, "pin_code": pin}

    @app.delete("/delivery/pin")
    async def clear_pin(services: Services = Depends(get_services)):
        """Forget the saved PIN so the shopper can pick another"""
        await services.delivery_area.clear_pin()
        return {"success": True, "pin_code": None}

    # Checkout

    @app.post("/checkout", response_model=OrderResult)
    async def checkout(
        request: CheckoutRequest,
        http_request: Request,
        services: Services = Depends(get_services),
    ):
        """
        Place an order for the current cart.
        The checkout keeps running if the client goes away mid-request.
        """
        task = start_checkout(services.orchestrator, request)
        result = await asyncio.shield(task)

        http_request.state.checkout = result
        return result

    # Accounts

    @app.post("/auth/sign-up")
    async def sign_up(request: SignUpRequest, services: Services = Depends(get_services)):
        identity = require_identity_provider(services)
        if not request.full_name:
            raise ValidationError("Please enter your full name", fields=["full_name"])
        try:
            await identity.sign_up(request.email, request.password, request.full_name)
        except IdentityError as e:
            raise HTTPException(status_code=400, detail=f"Sign up failed: {e}")
        return {"success": True, "message": "Account created, please sign in", "email": request.email}

    @app.post("/auth/sign-in", response_model=Identity)
    async def sign_in(request: SignInRequest, services: Services = Depends(get_services)):
        identity = require_identity_provider(services)
        try:
            await identity.sign_in(request.email, request.password)
        except IdentityError as e:
            raise HTTPException(status_code=401, detail=f"Login failed: {e}")
        return await identity.current_user()

    @app.post("/auth/sign-out")
    async def sign_out(services: Services = Depends(get_services)):
        await require_identity_provider(services).sign_out()
        return {"success": True}

    @app.get("/account/profile")
    async def account_profile(services: Services = Depends(get_services)):
        """The signed-in identity and its saved profile, if any"""
        identity = await signed_in_identity(services)
        profile = None
        if services.order_store is not None:
            profile = await services.order_store.get_profile(identity.user_id)
        return {"identity": identity, "profile": profile}

    @app.get("/account/orders", response_model=List[StoredOrder])
    async def account_orders(services: Services = Depends(get_services)):
        if services.identity is None or services.order_store is None:
            return []
        identity = await signed_in_identity(services)
        return await services.order_store.list_orders(identity.user_id)


def register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request, exc):
        return JSONResponse(
            status_code=400,
            content={"error": "Validation error", "message": exc.message, "fields": exc.fields}
        )

    @app.exception_handler(CheckoutInProgressError)
    async def checkout_in_progress_handler(request, exc):
        return JSONResponse(
            status_code=409,
            content={"error": "Checkout in progress", "message": str(exc)}
        )

    @app.exception_handler(CheckoutFailedError)
    async def checkout_failed_handler(request, exc):
        return JSONResponse(
            status_code=503,
            content={"error": "Checkout failed", "message": exc.message, "retryable": exc.retryable}
        )

    @app.exception_handler(CollaboratorFailure)
    async def collaborator_failure_handler(request, exc):
        logger.error(f"Collaborator failure: {exc}")
        return JSONResponse(
            status_code=503,
            content={"error": "Service unavailable", "message": "Storage is unavailable, please retry"}
        )

    # Generic exception handler for unhandled errors
    @app.exception_handler(Exception)
    async def generic_exception_handler(request, exc):
        logger.error(
            f"Unhandled exception: {type(exc).__name__}: {exc}",
            exc_info=True
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "message": str(exc),
                "type": type(exc).__name__
            }
        )


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=Config.APP_PORT)
