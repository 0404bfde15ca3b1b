"""
Checkout orchestrator: turns the current cart into an order.

The workflow is forward-only. Every step after validation either succeeds
or sends the checkout down the guest fallback path, where the shopper still
gets an order number and an emptied cart but nothing more is persisted.
Nothing already written is rolled back.
"""
import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from storefront.cart_store import CartStore
from storefront.config import Config
from storefront.delivery import DeliveryArea, payment_method, validate_delivery_window
from storefront.exceptions import (
    CheckoutFailedError,
    CheckoutInProgressError,
    CollaboratorFailure,
    ValidationError,
)
from storefront.identity import IdentityProvider, generate_password
from storefront.models import (
    AuthenticatedSession,
    CartLine,
    CheckoutRequest,
    DeliveryOption,
    Identity,
    OrderHandle,
    OrderLineRecord,
    OrderRecord,
    OrderResult,
    PricingSnapshot,
    ProfileRecord,
    TimeSlot,
)
from storefront.persistence import OrderStore
from storefront.pricing import PricingConfig, pricing_snapshot

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = {
    "name": "Full name",
    "phone": "Phone number",
    "email": "Email",
    "address": "Delivery address",
    "landmark": "Landmark",
    "delivery_date": "Delivery date",
    "time_slot": "Time slot",
}


class CheckoutState(str, Enum):
    IDLE = "Idle"
    VALIDATING = "Validating"
    RESOLVING_IDENTITY = "ResolvingIdentity"
    SAVING_PROFILE = "SavingProfile"
    CREATING_ORDER = "CreatingOrder"
    CREATING_ORDER_LINES = "CreatingOrderLines"
    COMPLETED = "Completed"
    GUEST_FALLBACK = "GuestFallback"
    FAILED = "Failed"


class FallbackRequired(Exception):
    """A step after validation could not finish; continue as a guest checkout"""
    pass


class OrderNumberGenerator:
    """
    Display order numbers: "EC" followed by the last six digits of a
    millisecond stamp. Stamps only move forward, so two orders in the same
    millisecond still get different numbers.
    """

    def __init__(self, prefix: str = "EC", clock: Callable[[], float] = time.time):
        self.prefix = prefix
        self.clock = clock
        self._last_stamp = 0

    def next(self) -> str:
        stamp = int(self.clock() * 1000)
        if stamp <= self._last_stamp:
            stamp = self._last_stamp + 1
        self._last_stamp = stamp
        return f"{self.prefix}{str(stamp)[-6:]}"


@dataclass(frozen=True)
class OrderDraft:
    """Everything captured at submission; later cart or price changes don't reach it"""
    request: CheckoutRequest
    lines: List[CartLine]
    pricing: PricingSnapshot
    delivery: DeliveryOption
    slot: TimeSlot
    pin_code: Optional[str]


class CheckoutOrchestrator:
    """
    Runs one checkout at a time.

    Built without an identity provider or order store it runs in offline
    mode: validation still applies, then every order goes straight to the
    guest fallback.
    """

    def __init__(
        self,
        cart_store: CartStore,
        identity: Optional[IdentityProvider] = None,
        order_store: Optional[OrderStore] = None,
        delivery_area: Optional[DeliveryArea] = None,
        pricing_config: Optional[PricingConfig] = None,
        order_numbers: Optional[OrderNumberGenerator] = None,
        timeout: Optional[float] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.cart_store = cart_store
        self.identity = identity
        self.order_store = order_store
        self.delivery_area = delivery_area
        self.pricing_config = pricing_config or PricingConfig.from_config()
        self.order_numbers = order_numbers or OrderNumberGenerator()
        self.timeout = Config.COLLABORATOR_TIMEOUT_SECONDS if timeout is None else timeout
        self.clock = clock

        self.state = CheckoutState.IDLE
        self.history: List[CheckoutState] = []
        self._lock = asyncio.Lock()

    @property
    def offline(self) -> bool:
        return self.identity is None or self.order_store is None

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    def _hash_id(self, value: str) -> str:
        """Hash identifier for logging (no PII)"""
        return hashlib.sha256(value.encode()).hexdigest()[:8]

    def _transition(self, state: CheckoutState) -> None:
        self.state = state
        self.history.append(state)
        logger.debug(f"Checkout state -> {state.value}")

    async def submit_order(self, request: CheckoutRequest) -> OrderResult:
        """
        Place an order for the current cart.

        Returns:
            OrderResult; persisted is False when the order went through the
            guest fallback

        Raises:
            CheckoutInProgressError: If another checkout is still running
            ValidationError: If required fields are missing or invalid
            CheckoutFailedError: If the cart could not be cleared
        """
        if self._lock.locked():
            raise CheckoutInProgressError()

        async with self._lock:
            self.history = []
            self._transition(CheckoutState.IDLE)
            return await self._run(request)

    async def _run(self, request: CheckoutRequest) -> OrderResult:
        self._transition(CheckoutState.VALIDATING)
        try:
            draft = await self._build_draft(request)
        except ValidationError as e:
            self._transition(CheckoutState.FAILED)
            logger.info(f"Checkout rejected: {e.message}")
            raise

        try:
            order_number = await self._place(draft)
            persisted = True
        except FallbackRequired as e:
            logger.warning(f"Checkout falling back to guest order: {e}")
            self._transition(CheckoutState.GUEST_FALLBACK)
            order_number = self.order_numbers.next()
            persisted = False

        try:
            await self.cart_store.clear_cart()
        except CollaboratorFailure as e:
            self._transition(CheckoutState.FAILED)
            logger.error(f"Order {order_number} placed but cart could not be cleared: {e}")
            raise CheckoutFailedError("Could not finish your order, please try again")

        logger.info(
            f"Order {order_number} placed",
            extra={"order_number": order_number, "persisted": persisted, "total": str(draft.pricing.total)},
        )
        return OrderResult(
            order_number=order_number,
            delivery_date_label=draft.delivery.label,
            time_slot_label=draft.slot.label,
            persisted=persisted,
            pricing=draft.pricing,
        )

    # Validating

    async def _build_draft(self, request: CheckoutRequest) -> OrderDraft:
        missing = [field for field in REQUIRED_FIELDS if not getattr(request, field)]
        if missing:
            labels = ", ".join(REQUIRED_FIELDS[field] for field in missing)
            raise ValidationError(f"Please fill in all required fields: {labels}", fields=missing)

        lines = self.cart_store.cart_lines
        if not lines:
            raise ValidationError("Cannot checkout empty cart")

        delivery, slot = validate_delivery_window(request.delivery_date, request.time_slot, now=self.clock())

        method = payment_method(request.payment_method)
        if method is None or not method.enabled:
            raise ValidationError(
                f"Payment method not available: {request.payment_method}", fields=["payment_method"]
            )

        pin_code = request.pin_code
        if not pin_code and self.delivery_area is not None:
            pin_code = await self._saved_pin()

        return OrderDraft(
            request=request,
            lines=lines,
            pricing=pricing_snapshot(lines, self.pricing_config),
            delivery=delivery,
            slot=slot,
            pin_code=pin_code,
        )

    async def _saved_pin(self) -> Optional[str]:
        try:
            return await asyncio.wait_for(self.delivery_area.saved_pin(), timeout=self.timeout)
        except (asyncio.TimeoutError, CollaboratorFailure) as e:
            logger.warning(f"Saved PIN unavailable: {e}")
            return None

    # Persisting

    async def _call(self, step: str, awaitable):
        """Await a collaborator call with a deadline; any failure means fallback."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise FallbackRequired(f"{step} timed out after {self.timeout}s")
        except Exception as e:
            raise FallbackRequired(f"{step} failed: {type(e).__name__}: {e}") from e

    async def _place(self, draft: OrderDraft) -> str:
        if self.offline:
            raise FallbackRequired("offline mode, no identity or order store configured")

        self._transition(CheckoutState.RESOLVING_IDENTITY)
        identity = await self._resolve_identity(draft.request)

        self._transition(CheckoutState.SAVING_PROFILE)
        await self._call("profile upsert", self.order_store.upsert_profile(
            self._profile_record(identity, draft)
        ))

        self._transition(CheckoutState.CREATING_ORDER)
        order_number = self.order_numbers.next()
        handle: OrderHandle = await self._call("order insert", self.order_store.insert_order(
            self._order_record(order_number, identity, draft)
        ))

        self._transition(CheckoutState.CREATING_ORDER_LINES)
        await self._call("order lines insert", self.order_store.insert_order_lines(
            self._order_line_records(handle.id, draft.lines)
        ))

        self._transition(CheckoutState.COMPLETED)
        return order_number

    async def _resolve_identity(self, request: CheckoutRequest) -> Identity:
        session = await self._call("session lookup", self.identity.session())
        if isinstance(session, AuthenticatedSession):
            return session.identity

        if not request.email:
            raise FallbackRequired("no signed-in shopper and no email to provision an account")

        # Account is provisioned with a generated credential the shopper never sees
        password = generate_password()
        logger.info(f"Provisioning account for {self._hash_id(request.email)}")
        await self._call("sign-up", self.identity.sign_up(request.email, password, request.name))
        await self._call("sign-in", self.identity.sign_in(request.email, password))

        identity = await self._call("session lookup", self.identity.current_user())
        if identity is None:
            raise FallbackRequired("sign-in did not produce a session")
        return identity

    def _profile_record(self, identity: Identity, draft: OrderDraft) -> ProfileRecord:
        request = draft.request
        return ProfileRecord(
            user_id=identity.user_id,
            full_name=request.name,
            phone=request.phone,
            email=request.email,
            address=request.address,
            landmark=request.landmark,
            additional_phone=request.additional_phone or None,
            pin_code=draft.pin_code,
        )

    def _order_record(self, order_number: str, identity: Identity, draft: OrderDraft) -> OrderRecord:
        request = draft.request
        return OrderRecord(
            order_number=order_number,
            user_id=identity.user_id,
            subtotal=draft.pricing.subtotal,
            delivery_fee=draft.pricing.delivery_fee,
            credits_earned=draft.pricing.loyalty_credits,
            total_amount=draft.pricing.total,
            delivery_date=draft.delivery.value,
            time_slot=draft.slot.value,
            payment_method=request.payment_method,
            customer_name=request.name,
            customer_phone=request.phone,
            customer_email=request.email,
            delivery_address=request.address,
            landmark=request.landmark,
            additional_phone=request.additional_phone or None,
            pin_code=draft.pin_code,
        )

    def _order_line_records(self, order_id: str, lines: List[CartLine]) -> List[OrderLineRecord]:
        return [
            OrderLineRecord(
                order_id=order_id,
                product_id=line.product_id,
                variant_id=line.variant_id,
                product_name=line.product.name,
                variant_size=line.variant.size,
                quantity=line.quantity,
                unit_price=line.variant.price,
                total_price=line.line_total,
            )
            for line in lines
        ]
