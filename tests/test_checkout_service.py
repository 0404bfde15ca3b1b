"""Tests for the checkout orchestrator."""

import asyncio
from decimal import Decimal

import pytest

from conftest import NOW, FlakyIdentityProvider, FlakyOrderStore
from storefront.checkout_service import CheckoutOrchestrator, CheckoutState, OrderNumberGenerator
from storefront.exceptions import CheckoutFailedError, CheckoutInProgressError, ValidationError
from storefront.models import CheckoutRequest

pytestmark = pytest.mark.anyio

S = CheckoutState
PERSISTED_PATH = [
    S.IDLE, S.VALIDATING, S.RESOLVING_IDENTITY, S.SAVING_PROFILE,
    S.CREATING_ORDER, S.CREATING_ORDER_LINES, S.COMPLETED,
]


@pytest.fixture
async def filled_cart(cart_store):
    await cart_store.add_to_cart("mixed-fruit-salad", "500g", 2)  # 440
    await cart_store.add_to_cart("onion-diced", "250g", 1)  # 45
    return cart_store


def build_orchestrator(cart_store, identity, order_store, delivery_area=None, **kwargs):
    kwargs.setdefault("timeout", 1.0)
    return CheckoutOrchestrator(
        cart_store,
        identity=identity,
        order_store=order_store,
        delivery_area=delivery_area,
        clock=lambda: NOW,
        **kwargs,
    )


async def test_new_shopper_order_is_persisted(orchestrator, filled_cart, identity, order_store, checkout_request):
    result = await orchestrator.submit_order(checkout_request)

    assert orchestrator.state == S.COMPLETED
    assert orchestrator.history == PERSISTED_PATH
    assert result.persisted is True
    assert result.order_number.startswith("EC")
    assert result.delivery_date_label == "Tuesday, 20 Oct"
    assert result.time_slot_label == "10:00 AM - 2:00 PM"
    assert filled_cart.cart_lines == []

    assert identity.calls == ["sign_up", "sign_in"]
    user = await identity.current_user()
    assert user.email == "anjali@example.com"
    assert user.display_name == "Anjali Menon"

    assert order_store.calls == ["upsert_profile", "insert_order", "insert_order_lines"]
    profile = await order_store.get_profile(user.user_id)
    assert profile.landmark == "Near GCDA complex"
    assert profile.additional_phone == "9847000001"

    orders = await order_store.list_orders(user.user_id)
    assert len(orders) == 1
    order = orders[0].order
    assert order.order_number == result.order_number
    assert order.subtotal == Decimal("485")
    assert order.delivery_fee == Decimal("40")
    assert order.credits_earned == 48
    assert order.total_amount == Decimal("525")
    assert order.time_slot == "morning"
    assert {(l.product_name, l.variant_size, l.quantity, l.unit_price) for l in orders[0].lines} == {
        ("Mixed Fruit Salad", "Medium", 2, Decimal("220")),
        ("Onion Diced Cut", "Small", 1, Decimal("45")),
    }


async def test_order_lines_failure_falls_back_to_guest(cart_store, filled_cart, delivery_area, checkout_request):
    identity = FlakyIdentityProvider()
    order_store = FlakyOrderStore(fail_on={"insert_order_lines"})
    orchestrator = build_orchestrator(cart_store, identity, order_store, delivery_area)

    result = await orchestrator.submit_order(checkout_request)

    assert orchestrator.state == S.GUEST_FALLBACK
    assert orchestrator.history[-2:] == [S.CREATING_ORDER_LINES, S.GUEST_FALLBACK]
    assert result.persisted is False
    assert result.order_number.startswith("EC")
    assert result.delivery_date_label == "Tuesday, 20 Oct"
    assert cart_store.cart_lines == []

    # the order header was written but is never shown as a placed order
    user = await identity.current_user()
    assert len(order_store.orders) == 1
    assert await order_store.list_orders(user.user_id) == []


async def test_missing_landmark_fails_before_any_collaborator(
    orchestrator, filled_cart, identity, order_store, checkout_request
):
    request = CheckoutRequest(**{**checkout_request.model_dump(), "landmark": "   "})
    before = filled_cart.cart_lines

    with pytest.raises(ValidationError) as exc_info:
        await orchestrator.submit_order(request)

    assert exc_info.value.fields == ["landmark"]
    assert orchestrator.state == S.FAILED
    assert orchestrator.history == [S.IDLE, S.VALIDATING, S.FAILED]
    assert identity.calls == []
    assert order_store.calls == []
    assert filled_cart.cart_lines == before


@pytest.mark.parametrize("field", ["name", "phone", "email", "address", "delivery_date", "time_slot"])
async def test_each_required_field_is_checked(orchestrator, filled_cart, checkout_request, field):
    request = checkout_request.model_copy(update={field: ""})
    with pytest.raises(ValidationError) as exc_info:
        await orchestrator.submit_order(request)
    assert field in exc_info.value.fields
    assert filled_cart.cart_count == 3


async def test_empty_cart_is_rejected(orchestrator, order_store, checkout_request):
    with pytest.raises(ValidationError):
        await orchestrator.submit_order(checkout_request)
    assert orchestrator.state == S.FAILED
    assert order_store.calls == []


async def test_disabled_payment_method_is_rejected(orchestrator, filled_cart, checkout_request):
    request = checkout_request.model_copy(update={"payment_method": "upi"})
    with pytest.raises(ValidationError) as exc_info:
        await orchestrator.submit_order(request)
    assert exc_info.value.fields == ["payment_method"]


async def test_failed_attempt_can_be_retried(orchestrator, filled_cart, checkout_request):
    with pytest.raises(ValidationError):
        await orchestrator.submit_order(checkout_request.model_copy(update={"phone": ""}))

    result = await orchestrator.submit_order(checkout_request)
    assert result.persisted is True
    assert orchestrator.history[0] == S.IDLE


async def test_signed_in_shopper_skips_provisioning(orchestrator, filled_cart, identity, order_store, checkout_request):
    await identity.sign_up("regular@example.com", "hunter22", "Regular")
    await identity.sign_in("regular@example.com", "hunter22")
    identity.calls.clear()
    user = await identity.current_user()

    result = await orchestrator.submit_order(checkout_request)

    assert result.persisted is True
    assert identity.calls == []
    orders = await order_store.list_orders(user.user_id)
    assert [o.order.order_number for o in orders] == [result.order_number]


@pytest.mark.parametrize("failing_step", ["sign_up", "sign_in"])
async def test_account_provisioning_failure_falls_back(
    cart_store, filled_cart, delivery_area, checkout_request, failing_step
):
    identity = FlakyIdentityProvider(fail_on={failing_step})
    order_store = FlakyOrderStore()
    orchestrator = build_orchestrator(cart_store, identity, order_store, delivery_area)

    result = await orchestrator.submit_order(checkout_request)

    assert result.persisted is False
    assert orchestrator.history[-2:] == [S.RESOLVING_IDENTITY, S.GUEST_FALLBACK]
    assert order_store.calls == []
    assert cart_store.cart_lines == []


async def test_existing_account_email_falls_back(orchestrator, filled_cart, identity, order_store, checkout_request):
    await identity.sign_up(checkout_request.email, "someone-elses", "Other")

    result = await orchestrator.submit_order(checkout_request)

    assert result.persisted is False
    assert order_store.calls == []


@pytest.mark.parametrize("failing_step, reached", [
    ("upsert_profile", S.SAVING_PROFILE),
    ("insert_order", S.CREATING_ORDER),
])
async def test_persistence_failure_stops_further_calls(
    cart_store, filled_cart, delivery_area, checkout_request, failing_step, reached
):
    order_store = FlakyOrderStore(fail_on={failing_step})
    orchestrator = build_orchestrator(cart_store, FlakyIdentityProvider(), order_store, delivery_area)

    result = await orchestrator.submit_order(checkout_request)

    assert result.persisted is False
    assert orchestrator.history[-2:] == [reached, S.GUEST_FALLBACK]
    assert order_store.calls[-1] == failing_step
    assert cart_store.cart_lines == []


async def test_unresponsive_store_times_out_to_fallback(cart_store, filled_cart, delivery_area, checkout_request):
    order_store = FlakyOrderStore(stall_on={"insert_order"})
    orchestrator = build_orchestrator(
        cart_store, FlakyIdentityProvider(), order_store, delivery_area, timeout=0.05
    )

    result = await orchestrator.submit_order(checkout_request)

    assert result.persisted is False
    assert orchestrator.state == S.GUEST_FALLBACK
    assert "insert_order_lines" not in order_store.calls


async def test_second_submission_while_running_is_rejected(
    cart_store, filled_cart, delivery_area, checkout_request
):
    order_store = FlakyOrderStore(stall_on={"upsert_profile"})
    orchestrator = build_orchestrator(cart_store, FlakyIdentityProvider(), order_store, delivery_area)

    first = asyncio.create_task(orchestrator.submit_order(checkout_request))
    await order_store.entered.wait()
    assert orchestrator.in_progress

    with pytest.raises(CheckoutInProgressError):
        await orchestrator.submit_order(checkout_request)

    order_store.gate.set()
    result = await first
    assert result.persisted is True
    assert order_store.calls.count("insert_order") == 1


async def test_cart_clear_failure_is_retryable_failure(orchestrator, filled_cart, storage, checkout_request):
    storage.fail_writes = True

    with pytest.raises(CheckoutFailedError) as exc_info:
        await orchestrator.submit_order(checkout_request)

    assert exc_info.value.retryable
    assert orchestrator.state == S.FAILED
    assert filled_cart.cart_count == 3


async def test_offline_mode_goes_straight_to_fallback(cart_store, filled_cart, checkout_request):
    orchestrator = CheckoutOrchestrator(cart_store, clock=lambda: NOW)
    assert orchestrator.offline

    result = await orchestrator.submit_order(checkout_request)

    assert result.persisted is False
    assert orchestrator.history == [S.IDLE, S.VALIDATING, S.GUEST_FALLBACK]
    assert cart_store.cart_lines == []


async def test_prices_are_captured_at_submission(
    cart_store, filled_cart, delivery_area, checkout_request
):
    order_store = FlakyOrderStore(stall_on={"insert_order"})
    identity = FlakyIdentityProvider()
    orchestrator = build_orchestrator(cart_store, identity, order_store, delivery_area)

    task = asyncio.create_task(orchestrator.submit_order(checkout_request))
    await order_store.entered.wait()
    await cart_store.update_quantity("mixed-fruit-salad", "500g", 10)
    order_store.gate.set()
    result = await task

    user = await identity.current_user()
    stored = (await order_store.list_orders(user.user_id))[0]
    assert stored.order.subtotal == Decimal("485")
    assert result.pricing.total == Decimal("525")
    assert sum(line.quantity for line in stored.lines) == 3


async def test_saved_pin_goes_on_profile_and_order(
    orchestrator, filled_cart, delivery_area, identity, order_store, checkout_request
):
    await delivery_area.save_pin("682011")

    await orchestrator.submit_order(checkout_request)

    user = await identity.current_user()
    assert (await order_store.get_profile(user.user_id)).pin_code == "682011"
    assert (await order_store.list_orders(user.user_id))[0].order.pin_code == "682011"


def test_order_numbers_do_not_repeat_within_a_millisecond():
    generator = OrderNumberGenerator(clock=lambda: 1760870400.5)
    numbers = [generator.next() for _ in range(50)]
    assert len(set(numbers)) == 50
    assert numbers[0] == "EC400500"
    assert all(n.startswith("EC") and len(n) == 8 for n in numbers)
