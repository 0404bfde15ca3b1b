"""Tests for delivery schedule and serviceable area checks."""

from datetime import date, datetime

import pytest

from storefront.delivery import (
    delivery_options,
    format_delivery_date,
    payment_method,
    validate_delivery_window,
)
from storefront.exceptions import ValidationError


def test_options_start_tomorrow():
    options = delivery_options(date(2026, 10, 19), days=3)
    assert [o.value for o in options] == ["2026-10-20", "2026-10-21", "2026-10-22"]
    assert options[0].label == "Tuesday, 20 Oct"


def test_format_delivery_date():
    assert format_delivery_date(date(2026, 1, 5)) == "Monday, 5 Jan"


def test_valid_window_returns_labels():
    option, slot = validate_delivery_window("2026-10-21", "evening", now=datetime(2026, 10, 19, 18, 0))
    assert option.label == "Wednesday, 21 Oct"
    assert slot.label == "4:00 PM - 8:00 PM"


@pytest.mark.parametrize("delivery_date, slot, field", [
    ("not-a-date", "morning", "delivery_date"),
    ("2026-10-19", "morning", "delivery_date"),  # today is not offered
    ("2026-10-25", "morning", "delivery_date"),
    ("2026-10-20", "midnight", "time_slot"),
])
def test_invalid_window_is_rejected(delivery_date, slot, field):
    with pytest.raises(ValidationError) as exc_info:
        validate_delivery_window(delivery_date, slot, now=datetime(2026, 10, 19, 9, 0))
    assert exc_info.value.fields == [field]


def test_next_morning_closes_after_cutoff():
    late = datetime(2026, 10, 19, 15, 0)
    with pytest.raises(ValidationError):
        validate_delivery_window("2026-10-20", "morning", now=late)

    # later slots stay open
    validate_delivery_window("2026-10-20", "evening", now=late)
    validate_delivery_window("2026-10-21", "morning", now=late)


def test_only_cash_on_delivery_is_enabled():
    assert payment_method("cod").enabled
    assert not payment_method("upi").enabled
    assert payment_method("bitcoin") is None


@pytest.mark.anyio
async def test_save_supported_pin(delivery_area, storage):
    assert await delivery_area.save_pin(" 682016 ") == "682016"
    assert await delivery_area.saved_pin() == "682016"
    assert storage.data["test-pin"] == "682016"


@pytest.mark.anyio
@pytest.mark.parametrize("pin", ["", "560001"])
async def test_unsupported_pin_is_rejected(delivery_area, pin):
    with pytest.raises(ValidationError):
        await delivery_area.save_pin(pin)
    assert await delivery_area.saved_pin() is None


@pytest.mark.anyio
async def test_clear_pin(delivery_area):
    await delivery_area.save_pin("682001")
    await delivery_area.clear_pin()
    assert await delivery_area.saved_pin() is None


def test_pin_suggestions(delivery_area):
    assert delivery_area.suggestions("68203") == ["682030", "682031", "682032"]
    assert delivery_area.suggestions("") == []
