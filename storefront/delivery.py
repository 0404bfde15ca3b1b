"""
Delivery schedule, payment method selector and serviceable area checks.
"""
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple

from storefront.config import Config
from storefront.exceptions import ValidationError
from storefront.models import DeliveryOption, PaymentMethod, TimeSlot
from storefront.persistence import KeyValueStore

TIME_SLOTS: List[TimeSlot] = [
    TimeSlot(value="morning", label="10:00 AM - 2:00 PM"),
    TimeSlot(value="evening", label="4:00 PM - 8:00 PM"),
]

PAYMENT_METHODS: List[PaymentMethod] = [
    PaymentMethod(value="cod", label="Cash on Delivery (COD)"),
    PaymentMethod(value="upi", label="UPI Payment (Coming Soon)", enabled=False),
    PaymentMethod(value="card", label="Credit/Debit Card (Coming Soon)", enabled=False),
]

_SLOTS_BY_VALUE: Dict[str, TimeSlot] = {slot.value: slot for slot in TIME_SLOTS}


def format_delivery_date(day: date) -> str:
    """e.g. "Tuesday, 20 Oct" """
    return f"{day:%A}, {day.day} {day:%b}"


def delivery_options(today: Optional[date] = None, days: Optional[int] = None) -> List[DeliveryOption]:
    """Offered delivery dates, starting tomorrow."""
    today = today or date.today()
    days = Config.DELIVERY_WINDOW_DAYS if days is None else days
    options = []
    for offset in range(1, days + 1):
        day = today + timedelta(days=offset)
        options.append(DeliveryOption(value=day.isoformat(), label=format_delivery_date(day)))
    return options


def time_slot(value: str) -> Optional[TimeSlot]:
    return _SLOTS_BY_VALUE.get(value)


def payment_method(value: str) -> Optional[PaymentMethod]:
    for method in PAYMENT_METHODS:
        if method.value == value:
            return method
    return None


def validate_delivery_window(
    delivery_date: str,
    slot_value: str,
    now: Optional[datetime] = None,
) -> Tuple[DeliveryOption, TimeSlot]:
    """
    Check a chosen delivery date and time slot against the schedule rules.

    Orders need a preparation window: once the cutoff hour has passed, the
    next day's morning slot is no longer available.

    Raises:
        ValidationError: If the date is not offered, the slot is unknown, or
            the slot is past the preparation cutoff
    """
    now = now or datetime.now()
    try:
        chosen = date.fromisoformat(delivery_date)
    except ValueError:
        raise ValidationError(f"Invalid delivery date: {delivery_date}", fields=["delivery_date"])

    options = {option.value: option for option in delivery_options(now.date())}
    option = options.get(chosen.isoformat())
    if option is None:
        raise ValidationError(
            "Please choose one of the available delivery dates", fields=["delivery_date"]
        )

    slot = time_slot(slot_value)
    if slot is None:
        raise ValidationError(f"Unknown time slot: {slot_value}", fields=["time_slot"])

    is_next_day = chosen == now.date() + timedelta(days=1)
    if is_next_day and slot.value == "morning" and now.hour >= Config.PREPARATION_CUTOFF_HOUR:
        raise ValidationError(
            "Orders placed after the preparation cutoff can't be delivered next morning",
            fields=["time_slot"],
        )

    return option, slot


class DeliveryArea:
    """Serviceable PIN codes and the shopper's saved PIN"""

    def __init__(self, storage: KeyValueStore, supported_pins: Optional[List[str]] = None,
                 namespace: Optional[str] = None):
        self.storage = storage
        self.supported_pins = list(supported_pins or Config.SUPPORTED_PIN_CODES)
        self.pin_key = f"{namespace or Config.STORAGE_NAMESPACE}-pin"

    def is_serviceable(self, pin: str) -> bool:
        return pin.strip() in self.supported_pins

    def suggestions(self, prefix: str) -> List[str]:
        prefix = prefix.strip()
        if not prefix:
            return []
        return [pin for pin in self.supported_pins if pin.startswith(prefix)]

    async def save_pin(self, pin: str) -> str:
        pin = pin.strip()
        if not pin:
            raise ValidationError("Please enter your PIN code", fields=["pin_code"])
        if not self.is_serviceable(pin):
            raise ValidationError(
                "Sorry, we're not in this area yet", fields=["pin_code"]
            )
        await self.storage.write_string(self.pin_key, pin)
        return pin

    async def saved_pin(self) -> Optional[str]:
        return await self.storage.read_string(self.pin_key) or None

    async def clear_pin(self) -> None:
        await self.storage.write_string(self.pin_key, "")
