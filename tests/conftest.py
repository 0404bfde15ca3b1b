"""Shared pytest fixtures for storefront tests."""

import asyncio
from datetime import datetime

import pytest

from storefront.cart_store import CartStore
from storefront.catalog import CatalogIndex
from storefront.checkout_service import CheckoutOrchestrator
from storefront.delivery import DeliveryArea
from storefront.exceptions import CollaboratorFailure, IdentityError, RedisConnectionError
from storefront.identity import InMemoryIdentityProvider
from storefront.models import CheckoutRequest
from storefront.persistence import InMemoryKeyValueStore, InMemoryOrderStore


NOW = datetime(2026, 10, 19, 9, 30)
TOMORROW = "2026-10-20"


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FlakyKeyValueStore(InMemoryKeyValueStore):
    """Key-value store whose writes can be switched to fail"""

    def __init__(self, initial=None):
        super().__init__(initial)
        self.fail_writes = False
        self.fail_reads = False
        self.writes = []

    async def read_string(self, key):
        if self.fail_reads:
            raise RedisConnectionError("read refused")
        return await super().read_string(key)

    async def write_string(self, key, value):
        if self.fail_writes:
            raise RedisConnectionError("write refused")
        self.writes.append(key)
        await super().write_string(key, value)


class FlakyOrderStore(InMemoryOrderStore):
    """Order store that records calls and fails or stalls the named ones"""

    def __init__(self, fail_on=(), stall_on=()):
        super().__init__()
        self.fail_on = set(fail_on)
        self.stall_on = set(stall_on)
        self.calls = []
        self.gate = asyncio.Event()
        self.entered = asyncio.Event()

    async def _enter(self, name):
        self.calls.append(name)
        if name in self.stall_on:
            self.entered.set()
            await self.gate.wait()
        if name in self.fail_on:
            raise CollaboratorFailure(f"{name} refused")

    async def upsert_profile(self, record):
        await self._enter("upsert_profile")
        await super().upsert_profile(record)

    async def insert_order(self, record):
        await self._enter("insert_order")
        return await super().insert_order(record)

    async def insert_order_lines(self, lines):
        await self._enter("insert_order_lines")
        await super().insert_order_lines(lines)


class FlakyIdentityProvider(InMemoryIdentityProvider):
    """Identity provider that records calls and fails the named ones"""

    def __init__(self, fail_on=()):
        super().__init__()
        self.fail_on = set(fail_on)
        self.calls = []

    async def sign_up(self, email, password, display_name):
        self.calls.append("sign_up")
        if "sign_up" in self.fail_on:
            raise IdentityError("sign-up refused")
        await super().sign_up(email, password, display_name)

    async def sign_in(self, email, password):
        self.calls.append("sign_in")
        if "sign_in" in self.fail_on:
            raise IdentityError("sign-in refused")
        await super().sign_in(email, password)


class FakeRedis:
    """Dict-backed stand-in for RedisClient"""

    def __init__(self):
        self.strings = {}
        self.hashes = {}
        self.lists = {}

    def get(self, key):
        return self.strings.get(key)

    def set(self, key, value, ex=None, nx=False):
        if nx and key in self.strings:
            return None
        self.strings[key] = value
        return True

    def hget(self, key, field):
        return self.hashes.get(key, {}).get(field)

    def hset(self, key, field, value):
        bucket = self.hashes.setdefault(key, {})
        created = field not in bucket
        bucket[field] = value
        return int(created)

    def rpush(self, key, *values):
        bucket = self.lists.setdefault(key, [])
        bucket.extend(values)
        return len(bucket)

    def lrange(self, key, start, end):
        bucket = self.lists.get(key, [])
        return bucket[start:] if end == -1 else bucket[start:end + 1]

    def ping(self):
        return True

    def close(self):
        pass


@pytest.fixture
def catalog():
    return CatalogIndex()


@pytest.fixture
def storage():
    return FlakyKeyValueStore()


@pytest.fixture
def cart_store(catalog, storage):
    return CartStore(catalog, storage, namespace="test")


@pytest.fixture
def delivery_area(storage):
    return DeliveryArea(storage, namespace="test")


@pytest.fixture
def identity():
    return FlakyIdentityProvider()


@pytest.fixture
def order_store():
    return FlakyOrderStore()


@pytest.fixture
def orchestrator(cart_store, identity, order_store, delivery_area):
    return CheckoutOrchestrator(
        cart_store,
        identity=identity,
        order_store=order_store,
        delivery_area=delivery_area,
        timeout=1.0,
        clock=lambda: NOW,
    )


@pytest.fixture
def checkout_request():
    """Complete, valid checkout input."""
    return CheckoutRequest(
        name="Anjali Menon",
        phone="9847000000",
        email="anjali@example.com",
        address="12 Marine Drive",
        landmark="Near GCDA complex",
        additional_phone="9847000001",
        delivery_date=TOMORROW,
        time_slot="morning",
        payment_method="cod",
    )
