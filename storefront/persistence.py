"""
Durable persistence collaborators: the local key-value store used for cart
rehydration, and the order store that receives profiles, orders and order lines.

Both come in an in-memory flavour (tests, offline development) and a
Redis-backed flavour. Redis calls are blocking, so they run in worker threads.
"""
import asyncio
import json
import logging
import uuid
from typing import Dict, List, Optional

from storefront.models import OrderHandle, OrderLineRecord, OrderRecord, ProfileRecord, StoredOrder
from storefront.redis_client import RedisClient

logger = logging.getLogger(__name__)


class KeyValueStore:
    """String key-value storage"""

    async def read_string(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def write_string(self, key: str, value: str) -> None:
        raise NotImplementedError


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local key-value storage"""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    async def read_string(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def write_string(self, key: str, value: str) -> None:
        self.data[key] = value


class RedisKeyValueStore(KeyValueStore):
    """Key-value storage backed by plain Redis strings"""

    def __init__(self, redis_client: RedisClient):
        self.redis = redis_client

    async def read_string(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self.redis.get, key)

    async def write_string(self, key: str, value: str) -> None:
        await asyncio.to_thread(self.redis.set, key, value)


class OrderStore:
    """
    Remote record store for profiles, orders and order lines.

    Implementations raise on failure. Account queries only return orders
    whose lines have been written, so an order header left behind by an
    interrupted checkout never shows up as a placed order.
    """

    async def upsert_profile(self, record: ProfileRecord) -> None:
        raise NotImplementedError

    async def insert_order(self, record: OrderRecord) -> OrderHandle:
        raise NotImplementedError

    async def insert_order_lines(self, lines: List[OrderLineRecord]) -> None:
        raise NotImplementedError

    async def get_profile(self, user_id: str) -> Optional[ProfileRecord]:
        raise NotImplementedError

    async def list_orders(self, user_id: str) -> List[StoredOrder]:
        raise NotImplementedError


def _group_lines(lines: List[OrderLineRecord]) -> Dict[str, List[OrderLineRecord]]:
    grouped: Dict[str, List[OrderLineRecord]] = {}
    for line in lines:
        grouped.setdefault(line.order_id, []).append(line)
    return grouped


class InMemoryOrderStore(OrderStore):
    """Process-local order store"""

    def __init__(self):
        self.profiles: Dict[str, ProfileRecord] = {}
        self.orders: Dict[str, OrderRecord] = {}
        self.order_lines: Dict[str, List[OrderLineRecord]] = {}

    async def upsert_profile(self, record: ProfileRecord) -> None:
        self.profiles[record.user_id] = record

    async def insert_order(self, record: OrderRecord) -> OrderHandle:
        order_id = str(uuid.uuid4())
        self.orders[order_id] = record
        return OrderHandle(id=order_id)

    async def insert_order_lines(self, lines: List[OrderLineRecord]) -> None:
        grouped = _group_lines(lines)
        unknown = [order_id for order_id in grouped if order_id not in self.orders]
        if unknown:
            raise KeyError(f"Order lines reference unknown orders: {unknown}")
        for order_id, order_lines in grouped.items():
            self.order_lines.setdefault(order_id, []).extend(order_lines)

    async def get_profile(self, user_id: str) -> Optional[ProfileRecord]:
        return self.profiles.get(user_id)

    async def list_orders(self, user_id: str) -> List[StoredOrder]:
        stored = [
            StoredOrder(id=order_id, order=order, lines=self.order_lines[order_id])
            for order_id, order in self.orders.items()
            if order.user_id == user_id and self.order_lines.get(order_id)
        ]
        stored.sort(key=lambda s: s.order.created_at, reverse=True)
        return stored


class RedisOrderStore(OrderStore):
    """
    Order store backed by Redis.

    Layout (all keys prefixed with the storage namespace):
        <ns>:profiles            hash user_id -> profile JSON
        <ns>:order:<id>          order JSON
        <ns>:order_lines:<id>    JSON list of lines, written in one SET
        <ns>:user_orders:<uid>   list of order ids
    """

    def __init__(self, redis_client: RedisClient, namespace: str = "ecfresh"):
        self.redis = redis_client
        self.namespace = namespace

    def _key(self, *parts: str) -> str:
        return ":".join((self.namespace,) + parts)

    async def upsert_profile(self, record: ProfileRecord) -> None:
        await asyncio.to_thread(
            self.redis.hset, self._key("profiles"), record.user_id, record.model_dump_json()
        )

    async def insert_order(self, record: OrderRecord) -> OrderHandle:
        order_id = str(uuid.uuid4())
        created = await asyncio.to_thread(
            self.redis.set, self._key("order", order_id), record.model_dump_json(), None, True
        )
        if not created:
            raise KeyError(f"Order id collision: {order_id}")
        await asyncio.to_thread(self.redis.rpush, self._key("user_orders", record.user_id), order_id)
        return OrderHandle(id=order_id)

    async def insert_order_lines(self, lines: List[OrderLineRecord]) -> None:
        for order_id, order_lines in _group_lines(lines).items():
            payload = json.dumps([line.model_dump(mode="json") for line in order_lines])
            await asyncio.to_thread(self.redis.set, self._key("order_lines", order_id), payload)

    async def get_profile(self, user_id: str) -> Optional[ProfileRecord]:
        raw = await asyncio.to_thread(self.redis.hget, self._key("profiles"), user_id)
        if raw is None:
            return None
        return ProfileRecord.model_validate_json(raw)

    async def list_orders(self, user_id: str) -> List[StoredOrder]:
        order_ids = await asyncio.to_thread(self.redis.lrange, self._key("user_orders", user_id), 0, -1)
        stored: List[StoredOrder] = []
        for order_id in order_ids:
            raw_order = await asyncio.to_thread(self.redis.get, self._key("order", order_id))
            raw_lines = await asyncio.to_thread(self.redis.get, self._key("order_lines", order_id))
            if raw_order is None or raw_lines is None:
                continue
            try:
                stored.append(StoredOrder(
                    id=order_id,
                    order=OrderRecord.model_validate_json(raw_order),
                    lines=[OrderLineRecord.model_validate(line) for line in json.loads(raw_lines)],
                ))
            except ValueError as e:
                logger.warning(f"Skipping unreadable order {order_id}: {e}")
        stored.sort(key=lambda s: s.order.created_at, reverse=True)
        return stored
