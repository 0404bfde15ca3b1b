"""
Cart/wishlist store: authoritative in-memory state mirrored to key-value storage.
"""
import asyncio
import json
import logging
from typing import Dict, List, Optional, Tuple

from storefront.catalog import CatalogIndex
from storefront.config import Config
from storefront.exceptions import CollaboratorFailure, InvariantViolation, StoreCorruption
from storefront.models import CartLine, PricingSnapshot
from storefront.persistence import KeyValueStore
from storefront.pricing import DEFAULT_PRICING, PricingConfig, pricing_snapshot

logger = logging.getLogger(__name__)

LineKey = Tuple[str, str]


class CartStore:
    """
    Owns the shopper's cart lines and wishlist.

    Mutations run one at a time under a lock and each one awaits its
    storage write before returning. A failed write of an ordinary mutation
    is logged and the in-memory state stays authoritative; only
    clear_cart() reports write failures, because checkout has to know
    whether the cart was really emptied.
    """

    def __init__(self, catalog: CatalogIndex, storage: KeyValueStore, namespace: Optional[str] = None):
        self.catalog = catalog
        self.storage = storage
        namespace = namespace or Config.STORAGE_NAMESPACE
        self.cart_key = f"{namespace}-cart"
        self.wishlist_key = f"{namespace}-wishlist"

        self._lines: Dict[LineKey, CartLine] = {}
        self._wishlist: Dict[str, None] = {}  # insertion-ordered set
        self._lock = asyncio.Lock()

    # Reads

    @property
    def cart_lines(self) -> List[CartLine]:
        return [line.model_copy() for line in self._lines.values()]

    @property
    def cart_count(self) -> int:
        return sum(line.quantity for line in self._lines.values())

    @property
    def wishlist_ids(self) -> List[str]:
        return list(self._wishlist)

    def is_in_wishlist(self, product_id: str) -> bool:
        return product_id in self._wishlist

    def pricing_snapshot(self, config: PricingConfig = DEFAULT_PRICING) -> PricingSnapshot:
        return pricing_snapshot(self._lines.values(), config)

    # Rehydration

    async def hydrate(self) -> None:
        """Load cart and wishlist from storage, starting empty on missing or bad data."""
        async with self._lock:
            self._lines = await self._load(self.cart_key, self._decode_cart)
            self._wishlist = await self._load(self.wishlist_key, self._decode_wishlist)
        logger.info(f"Store hydrated: {len(self._lines)} cart lines, {len(self._wishlist)} wishlist items")

    async def _load(self, key: str, decode):
        try:
            raw = await self.storage.read_string(key)
        except (CollaboratorFailure, ValueError) as e:
            # undecodable bytes surface as UnicodeDecodeError
            logger.warning(f"Could not read {key} from storage, starting empty: {e}")
            return {}
        if not raw:
            return {}
        try:
            return decode(key, raw)
        except StoreCorruption as e:
            logger.warning(f"Discarding persisted state: {e}")
            return {}
        except RecursionError:
            logger.warning(f"Discarding persisted state: {key} is nested too deeply to decode")
            return {}

    def _decode_cart(self, key: str, raw: str) -> Dict[LineKey, CartLine]:
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise StoreCorruption(key, f"invalid JSON ({e})")
        if not isinstance(data, list):
            raise StoreCorruption(key, "expected a list of cart lines")

        lines: Dict[LineKey, CartLine] = {}
        for item in data:
            try:
                line = CartLine.model_validate(item)
            except ValueError as e:
                raise StoreCorruption(key, f"invalid cart line ({e})")
            if line.key in lines:
                raise StoreCorruption(key, f"duplicate cart line {line.key}")
            lines[line.key] = line
        return lines

    def _decode_wishlist(self, key: str, raw: str) -> Dict[str, None]:
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise StoreCorruption(key, f"invalid JSON ({e})")
        if not isinstance(data, list) or not all(isinstance(item, str) for item in data):
            raise StoreCorruption(key, "expected a list of product ids")
        return dict.fromkeys(data)

    # Persistence

    def _serialize_cart(self) -> str:
        return json.dumps([line.model_dump(mode="json") for line in self._lines.values()])

    def _serialize_wishlist(self) -> str:
        return json.dumps(list(self._wishlist))

    async def _write(self, key: str, payload: str) -> None:
        try:
            await self.storage.write_string(key, payload)
        except CollaboratorFailure as e:
            logger.error(f"Failed to persist {key}, keeping in-memory state: {e}")

    # Cart mutations

    async def add_to_cart(self, product_id: str, variant_id: str, quantity: int = 1) -> Optional[CartLine]:
        """
        Add quantity of a variant to the cart.

        Unknown products, variants that don't belong to the product and
        non-positive quantities are ignored.

        Returns:
            The resulting cart line, or None if nothing changed
        """
        if quantity < 1:
            logger.info(f"Ignoring add with non-positive quantity {quantity}")
            return None
        try:
            product, variant = self.catalog.require_variant(product_id, variant_id)
        except InvariantViolation as e:
            logger.info(f"Ignoring add to cart: {e}")
            return None

        async with self._lock:
            key = (product_id, variant_id)
            existing = self._lines.get(key)
            if existing is not None:
                line = existing.model_copy(update={"quantity": existing.quantity + quantity})
            else:
                line = CartLine(
                    product_id=product_id,
                    variant_id=variant_id,
                    quantity=quantity,
                    product=product,
                    variant=variant,
                )
            self._lines[key] = line
            await self._write(self.cart_key, self._serialize_cart())
            return line.model_copy()

    async def remove_from_cart(self, product_id: str, variant_id: str) -> bool:
        async with self._lock:
            return await self._remove_locked((product_id, variant_id))

    async def _remove_locked(self, key: LineKey) -> bool:
        if self._lines.pop(key, None) is None:
            return False
        await self._write(self.cart_key, self._serialize_cart())
        return True

    async def update_quantity(self, product_id: str, variant_id: str, quantity: int) -> Optional[CartLine]:
        """Set a line's quantity; zero or less removes the line."""
        key = (product_id, variant_id)
        async with self._lock:
            if quantity <= 0:
                await self._remove_locked(key)
                return None
            existing = self._lines.get(key)
            if existing is None:
                return None
            line = existing.model_copy(update={"quantity": quantity})
            self._lines[key] = line
            await self._write(self.cart_key, self._serialize_cart())
            return line.model_copy()

    async def clear_cart(self) -> None:
        """
        Empty the cart.

        Raises:
            CollaboratorFailure: If the empty cart could not be written; the
                in-memory cart is left untouched in that case
        """
        async with self._lock:
            await self.storage.write_string(self.cart_key, json.dumps([]))
            self._lines = {}
        logger.info("Cart cleared")

    # Wishlist mutations

    async def toggle_wishlist(self, product_id: str) -> bool:
        """Add the product if absent, remove it if present. Returns new membership."""
        async with self._lock:
            if product_id in self._wishlist:
                del self._wishlist[product_id]
                member = False
            else:
                self._wishlist[product_id] = None
                member = True
            await self._write(self.wishlist_key, self._serialize_wishlist())
        logger.info(f"Wishlist toggle {product_id}: member={member}")
        return member
