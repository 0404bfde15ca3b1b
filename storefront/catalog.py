"""
Static product catalog and lookup index.
"""
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from storefront.exceptions import InvariantViolation
from storefront.models import Category, Product, Variant


def _variant(id: str, size: str, weight: str, price: str, original_price: Optional[str] = None,
             in_stock: bool = True) -> Variant:
    return Variant(
        id=id,
        size=size,
        weight=weight,
        price=Decimal(price),
        original_price=Decimal(original_price) if original_price else None,
        in_stock=in_stock,
    )


PLACEHOLDER_IMAGE = "/api/placeholder/400/400"

PRODUCTS: List[Product] = [
    Product(
        id="carrot-julienne",
        name="Carrot Julienne Cut",
        description="Fresh carrots cut into perfect julienne strips, ready for stir-fries and salads",
        category="curry-cuts",
        images=[PLACEHOLDER_IMAGE, PLACEHOLDER_IMAGE],
        variants=[
            _variant("300g", "Small", "300g", "60", "80"),
            _variant("500g", "Medium", "500g", "95"),
            _variant("1kg", "Large", "1kg", "180"),
        ],
        tags=["Fresh", "Ready to Cook"],
        rating=4.5,
        reviews=127,
        nutritional_info="Rich in Vitamin A, fiber, and antioxidants",
        storage_info="Store in refrigerator for up to 5 days",
        recipe_ideas=["Carrot Stir Fry", "Mixed Vegetable Curry", "Fresh Garden Salad"],
    ),
    Product(
        id="mixed-fruit-salad",
        name="Mixed Fruit Salad",
        description="Fresh seasonal fruits cut and mixed, perfect for healthy snacking",
        category="cut-fruits",
        images=[PLACEHOLDER_IMAGE, PLACEHOLDER_IMAGE],
        variants=[
            _variant("250g", "Small", "250g", "120"),
            _variant("500g", "Medium", "500g", "220"),
            _variant("750g", "Large", "750g", "320"),
        ],
        tags=["Popular", "Healthy"],
        rating=4.8,
        reviews=89,
        nutritional_info="High in vitamins, minerals, and natural sugars",
        storage_info="Consume within 24 hours for best freshness",
    ),
    Product(
        id="onion-diced",
        name="Onion Diced Cut",
        description="Perfectly diced onions, saves your time and tears",
        category="curry-cuts",
        images=[PLACEHOLDER_IMAGE],
        variants=[
            _variant("250g", "Small", "250g", "45", "55"),
            _variant("500g", "Medium", "500g", "80"),
            _variant("1kg", "Large", "1kg", "150"),
        ],
        tags=["Essential", "Time Saver"],
        rating=4.3,
        reviews=156,
    ),
    Product(
        id="cucumber-slices",
        name="Cucumber Slices",
        description="Fresh cucumber slices, perfect for salads and sandwiches",
        category="salads",
        images=[PLACEHOLDER_IMAGE],
        variants=[
            _variant("200g", "Small", "200g", "35", in_stock=False),
            _variant("400g", "Medium", "400g", "65"),
        ],
        tags=["Quick", "Fresh"],
        in_stock=False,
        rating=4.2,
        reviews=67,
    ),
    Product(
        id="tomato-wedges",
        name="Tomato Wedges",
        description="Fresh tomatoes cut into perfect wedges for cooking",
        category="curry-cuts",
        images=[PLACEHOLDER_IMAGE],
        variants=[
            _variant("300g", "Small", "300g", "55"),
            _variant("500g", "Medium", "500g", "90"),
        ],
        tags=["Fresh", "Versatile"],
        rating=4.4,
        reviews=98,
    ),
    Product(
        id="spinach-leaves",
        name="Fresh Spinach Leaves",
        description="Clean, fresh spinach leaves ready for cooking",
        category="fresh-vegetables",
        images=[PLACEHOLDER_IMAGE],
        variants=[
            _variant("250g", "Small", "250g", "40"),
            _variant("500g", "Medium", "500g", "75"),
        ],
        tags=["Organic", "Iron Rich"],
        rating=4.6,
        reviews=134,
    ),
]

CATEGORIES: List[Category] = [
    Category(id="curry-cuts", name="Curry Cuts", icon="🍛", count=24),
    Category(id="cut-fruits", name="Cut Fruits", icon="🍎", count=18),
    Category(id="fresh-vegetables", name="Fresh Vegetables", icon="🥬", count=45),
    Category(id="juice-cuts", name="Juice Cuts", icon="🧃", count=12),
    Category(id="mezhukkupuratti", name="Mezhukkupuratti Cut", icon="🥒", count=15),
    Category(id="peeled-items", name="Peeled Items", icon="🥔", count=20),
    Category(id="salads", name="Salads", icon="🥗", count=16),
    Category(id="fresh-fruits", name="Fresh Fruits", icon="🍊", count=28),
    Category(id="grated-items", name="Grated Items", icon="🧀", count=8),
    Category(id="grocery", name="Grocery", icon="🛒", count=52),
    Category(id="thoran-cut", name="Thoran Cut", icon="🌿", count=14),
]


class CatalogIndex:
    """Read-only lookup from product id to product and variants"""

    def __init__(self, products: Iterable[Product] = PRODUCTS,
                 categories: Iterable[Category] = CATEGORIES):
        self._products: Dict[str, Product] = {}
        for product in products:
            if product.id in self._products:
                raise InvariantViolation(f"Duplicate product id in catalog: {product.id}")
            self._products[product.id] = product
        self._categories = list(categories)

    def find_product(self, product_id: str) -> Optional[Product]:
        return self._products.get(product_id)

    def find_variant(self, product_id: str, variant_id: str) -> Optional[Variant]:
        product = self.find_product(product_id)
        if product is None:
            return None
        return product.variant(variant_id)

    def require_variant(self, product_id: str, variant_id: str) -> tuple:
        """
        Resolve a (product, variant) pair.

        Raises:
            InvariantViolation: If the product is unknown or the variant
                does not belong to it
        """
        product = self.find_product(product_id)
        if product is None:
            raise InvariantViolation(f"Unknown product: {product_id}")
        variant = product.variant(variant_id)
        if variant is None:
            raise InvariantViolation(
                f"Variant {variant_id} does not belong to product {product_id}"
            )
        return product, variant

    def products(self, category: Optional[str] = None) -> List[Product]:
        if category is None:
            return list(self._products.values())
        return [p for p in self._products.values() if p.category == category]

    def categories(self) -> List[Category]:
        return list(self._categories)
