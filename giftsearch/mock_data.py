"""Locally generated product data used instead of metered upstream calls.

Results are deterministic for a given query so repeated fallbacks look stable
to users and to tests.
"""
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from .models import ProductRecord
from .normalization import normalize_query

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CategoryMapping:
    category: str
    brands: Sequence[str]
    types: Sequence[str]
    price_range: tuple[float, float]


# Checked in order; "headphone" must precede "phone".
CATEGORY_MAPPINGS: Dict[str, CategoryMapping] = {
    "headphone": CategoryMapping(
        "Electronics",
        ("Apple", "Sony", "Bose", "Beats", "Sennheiser", "Audio-Technica"),
        ("Wireless Headphones", "Noise-Canceling Headphones", "Gaming Headset", "Earbuds"),
        (25.0, 450.0),
    ),
    "shoes": CategoryMapping(
        "Footwear",
        ("Nike", "Adidas", "Puma", "New Balance", "Under Armour", "Reebok", "Converse", "Vans"),
        ("Running Shoes", "Basketball Shoes", "Casual Sneakers", "Training Shoes", "Lifestyle Shoes"),
        (45.0, 180.0),
    ),
    "sneaker": CategoryMapping(
        "Footwear",
        ("Nike", "Adidas", "Jordan", "Converse", "Vans", "Puma"),
        ("High-Top Sneakers", "Low-Top Sneakers", "Basketball Sneakers", "Lifestyle Sneakers"),
        (50.0, 220.0),
    ),
    "boots": CategoryMapping(
        "Footwear",
        ("Timberland", "Dr. Martens", "UGG", "Red Wing", "Wolverine"),
        ("Work Boots", "Fashion Boots", "Winter Boots", "Hiking Boots"),
        (80.0, 300.0),
    ),
    "phone": CategoryMapping(
        "Electronics",
        ("Apple", "Samsung", "Google", "OnePlus", "Xiaomi"),
        ("Smartphone", "Mobile Phone", "Android Phone", "Phone Case"),
        (20.0, 1100.0),
    ),
    "laptop": CategoryMapping(
        "Electronics",
        ("Apple", "Dell", "HP", "Lenovo", "Microsoft", "ASUS"),
        ("Laptop", "Gaming Laptop", "Business Laptop", "Ultrabook"),
        (400.0, 2500.0),
    ),
    "shirt": CategoryMapping(
        "Clothing",
        ("Nike", "Adidas", "Under Armour", "Ralph Lauren", "Tommy Hilfiger"),
        ("T-Shirt", "Polo Shirt", "Dress Shirt", "Athletic Shirt"),
        (15.0, 120.0),
    ),
    "jacket": CategoryMapping(
        "Clothing",
        ("Nike", "Adidas", "North Face", "Patagonia", "Columbia"),
        ("Windbreaker", "Rain Jacket", "Winter Jacket", "Track Jacket"),
        (40.0, 350.0),
    ),
    "ball": CategoryMapping(
        "Sports Equipment",
        ("Wilson", "Spalding", "Nike", "Adidas", "Rawlings"),
        ("Basketball", "Football", "Soccer Ball", "Tennis Ball"),
        (10.0, 80.0),
    ),
}

DEFAULT_MAPPING = CategoryMapping(
    "Gifts",
    ("Apple", "Samsung", "Sony", "Google", "Microsoft"),
    ("Gift Set", "Gadget", "Accessory", "Gift Card", "Keepsake"),
    (10.0, 150.0),
)


def detect_mapping(normalized_query: str) -> Optional[CategoryMapping]:
    for keyword, mapping in CATEGORY_MAPPINGS.items():
        if keyword in normalized_query:
            return mapping
    return None


def _stable_fraction(seed: str) -> float:
    digest = hashlib.sha1(seed.encode("utf-8")).digest()
    return int.from_bytes(digest[:4], "big") / 0xFFFFFFFF


def _build_products(query: str, mapping: CategoryMapping, limit: int) -> List[ProductRecord]:
    low, high = mapping.price_range
    products: List[ProductRecord] = []
    combos = [(brand, kind) for kind in mapping.types for brand in mapping.brands]
    for index, (brand, kind) in enumerate(combos[:limit]):
        seed = f"{query}:{index}"
        fraction = _stable_fraction(seed)
        products.append(
            ProductRecord(
                product_id=f"mock-{hashlib.sha1(seed.encode('utf-8')).hexdigest()[:12]}",
                title=f"{brand} {kind}",
                price=round(low + (high - low) * fraction, 2),
                description=f"{brand} {kind.lower()} matching '{query}'",
                image="/placeholder.svg",
                category=mapping.category,
                retailer="Local catalog",
                rating=round(3.5 + 1.5 * _stable_fraction(seed + ":rating"), 1),
                review_count=int(50 + 5000 * _stable_fraction(seed + ":reviews")),
                brand=brand,
                source="mock",
            )
        )
    return products


def find_mock_matches(raw_query: str, limit: int) -> List[ProductRecord]:
    """Catalog items for queries that map to a known category; empty otherwise."""

    query = normalize_query(raw_query)
    mapping = detect_mapping(query)
    if mapping is None or limit <= 0:
        return []
    return _build_products(query, mapping, limit)


def generate_mock_results(raw_query: str, limit: int) -> List[ProductRecord]:
    """Fallback results; never empty for a positive ``limit``."""

    query = normalize_query(raw_query) or "gift"
    mapping = detect_mapping(query) or DEFAULT_MAPPING
    products = _build_products(query, mapping, max(limit, 1))
    logger.info("Generated %s mock products for %r (%s)", len(products), query, mapping.category)
    return products
